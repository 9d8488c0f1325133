"""
会员订阅领域实体
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional


class SubscriptionStatus(str, Enum):
    """订阅状态"""
    PENDING = "PENDING"        # 等待首次付款
    ACTIVE = "ACTIVE"
    FROZEN = "FROZEN"
    CANCELLED = "CANCELLED"    # 终态
    EXPIRED = "EXPIRED"        # 终态

    @property
    def is_terminal(self) -> bool:
        return self in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)


TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED})


@dataclass(frozen=True)
class MembershipPlan:
    """会员计划"""
    id: str
    name: str
    price: Decimal
    duration_days: int
    currency: str = "SAR"
    freeze_days_allowed: int = 0
    max_classes: Optional[int] = None  # None 表示不限次数
    administration_fee: Decimal = Decimal("0")
    join_fee: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    is_active: bool = True


@dataclass(frozen=True)
class Subscription:
    """
    会员订阅

    状态只能单向流转，ACTIVE <-> FROZEN 除外；CANCELLED/EXPIRED 为终态。
    实体不可变，状态变更通过 dataclasses.replace 生成新实例。
    """
    id: str
    member_id: str
    plan_id: str
    status: SubscriptionStatus
    start_date: date
    end_date: date
    classes_remaining: Optional[int] = None
    auto_renew: bool = False
    locale: str = "ar"
    invoice_id: Optional[str] = None  # 待支付的关联发票
    referred_by_member_id: Optional[str] = None

    # 当前冻结
    frozen_at: Optional[date] = None
    freeze_end_date: Optional[date] = None
    freeze_days_reserved: int = 0
    freeze_extends_contract: bool = False

    cancellation_reason: Optional[str] = None
    version: int = 0

    def days_remaining(self, today: date) -> int:
        """剩余天数（派生值），已过期返回0"""
        return max(0, (self.end_date - today).days)

    def is_expired_on(self, today: date) -> bool:
        return today > self.end_date

    def has_classes_available(self) -> bool:
        return self.classes_remaining is None or self.classes_remaining > 0
