"""
冻结天数余额追踪

不变量: 0 <= used_freeze_days <= total_freeze_days
并发安全由持久层的 version 比较交换保证
"""

from dataclasses import dataclass, replace
from decimal import Decimal

from gym_billing.core.service_result import ServiceResult, ErrorCode, failure


@dataclass(frozen=True)
class FreezeBalance:
    """订阅的冻结天数余额"""
    subscription_id: str
    total_freeze_days: int
    used_freeze_days: int = 0
    version: int = 0

    @property
    def remaining(self) -> int:
        return self.total_freeze_days - self.used_freeze_days


@dataclass(frozen=True)
class FreezePackage:
    """冻结套餐 - extends_contract 决定冻结是否顺延合同结束日"""
    id: str
    name: str
    freeze_days: int
    price: Decimal = Decimal("0")
    extends_contract: bool = True


def reserve(balance: FreezeBalance, days: int) -> ServiceResult[FreezeBalance]:
    """预留冻结天数"""
    if days <= 0:
        return failure("Freeze days must be positive", ErrorCode.VALIDATION_ERROR, field="days")
    if balance.remaining < days:
        return failure(
            f"Requested {days} freeze days but only {balance.remaining} remain",
            ErrorCode.INSUFFICIENT_FREEZE_DAYS,
            context={'requested': days, 'remaining': balance.remaining},
        )
    return ServiceResult.success(replace(balance, used_freeze_days=balance.used_freeze_days + days))


def release(balance: FreezeBalance, days: int) -> ServiceResult[FreezeBalance]:
    """归还冻结天数（提前解冻或冻结期间取消）"""
    if days < 0:
        return failure("Released days cannot be negative", ErrorCode.VALIDATION_ERROR, field="days")
    if days > balance.used_freeze_days:
        return failure(
            f"Cannot release {days} days, only {balance.used_freeze_days} are in use",
            ErrorCode.VALIDATION_ERROR,
            field="days",
        )
    return ServiceResult.success(replace(balance, used_freeze_days=balance.used_freeze_days - days))


def grant(balance: FreezeBalance, days: int) -> ServiceResult[FreezeBalance]:
    """增加冻结天数（购买冻结套餐或管理员赠送）"""
    if days <= 0:
        return failure("Granted days must be positive", ErrorCode.VALIDATION_ERROR, field="days")
    return ServiceResult.success(replace(balance, total_freeze_days=balance.total_freeze_days + days))
