"""
会员积分账本（忠诚度积分、推荐奖励）

与钱包账本结构相同: 余额 + 只追加的交易记录，兑换不允许透支
"""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Optional, Sequence

from gym_billing.core.service_result import ServiceResult, ErrorCode, failure


class PointsTransactionType(str, Enum):
    EARN = "EARN"
    REDEEM = "REDEEM"
    ADJUST = "ADJUST"


class PointsSource(str, Enum):
    """积分来源"""
    LOYALTY = "LOYALTY"      # 支付发票
    REFERRAL = "REFERRAL"    # 推荐的会员首次激活
    MANUAL = "MANUAL"


@dataclass(frozen=True)
class PointsAccount:
    member_id: str
    balance: int = 0
    last_sequence: int = 0
    version: int = 0


@dataclass(frozen=True)
class PointsTransaction:
    member_id: str
    sequence: int
    type: PointsTransactionType
    points: int  # 有符号
    balance_after: int
    created_at: datetime
    source: PointsSource = PointsSource.MANUAL
    reference: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class PointsEntry:
    account: PointsAccount
    transaction: PointsTransaction


def _append(account, tx_type, points, created_at, source, reference, description) -> PointsEntry:
    sequence = account.last_sequence + 1
    balance_after = account.balance + points
    return PointsEntry(
        account=replace(account, balance=balance_after, last_sequence=sequence),
        transaction=PointsTransaction(
            member_id=account.member_id,
            sequence=sequence,
            type=tx_type,
            points=points,
            balance_after=balance_after,
            created_at=created_at,
            source=source,
            reference=reference,
            description=description,
        ),
    )


def points_for_amount(amount: Decimal, points_per_unit: int) -> int:
    """按支付金额计算忠诚度积分，不足一个单位的部分舍去"""
    if amount <= 0 or points_per_unit <= 0:
        return 0
    return int((amount * points_per_unit).to_integral_value(rounding=ROUND_DOWN))


def earn(
    account: PointsAccount,
    points: int,
    created_at: datetime,
    source: PointsSource = PointsSource.LOYALTY,
    reference: Optional[str] = None,
    description: Optional[str] = None,
) -> ServiceResult[PointsEntry]:
    if points <= 0:
        return failure("Earned points must be positive", ErrorCode.VALIDATION_ERROR, field="points")
    return ServiceResult.success(
        _append(account, PointsTransactionType.EARN, points, created_at, source, reference, description)
    )


def redeem(
    account: PointsAccount,
    points: int,
    created_at: datetime,
    reference: Optional[str] = None,
    description: Optional[str] = None,
) -> ServiceResult[PointsEntry]:
    if points <= 0:
        return failure("Redeemed points must be positive", ErrorCode.VALIDATION_ERROR, field="points")
    if account.balance < points:
        return failure(
            f"Cannot redeem {points} points, balance is {account.balance}",
            ErrorCode.INSUFFICIENT_BALANCE,
            context={'balance': account.balance, 'requested': points},
        )
    return ServiceResult.success(
        _append(account, PointsTransactionType.REDEEM, -points, created_at,
                PointsSource.MANUAL, reference, description)
    )


def adjust(account: PointsAccount, delta: int, created_at: datetime, reason: str) -> ServiceResult[PointsEntry]:
    """管理员调整，结果余额不能为负"""
    if delta == 0:
        return failure("Adjustment delta cannot be zero", ErrorCode.VALIDATION_ERROR, field="delta")
    if not reason or not reason.strip():
        return failure("Adjustment reason is required", ErrorCode.VALIDATION_ERROR, field="reason")
    if account.balance + delta < 0:
        return failure(
            f"Adjustment would make points balance negative ({account.balance} {delta:+d})",
            ErrorCode.INSUFFICIENT_BALANCE,
        )
    return ServiceResult.success(
        _append(account, PointsTransactionType.ADJUST, delta, created_at,
                PointsSource.MANUAL, None, reason.strip())
    )


def verify_points(account: PointsAccount, transactions: Sequence[PointsTransaction]) -> bool:
    if not transactions:
        return account.balance == 0
    ordered = sorted(transactions, key=lambda tx: tx.sequence)
    return sum(tx.points for tx in ordered) == account.balance and ordered[-1].balance_after == account.balance
