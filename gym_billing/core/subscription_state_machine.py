"""
订阅状态机

PENDING -> ACTIVE -> FROZEN -> ACTIVE -> CANCELLED / EXPIRED

transition(subscription, event) 校验当前状态与关联资源（发票、冻结余额），
返回新的订阅实例及后续副作用列表；输入实体从不被修改，失败时状态保持不变。
"""

from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Optional, List, Dict, Type, FrozenSet, Union

from loguru import logger

from gym_billing.core import freeze_balance as freeze_tracker
from gym_billing.core.effects import Effect, NotificationRequested, SubscriptionStatusChanged
from gym_billing.core.entities import Subscription, SubscriptionStatus
from gym_billing.core.freeze_balance import FreezeBalance, FreezePackage
from gym_billing.core.invoicing import Invoice, InvoiceStatus
from gym_billing.core.service_result import ServiceResult, ErrorCode, failure


# ============================================================================
# 事件
# ============================================================================

@dataclass(frozen=True)
class ActivateSubscription:
    """激活: 支付确认或管理员手动激活；关联发票时发票必须已支付"""
    invoice: Optional[Invoice] = None
    source: str = "payment"


@dataclass(frozen=True)
class FreezeSubscription:
    """冻结请求"""
    days: int
    balance: FreezeBalance
    package: FreezePackage
    today: date


@dataclass(frozen=True)
class UnfreezeSubscription:
    """解冻: 主动解冻或冻结期满；提前解冻时需提供冻结余额以归还未用天数"""
    today: date
    balance: Optional[FreezeBalance] = None


@dataclass(frozen=True)
class CancelSubscription:
    """取消（会员或管理员）"""
    today: date
    reason: Optional[str] = None
    balance: Optional[FreezeBalance] = None


@dataclass(frozen=True)
class ExpireSubscription:
    """系统到期: today > end_date 且未续费"""
    today: date


@dataclass(frozen=True)
class RenewSubscription:
    """续费: 顺延结束日并重置课程次数"""
    new_end_date: date
    classes_allowance: Optional[int] = None


SubscriptionEvent = Union[
    ActivateSubscription, FreezeSubscription, UnfreezeSubscription,
    CancelSubscription, ExpireSubscription, RenewSubscription,
]


@dataclass(frozen=True)
class TransitionOutcome:
    """状态变更结果"""
    subscription: Subscription
    balance: Optional[FreezeBalance] = None
    effects: List[Effect] = field(default_factory=list)


# 各事件允许的起始状态
ALLOWED_FROM: Dict[Type, FrozenSet[SubscriptionStatus]] = {
    ActivateSubscription: frozenset({SubscriptionStatus.PENDING}),
    FreezeSubscription: frozenset({SubscriptionStatus.ACTIVE}),
    UnfreezeSubscription: frozenset({SubscriptionStatus.FROZEN}),
    CancelSubscription: frozenset({
        SubscriptionStatus.PENDING, SubscriptionStatus.ACTIVE, SubscriptionStatus.FROZEN
    }),
    ExpireSubscription: frozenset({SubscriptionStatus.ACTIVE}),
    # 续费发票可能在冻结期间支付
    RenewSubscription: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.FROZEN}),
}


def _invalid(subscription: Subscription, event, reason: str = None) -> ServiceResult:
    message = reason or (
        f"Cannot apply {type(event).__name__} to subscription {subscription.id} "
        f"in status {subscription.status.value}"
    )
    logger.warning(f"订阅状态变更被拒绝: {message}")
    return failure(
        message,
        ErrorCode.INVALID_TRANSITION,
        context={'subscription_id': subscription.id, 'status': subscription.status.value},
    )


def _status_effects(before: Subscription, after: Subscription, template: str, **params) -> List[Effect]:
    effects: List[Effect] = []
    if before.status != after.status:
        effects.append(SubscriptionStatusChanged(
            subscription_id=after.id,
            from_status=before.status.value,
            to_status=after.status.value,
        ))
    effects.append(NotificationRequested(
        member_id=after.member_id,
        template=template,
        locale=after.locale,
        params={'subscription_id': after.id, 'end_date': after.end_date.isoformat(), **params},
    ))
    return effects


def _unused_freeze_days(subscription: Subscription, today: date) -> int:
    if subscription.freeze_end_date is None:
        return 0
    return max(0, min((subscription.freeze_end_date - today).days, subscription.freeze_days_reserved))


def _clear_freeze(subscription: Subscription, **changes) -> Subscription:
    return replace(
        subscription,
        frozen_at=None,
        freeze_end_date=None,
        freeze_days_reserved=0,
        freeze_extends_contract=False,
        **changes,
    )


# ============================================================================
# 状态处理
# ============================================================================

def _activate(subscription: Subscription, event: ActivateSubscription) -> ServiceResult[TransitionOutcome]:
    invoice = event.invoice
    if subscription.invoice_id and invoice is None:
        return _invalid(subscription, event, f"Subscription {subscription.id} is awaiting payment of its invoice")

    if invoice is not None:
        if subscription.invoice_id and invoice.id != subscription.invoice_id:
            return failure(
                f"Invoice {invoice.id} is not linked to subscription {subscription.id}",
                ErrorCode.VALIDATION_ERROR,
                field="invoice",
            )
        if invoice.status != InvoiceStatus.PAID:
            return _invalid(
                subscription, event,
                f"Invoice {invoice.invoice_number} is {invoice.status.value}, payment required before activation",
            )

    activated = replace(subscription, status=SubscriptionStatus.ACTIVE)
    return ServiceResult.success(TransitionOutcome(
        subscription=activated,
        effects=_status_effects(subscription, activated, "subscription_activated", source=event.source),
    ))


def _freeze(subscription: Subscription, event: FreezeSubscription) -> ServiceResult[TransitionOutcome]:
    if event.balance.subscription_id != subscription.id:
        return failure(
            f"Freeze balance does not belong to subscription {subscription.id}",
            ErrorCode.VALIDATION_ERROR,
            field="balance",
        )

    reserved = freeze_tracker.reserve(event.balance, event.days)
    if reserved.is_failure():
        logger.info(f"订阅 {subscription.id} 冻结失败: {reserved.error.message}")
        return reserved

    end_date = subscription.end_date
    if event.package.extends_contract:
        end_date = end_date + timedelta(days=event.days)

    frozen = replace(
        subscription,
        status=SubscriptionStatus.FROZEN,
        end_date=end_date,
        frozen_at=event.today,
        freeze_end_date=event.today + timedelta(days=event.days),
        freeze_days_reserved=event.days,
        freeze_extends_contract=event.package.extends_contract,
    )
    return ServiceResult.success(TransitionOutcome(
        subscription=frozen,
        balance=reserved.data,
        effects=_status_effects(
            subscription, frozen, "subscription_frozen",
            freeze_days=event.days,
            freeze_days_remaining=reserved.data.remaining,
        ),
    ))


def _unfreeze(subscription: Subscription, event: UnfreezeSubscription) -> ServiceResult[TransitionOutcome]:
    unused = _unused_freeze_days(subscription, event.today)
    balance = event.balance
    end_date = subscription.end_date

    if unused > 0:
        if balance is None:
            return failure(
                "Freeze balance is required to unfreeze before the freeze period ends",
                ErrorCode.VALIDATION_ERROR,
                field="balance",
            )
        released = freeze_tracker.release(balance, unused)
        if released.is_failure():
            return released
        balance = released.data
        if subscription.freeze_extends_contract:
            end_date = end_date - timedelta(days=unused)

    active = _clear_freeze(subscription, status=SubscriptionStatus.ACTIVE, end_date=end_date)
    return ServiceResult.success(TransitionOutcome(
        subscription=active,
        balance=balance,
        effects=_status_effects(subscription, active, "subscription_unfrozen", released_days=unused),
    ))


def _cancel(subscription: Subscription, event: CancelSubscription) -> ServiceResult[TransitionOutcome]:
    balance = event.balance
    if subscription.status == SubscriptionStatus.FROZEN and balance is not None:
        unused = _unused_freeze_days(subscription, event.today)
        if unused > 0:
            released = freeze_tracker.release(balance, unused)
            if released.is_failure():
                return released
            balance = released.data

    cancelled = _clear_freeze(
        subscription,
        status=SubscriptionStatus.CANCELLED,
        cancellation_reason=event.reason,
    )
    return ServiceResult.success(TransitionOutcome(
        subscription=cancelled,
        balance=balance,
        effects=_status_effects(subscription, cancelled, "subscription_cancelled"),
    ))


def _expire(subscription: Subscription, event: ExpireSubscription) -> ServiceResult[TransitionOutcome]:
    if not subscription.is_expired_on(event.today):
        return _invalid(
            subscription, event,
            f"Subscription {subscription.id} ends on {subscription.end_date.isoformat()} and cannot expire yet",
        )

    expired = replace(subscription, status=SubscriptionStatus.EXPIRED)
    return ServiceResult.success(TransitionOutcome(
        subscription=expired,
        effects=_status_effects(subscription, expired, "subscription_expired"),
    ))


def _renew(subscription: Subscription, event: RenewSubscription) -> ServiceResult[TransitionOutcome]:
    if event.new_end_date <= subscription.end_date:
        return failure(
            "Renewal end date must be after the current end date",
            ErrorCode.VALIDATION_ERROR,
            field="new_end_date",
        )

    renewed = replace(
        subscription,
        end_date=event.new_end_date,
        classes_remaining=event.classes_allowance,
    )
    return ServiceResult.success(TransitionOutcome(
        subscription=renewed,
        effects=_status_effects(subscription, renewed, "subscription_renewed"),
    ))


_HANDLERS = {
    ActivateSubscription: _activate,
    FreezeSubscription: _freeze,
    UnfreezeSubscription: _unfreeze,
    CancelSubscription: _cancel,
    ExpireSubscription: _expire,
    RenewSubscription: _renew,
}


def transition(subscription: Subscription, event: SubscriptionEvent) -> ServiceResult[TransitionOutcome]:
    """
    执行状态变更

    Returns:
        成功: TransitionOutcome(新订阅, 新冻结余额, 副作用)
        失败: INVALID_TRANSITION / INSUFFICIENT_FREEZE_DAYS / VALIDATION_ERROR
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unsupported subscription event: {type(event).__name__}")

    if subscription.status.is_terminal:
        return _invalid(
            subscription, event,
            f"Subscription {subscription.id} is {subscription.status.value} and cannot change",
        )

    if subscription.status not in ALLOWED_FROM[type(event)]:
        return _invalid(subscription, event)

    result = handler(subscription, event)
    if result.is_success():
        logger.info(
            f"订阅状态变更: {subscription.id} {subscription.status.value} -> "
            f"{result.data.subscription.status.value} ({type(event).__name__})"
        )
    return result


def use_class(subscription: Subscription, today: date) -> ServiceResult[Subscription]:
    """使用一次课程额度，不限次数的订阅保持不变"""
    if subscription.status != SubscriptionStatus.ACTIVE or subscription.is_expired_on(today):
        return failure(
            f"Subscription {subscription.id} is not active",
            ErrorCode.INVALID_TRANSITION,
            context={'status': subscription.status.value},
        )
    if subscription.classes_remaining is None:
        return ServiceResult.success(subscription)
    if subscription.classes_remaining <= 0:
        return failure(
            f"Subscription {subscription.id} has no classes remaining",
            ErrorCode.CLASS_ALLOWANCE_EXHAUSTED,
        )
    return ServiceResult.success(replace(subscription, classes_remaining=subscription.classes_remaining - 1))
