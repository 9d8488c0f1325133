"""
事务内共享步骤

订阅、发票、钱包服务都会触发激活/续费/开票/结算，
这些步骤只接收 UnitOfWork，不自行提交；业务规则失败时抛出对应的 BillingError，
由 BaseService.run 回滚整个事务。
"""

from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from loguru import logger

from gym_billing.config import settings
from gym_billing.core.auto_pay import AutoPayOutcome, attempt_auto_pay
from gym_billing.core.effects import Effect, InvoiceIssued, NotificationRequested
from gym_billing.core.entities import MembershipPlan, Subscription, SubscriptionStatus
from gym_billing.core.exceptions import DuplicateInvoiceError
from gym_billing.core.invoicing import (
    Invoice, LineItemType, Payment, cancel_invoice, issue_from_subscription, mark_paid
)
from gym_billing.core.service_result import ServiceResult, ErrorCode, failure
from gym_billing.core.subscription_state_machine import (
    transition, ActivateSubscription, RenewSubscription
)
from gym_billing.core.wallet_ledger import WalletBalance, LedgerEntry
from gym_billing.services.base import UnitOfWork
from gym_billing.services.points_service import award_loyalty_points, award_referral_points
from gym_billing.utils.money import round_money


# ============================================================================
# 激活 / 续费
# ============================================================================

async def record_activation(
    uow: UnitOfWork,
    activated: Subscription,
    effects: List[Effect],
    now: datetime,
) -> Subscription:
    """保存已激活的订阅；会员首次激活时发放推荐奖励"""
    first_activation = not await uow.subscriptions.has_been_activated(activated.member_id)
    saved = await uow.subscriptions.save(activated, activated_at=now)
    uow.emit(effects)
    if first_activation:
        await award_referral_points(uow, saved, now)
    return saved


async def activate_in_session(
    uow: UnitOfWork,
    subscription: Subscription,
    invoice: Optional[Invoice],
    source: str,
    now: datetime,
) -> Subscription:
    outcome = transition(subscription, ActivateSubscription(invoice=invoice, source=source)).get_data_or_raise()
    return await record_activation(uow, outcome.subscription, outcome.effects, now)


async def renew_in_session(
    uow: UnitOfWork,
    subscription: Subscription,
    plan: MembershipPlan,
    new_end_date: Optional[date] = None,
) -> Subscription:
    """续费一个计划周期（或到指定结束日），课程次数重置为计划额度"""
    new_end_date = new_end_date or subscription.end_date + timedelta(days=plan.duration_days)
    outcome = transition(
        subscription,
        RenewSubscription(new_end_date=new_end_date, classes_allowance=plan.max_classes),
    ).get_data_or_raise()
    saved = await uow.subscriptions.save(outcome.subscription)
    uow.emit(outcome.effects)
    return saved


# ============================================================================
# 开票 / 结算
# ============================================================================

def invoice_issued_effects(invoice: Invoice, locale: str) -> List[Effect]:
    return [
        InvoiceIssued(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            member_id=invoice.member_id,
            subscription_id=invoice.subscription_id,
            total_amount=invoice.total_amount,
            currency=invoice.currency,
        ),
        NotificationRequested(
            member_id=invoice.member_id,
            template="invoice_issued",
            locale=locale,
            params={
                'invoice_number': invoice.invoice_number,
                'total_amount': str(invoice.total_amount),
                'currency': invoice.currency,
            },
        ),
    ]


async def ensure_no_unpaid_invoice(uow: UnitOfWork, subscription_id: str) -> None:
    existing = await uow.invoices.find_unpaid_for_subscription(subscription_id)
    if existing is not None:
        raise DuplicateInvoiceError(
            f"Subscription {subscription_id} already has unpaid invoice {existing.invoice_number}",
            details={'invoice_id': existing.id, 'invoice_number': existing.invoice_number},
        )


async def issue_subscription_invoice(
    uow: UnitOfWork,
    subscription: Subscription,
    plan: MembershipPlan,
    today: date,
    include_join_fee: bool = False,
) -> Tuple[Subscription, Invoice]:
    """
    为订阅开具发票并关联到订阅

    PENDING 订阅按剩余天数比例计费，其余（续费）按完整周期计费
    """
    await ensure_no_unpaid_invoice(uow, subscription.id)
    number = await uow.invoices.next_number(settings.invoice_number_prefix, today.year)
    invoice = issue_from_subscription(
        subscription, plan, today, number,
        include_join_fee=include_join_fee,
        renewal=subscription.status != SubscriptionStatus.PENDING,
    )
    invoice = await uow.invoices.add(invoice)
    subscription = await uow.subscriptions.save(replace(subscription, invoice_id=invoice.id))
    uow.emit(invoice_issued_effects(invoice, subscription.locale))
    logger.info(
        f"发票已开具: {invoice.invoice_number} 订阅 {subscription.id} "
        f"金额 {invoice.total_amount} {invoice.currency}"
    )
    return subscription, invoice


def _is_membership_invoice(invoice: Invoice) -> bool:
    return any(item.item_type == LineItemType.SUBSCRIPTION for item in invoice.line_items)


async def apply_paid_invoice(uow: UnitOfWork, invoice: Invoice, now: datetime) -> Optional[Subscription]:
    """
    发票支付后推进关联订阅

    PENDING 订阅只由其当前关联的发票激活；ACTIVE/FROZEN 订阅的会员费发票续费一个周期。
    其他发票（储物柜、商品等）只结算，不改变订阅
    """
    if not invoice.subscription_id:
        return None

    subscription = await uow.subscriptions.get(invoice.subscription_id)
    if subscription.status == SubscriptionStatus.PENDING and invoice.id == subscription.invoice_id:
        return await activate_in_session(uow, subscription, invoice, "payment", now)

    if subscription.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.FROZEN) \
            and _is_membership_invoice(invoice):
        plan = await uow.subscriptions.get_plan(subscription.plan_id)
        return await renew_in_session(uow, subscription, plan)

    logger.warning(
        f"发票 {invoice.invoice_number} 已支付，订阅 {subscription.id} 状态为 "
        f"{subscription.status.value}，不做变更"
    )
    return subscription


async def settle_invoice(
    uow: UnitOfWork,
    invoice: Invoice,
    payment: Payment,
    now: datetime,
) -> Tuple[Invoice, bool]:
    """
    标记发票已支付并推进关联订阅

    Returns:
        (发票, already_paid) - 已支付的发票不做任何变动
    """
    result = mark_paid(invoice, payment)
    paid = result.get_data_or_raise()
    if result.metadata.get('already_paid'):
        logger.info(f"发票 {invoice.invoice_number} 已支付，忽略重复支付")
        return invoice, True

    saved = await uow.invoices.save(paid)
    await award_loyalty_points(uow, saved, now)
    uow.emit([NotificationRequested(
        member_id=saved.member_id,
        template="invoice_paid",
        locale=await uow.notification_locale(saved.member_id, saved.subscription_id),
        params={'invoice_number': saved.invoice_number, 'paid_amount': str(saved.paid_amount)},
    )])
    await apply_paid_invoice(uow, saved, now)
    logger.info(f"发票已支付: {saved.invoice_number} 参考号 {payment.reference} ({payment.method})")
    return saved, False


async def cancel_unpaid_invoice(uow: UnitOfWork, subscription_id: str) -> Optional[Invoice]:
    """订阅终止时作废其未支付发票"""
    unpaid = await uow.invoices.find_unpaid_for_subscription(subscription_id)
    if unpaid is None:
        return None
    cancelled = await uow.invoices.save(cancel_invoice(unpaid).get_data_or_raise())
    logger.info(f"作废未支付发票 {cancelled.invoice_number} (订阅 {subscription_id} 已终止)")
    return cancelled


# ============================================================================
# 钱包自动支付
# ============================================================================

async def auto_pay_in_session(
    uow: UnitOfWork,
    subscription: Subscription,
    now: datetime,
) -> ServiceResult[AutoPayOutcome]:
    """
    用钱包余额支付订阅的待付发票

    余额不足等业务失败以结果返回且不产生任何写入，调用方可继续其事务
    """
    if not subscription.invoice_id:
        return failure(
            f"Subscription {subscription.id} has no outstanding invoice",
            ErrorCode.VALIDATION_ERROR,
            field="invoice_id",
        )

    invoice = await uow.invoices.get(subscription.invoice_id)
    wallet = await uow.wallets.get(subscription.member_id)
    if wallet is None:
        wallet = WalletBalance(
            member_id=subscription.member_id,
            balance=round_money(0, invoice.currency),
            currency=invoice.currency,
        )

    result = attempt_auto_pay(wallet, subscription, invoice, now)
    if result.is_failure():
        return result

    outcome = result.data
    if outcome.transaction is not None:
        await uow.wallets.append(wallet, LedgerEntry(wallet=outcome.wallet, transaction=outcome.transaction))
        saved_invoice = await uow.invoices.save(outcome.invoice)
        await award_loyalty_points(uow, saved_invoice, now)
    await record_activation(uow, outcome.subscription, outcome.effects, now)
    return result
