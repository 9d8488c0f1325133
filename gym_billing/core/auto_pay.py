"""
钱包自动支付

待付款(PENDING)订阅存在未支付发票时，钱包余额足够则:
扣款(SUBSCRIPTION_CHARGE) -> 发票标记PAID -> 订阅 PENDING -> ACTIVE
余额不足时不做任何变动，只报告失败；下次钱包入账时再尝试。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List

from loguru import logger

from gym_billing.core import wallet_ledger
from gym_billing.core.effects import Effect
from gym_billing.core.entities import Subscription, SubscriptionStatus
from gym_billing.core.invoicing import Invoice, InvoiceStatus, Payment, mark_paid
from gym_billing.core.service_result import ServiceResult, ErrorCode, failure
from gym_billing.core.subscription_state_machine import transition, ActivateSubscription
from gym_billing.core.wallet_ledger import WalletBalance, WalletTransaction


@dataclass(frozen=True)
class AutoPayOutcome:
    """自动支付结果"""
    wallet: WalletBalance
    invoice: Invoice
    subscription: Subscription
    transaction: Optional[WalletTransaction] = None  # 发票此前已支付时为None
    effects: List[Effect] = field(default_factory=list)


def attempt_auto_pay(
    wallet: WalletBalance,
    subscription: Subscription,
    invoice: Invoice,
    paid_at: datetime,
) -> ServiceResult[AutoPayOutcome]:
    """
    尝试用钱包余额支付订阅的未付发票

    Returns:
        成功: AutoPayOutcome
        失败: INVALID_TRANSITION（订阅非PENDING / 发票不可支付）、
              VALIDATION_ERROR（发票与订阅/钱包不匹配）、INSUFFICIENT_BALANCE
    """
    if subscription.status != SubscriptionStatus.PENDING:
        return failure(
            f"Auto-pay only applies to pending subscriptions, {subscription.id} is {subscription.status.value}",
            ErrorCode.INVALID_TRANSITION,
        )

    if invoice.subscription_id != subscription.id:
        return failure(
            f"Invoice {invoice.invoice_number} does not belong to subscription {subscription.id}",
            ErrorCode.VALIDATION_ERROR,
            field="invoice",
        )

    if wallet.member_id != subscription.member_id or wallet.currency != invoice.currency:
        return failure(
            f"Wallet of member {wallet.member_id} cannot pay invoice {invoice.invoice_number}",
            ErrorCode.VALIDATION_ERROR,
            field="wallet",
        )

    transaction = None
    if invoice.status == InvoiceStatus.PAID:
        # 发票已通过其他渠道支付，只补做激活
        paid_invoice = invoice
    elif invoice.status == InvoiceStatus.ISSUED:
        charged = wallet_ledger.charge_subscription(
            wallet, invoice.total_amount, paid_at,
            invoice_id=invoice.id,
            description=f"Invoice {invoice.invoice_number}",
        )
        if charged.is_failure():
            logger.info(
                f"自动支付余额不足: 订阅 {subscription.id}, 余额 {wallet.balance}, "
                f"需支付 {invoice.total_amount} {invoice.currency}"
            )
            return charged

        wallet = charged.data.wallet
        transaction = charged.data.transaction
        paid = mark_paid(invoice, Payment(
            amount=invoice.total_amount,
            reference=f"WALLET-{wallet.member_id}-{transaction.sequence}",
            paid_at=paid_at,
            method="WALLET",
        ))
        if paid.is_failure():
            return paid
        paid_invoice = paid.data
    else:
        return failure(
            f"Invoice {invoice.invoice_number} is {invoice.status.value} and cannot be auto-paid",
            ErrorCode.INVALID_TRANSITION,
        )

    activated = transition(subscription, ActivateSubscription(invoice=paid_invoice, source="wallet_auto_pay"))
    if activated.is_failure():
        return activated

    logger.info(f"自动支付成功: 订阅 {subscription.id}, 发票 {invoice.invoice_number}, 钱包余额 {wallet.balance}")
    return ServiceResult.success(AutoPayOutcome(
        wallet=wallet,
        invoice=paid_invoice,
        subscription=activated.data.subscription,
        transaction=transaction,
        effects=list(activated.data.effects),
    ))
