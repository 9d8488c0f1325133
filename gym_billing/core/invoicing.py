"""
发票开具与支付关联

- issue_from_subscription: 根据会员计划价格与按比例计费规则生成发票（纯函数）
- mark_paid: 幂等支付确认，重复的支付回调不会产生错误
"""

import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple, Sequence

from gym_billing.core.entities import Subscription, MembershipPlan
from gym_billing.core.service_result import ServiceResult, ErrorCode, failure
from gym_billing.utils.money import round_money


class InvoiceStatus(str, Enum):
    """发票状态"""
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    CANCELLED = "CANCELLED"
    PAID = "PAID"


UNPAID_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.ISSUED})


class LineItemType(str, Enum):
    SUBSCRIPTION = "SUBSCRIPTION"
    ADMINISTRATION_FEE = "ADMINISTRATION_FEE"
    JOIN_FEE = "JOIN_FEE"
    FREEZE_PACKAGE = "FREEZE_PACKAGE"
    OTHER = "OTHER"


@dataclass(frozen=True)
class InvoiceLineItem:
    """发票行"""
    description: str
    unit_price: Decimal
    quantity: int = 1
    item_type: LineItemType = LineItemType.OTHER
    tax_rate: Decimal = Decimal("0")

    def net_amount(self, currency: str) -> Decimal:
        return round_money(self.unit_price * self.quantity, currency)

    def tax_amount(self, currency: str) -> Decimal:
        return round_money(self.net_amount(currency) * self.tax_rate, currency)


@dataclass(frozen=True)
class Invoice:
    """发票"""
    id: str
    invoice_number: str
    member_id: str
    status: InvoiceStatus
    currency: str
    line_items: Tuple[InvoiceLineItem, ...]
    subtotal: Decimal
    tax_total: Decimal
    total_amount: Decimal
    subscription_id: Optional[str] = None
    issued_on: Optional[date] = None
    paid_at: Optional[datetime] = None
    paid_amount: Optional[Decimal] = None
    payment_reference: Optional[str] = None
    version: int = 0

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID


@dataclass(frozen=True)
class Payment:
    """支付记录（网关回调或钱包扣款）"""
    amount: Decimal
    reference: str
    paid_at: datetime
    method: str = "GATEWAY"


def format_invoice_number(prefix: str, year: int, sequence: int) -> str:
    """发票编号: INV-2026-000001"""
    return f"{prefix}-{year}-{sequence:06d}"


def build_invoice(
    invoice_number: str,
    member_id: str,
    line_items: Sequence[InvoiceLineItem],
    currency: str,
    subscription_id: Optional[str] = None,
    status: InvoiceStatus = InvoiceStatus.DRAFT,
    issued_on: Optional[date] = None,
    invoice_id: Optional[str] = None,
) -> Invoice:
    """汇总行项目金额并构建发票"""
    if not line_items:
        raise ValueError("Invoice must contain at least one line item")

    subtotal = sum((item.net_amount(currency) for item in line_items), Decimal("0"))
    tax_total = sum((item.tax_amount(currency) for item in line_items), Decimal("0"))
    return Invoice(
        id=invoice_id or str(uuid.uuid4()),
        invoice_number=invoice_number,
        member_id=member_id,
        subscription_id=subscription_id,
        status=status,
        currency=currency,
        line_items=tuple(line_items),
        subtotal=round_money(subtotal, currency),
        tax_total=round_money(tax_total, currency),
        total_amount=round_money(subtotal + tax_total, currency),
        issued_on=issued_on,
    )


def prorated_amount(price: Decimal, remaining_days: int, period_days: int, currency: str) -> Decimal:
    """
    按比例计费: price × remaining_days / period_days，按币种最小单位四舍五入

    剩余天数不少于整个周期时收全价
    """
    if period_days <= 0:
        raise ValueError("period_days must be positive")
    if remaining_days >= period_days:
        return round_money(price, currency)
    if remaining_days <= 0:
        return round_money(Decimal("0"), currency)
    return round_money(price * Decimal(remaining_days) / Decimal(period_days), currency)


def issue_from_subscription(
    subscription: Subscription,
    plan: MembershipPlan,
    today: date,
    invoice_number: str,
    invoice_id: Optional[str] = None,
    include_join_fee: bool = False,
    renewal: bool = False,
) -> Invoice:
    """
    根据订阅生成已开具(ISSUED)发票

    Args:
        subscription: 订阅
        plan: 订阅对应的会员计划
        today: 开票日期
        invoice_number: 发票编号
        include_join_fee: 会员首个订阅时收取一次性入会费
        renewal: 续费发票按下一完整周期收费，不做按比例计算
    """
    if renewal:
        amount = round_money(plan.price, plan.currency)
        description = f"Membership renewal - {plan.name}"
    else:
        period_start = max(today, subscription.start_date)
        remaining_days = (subscription.end_date - period_start).days
        amount = prorated_amount(plan.price, remaining_days, plan.duration_days, plan.currency)
        if remaining_days < plan.duration_days:
            description = f"Membership fee - {plan.name} ({remaining_days}/{plan.duration_days} days)"
        else:
            description = f"Membership fee - {plan.name}"

    line_items = [
        InvoiceLineItem(
            description=description,
            unit_price=amount,
            item_type=LineItemType.SUBSCRIPTION,
            tax_rate=plan.tax_rate,
        )
    ]

    if plan.administration_fee > 0:
        line_items.append(InvoiceLineItem(
            description="Administration fee",
            unit_price=plan.administration_fee,
            item_type=LineItemType.ADMINISTRATION_FEE,
            tax_rate=plan.tax_rate,
        ))

    if include_join_fee and plan.join_fee > 0:
        line_items.append(InvoiceLineItem(
            description="Joining fee (one-time)",
            unit_price=plan.join_fee,
            item_type=LineItemType.JOIN_FEE,
            tax_rate=plan.tax_rate,
        ))

    return build_invoice(
        invoice_number=invoice_number,
        member_id=subscription.member_id,
        line_items=line_items,
        currency=plan.currency,
        subscription_id=subscription.id,
        status=InvoiceStatus.ISSUED,
        issued_on=today,
        invoice_id=invoice_id,
    )


def issue_invoice(invoice: Invoice, today: date) -> ServiceResult[Invoice]:
    """草稿发票开具: DRAFT -> ISSUED"""
    if invoice.status != InvoiceStatus.DRAFT:
        return failure(
            f"Invoice {invoice.invoice_number} cannot be issued from {invoice.status.value}",
            ErrorCode.INVALID_TRANSITION,
        )
    return ServiceResult.success(replace(invoice, status=InvoiceStatus.ISSUED, issued_on=today))


def cancel_invoice(invoice: Invoice) -> ServiceResult[Invoice]:
    """取消未支付发票"""
    if invoice.status not in UNPAID_STATUSES:
        return failure(
            f"Invoice {invoice.invoice_number} cannot be cancelled from {invoice.status.value}",
            ErrorCode.INVALID_TRANSITION,
        )
    return ServiceResult.success(replace(invoice, status=InvoiceStatus.CANCELLED))


def mark_paid(invoice: Invoice, payment: Payment) -> ServiceResult[Invoice]:
    """
    标记发票已支付

    已支付的发票再次支付视为幂等成功（metadata.already_paid=True），
    以容忍支付回调的重复投递
    """
    if invoice.status == InvoiceStatus.PAID:
        return ServiceResult.success(
            invoice,
            warnings=[f"Invoice {invoice.invoice_number} is already paid"],
            metadata={'already_paid': True},
        )

    if invoice.status != InvoiceStatus.ISSUED:
        return failure(
            f"Invoice {invoice.invoice_number} is {invoice.status.value} and cannot be paid",
            ErrorCode.INVALID_TRANSITION,
        )

    if payment.amount < invoice.total_amount:
        return failure(
            f"Payment {payment.amount} is less than invoice total {invoice.total_amount}",
            ErrorCode.VALIDATION_ERROR,
            field="amount",
        )

    paid = replace(
        invoice,
        status=InvoiceStatus.PAID,
        paid_at=payment.paid_at,
        paid_amount=payment.amount,
        payment_reference=payment.reference,
    )
    return ServiceResult.success(paid, metadata={'already_paid': False})
