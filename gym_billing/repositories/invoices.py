"""
发票仓储 - 发票、发票行、年度编号序列、支付回调记录
"""

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from gym_billing.core.exceptions import NotFoundError, ConcurrentModification
from gym_billing.core.invoicing import (
    Invoice, InvoiceLineItem, InvoiceStatus, LineItemType, UNPAID_STATUSES, format_invoice_number
)
from gym_billing.models.invoice import InvoiceRecord, InvoiceLineItemRecord, InvoiceSequenceRecord
from gym_billing.models.webhook import PaymentWebhookRecord
from gym_billing.repositories.base import BaseRepository
from gym_billing.utils.money import round_money


def _invoice_entity(record: InvoiceRecord) -> Invoice:
    currency = record.currency
    return Invoice(
        id=record.id,
        invoice_number=record.invoice_number,
        member_id=record.member_id,
        subscription_id=record.subscription_id,
        status=InvoiceStatus(record.status),
        currency=currency,
        line_items=tuple(
            InvoiceLineItem(
                description=item.description,
                unit_price=round_money(item.unit_price, currency),
                quantity=item.quantity,
                item_type=LineItemType(item.item_type),
                tax_rate=Decimal(str(item.tax_rate or 0)),
            )
            for item in record.line_items
        ),
        subtotal=round_money(record.subtotal, currency),
        tax_total=round_money(record.tax_total or 0, currency),
        total_amount=round_money(record.total_amount, currency),
        issued_on=record.issued_on,
        paid_at=record.paid_at,
        paid_amount=round_money(record.paid_amount, currency) if record.paid_amount is not None else None,
        payment_reference=record.payment_reference,
        version=record.version,
    )


class InvoiceRepository(BaseRepository):
    """发票数据访问"""

    async def next_number(self, prefix: str, year: int) -> str:
        """分配下一个发票编号（按前缀+年份递增）"""
        record = await self.session.get(InvoiceSequenceRecord, (prefix, year), populate_existing=True)
        if record is None:
            self.session.add(InvoiceSequenceRecord(prefix=prefix, year=year, last_value=1, version=0))
            try:
                await self.session.flush()
            except IntegrityError as e:
                raise ConcurrentModification(f"Invoice sequence {prefix}-{year} was created concurrently") from e
            return format_invoice_number(prefix, year, 1)

        next_value = record.last_value + 1
        await self.compare_and_swap(
            InvoiceSequenceRecord,
            {'prefix': prefix, 'year': year},
            record.version,
            {'last_value': next_value},
        )
        return format_invoice_number(prefix, year, next_value)

    async def add(self, invoice: Invoice) -> Invoice:
        self.session.add(InvoiceRecord(
            id=invoice.id,
            invoice_number=invoice.invoice_number,
            member_id=invoice.member_id,
            subscription_id=invoice.subscription_id,
            status=invoice.status.value,
            currency=invoice.currency,
            subtotal=invoice.subtotal,
            tax_total=invoice.tax_total,
            total_amount=invoice.total_amount,
            issued_on=invoice.issued_on,
            version=0,
            line_items=[
                InvoiceLineItemRecord(
                    position=position,
                    description=item.description,
                    item_type=item.item_type.value,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                    tax_rate=item.tax_rate,
                )
                for position, item in enumerate(invoice.line_items)
            ],
        ))
        await self.session.flush()
        return replace(invoice, version=0)

    async def get(self, invoice_id: str) -> Invoice:
        record = await self.session.get(InvoiceRecord, invoice_id, populate_existing=True)
        if record is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return _invoice_entity(record)

    async def save(self, invoice: Invoice) -> Invoice:
        version = await self.compare_and_swap(
            InvoiceRecord,
            {'id': invoice.id},
            invoice.version,
            {
                'status': invoice.status.value,
                'issued_on': invoice.issued_on,
                'paid_at': invoice.paid_at,
                'paid_amount': invoice.paid_amount,
                'payment_reference': invoice.payment_reference,
            },
        )
        return replace(invoice, version=version)

    async def find_unpaid_for_subscription(self, subscription_id: str) -> Optional[Invoice]:
        result = await self.session.execute(
            select(InvoiceRecord)
            .where(
                InvoiceRecord.subscription_id == subscription_id,
                InvoiceRecord.status.in_([s.value for s in UNPAID_STATUSES]),
            )
            .execution_options(populate_existing=True)
        )
        record = result.scalars().first()
        return _invoice_entity(record) if record else None

    async def list_by_member(self, member_id: str) -> List[Invoice]:
        result = await self.session.execute(
            select(InvoiceRecord)
            .where(InvoiceRecord.member_id == member_id)
            .order_by(InvoiceRecord.invoice_number)
        )
        return [_invoice_entity(r) for r in result.scalars().all()]

    # ==================== 支付回调记录 ====================

    async def find_webhook(self, reference: str) -> Optional[PaymentWebhookRecord]:
        result = await self.session.execute(
            select(PaymentWebhookRecord).where(PaymentWebhookRecord.reference == reference)
        )
        return result.scalars().first()

    async def record_webhook(
        self,
        reference: str,
        invoice_id: str,
        amount: Decimal,
        payload: Optional[str],
        processing_result: str,
        error_message: Optional[str] = None,
    ) -> PaymentWebhookRecord:
        """记录（或更新此前失败的）回调"""
        now = datetime.utcnow()
        record = await self.find_webhook(reference)
        if record is None:
            record = PaymentWebhookRecord(reference=reference, invoice_id=invoice_id, received_at=now)
            self.session.add(record)
        record.amount = amount
        record.payload = payload
        record.processed = processing_result == "success"
        record.processing_result = processing_result
        record.error_message = error_message
        record.processed_at = now
        await self.session.flush()
        return record
