"""
发票服务
负责订阅发票开具、临时发票、作废以及支付回调处理
"""

import json
from datetime import date, datetime
from typing import Optional, Dict, Any, List, Sequence

from loguru import logger

from gym_billing.config import settings
from gym_billing.core import invoicing
from gym_billing.core.invoicing import Invoice, InvoiceLineItem, Payment
from gym_billing.core.service_result import ServiceResult, ErrorCode, failure
from gym_billing.core.exceptions import InvalidTransition
from gym_billing.schemas.events import PaymentWebhook
from gym_billing.services.base import BaseService, UnitOfWork
from gym_billing.services.steps import (
    ensure_no_unpaid_invoice,
    invoice_issued_effects,
    issue_subscription_invoice,
    settle_invoice,
)


class InvoiceService(BaseService):
    """发票服务"""

    async def issue_for_subscription(
        self,
        subscription_id: str,
        today: Optional[date] = None,
    ) -> ServiceResult[Invoice]:
        """
        为订阅开具发票

        PENDING 订阅（首期发票已作废后重开）按比例计费，其余按完整周期开续费发票；
        订阅已有未支付发票时返回 DUPLICATE_INVOICE
        """
        today = today or date.today()

        async def work(uow: UnitOfWork):
            subscription = await uow.subscriptions.get(subscription_id)
            if subscription.status.is_terminal:
                raise InvalidTransition(
                    f"Subscription {subscription_id} is {subscription.status.value}, no invoice can be issued"
                )
            plan = await uow.subscriptions.get_plan(subscription.plan_id)
            _, invoice = await issue_subscription_invoice(uow, subscription, plan, today)
            return ServiceResult.success(invoice)

        return await self.run("开具订阅发票", work)

    async def create_invoice(
        self,
        member_id: str,
        line_items: Sequence[InvoiceLineItem],
        currency: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> ServiceResult[Invoice]:
        """创建临时草稿发票（冻结套餐、商品等）"""
        if not line_items:
            return failure("Invoice must contain at least one line item", ErrorCode.VALIDATION_ERROR, field="line_items")
        currency = currency or settings.default_currency

        async def work(uow: UnitOfWork):
            if subscription_id:
                subscription = await uow.subscriptions.get(subscription_id)
                if subscription.member_id != member_id:
                    return failure(
                        f"Subscription {subscription_id} does not belong to member {member_id}",
                        ErrorCode.VALIDATION_ERROR,
                        field="subscription_id",
                    )
                await ensure_no_unpaid_invoice(uow, subscription_id)

            number = await uow.invoices.next_number(settings.invoice_number_prefix, date.today().year)
            invoice = invoicing.build_invoice(
                invoice_number=number,
                member_id=member_id,
                line_items=list(line_items),
                currency=currency,
                subscription_id=subscription_id,
            )
            invoice = await uow.invoices.add(invoice)
            logger.info(f"创建草稿发票: {invoice.invoice_number} 会员 {member_id} 金额 {invoice.total_amount}")
            return ServiceResult.success(invoice)

        return await self.run("创建发票", work)

    async def issue_invoice(self, invoice_id: str, today: Optional[date] = None) -> ServiceResult[Invoice]:
        """草稿发票开具"""
        today = today or date.today()

        async def work(uow: UnitOfWork):
            invoice = await uow.invoices.get(invoice_id)
            result = invoicing.issue_invoice(invoice, today)
            if result.is_failure():
                return result
            issued = await uow.invoices.save(result.data)
            uow.emit(invoice_issued_effects(
                issued, await uow.notification_locale(issued.member_id, issued.subscription_id),
            ))
            return ServiceResult.success(issued)

        return await self.run("开具发票", work)

    async def cancel_invoice(self, invoice_id: str) -> ServiceResult[Invoice]:
        """作废未支付发票；待付款订阅保持 PENDING，可重新开票"""
        async def work(uow: UnitOfWork):
            invoice = await uow.invoices.get(invoice_id)
            result = invoicing.cancel_invoice(invoice)
            if result.is_failure():
                return result
            cancelled = await uow.invoices.save(result.data)
            logger.info(f"发票已作废: {cancelled.invoice_number}")
            return ServiceResult.success(cancelled)

        return await self.run("作废发票", work)

    async def handle_payment_webhook(
        self,
        webhook: PaymentWebhook,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ServiceResult[Invoice]:
        """
        处理支付网关回调

        幂等: 同一参考号重复投递、或发票已支付时返回成功且不产生任何变动
        (metadata.duplicate / metadata.already_paid)

        Args:
            webhook: 已校验的回调事件
            payload: 原始回调内容，原样记录
        """
        raw_payload = json.dumps(payload, default=str) if payload is not None else None

        async def work(uow: UnitOfWork):
            now = datetime.utcnow()
            previous = await uow.invoices.find_webhook(webhook.reference)
            if previous is not None and previous.processed:
                logger.info(f"重复的支付回调: {webhook.reference}")
                invoice = await uow.invoices.get(previous.invoice_id)
                return ServiceResult.success(invoice, metadata={'duplicate': True, 'already_paid': invoice.is_paid})

            invoice = await uow.invoices.get(webhook.invoice_id)
            invoice, already_paid = await settle_invoice(uow, invoice, Payment(
                amount=webhook.amount,
                reference=webhook.reference,
                paid_at=webhook.paid_at or now,
            ), now)
            await uow.invoices.record_webhook(
                webhook.reference, webhook.invoice_id, webhook.amount, raw_payload,
                processing_result="duplicate" if already_paid else "success",
            )
            return ServiceResult.success(invoice, metadata={'duplicate': False, 'already_paid': already_paid})

        result = await self.run("支付回调", work)
        if result.is_failure():
            await self._record_failed_webhook(webhook, raw_payload, result)
        return result

    async def _record_failed_webhook(self, webhook: PaymentWebhook, raw_payload: Optional[str], result: ServiceResult):
        """失败的回调单独记录，供人工核对；同一参考号再次投递时会重新处理"""
        async def work(uow: UnitOfWork):
            await uow.invoices.record_webhook(
                webhook.reference, webhook.invoice_id, webhook.amount, raw_payload,
                processing_result="failed",
                error_message=f"[{result.error.code.name}] {result.error.message}",
            )
            return ServiceResult.success()

        recorded = await self.run("记录失败回调", work)
        if recorded.is_failure():
            logger.error(f"失败回调记录写入失败: {webhook.reference} {recorded.error.message}")

    async def get_invoice(self, invoice_id: str) -> ServiceResult[Invoice]:
        async def work(uow: UnitOfWork):
            return ServiceResult.success(await uow.invoices.get(invoice_id))

        return await self.read("查询发票", work)

    async def list_member_invoices(self, member_id: str) -> ServiceResult[List[Invoice]]:
        async def work(uow: UnitOfWork):
            return ServiceResult.success(await uow.invoices.list_by_member(member_id))

        return await self.read("查询会员发票", work)


# 全局实例
invoice_service = InvoiceService()
