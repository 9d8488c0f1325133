"""
会员钱包服务
负责钱包入账、退款、管理员调整、交易查询，以及入账后对待付款订阅的自动支付
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from loguru import logger

from gym_billing.config import settings
from gym_billing.core import wallet_ledger
from gym_billing.core.entities import SubscriptionStatus
from gym_billing.core.exceptions import NotFoundError
from gym_billing.core.service_result import ServiceResult, ErrorCode
from gym_billing.core.wallet_ledger import WalletTransaction
from gym_billing.schemas.events import WalletAdjustment
from gym_billing.services.base import BaseService, UnitOfWork
from gym_billing.services.steps import auto_pay_in_session
from gym_billing.utils.money import to_decimal


async def _settle_pending_subscriptions(uow: UnitOfWork, member_id: str, now: datetime) -> List[str]:
    """
    钱包入账后依次尝试支付会员的待付款订阅（最早的在前）

    余额不足时停止，剩余订阅等待下次入账
    """
    paid = []
    for subscription in await uow.subscriptions.list_by_member(member_id, SubscriptionStatus.PENDING):
        if not subscription.invoice_id:
            continue
        result = await auto_pay_in_session(uow, subscription, now)
        if result.is_success():
            paid.append(subscription.id)
            continue
        logger.info(f"钱包入账后自动支付未完成: 订阅 {subscription.id} {result.error.message}")
        if result.error_code == ErrorCode.INSUFFICIENT_BALANCE:
            break
    return paid


class WalletService(BaseService):
    """会员钱包服务"""

    async def get_wallet(self, member_id: str) -> ServiceResult[Dict[str, Any]]:
        async def work(uow: UnitOfWork):
            wallet = await uow.wallets.get(member_id)
            if wallet is None:
                raise NotFoundError(f"Wallet for member {member_id} not found")
            return ServiceResult.success({'wallet': wallet})

        return await self.read("查询钱包", work)

    async def credit(
        self,
        member_id: str,
        amount: Decimal,
        reference: Optional[str] = None,
        description: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> ServiceResult[Dict[str, Any]]:
        """
        钱包充值入账，随后对待付款订阅重试自动支付

        Returns:
            {'wallet', 'transaction', 'auto_paid_subscriptions'}
        """
        return await self._add_funds(
            "钱包入账", member_id, currency,
            lambda wallet, now: wallet_ledger.credit(wallet, to_decimal(amount), now, reference, description),
        )

    async def refund(
        self,
        member_id: str,
        amount: Decimal,
        reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ServiceResult[Dict[str, Any]]:
        """退款到钱包"""
        return await self._add_funds(
            "钱包退款", member_id, None,
            lambda wallet, now: wallet_ledger.refund(wallet, to_decimal(amount), now, reference, description),
        )

    async def apply_adjustment(self, adjustment: WalletAdjustment) -> ServiceResult[Dict[str, Any]]:
        """管理员调整（有符号），余额可为负；正向调整同样触发自动支付"""
        return await self._add_funds(
            "钱包调整", adjustment.member_id, None,
            lambda wallet, now: wallet_ledger.adjust(wallet, adjustment.delta, now, adjustment.reason),
            settle=adjustment.delta > 0,
        )

    async def _add_funds(self, operation: str, member_id: str, currency: Optional[str], post, settle: bool = True):
        async def work(uow: UnitOfWork):
            now = datetime.utcnow()
            wallet = await uow.wallets.get_or_create(member_id, currency or settings.default_currency)
            result = post(wallet, now)
            if result.is_failure():
                return result

            saved = await uow.wallets.append(wallet, result.data)
            logger.info(
                f"{operation}: 会员 {member_id} {result.data.transaction.amount:+} "
                f"{saved.currency}，余额 {saved.balance}"
            )
            auto_paid = await _settle_pending_subscriptions(uow, member_id, now) if settle else []
            if auto_paid:
                saved = await uow.wallets.get(member_id)
            return ServiceResult.success({
                'wallet': saved,
                'transaction': result.data.transaction,
                'auto_paid_subscriptions': auto_paid,
            })

        return await self.run(operation, work)

    async def attempt_auto_pay(self, subscription_id: str) -> ServiceResult[Dict[str, Any]]:
        """
        用钱包余额支付待付款订阅的发票

        余额不足返回 INSUFFICIENT_BALANCE，不产生任何变动
        """
        async def work(uow: UnitOfWork):
            subscription = await uow.subscriptions.get(subscription_id)
            result = await auto_pay_in_session(uow, subscription, datetime.utcnow())
            if result.is_failure():
                return result
            outcome = result.data
            return ServiceResult.success({
                'subscription': await uow.subscriptions.get(subscription_id),
                'invoice': await uow.invoices.get(outcome.invoice.id),
                'wallet': await uow.wallets.get(subscription.member_id),
                'transaction': outcome.transaction,
            })

        return await self.run("钱包自动支付", work)

    async def get_transactions(
        self,
        member_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> ServiceResult[List[WalletTransaction]]:
        async def work(uow: UnitOfWork):
            return ServiceResult.success(await uow.wallets.list_transactions(member_id, limit, offset))

        return await self.read("查询钱包交易", work)


# 全局实例
wallet_service = WalletService()
