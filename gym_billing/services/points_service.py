"""
积分服务 - 忠诚度积分与推荐奖励
"""

from datetime import datetime
from typing import Optional, Dict, Any

from loguru import logger

from gym_billing.config import settings
from gym_billing.core import points_ledger
from gym_billing.core.effects import NotificationRequested
from gym_billing.core.entities import Subscription
from gym_billing.core.invoicing import Invoice
from gym_billing.core.points_ledger import PointsSource
from gym_billing.core.service_result import ServiceResult
from gym_billing.services.base import BaseService, UnitOfWork


async def award_loyalty_points(uow: UnitOfWork, invoice: Invoice, now: datetime) -> int:
    """发票支付后发放忠诚度积分（每张发票只发一次），返回发放的积分"""
    points = points_for_invoice(invoice)
    if points <= 0:
        return 0

    reference = f"invoice:{invoice.id}"
    if await uow.points.has_reference(invoice.member_id, reference):
        return 0

    account = await uow.points.get_or_create(invoice.member_id)
    entry = points_ledger.earn(
        account, points, now,
        source=PointsSource.LOYALTY,
        reference=reference,
        description=f"Invoice {invoice.invoice_number}",
    ).get_data_or_raise()
    await uow.points.append(account, entry)
    logger.info(f"忠诚度积分: 会员 {invoice.member_id} +{points} (发票 {invoice.invoice_number})")
    return points


def points_for_invoice(invoice: Invoice) -> int:
    return points_ledger.points_for_amount(invoice.total_amount, settings.loyalty_points_per_unit)


async def award_referral_points(uow: UnitOfWork, subscription: Subscription, now: datetime) -> int:
    """被推荐会员首次激活时奖励推荐人（每个被推荐会员只奖励一次）"""
    referrer_id = subscription.referred_by_member_id
    reward = settings.referral_reward_points
    if not referrer_id or reward <= 0 or referrer_id == subscription.member_id:
        return 0

    reference = f"referral:{subscription.member_id}"
    if await uow.points.has_reference(referrer_id, reference):
        return 0

    account = await uow.points.get_or_create(referrer_id)
    entry = points_ledger.earn(
        account, reward, now,
        source=PointsSource.REFERRAL,
        reference=reference,
        description=f"Referral of member {subscription.member_id}",
    ).get_data_or_raise()
    await uow.points.append(account, entry)
    uow.emit([NotificationRequested(
        member_id=referrer_id,
        template="referral_reward_earned",
        locale=await uow.notification_locale(referrer_id),
        params={'points': reward, 'referred_member_id': subscription.member_id},
    )])
    logger.info(f"推荐奖励: 会员 {referrer_id} +{reward} (推荐 {subscription.member_id})")
    return reward


class PointsService(BaseService):
    """积分账户操作"""

    async def earn(
        self,
        member_id: str,
        points: int,
        source: PointsSource = PointsSource.MANUAL,
        reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ServiceResult[Dict[str, Any]]:
        async def work(uow: UnitOfWork):
            account = await uow.points.get_or_create(member_id)
            result = points_ledger.earn(account, points, datetime.utcnow(), source, reference, description)
            if result.is_failure():
                return result
            saved = await uow.points.append(account, result.data)
            return ServiceResult.success({'account': saved, 'transaction': result.data.transaction})

        return await self.run("积分发放", work)

    async def redeem(
        self,
        member_id: str,
        points: int,
        reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ServiceResult[Dict[str, Any]]:
        async def work(uow: UnitOfWork):
            account = await uow.points.get_or_create(member_id)
            result = points_ledger.redeem(account, points, datetime.utcnow(), reference, description)
            if result.is_failure():
                return result
            saved = await uow.points.append(account, result.data)
            return ServiceResult.success({'account': saved, 'transaction': result.data.transaction})

        return await self.run("积分兑换", work)

    async def adjust(self, member_id: str, delta: int, reason: str) -> ServiceResult[Dict[str, Any]]:
        async def work(uow: UnitOfWork):
            account = await uow.points.get_or_create(member_id)
            result = points_ledger.adjust(account, delta, datetime.utcnow(), reason)
            if result.is_failure():
                return result
            saved = await uow.points.append(account, result.data)
            logger.info(f"积分调整: 会员 {member_id} {delta:+d} ({reason})")
            return ServiceResult.success({'account': saved, 'transaction': result.data.transaction})

        return await self.run("积分调整", work)

    async def get_account(self, member_id: str) -> ServiceResult[Dict[str, Any]]:
        """积分余额与交易记录；没有账户时返回零余额"""
        async def work(uow: UnitOfWork):
            account = await uow.points.get_or_create(member_id)
            transactions = await uow.points.list_transactions(member_id)
            return ServiceResult.success({'account': account, 'transactions': transactions})

        # get_or_create 可能插入账户行，需要提交
        return await self.run("查询积分", work)


# 全局实例
points_service = PointsService()
