"""
订阅生命周期定时任务

每日运行:
1. 冻结期已满的订阅自动解冻
2. 结束日已过的 ACTIVE 订阅标记到期
3. 自动续费订阅提前 BILLING_ADVANCE_DAYS 天开具续费发票

每个订阅独立事务，单个失败不影响其他订阅
"""

import time
from datetime import date, timedelta
from typing import Optional, Dict, Any

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from gym_billing.config import settings
from gym_billing.core.effects import EffectDispatcher
from gym_billing.core.service_result import ServiceResult, ErrorCode
from gym_billing.services.base import UnitOfWork
from gym_billing.services.invoice_service import InvoiceService
from gym_billing.services.subscription_service import SubscriptionService


class LifecycleJob:
    """订阅生命周期任务"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        dispatcher: Optional[EffectDispatcher] = None,
        advance_days: Optional[int] = None,
    ):
        self.subscriptions = SubscriptionService(session_factory, dispatcher)
        self.invoices = InvoiceService(session_factory, dispatcher)
        self.advance_days = settings.billing_advance_days if advance_days is None else advance_days

    async def run(self, today: Optional[date] = None) -> Dict[str, Any]:
        """
        执行一次完整的生命周期处理

        Returns:
            各步骤的处理数量与失败数量
        """
        today = today or date.today()
        started = time.time()
        logger.info(f"🔄 订阅生命周期任务开始: {today.isoformat()}")

        summary = {
            'date': today.isoformat(),
            'unfrozen': 0,
            'expired': 0,
            'renewal_invoices': 0,
            'skipped': 0,
            'errors': 0,
        }

        for subscription_id in await self._find(lambda uow: uow.subscriptions.find_elapsed_freezes(today)):
            result = await self.subscriptions.unfreeze(subscription_id, today=today)
            self._count(summary, 'unfrozen', subscription_id, result)

        for subscription_id in await self._find(lambda uow: uow.subscriptions.find_ended(today)):
            result = await self.subscriptions.expire(subscription_id, today=today)
            self._count(summary, 'expired', subscription_id, result)

        renewal_cutoff = today + timedelta(days=self.advance_days)
        for subscription_id in await self._find(lambda uow: uow.subscriptions.find_renewal_due(renewal_cutoff)):
            result = await self.invoices.issue_for_subscription(subscription_id, today=today)
            if result.is_failure() and result.error_code == ErrorCode.DUPLICATE_INVOICE:
                # 续费发票已开具，等待支付
                summary['skipped'] += 1
                continue
            self._count(summary, 'renewal_invoices', subscription_id, result)

        summary['duration_seconds'] = round(time.time() - started, 3)
        logger.info(
            f"✅ 订阅生命周期任务完成: 解冻 {summary['unfrozen']}，到期 {summary['expired']}，"
            f"续费发票 {summary['renewal_invoices']}，跳过 {summary['skipped']}，失败 {summary['errors']}"
        )
        return summary

    async def _find(self, query):
        async def work(uow: UnitOfWork):
            return ServiceResult.success(await query(uow))

        result = await self.subscriptions.read("查询待处理订阅", work)
        return result.data if result.is_success() else []

    @staticmethod
    def _count(summary: Dict[str, Any], key: str, subscription_id: str, result) -> None:
        if result.is_success():
            summary[key] += 1
        else:
            summary['errors'] += 1
            logger.error(f"生命周期处理失败 [{key}] 订阅 {subscription_id}: {result.error.message}")


# 全局实例
lifecycle_job = LifecycleJob()
