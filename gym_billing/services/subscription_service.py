"""
会员订阅服务
负责报名、激活、冻结/解冻、取消、到期、续费、课程签到等订阅生命周期操作
"""

import uuid
from datetime import date, datetime, timedelta
from typing import Optional, Dict, Any, List

from loguru import logger

from gym_billing.config import settings
from gym_billing.core import freeze_balance as freeze_tracker
from gym_billing.core.entities import Subscription, SubscriptionStatus
from gym_billing.core.exceptions import ValidationError, NotFoundError, InvalidTransition
from gym_billing.core.freeze_balance import FreezeBalance, FreezePackage
from gym_billing.core.invoicing import Payment
from gym_billing.core.service_result import ServiceResult, ErrorCode, failure
from gym_billing.core.subscription_state_machine import (
    transition,
    use_class as consume_class,
    FreezeSubscription,
    UnfreezeSubscription,
    CancelSubscription,
    ExpireSubscription,
)
from gym_billing.schemas.events import EnrollmentRequest, FreezeRequest
from gym_billing.services.base import BaseService, UnitOfWork
from gym_billing.services.steps import (
    activate_in_session,
    auto_pay_in_session,
    cancel_unpaid_invoice,
    issue_subscription_invoice,
    renew_in_session,
    settle_invoice,
)

# 未指定冻结套餐时的标准冻结规则: 顺延合同
STANDARD_FREEZE_PACKAGE_ID = "standard"


class SubscriptionService(BaseService):
    """会员订阅服务"""

    async def enroll(self, request: EnrollmentRequest, today: Optional[date] = None) -> ServiceResult[Dict[str, Any]]:
        """
        会员报名

        创建 PENDING 订阅与冻结余额，开具首期发票（会员首个订阅加收入会费），
        钱包余额足够时立即自动支付并激活

        Args:
            request: 报名请求
            today: 开票日期，默认今天

        Returns:
            {'subscription', 'invoice', 'freeze_balance', 'auto_paid'}
        """
        today = today or date.today()
        locale = request.locale or settings.default_locale
        if locale not in settings.supported_locales:
            return failure(f"Unsupported locale: {locale}", ErrorCode.VALIDATION_ERROR, field="locale")

        async def work(uow: UnitOfWork):
            now = datetime.utcnow()
            plan = await uow.subscriptions.get_plan(request.plan_id)
            if not plan.is_active:
                raise ValidationError(f"Membership plan {plan.id} is not available for enrollment")

            end_date = request.start_date + timedelta(days=plan.duration_days)
            if end_date <= today:
                raise ValidationError(
                    f"Subscription starting {request.start_date.isoformat()} would already have ended",
                    details={'field': 'start_date'},
                )

            first_subscription = await uow.subscriptions.count_by_member(request.member_id) == 0
            subscription = await uow.subscriptions.add(Subscription(
                id=str(uuid.uuid4()),
                member_id=request.member_id,
                plan_id=plan.id,
                status=SubscriptionStatus.PENDING,
                start_date=request.start_date,
                end_date=end_date,
                classes_remaining=plan.max_classes,
                auto_renew=request.auto_renew,
                locale=locale,
                referred_by_member_id=request.referred_by_member_id,
            ))
            balance = await uow.subscriptions.add_balance(
                FreezeBalance(subscription_id=subscription.id, total_freeze_days=plan.freeze_days_allowed)
            )
            subscription, invoice = await issue_subscription_invoice(
                uow, subscription, plan, today, include_join_fee=first_subscription
            )

            warnings = []
            auto_paid = False
            if invoice.total_amount == 0:
                await settle_invoice(uow, invoice, Payment(
                    amount=invoice.total_amount,
                    reference=f"FREE-{invoice.invoice_number}",
                    paid_at=now,
                    method="FREE",
                ), now)
            else:
                paid = await auto_pay_in_session(uow, subscription, now)
                auto_paid = paid.is_success()
                if paid.is_failure():
                    warnings.append(f"Awaiting payment of invoice {invoice.invoice_number}: {paid.error.message}")

            subscription = await uow.subscriptions.get(subscription.id)
            invoice = await uow.invoices.get(invoice.id)
            logger.info(
                f"会员报名: {request.member_id} 计划 {plan.name} 订阅 {subscription.id} "
                f"状态 {subscription.status.value}"
            )
            return ServiceResult.success({
                'subscription': subscription,
                'invoice': invoice,
                'freeze_balance': balance,
                'auto_paid': auto_paid,
            }, warnings=warnings)

        return await self.run("会员报名", work)

    async def activate(self, subscription_id: str, source: str = "admin") -> ServiceResult[Subscription]:
        """手动激活；关联发票未支付时拒绝"""
        async def work(uow: UnitOfWork):
            subscription = await uow.subscriptions.get(subscription_id)
            invoice = await uow.invoices.get(subscription.invoice_id) if subscription.invoice_id else None
            activated = await activate_in_session(uow, subscription, invoice, source, datetime.utcnow())
            return ServiceResult.success(activated)

        return await self.run("激活订阅", work)

    async def freeze(self, request: FreezeRequest, today: Optional[date] = None) -> ServiceResult[Dict[str, Any]]:
        """
        冻结订阅

        冻结余额不足返回 INSUFFICIENT_FREEZE_DAYS，订阅保持 ACTIVE
        """
        today = today or date.today()

        async def work(uow: UnitOfWork):
            subscription = await uow.subscriptions.get(request.subscription_id)
            balance = await uow.subscriptions.get_balance(subscription.id)
            if request.package_id:
                package = await uow.subscriptions.get_package(request.package_id)
                if request.days > package.freeze_days:
                    raise ValidationError(
                        f"Freeze package {package.name} allows at most {package.freeze_days} days",
                        details={'field': 'days'},
                    )
            else:
                package = FreezePackage(
                    id=STANDARD_FREEZE_PACKAGE_ID,
                    name="Standard freeze",
                    freeze_days=request.days,
                    extends_contract=True,
                )

            result = transition(subscription, FreezeSubscription(
                days=request.days, balance=balance, package=package, today=today,
            ))
            if result.is_failure():
                return result

            outcome = result.data
            saved = await uow.subscriptions.save(outcome.subscription)
            saved_balance = await uow.subscriptions.save_balance(outcome.balance)
            uow.emit(outcome.effects)
            return ServiceResult.success({'subscription': saved, 'freeze_balance': saved_balance})

        return await self.run("冻结订阅", work)

    async def unfreeze(self, subscription_id: str, today: Optional[date] = None) -> ServiceResult[Dict[str, Any]]:
        """解冻；冻结期未满时归还未使用的冻结天数"""
        today = today or date.today()

        async def work(uow: UnitOfWork):
            subscription = await uow.subscriptions.get(subscription_id)
            balance = await uow.subscriptions.get_balance(subscription_id)
            result = transition(subscription, UnfreezeSubscription(today=today, balance=balance))
            if result.is_failure():
                return result

            outcome = result.data
            saved = await uow.subscriptions.save(outcome.subscription)
            if outcome.balance is not None and outcome.balance != balance:
                balance = await uow.subscriptions.save_balance(outcome.balance)
            uow.emit(outcome.effects)
            return ServiceResult.success({'subscription': saved, 'freeze_balance': balance})

        return await self.run("解冻订阅", work)

    async def cancel(
        self,
        subscription_id: str,
        reason: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ServiceResult[Subscription]:
        """取消订阅（终态），同时作废未支付发票"""
        today = today or date.today()

        async def work(uow: UnitOfWork):
            subscription = await uow.subscriptions.get(subscription_id)
            try:
                balance = await uow.subscriptions.get_balance(subscription_id)
            except NotFoundError:
                balance = None

            result = transition(subscription, CancelSubscription(today=today, reason=reason, balance=balance))
            if result.is_failure():
                return result

            outcome = result.data
            saved = await uow.subscriptions.save(outcome.subscription, cancelled_at=datetime.utcnow())
            if balance is not None and outcome.balance is not None and outcome.balance != balance:
                await uow.subscriptions.save_balance(outcome.balance)
            await cancel_unpaid_invoice(uow, subscription_id)
            uow.emit(outcome.effects)
            return ServiceResult.success(saved)

        return await self.run("取消订阅", work)

    async def expire(self, subscription_id: str, today: Optional[date] = None) -> ServiceResult[Subscription]:
        """到期（today > end_date），同时作废未支付的续费发票"""
        today = today or date.today()

        async def work(uow: UnitOfWork):
            subscription = await uow.subscriptions.get(subscription_id)
            result = transition(subscription, ExpireSubscription(today=today))
            if result.is_failure():
                return result

            saved = await uow.subscriptions.save(result.data.subscription)
            await cancel_unpaid_invoice(uow, subscription_id)
            uow.emit(result.data.effects)
            return ServiceResult.success(saved)

        return await self.run("订阅到期", work)

    async def renew(self, subscription_id: str, new_end_date: Optional[date] = None) -> ServiceResult[Subscription]:
        """续费，默认顺延一个计划周期"""
        async def work(uow: UnitOfWork):
            subscription = await uow.subscriptions.get(subscription_id)
            plan = await uow.subscriptions.get_plan(subscription.plan_id)
            renewed = await renew_in_session(uow, subscription, plan, new_end_date)
            return ServiceResult.success(renewed)

        return await self.run("续费订阅", work)

    async def use_class(self, subscription_id: str, today: Optional[date] = None) -> ServiceResult[Subscription]:
        """课程签到，扣减一次课程额度"""
        today = today or date.today()

        async def work(uow: UnitOfWork):
            subscription = await uow.subscriptions.get(subscription_id)
            result = consume_class(subscription, today)
            if result.is_failure():
                return result
            saved = await uow.subscriptions.save(result.data)
            logger.debug(f"课程签到: 订阅 {subscription_id} 剩余 {saved.classes_remaining}")
            return ServiceResult.success(saved)

        return await self.run("课程签到", work)

    async def grant_freeze_days(self, subscription_id: str, days: int) -> ServiceResult[FreezeBalance]:
        """增加冻结天数（购买冻结套餐或管理员赠送）"""
        async def work(uow: UnitOfWork):
            subscription = await uow.subscriptions.get(subscription_id)
            if subscription.status.is_terminal:
                raise InvalidTransition(
                    f"Subscription {subscription_id} is {subscription.status.value}, freeze days cannot be granted"
                )
            balance = await uow.subscriptions.get_balance(subscription_id)
            result = freeze_tracker.grant(balance, days)
            if result.is_failure():
                return result
            saved = await uow.subscriptions.save_balance(result.data)
            logger.info(f"赠送冻结天数: 订阅 {subscription_id} +{days} 天，剩余 {saved.remaining}")
            return ServiceResult.success(saved)

        return await self.run("赠送冻结天数", work)

    async def get_subscription(self, subscription_id: str, today: Optional[date] = None) -> ServiceResult[Dict[str, Any]]:
        today = today or date.today()

        async def work(uow: UnitOfWork):
            subscription = await uow.subscriptions.get(subscription_id)
            balance = await uow.subscriptions.get_balance(subscription_id)
            return ServiceResult.success({
                'subscription': subscription,
                'freeze_balance': balance,
                'days_remaining': subscription.days_remaining(today),
            })

        return await self.read("查询订阅", work)

    # ==================== 批量操作 ====================

    async def bulk_cancel(
        self,
        subscription_ids: List[str],
        reason: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ServiceResult[Dict[str, Any]]:
        """批量取消，每个订阅独立事务"""
        results = {sid: await self.cancel(sid, reason=reason, today=today) for sid in subscription_ids}
        return self._bulk_summary("批量取消", results)

    async def bulk_freeze(
        self,
        subscription_ids: List[str],
        days: int,
        package_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ServiceResult[Dict[str, Any]]:
        """批量冻结，每个订阅独立事务"""
        if days <= 0:
            return failure("Freeze days must be positive", ErrorCode.VALIDATION_ERROR, field="days")
        results = {}
        for sid in subscription_ids:
            results[sid] = await self.freeze(
                FreezeRequest(subscription_id=sid, days=days, package_id=package_id), today=today
            )
        return self._bulk_summary("批量冻结", results)

    def _bulk_summary(self, operation: str, results: Dict[str, ServiceResult]) -> ServiceResult[Dict[str, Any]]:
        succeeded = [sid for sid, r in results.items() if r.is_success()]
        failed = {sid: r.error.to_dict() for sid, r in results.items() if r.is_failure()}
        logger.info(f"{operation}完成: 成功 {len(succeeded)}，失败 {len(failed)}")
        warnings = [f"{len(failed)} of {len(results)} subscriptions failed"] if failed else []
        return ServiceResult.success({'succeeded': succeeded, 'failed': failed}, warnings=warnings)


# 全局实例
subscription_service = SubscriptionService()
