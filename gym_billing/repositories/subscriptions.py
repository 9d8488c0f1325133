"""
订阅仓储 - 会员计划、冻结套餐、订阅、冻结余额
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, and_, func

from gym_billing.core.entities import MembershipPlan, Subscription, SubscriptionStatus
from gym_billing.core.exceptions import NotFoundError
from gym_billing.core.freeze_balance import FreezeBalance, FreezePackage
from gym_billing.models.subscription import (
    MembershipPlanRecord, FreezePackageRecord, SubscriptionRecord, FreezeBalanceRecord
)
from gym_billing.repositories.base import BaseRepository
from gym_billing.utils.money import round_money


def _plan_entity(record: MembershipPlanRecord) -> MembershipPlan:
    return MembershipPlan(
        id=record.id,
        name=record.name,
        price=round_money(record.price, record.currency),
        duration_days=record.duration_days,
        currency=record.currency,
        freeze_days_allowed=record.freeze_days_allowed or 0,
        max_classes=record.max_classes,
        administration_fee=round_money(record.administration_fee or 0, record.currency),
        join_fee=round_money(record.join_fee or 0, record.currency),
        tax_rate=Decimal(str(record.tax_rate or 0)),
        is_active=bool(record.is_active),
    )


def _subscription_entity(record: SubscriptionRecord) -> Subscription:
    return Subscription(
        id=record.id,
        member_id=record.member_id,
        plan_id=record.plan_id,
        status=SubscriptionStatus(record.status),
        start_date=record.start_date,
        end_date=record.end_date,
        classes_remaining=record.classes_remaining,
        auto_renew=bool(record.auto_renew),
        locale=record.locale,
        invoice_id=record.invoice_id,
        referred_by_member_id=record.referred_by_member_id,
        frozen_at=record.frozen_at,
        freeze_end_date=record.freeze_end_date,
        freeze_days_reserved=record.freeze_days_reserved or 0,
        freeze_extends_contract=bool(record.freeze_extends_contract),
        cancellation_reason=record.cancellation_reason,
        version=record.version,
    )


def _subscription_values(subscription: Subscription) -> dict:
    """可变字段"""
    return {
        'status': subscription.status.value,
        'end_date': subscription.end_date,
        'classes_remaining': subscription.classes_remaining,
        'auto_renew': subscription.auto_renew,
        'invoice_id': subscription.invoice_id,
        'frozen_at': subscription.frozen_at,
        'freeze_end_date': subscription.freeze_end_date,
        'freeze_days_reserved': subscription.freeze_days_reserved,
        'freeze_extends_contract': subscription.freeze_extends_contract,
        'cancellation_reason': subscription.cancellation_reason,
    }


class SubscriptionRepository(BaseRepository):
    """订阅数据访问"""

    # ==================== 会员计划 / 冻结套餐 ====================

    async def add_plan(self, plan: MembershipPlan) -> MembershipPlan:
        self.session.add(MembershipPlanRecord(
            id=plan.id,
            name=plan.name,
            price=plan.price,
            currency=plan.currency,
            duration_days=plan.duration_days,
            freeze_days_allowed=plan.freeze_days_allowed,
            max_classes=plan.max_classes,
            administration_fee=plan.administration_fee,
            join_fee=plan.join_fee,
            tax_rate=plan.tax_rate,
            is_active=plan.is_active,
        ))
        await self.session.flush()
        return plan

    async def get_plan(self, plan_id: str) -> MembershipPlan:
        record = await self.session.get(MembershipPlanRecord, plan_id)
        if record is None:
            raise NotFoundError(f"Membership plan {plan_id} not found")
        return _plan_entity(record)

    async def add_package(self, package: FreezePackage) -> FreezePackage:
        self.session.add(FreezePackageRecord(
            id=package.id,
            name=package.name,
            freeze_days=package.freeze_days,
            price=package.price,
            extends_contract=package.extends_contract,
        ))
        await self.session.flush()
        return package

    async def get_package(self, package_id: str) -> FreezePackage:
        record = await self.session.get(FreezePackageRecord, package_id)
        if record is None or not record.is_active:
            raise NotFoundError(f"Freeze package {package_id} not found")
        return FreezePackage(
            id=record.id,
            name=record.name,
            freeze_days=record.freeze_days,
            price=Decimal(str(record.price or 0)),
            extends_contract=bool(record.extends_contract),
        )

    # ==================== 订阅 ====================

    async def add(self, subscription: Subscription) -> Subscription:
        self.session.add(SubscriptionRecord(
            id=subscription.id,
            member_id=subscription.member_id,
            plan_id=subscription.plan_id,
            start_date=subscription.start_date,
            locale=subscription.locale,
            referred_by_member_id=subscription.referred_by_member_id,
            version=0,
            **_subscription_values(subscription),
        ))
        await self.session.flush()
        return replace(subscription, version=0)

    async def get(self, subscription_id: str) -> Subscription:
        record = await self.session.get(SubscriptionRecord, subscription_id, populate_existing=True)
        if record is None:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return _subscription_entity(record)

    async def save(self, subscription: Subscription, **extra) -> Subscription:
        """按版本保存订阅；extra 为实体之外的审计列（activated_at 等）"""
        version = await self.compare_and_swap(
            SubscriptionRecord,
            {'id': subscription.id},
            subscription.version,
            {**_subscription_values(subscription), **extra},
        )
        return replace(subscription, version=version)

    async def list_by_member(self, member_id: str, status: Optional[SubscriptionStatus] = None) -> List[Subscription]:
        """会员订阅列表，按开始日期（最早的在前）"""
        stmt = select(SubscriptionRecord).where(SubscriptionRecord.member_id == member_id)
        if status is not None:
            stmt = stmt.where(SubscriptionRecord.status == status.value)
        stmt = stmt.order_by(SubscriptionRecord.start_date, SubscriptionRecord.created_at, SubscriptionRecord.id)
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return [_subscription_entity(r) for r in result.scalars().all()]

    async def member_locale(self, member_id: str) -> Optional[str]:
        """会员最近一次订阅的通知语言，没有订阅时返回 None"""
        result = await self.session.execute(
            select(SubscriptionRecord.locale)
            .where(SubscriptionRecord.member_id == member_id)
            .order_by(SubscriptionRecord.created_at.desc(), SubscriptionRecord.start_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_by_member(self, member_id: str) -> int:
        result = await self.session.execute(
            select(func.count(SubscriptionRecord.id)).where(SubscriptionRecord.member_id == member_id)
        )
        return result.scalar() or 0

    async def has_been_activated(self, member_id: str, exclude_id: Optional[str] = None) -> bool:
        """会员是否有过已激活的订阅"""
        stmt = select(func.count(SubscriptionRecord.id)).where(
            SubscriptionRecord.member_id == member_id,
            SubscriptionRecord.activated_at.isnot(None),
        )
        if exclude_id:
            stmt = stmt.where(SubscriptionRecord.id != exclude_id)
        result = await self.session.execute(stmt)
        return (result.scalar() or 0) > 0

    async def find_ended(self, today: date) -> List[str]:
        """结束日已过的 ACTIVE 订阅"""
        result = await self.session.execute(
            select(SubscriptionRecord.id).where(and_(
                SubscriptionRecord.status == SubscriptionStatus.ACTIVE.value,
                SubscriptionRecord.end_date < today,
            ))
        )
        return list(result.scalars().all())

    async def find_elapsed_freezes(self, today: date) -> List[str]:
        """冻结期已满的 FROZEN 订阅"""
        result = await self.session.execute(
            select(SubscriptionRecord.id).where(and_(
                SubscriptionRecord.status == SubscriptionStatus.FROZEN.value,
                SubscriptionRecord.freeze_end_date <= today,
            ))
        )
        return list(result.scalars().all())

    async def find_renewal_due(self, until: date) -> List[str]:
        """结束日在 until 之前（含）的自动续费 ACTIVE 订阅"""
        result = await self.session.execute(
            select(SubscriptionRecord.id).where(and_(
                SubscriptionRecord.status == SubscriptionStatus.ACTIVE.value,
                SubscriptionRecord.auto_renew.is_(True),
                SubscriptionRecord.end_date <= until,
            ))
        )
        return list(result.scalars().all())

    # ==================== 冻结余额 ====================

    async def add_balance(self, balance: FreezeBalance) -> FreezeBalance:
        self.session.add(FreezeBalanceRecord(
            subscription_id=balance.subscription_id,
            total_freeze_days=balance.total_freeze_days,
            used_freeze_days=balance.used_freeze_days,
            version=0,
        ))
        await self.session.flush()
        return replace(balance, version=0)

    async def get_balance(self, subscription_id: str) -> FreezeBalance:
        record = await self.session.get(FreezeBalanceRecord, subscription_id, populate_existing=True)
        if record is None:
            raise NotFoundError(f"Freeze balance for subscription {subscription_id} not found")
        return FreezeBalance(
            subscription_id=record.subscription_id,
            total_freeze_days=record.total_freeze_days,
            used_freeze_days=record.used_freeze_days,
            version=record.version,
        )

    async def save_balance(self, balance: FreezeBalance) -> FreezeBalance:
        version = await self.compare_and_swap(
            FreezeBalanceRecord,
            {'subscription_id': balance.subscription_id},
            balance.version,
            {
                'total_freeze_days': balance.total_freeze_days,
                'used_freeze_days': balance.used_freeze_days,
            },
        )
        return replace(balance, version=version)
