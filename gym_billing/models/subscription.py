"""
会员计划、冻结套餐、订阅与冻结余额模型
"""

from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, ForeignKey, DECIMAL, Index
from sqlalchemy.sql import func
from gym_billing.database import Base


class MembershipPlanRecord(Base):
    """会员计划"""
    __tablename__ = "membership_plans"

    id = Column(String(36), primary_key=True)
    name = Column(String(100), nullable=False)
    price = Column(DECIMAL(12, 3), nullable=False)
    currency = Column(String(3), nullable=False, default="SAR")
    duration_days = Column(Integer, nullable=False)
    freeze_days_allowed = Column(Integer, nullable=False, default=0)
    max_classes = Column(Integer, nullable=True)  # NULL 表示不限次数
    administration_fee = Column(DECIMAL(12, 3), nullable=False, default=0)
    join_fee = Column(DECIMAL(12, 3), nullable=False, default=0)
    tax_rate = Column(DECIMAL(5, 4), nullable=False, default=0)  # 0.15 = 15%
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class FreezePackageRecord(Base):
    """冻结套餐"""
    __tablename__ = "freeze_packages"

    id = Column(String(36), primary_key=True)
    name = Column(String(100), nullable=False)
    freeze_days = Column(Integer, nullable=False)
    price = Column(DECIMAL(12, 3), nullable=False, default=0)
    extends_contract = Column(Boolean, nullable=False, default=True)  # 冻结是否顺延合同结束日
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SubscriptionRecord(Base):
    """会员订阅"""
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True)
    member_id = Column(String(36), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("membership_plans.id"), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING", index=True)  # PENDING, ACTIVE, FROZEN, CANCELLED, EXPIRED
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False, index=True)
    classes_remaining = Column(Integer, nullable=True)
    auto_renew = Column(Boolean, nullable=False, default=False)
    locale = Column(String(10), nullable=False, default="ar")
    invoice_id = Column(String(36), nullable=True)  # 待支付发票
    referred_by_member_id = Column(String(36), nullable=True)

    # 当前冻结
    frozen_at = Column(Date, nullable=True)
    freeze_end_date = Column(Date, nullable=True)
    freeze_days_reserved = Column(Integer, nullable=False, default=0)
    freeze_extends_contract = Column(Boolean, nullable=False, default=False)

    cancellation_reason = Column(String(500), nullable=True)
    activated_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False, default=0)  # 乐观锁
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index("ix_subscriptions_member_status", "member_id", "status"),
    )


class FreezeBalanceRecord(Base):
    """订阅冻结天数余额"""
    __tablename__ = "freeze_balances"

    subscription_id = Column(String(36), ForeignKey("subscriptions.id"), primary_key=True)
    total_freeze_days = Column(Integer, nullable=False, default=0)
    used_freeze_days = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
