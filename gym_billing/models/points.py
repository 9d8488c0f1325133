"""
积分账户模型（忠诚度与推荐奖励）
"""

from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from gym_billing.database import Base


class PointsAccountRecord(Base):
    __tablename__ = "points_accounts"

    member_id = Column(String(36), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    last_sequence = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PointsTransactionRecord(Base):
    __tablename__ = "points_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(String(36), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    type = Column(String(20), nullable=False)    # EARN, REDEEM, ADJUST
    source = Column(String(20), nullable=False)  # LOYALTY, REFERRAL, MANUAL
    points = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reference = Column(String(100), nullable=True, index=True)
    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("member_id", "sequence", name="uq_points_transactions_member_sequence"),
    )
