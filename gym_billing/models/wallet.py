"""
会员钱包模型 - 余额 + 只追加交易账本
"""

from sqlalchemy import Column, Integer, String, DateTime, DECIMAL, UniqueConstraint
from sqlalchemy.sql import func
from gym_billing.database import Base


class MemberWalletRecord(Base):
    """会员钱包"""
    __tablename__ = "member_wallets"

    member_id = Column(String(36), primary_key=True)
    balance = Column(DECIMAL(12, 3), nullable=False, default=0)  # 有符号
    currency = Column(String(3), nullable=False, default="SAR")
    last_sequence = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class WalletTransactionRecord(Base):
    """钱包交易（不更新、不删除）"""
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(String(36), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    type = Column(String(30), nullable=False)  # CREDIT, DEBIT, SUBSCRIPTION_CHARGE, REFUND, ADJUSTMENT
    amount = Column(DECIMAL(12, 3), nullable=False)
    balance_after = Column(DECIMAL(12, 3), nullable=False)
    currency = Column(String(3), nullable=False)
    reference = Column(String(100), nullable=True, index=True)
    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("member_id", "sequence", name="uq_wallet_transactions_member_sequence"),
    )
