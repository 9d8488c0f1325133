"""
支付回调记录 - 按网关参考号去重
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, DECIMAL
from sqlalchemy.sql import func
from gym_billing.database import Base


class PaymentWebhookRecord(Base):
    """支付Webhook记录"""
    __tablename__ = "payment_webhooks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference = Column(String(100), nullable=False, unique=True, index=True)
    invoice_id = Column(String(36), nullable=False, index=True)
    amount = Column(DECIMAL(12, 3), nullable=False)
    payload = Column(Text, nullable=True)  # JSON payload
    processed = Column(Boolean, default=False)
    processing_result = Column(String(20), nullable=True)  # success, duplicate, failed
    error_message = Column(Text, nullable=True)
    received_at = Column(DateTime, nullable=False, default=func.now())
    processed_at = Column(DateTime, nullable=True)
