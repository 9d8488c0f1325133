"""
发票模型
"""

from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, DECIMAL
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from gym_billing.database import Base


class InvoiceRecord(Base):
    """发票"""
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True)
    invoice_number = Column(String(32), nullable=False, unique=True, index=True)
    member_id = Column(String(36), nullable=False, index=True)
    subscription_id = Column(String(36), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="DRAFT", index=True)  # DRAFT, ISSUED, CANCELLED, PAID
    currency = Column(String(3), nullable=False)
    subtotal = Column(DECIMAL(12, 3), nullable=False)
    tax_total = Column(DECIMAL(12, 3), nullable=False, default=0)
    total_amount = Column(DECIMAL(12, 3), nullable=False)
    issued_on = Column(Date, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    paid_amount = Column(DECIMAL(12, 3), nullable=True)
    payment_reference = Column(String(100), nullable=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    line_items = relationship(
        "InvoiceLineItemRecord",
        order_by="InvoiceLineItemRecord.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class InvoiceLineItemRecord(Base):
    """发票行"""
    __tablename__ = "invoice_line_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    description = Column(String(200), nullable=False)
    item_type = Column(String(30), nullable=False)
    unit_price = Column(DECIMAL(12, 3), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    tax_rate = Column(DECIMAL(5, 4), nullable=False, default=0)


class InvoiceSequenceRecord(Base):
    """发票编号序列 - 每个前缀每年从1开始"""
    __tablename__ = "invoice_sequences"

    prefix = Column(String(10), primary_key=True)
    year = Column(Integer, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
