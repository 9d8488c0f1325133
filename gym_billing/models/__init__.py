"""
Gym Billing Core - 数据模型

SQLAlchemy ORM模型定义
"""

from .subscription import MembershipPlanRecord, FreezePackageRecord, SubscriptionRecord, FreezeBalanceRecord
from .wallet import MemberWalletRecord, WalletTransactionRecord
from .invoice import InvoiceRecord, InvoiceLineItemRecord, InvoiceSequenceRecord
from .points import PointsAccountRecord, PointsTransactionRecord
from .webhook import PaymentWebhookRecord

__all__ = [
    "MembershipPlanRecord",
    "FreezePackageRecord",
    "SubscriptionRecord",
    "FreezeBalanceRecord",
    "MemberWalletRecord",
    "WalletTransactionRecord",
    "InvoiceRecord",
    "InvoiceLineItemRecord",
    "InvoiceSequenceRecord",
    "PointsAccountRecord",
    "PointsTransactionRecord",
    "PaymentWebhookRecord",
]
