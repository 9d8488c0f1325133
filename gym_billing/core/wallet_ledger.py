"""
会员钱包账本

余额为有符号金额；每次变动追加一条不可变的 WalletTransaction，
记录变动后的余额快照 balance_after，按 member_id + sequence 单调递增。
"""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence

from gym_billing.core.service_result import ServiceResult, ErrorCode, failure
from gym_billing.utils.money import round_money


class WalletTransactionType(str, Enum):
    """钱包交易类型"""
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    SUBSCRIPTION_CHARGE = "SUBSCRIPTION_CHARGE"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


@dataclass(frozen=True)
class WalletBalance:
    """会员钱包余额"""
    member_id: str
    balance: Decimal
    currency: str
    last_sequence: int = 0
    version: int = 0


@dataclass(frozen=True)
class WalletTransaction:
    """钱包交易记录（只追加，不修改）"""
    member_id: str
    sequence: int
    type: WalletTransactionType
    amount: Decimal  # 有符号: 入账为正，出账为负
    balance_after: Decimal
    currency: str
    created_at: datetime
    reference: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class LedgerEntry:
    """一次记账的结果: 新余额 + 新交易"""
    wallet: WalletBalance
    transaction: WalletTransaction


def _append(
    wallet: WalletBalance,
    tx_type: WalletTransactionType,
    signed_amount: Decimal,
    created_at: datetime,
    reference: Optional[str],
    description: Optional[str],
) -> LedgerEntry:
    new_balance = round_money(wallet.balance + signed_amount, wallet.currency)
    sequence = wallet.last_sequence + 1
    transaction = WalletTransaction(
        member_id=wallet.member_id,
        sequence=sequence,
        type=tx_type,
        amount=signed_amount,
        balance_after=new_balance,
        currency=wallet.currency,
        created_at=created_at,
        reference=reference,
        description=description,
    )
    return LedgerEntry(
        wallet=replace(wallet, balance=new_balance, last_sequence=sequence),
        transaction=transaction,
    )


def _positive(amount: Decimal, currency: str) -> Optional[ServiceResult]:
    if round_money(amount, currency) <= 0:
        return failure("Amount must be positive", ErrorCode.VALIDATION_ERROR, field="amount")
    return None


def credit(
    wallet: WalletBalance,
    amount: Decimal,
    created_at: datetime,
    reference: Optional[str] = None,
    description: Optional[str] = None,
    tx_type: WalletTransactionType = WalletTransactionType.CREDIT,
) -> ServiceResult[LedgerEntry]:
    """入账"""
    invalid = _positive(amount, wallet.currency)
    if invalid:
        return invalid
    amount = round_money(amount, wallet.currency)
    return ServiceResult.success(_append(wallet, tx_type, amount, created_at, reference, description))


def debit(
    wallet: WalletBalance,
    amount: Decimal,
    created_at: datetime,
    reference: Optional[str] = None,
    description: Optional[str] = None,
    tx_type: WalletTransactionType = WalletTransactionType.DEBIT,
    allow_negative: bool = False,
) -> ServiceResult[LedgerEntry]:
    """出账，默认余额不足时拒绝且不产生任何变动"""
    invalid = _positive(amount, wallet.currency)
    if invalid:
        return invalid
    amount = round_money(amount, wallet.currency)
    if not allow_negative and wallet.balance < amount:
        return failure(
            f"Wallet balance {wallet.balance} {wallet.currency} is less than {amount}",
            ErrorCode.INSUFFICIENT_BALANCE,
            context={'balance': str(wallet.balance), 'required': str(amount)},
        )
    return ServiceResult.success(_append(wallet, tx_type, -amount, created_at, reference, description))


def charge_subscription(
    wallet: WalletBalance,
    amount: Decimal,
    created_at: datetime,
    invoice_id: str,
    description: Optional[str] = None,
) -> ServiceResult[LedgerEntry]:
    """订阅扣款，reference 为发票ID"""
    return debit(
        wallet, amount, created_at,
        reference=invoice_id,
        description=description or "Subscription charge",
        tx_type=WalletTransactionType.SUBSCRIPTION_CHARGE,
    )


def refund(
    wallet: WalletBalance,
    amount: Decimal,
    created_at: datetime,
    reference: Optional[str] = None,
    description: Optional[str] = None,
) -> ServiceResult[LedgerEntry]:
    """退款入账"""
    return credit(
        wallet, amount, created_at,
        reference=reference,
        description=description or "Refund",
        tx_type=WalletTransactionType.REFUND,
    )


def adjust(
    wallet: WalletBalance,
    delta: Decimal,
    created_at: datetime,
    reason: str,
) -> ServiceResult[LedgerEntry]:
    """管理员调整，delta 有符号，余额允许为负"""
    delta = round_money(delta, wallet.currency)
    if delta == 0:
        return failure("Adjustment delta cannot be zero", ErrorCode.VALIDATION_ERROR, field="delta")
    if not reason or not reason.strip():
        return failure("Adjustment reason is required", ErrorCode.VALIDATION_ERROR, field="reason")
    return ServiceResult.success(
        _append(wallet, WalletTransactionType.ADJUSTMENT, delta, created_at, None, reason.strip())
    )


def ledger_total(transactions: Sequence[WalletTransaction]) -> Decimal:
    """交易金额合计"""
    return sum((tx.amount for tx in transactions), Decimal("0"))


def verify_ledger(wallet: WalletBalance, transactions: Sequence[WalletTransaction]) -> bool:
    """校验: 余额等于交易合计，且最后一条 balance_after 等于当前余额"""
    if not transactions:
        return wallet.balance == 0
    ordered = sorted(transactions, key=lambda tx: tx.sequence)
    return ledger_total(ordered) == wallet.balance and ordered[-1].balance_after == wallet.balance
