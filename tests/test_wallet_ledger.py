"""
钱包账本与自动支付单元测试
"""

import pytest
from dataclasses import replace
from datetime import date
from decimal import Decimal

from gym_billing.core import wallet_ledger
from gym_billing.core.auto_pay import attempt_auto_pay
from gym_billing.core.entities import Subscription, SubscriptionStatus
from gym_billing.core.invoicing import InvoiceLineItem, InvoiceStatus, LineItemType, build_invoice
from gym_billing.core.service_result import ErrorCode
from gym_billing.core.wallet_ledger import WalletTransactionType


@pytest.fixture
def pending_subscription():
    return Subscription(
        id="sub-1",
        member_id="member-1",
        plan_id="plan-monthly",
        status=SubscriptionStatus.PENDING,
        start_date=date(2026, 3, 1),
        end_date=date(2026, 3, 31),
        invoice_id="inv-1",
    )


@pytest.fixture
def issued_invoice(pending_subscription):
    return build_invoice(
        invoice_number="INV-2026-000001",
        member_id="member-1",
        line_items=[InvoiceLineItem(
            description="Membership fee",
            unit_price=Decimal("500.00"),
            item_type=LineItemType.SUBSCRIPTION,
        )],
        currency="SAR",
        subscription_id=pending_subscription.id,
        status=InvoiceStatus.ISSUED,
        invoice_id="inv-1",
    )


class TestWalletLedger:
    """钱包账本测试"""

    def test_credit_and_debit_keep_ledger_consistent(self, empty_wallet, now):
        """余额始终等于交易合计，且等于最后一条 balance_after"""
        wallet = empty_wallet
        transactions = []
        for step in (
            lambda w: wallet_ledger.credit(w, Decimal("300"), now, reference="topup-1"),
            lambda w: wallet_ledger.debit(w, Decimal("120.50"), now),
            lambda w: wallet_ledger.refund(w, Decimal("20.50"), now),
            lambda w: wallet_ledger.adjust(w, Decimal("-50"), now, reason="correction"),
        ):
            entry = step(wallet).get_data_or_raise()
            wallet = entry.wallet
            transactions.append(entry.transaction)

        assert wallet.balance == Decimal("150.00")
        assert [tx.sequence for tx in transactions] == [1, 2, 3, 4]
        assert wallet.last_sequence == 4
        assert wallet_ledger.verify_ledger(wallet, transactions)

    def test_debit_insufficient_balance_makes_no_change(self, empty_wallet, now):
        wallet = wallet_ledger.credit(empty_wallet, Decimal("100"), now).data.wallet

        result = wallet_ledger.debit(wallet, Decimal("100.01"), now)

        assert result.error_code == ErrorCode.INSUFFICIENT_BALANCE
        assert wallet.balance == Decimal("100.00")

    def test_adjustment_may_go_negative(self, empty_wallet, now):
        entry = wallet_ledger.adjust(empty_wallet, Decimal("-25"), now, reason="chargeback").data

        assert entry.wallet.balance == Decimal("-25.00")
        assert entry.transaction.type == WalletTransactionType.ADJUSTMENT
        assert entry.transaction.description == "chargeback"

    def test_adjustment_requires_reason_and_delta(self, empty_wallet, now):
        assert wallet_ledger.adjust(empty_wallet, Decimal("0"), now, "x").error_code == ErrorCode.VALIDATION_ERROR
        assert wallet_ledger.adjust(empty_wallet, Decimal("5"), now, "  ").error.field == "reason"

    def test_amounts_rounded_to_currency_minor_units(self, now):
        wallet = wallet_ledger.WalletBalance(member_id="m", balance=Decimal("0.000"), currency="KWD")

        entry = wallet_ledger.credit(wallet, Decimal("1.23456"), now).data

        assert entry.wallet.balance == Decimal("1.235")

    def test_credit_rejects_non_positive(self, empty_wallet, now):
        assert wallet_ledger.credit(empty_wallet, Decimal("0"), now).is_failure()
        assert wallet_ledger.credit(empty_wallet, Decimal("-1"), now).is_failure()

    def test_verify_ledger_detects_mismatch(self, empty_wallet, now):
        entry = wallet_ledger.credit(empty_wallet, Decimal("10"), now).data
        tampered = replace(entry.wallet, balance=Decimal("11.00"))

        assert not wallet_ledger.verify_ledger(tampered, [entry.transaction])


class TestAutoPay:
    """钱包自动支付测试"""

    def test_auto_pay_with_exact_balance(self, empty_wallet, pending_subscription, issued_invoice, now):
        """余额500支付500的发票: 扣款、发票PAID、订阅ACTIVE、余额归零"""
        wallet = wallet_ledger.credit(empty_wallet, Decimal("500"), now).data.wallet

        result = attempt_auto_pay(wallet, pending_subscription, issued_invoice, now)

        assert result.is_success()
        outcome = result.data
        assert outcome.wallet.balance == Decimal("0.00")
        assert outcome.invoice.status == InvoiceStatus.PAID
        assert outcome.invoice.payment_reference == "WALLET-member-1-2"
        assert outcome.subscription.status == SubscriptionStatus.ACTIVE
        assert outcome.transaction.type == WalletTransactionType.SUBSCRIPTION_CHARGE
        assert outcome.transaction.amount == Decimal("-500.00")
        assert outcome.transaction.reference == issued_invoice.id

    def test_auto_pay_insufficient_balance(self, empty_wallet, pending_subscription, issued_invoice, now):
        """余额200支付500的发票: 失败，所有实体保持不变"""
        wallet = wallet_ledger.credit(empty_wallet, Decimal("200"), now).data.wallet

        result = attempt_auto_pay(wallet, pending_subscription, issued_invoice, now)

        assert result.error_code == ErrorCode.INSUFFICIENT_BALANCE
        assert wallet.balance == Decimal("200.00")
        assert issued_invoice.status == InvoiceStatus.ISSUED
        assert pending_subscription.status == SubscriptionStatus.PENDING

    def test_auto_pay_already_paid_invoice_only_activates(self, empty_wallet, pending_subscription,
                                                          issued_invoice, now):
        paid = replace(issued_invoice, status=InvoiceStatus.PAID)

        result = attempt_auto_pay(empty_wallet, pending_subscription, paid, now)

        assert result.data.transaction is None
        assert result.data.wallet == empty_wallet
        assert result.data.subscription.status == SubscriptionStatus.ACTIVE

    def test_auto_pay_only_for_pending(self, empty_wallet, pending_subscription, issued_invoice, now):
        active = replace(pending_subscription, status=SubscriptionStatus.ACTIVE)

        result = attempt_auto_pay(empty_wallet, active, issued_invoice, now)

        assert result.error_code == ErrorCode.INVALID_TRANSITION

    def test_auto_pay_wallet_of_other_member(self, pending_subscription, issued_invoice, now):
        wallet = wallet_ledger.WalletBalance(member_id="member-2", balance=Decimal("900"), currency="SAR")

        result = attempt_auto_pay(wallet, pending_subscription, issued_invoice, now)

        assert result.error.field == "wallet"

    def test_auto_pay_cancelled_invoice(self, empty_wallet, pending_subscription, issued_invoice, now):
        cancelled = replace(issued_invoice, status=InvoiceStatus.CANCELLED)

        result = attempt_auto_pay(empty_wallet, pending_subscription, cancelled, now)

        assert result.error_code == ErrorCode.INVALID_TRANSITION
