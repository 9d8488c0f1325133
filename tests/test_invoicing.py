"""
发票开具与支付确认测试
"""

import pytest
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

from gym_billing.core.entities import MembershipPlan
from gym_billing.core.invoicing import (
    InvoiceStatus,
    LineItemType,
    Payment,
    cancel_invoice,
    format_invoice_number,
    issue_from_subscription,
    issue_invoice,
    mark_paid,
    prorated_amount,
)
from gym_billing.core.service_result import ErrorCode


@pytest.fixture
def invoice(active_subscription, sample_plan):
    return issue_from_subscription(active_subscription, sample_plan, date(2026, 3, 1), "INV-2026-000001")


class TestIssueFromSubscription:
    """订阅发票开具测试"""

    def test_full_period_charges_plan_price(self, invoice):
        assert invoice.status == InvoiceStatus.ISSUED
        assert invoice.total_amount == Decimal("500.00")
        assert invoice.subscription_id == "sub-1"
        assert invoice.issued_on == date(2026, 3, 1)
        assert invoice.line_items[0].item_type == LineItemType.SUBSCRIPTION

    def test_mid_period_is_prorated(self, active_subscription, sample_plan):
        """剩余20/30天: 500 × 20/30 = 333.33"""
        invoice = issue_from_subscription(active_subscription, sample_plan, date(2026, 3, 11), "INV-2026-000002")

        assert invoice.total_amount == Decimal("333.33")
        assert "(20/30 days)" in invoice.line_items[0].description

    def test_future_start_date_charges_full_period(self, active_subscription, sample_plan):
        invoice = issue_from_subscription(active_subscription, sample_plan, date(2026, 2, 20), "INV-2026-000003")
        assert invoice.total_amount == Decimal("500.00")

    def test_renewal_charges_full_price(self, active_subscription, sample_plan):
        invoice = issue_from_subscription(
            active_subscription, sample_plan, date(2026, 3, 28), "INV-2026-000004", renewal=True,
        )

        assert invoice.total_amount == Decimal("500.00")
        assert invoice.line_items[0].description.startswith("Membership renewal")

    def test_fees_and_tax(self, active_subscription):
        """行项目含管理费、入会费，按税率计税"""
        plan = MembershipPlan(
            id="plan-joining",
            name="Quarterly",
            price=Decimal("1200.00"),
            duration_days=90,
            administration_fee=Decimal("50.00"),
            join_fee=Decimal("100.00"),
            tax_rate=Decimal("0.15"),
        )
        subscription = replace(active_subscription, end_date=date(2026, 5, 30))

        invoice = issue_from_subscription(subscription, plan, date(2026, 3, 1), "INV-2026-000005",
                                          include_join_fee=True)

        assert [item.item_type for item in invoice.line_items] == [
            LineItemType.SUBSCRIPTION, LineItemType.ADMINISTRATION_FEE, LineItemType.JOIN_FEE,
        ]
        assert invoice.subtotal == Decimal("1350.00")
        assert invoice.tax_total == Decimal("202.50")
        assert invoice.total_amount == Decimal("1552.50")

    def test_join_fee_omitted_when_not_requested(self, active_subscription):
        plan = MembershipPlan(id="p", name="P", price=Decimal("100"), duration_days=30, join_fee=Decimal("40"))

        invoice = issue_from_subscription(active_subscription, plan, date(2026, 3, 1), "INV-2026-000006")

        assert invoice.total_amount == Decimal("100.00")

    def test_prorated_amount_bounds(self):
        assert prorated_amount(Decimal("500"), 0, 30, "SAR") == Decimal("0.00")
        assert prorated_amount(Decimal("500"), 45, 30, "SAR") == Decimal("500.00")
        assert prorated_amount(Decimal("10"), 1, 3, "JPY") == Decimal("3")
        with pytest.raises(ValueError):
            prorated_amount(Decimal("500"), 10, 0, "SAR")

    def test_invoice_number_format(self):
        assert format_invoice_number("INV", 2026, 42) == "INV-2026-000042"


class TestMarkPaid:
    """支付确认测试"""

    def test_mark_paid(self, invoice):
        paid_at = datetime(2026, 3, 1, 12, 0)

        result = mark_paid(invoice, Payment(amount=Decimal("500.00"), reference="gw-1", paid_at=paid_at))

        assert result.data.status == InvoiceStatus.PAID
        assert result.data.paid_at == paid_at
        assert result.data.payment_reference == "gw-1"
        assert result.metadata['already_paid'] is False

    def test_mark_paid_twice_is_idempotent(self, invoice):
        """重复回调: 成功且不改变发票"""
        first = mark_paid(invoice, Payment(amount=Decimal("500"), reference="gw-1", paid_at=datetime(2026, 3, 1)))
        second = mark_paid(first.data, Payment(amount=Decimal("500"), reference="gw-2", paid_at=datetime(2026, 3, 2)))

        assert second.is_success()
        assert second.metadata['already_paid'] is True
        assert second.data == first.data
        assert second.data.payment_reference == "gw-1"

    def test_underpayment_rejected(self, invoice):
        result = mark_paid(invoice, Payment(amount=Decimal("499.99"), reference="gw-1", paid_at=datetime(2026, 3, 1)))

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert result.error.field == "amount"

    def test_cancelled_invoice_cannot_be_paid(self, invoice):
        cancelled = cancel_invoice(invoice).data

        result = mark_paid(cancelled, Payment(amount=Decimal("500"), reference="gw-1", paid_at=datetime(2026, 3, 1)))

        assert result.error_code == ErrorCode.INVALID_TRANSITION

    def test_draft_lifecycle(self, invoice):
        draft = replace(invoice, status=InvoiceStatus.DRAFT, issued_on=None)

        assert mark_paid(draft, Payment(Decimal("500"), "gw-1", datetime(2026, 3, 1))).is_failure()
        issued = issue_invoice(draft, date(2026, 3, 2)).data
        assert issued.status == InvoiceStatus.ISSUED
        assert issued.issued_on == date(2026, 3, 2)
        assert issue_invoice(issued, date(2026, 3, 2)).error_code == ErrorCode.INVALID_TRANSITION

    def test_paid_invoice_cannot_be_cancelled(self, invoice):
        paid = mark_paid(invoice, Payment(Decimal("500"), "gw-1", datetime(2026, 3, 1))).data
        assert cancel_invoice(paid).error_code == ErrorCode.INVALID_TRANSITION
