"""
Unit Tests for Reminder Tier Selection

Thresholds, days-past-due arithmetic and overdue detection.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from microservices.communication_service.models import (
    REMINDER_THRESHOLDS,
    InvoiceRecord,
    InvoiceStatus,
    ReminderTier,
)
from microservices.communication_service.reminder_scheduler import due_tiers

TODAY = date(2024, 6, 15)


def make_invoice(days_overdue: int, status: InvoiceStatus = InvoiceStatus.SENT) -> InvoiceRecord:
    return InvoiceRecord(
        invoice_id="inv_1",
        invoice_number="INV-1",
        client_id="cli_1",
        total=Decimal("100"),
        due_date=TODAY - timedelta(days=days_overdue),
        status=status,
    )


class TestThresholds:

    def test_threshold_values(self):
        assert REMINDER_THRESHOLDS == {
            ReminderTier.FIRST_REMINDER: 1,
            ReminderTier.SECOND_REMINDER: 7,
            ReminderTier.FINAL_REMINDER: 14,
            ReminderTier.ESCALATION: 30,
        }

    def test_tier_threshold_property(self):
        assert ReminderTier.ESCALATION.threshold_days == 30


class TestDueTiers:
    """Every tier at or below days past due, ascending"""

    @pytest.mark.parametrize(
        "days, expected",
        [
            (0, []),
            (1, [ReminderTier.FIRST_REMINDER]),
            (6, [ReminderTier.FIRST_REMINDER]),
            (7, [ReminderTier.FIRST_REMINDER, ReminderTier.SECOND_REMINDER]),
            (
                19,
                [
                    ReminderTier.FIRST_REMINDER,
                    ReminderTier.SECOND_REMINDER,
                    ReminderTier.FINAL_REMINDER,
                ],
            ),
            (40, list(REMINDER_THRESHOLDS)),
        ],
    )
    def test_due_tiers(self, days, expected):
        assert due_tiers(days) == expected

    def test_backfill_is_ascending(self):
        tiers = due_tiers(365)
        assert [t.threshold_days for t in tiers] == sorted(t.threshold_days for t in tiers)


class TestInvoiceOverdue:

    def test_days_past_due_is_calendar_difference(self):
        assert make_invoice(19).days_past_due(TODAY) == 19

    def test_not_yet_due_is_zero(self):
        invoice = make_invoice(-5)
        assert invoice.days_past_due(TODAY) == 0
        assert not invoice.is_overdue(TODAY)

    def test_due_today_is_not_overdue(self):
        assert not make_invoice(0).is_overdue(TODAY)

    def test_open_invoice_past_due_is_overdue(self):
        assert make_invoice(3).is_overdue(TODAY)

    @pytest.mark.parametrize("status", [InvoiceStatus.PAID, InvoiceStatus.CANCELLED])
    def test_closed_invoice_never_overdue(self, status):
        assert not make_invoice(45, status=status).is_overdue(TODAY)

    def test_partially_paid_invoice_is_overdue(self):
        assert make_invoice(10, status=InvoiceStatus.PARTIAL).is_overdue(TODAY)
