"""
Payment reminder templates

Subject and body per escalation tier, parameterized by client name,
invoice number, amount and days overdue.
"""

from decimal import Decimal
from typing import Dict, Tuple

from .dispatcher import RenderedMessage
from .models import ReminderTier

TEMPLATES: Dict[ReminderTier, Tuple[str, str]] = {
    ReminderTier.FIRST_REMINDER: (
        "Payment Reminder - Invoice {invoice_number}",
        "Dear {client_name},\n\n"
        "This is a friendly reminder that payment for Invoice {invoice_number} ({amount}) "
        "was due {days_label} ago.\n\n"
        "Please process the payment at your earliest convenience.\n\n"
        "Thank you for your business.",
    ),
    ReminderTier.SECOND_REMINDER: (
        "Second Payment Reminder - Invoice {invoice_number}",
        "Dear {client_name},\n\n"
        "Payment for Invoice {invoice_number} ({amount}) is now {days} days overdue.\n\n"
        "Please contact us if there are any issues with this payment.\n\n"
        "Immediate attention to this matter would be appreciated.",
    ),
    ReminderTier.FINAL_REMINDER: (
        "Final Payment Reminder - Invoice {invoice_number}",
        "Dear {client_name},\n\n"
        "This is a final reminder that payment for Invoice {invoice_number} ({amount}) "
        "is now {days} days overdue.\n\n"
        "Please process this payment immediately to avoid any service interruption.\n\n"
        "If payment has already been made, please disregard this notice.",
    ),
    ReminderTier.ESCALATION: (
        "Urgent: Overdue Payment - Invoice {invoice_number}",
        "Dear {client_name},\n\n"
        "Invoice {invoice_number} ({amount}) is now {days} days overdue.\n\n"
        "This matter requires immediate attention. Please contact our accounts "
        "department to resolve this issue.\n\n"
        "Further action may be taken if payment is not received soon.",
    ),
}


class ReminderTemplates:
    """Renders tier-specific reminder messages"""

    def __init__(self, currency_symbol: str = "₹"):
        self.currency_symbol = currency_symbol

    def format_amount(self, amount: Decimal) -> str:
        return f"{self.currency_symbol}{Decimal(amount):,.2f}"

    def render(
        self,
        tier: ReminderTier,
        client_name: str,
        invoice_number: str,
        amount: Decimal,
        days_overdue: int,
    ) -> RenderedMessage:
        subject, body = TEMPLATES[tier]
        values = {
            "client_name": client_name or "Valued Client",
            "invoice_number": invoice_number,
            "amount": self.format_amount(amount),
            "days": days_overdue,
            "days_label": "1 day" if days_overdue == 1 else f"{days_overdue} days",
        }
        return RenderedMessage(subject=subject.format(**values), body=body.format(**values))


__all__ = ["ReminderTemplates", "TEMPLATES"]
