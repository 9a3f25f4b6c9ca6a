"""
Reminder Scheduler

Finds overdue invoices on every tick and sends each escalation tier that is
due and not yet in the ledger. All missed tiers are backfilled in ascending
order, so an invoice first seen at 19 days overdue receives the first,
second and final reminders in one scan.
"""

import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Sequence

from .audience_resolver import AudienceResolver
from .dispatcher import Dispatcher, RenderedMessage
from .events.models import ReminderScanCompletedEventData, ReminderSentEventData
from .events.publishers import CommunicationEventPublisher
from .models import (
    Channel,
    DeliveryStatus,
    InvoiceRecord,
    PAYMENT_DUE_CATEGORY,
    REMINDER_THRESHOLDS,
    ReminderLedgerEntry,
    ReminderStats,
    ReminderTier,
    ScanReport,
    utc_now,
)
from .periodic_worker import PeriodicWorker
from .protocols import InvoiceSourceProtocol, ReminderLedgerProtocol
from .reminder_templates import ReminderTemplates

logger = logging.getLogger(__name__)

# Ledger outcomes
OUTCOME_SENT = "sent"
OUTCOME_PARTIAL = "partial"
OUTCOME_FAILED = "failed"
OUTCOME_NO_CHANNELS = "no_eligible_channels"


def due_tiers(days_past_due: int) -> List[ReminderTier]:
    """Tiers whose threshold has been reached, ascending"""
    return [
        tier
        for tier, threshold in sorted(REMINDER_THRESHOLDS.items(), key=lambda item: item[1])
        if threshold <= days_past_due
    ]


class ReminderScheduler(PeriodicWorker):
    """Periodic payment-reminder escalation"""

    name = "reminder_scheduler"

    def __init__(
        self,
        ledger: ReminderLedgerProtocol,
        invoice_source: InvoiceSourceProtocol,
        resolver: AudienceResolver,
        dispatcher: Dispatcher,
        templates: Optional[ReminderTemplates] = None,
        channels: Sequence[Channel] = (Channel.EMAIL, Channel.WHATSAPP),
        interval_seconds: float = 3600,
        clock: Callable[[], datetime] = utc_now,
        event_publisher: Optional[CommunicationEventPublisher] = None,
    ):
        super().__init__(interval_seconds=interval_seconds, clock=clock)
        self.ledger = ledger
        self.invoice_source = invoice_source
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.templates = templates or ReminderTemplates()
        self.channels = list(channels)
        self.event_publisher = event_publisher

    async def run_once(self) -> ScanReport:
        """Scan every open invoice once"""
        now = self.clock()
        today = now.date()
        report = ScanReport(started_at=now)

        invoices = await self.invoice_source.list_open_invoices()
        report.invoices_scanned = len(invoices)

        for invoice in invoices:
            if not invoice.is_overdue(today):
                continue
            report.overdue_invoices += 1
            try:
                report.reminders_sent += await self.process_invoice(invoice, today)
            except Exception as e:
                # One broken invoice must not stop the scan
                report.invoice_errors += 1
                logger.exception(f"Reminder processing failed for invoice {invoice.invoice_id}: {e}")

        report.finished_at = self.clock()
        logger.info(
            f"Reminder scan complete: scanned={report.invoices_scanned} "
            f"overdue={report.overdue_invoices} sent={report.reminders_sent} "
            f"errors={report.invoice_errors}"
        )
        if self.event_publisher:
            await self.event_publisher.publish_scan_completed(
                ReminderScanCompletedEventData(
                    invoices_scanned=report.invoices_scanned,
                    overdue_invoices=report.overdue_invoices,
                    reminders_sent=report.reminders_sent,
                    invoice_errors=report.invoice_errors,
                    timestamp=report.finished_at,
                )
            )
        return report

    async def process_invoice(self, invoice: InvoiceRecord, today: date) -> int:
        """Send every due, unrecorded tier for one invoice. Returns tiers recorded."""
        days = invoice.days_past_due(today)
        tiers = due_tiers(days)
        if not tiers:
            return 0

        recorded = 0
        async with self.ledger.lock(invoice.invoice_id):
            for tier in tiers:
                if await self.ledger.has_entry(invoice.invoice_id, tier):
                    continue
                entry = await self._send_tier(invoice, tier, days)
                if await self.ledger.record_entry(entry):
                    recorded += 1
                    await self._publish_sent(invoice, entry, days)
        return recorded

    async def _send_tier(self, invoice: InvoiceRecord, tier: ReminderTier, days: int) -> ReminderLedgerEntry:
        plans = await self.resolver.plans_for_client(
            invoice.client_id, self.channels, PAYMENT_DUE_CATEGORY
        )
        if not plans:
            logger.warning(
                f"No eligible channel for {tier.value} on invoice {invoice.invoice_number} "
                f"(client {invoice.client_id})"
            )
            return ReminderLedgerEntry(
                invoice_id=invoice.invoice_id,
                tier=tier,
                sent_at=self.clock(),
                outcome=OUTCOME_NO_CHANNELS,
            )

        client = plans[0].client
        message = self.templates.render(
            tier,
            client_name=client.name if client else "",
            invoice_number=invoice.invoice_number,
            amount=invoice.total,
            days_overdue=days,
        )
        result = await self.dispatcher.deliver(plans, lambda plan, variant: message)

        channel_results: Dict[str, str] = {}
        for outcome in result.outcomes:
            if outcome.status == DeliveryStatus.SENT:
                channel_results[outcome.channel.value] = "sent"
            else:
                channel_results[outcome.channel.value] = f"failed: {outcome.error}"

        if result.failed == 0:
            summary = OUTCOME_SENT
        elif result.sent:
            summary = OUTCOME_PARTIAL
        else:
            summary = OUTCOME_FAILED

        logger.info(
            f"Sent {tier.value} for invoice {invoice.invoice_number} "
            f"({days} days overdue): {summary} {channel_results}"
        )
        return ReminderLedgerEntry(
            invoice_id=invoice.invoice_id,
            tier=tier,
            sent_at=self.clock(),
            outcome=summary,
            channel_results=channel_results,
        )

    async def _publish_sent(self, invoice: InvoiceRecord, entry: ReminderLedgerEntry, days: int) -> None:
        if not self.event_publisher:
            return
        await self.event_publisher.publish_reminder_sent(
            ReminderSentEventData(
                invoice_id=invoice.invoice_id,
                invoice_number=invoice.invoice_number,
                client_id=invoice.client_id,
                tier=entry.tier.value,
                days_past_due=days,
                outcome=entry.outcome,
                channel_results=entry.channel_results,
                timestamp=entry.sent_at,
            )
        )

    async def stats(self) -> ReminderStats:
        """Aggregate ledger counts by tier"""
        return await self.ledger.get_stats()

    async def ledger_for_invoice(self, invoice_id: str) -> List[ReminderLedgerEntry]:
        return await self.ledger.get_entries(invoice_id)

    async def clear_ledger(self, invoice_id: Optional[str] = None) -> int:
        """Destructive reset of sent-tier history"""
        async with self._run_lock:
            return await self.ledger.clear(invoice_id)


__all__ = ["ReminderScheduler", "due_tiers"]
