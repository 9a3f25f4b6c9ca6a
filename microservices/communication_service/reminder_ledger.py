"""
Reminder Ledger

Durable record of which escalation tier was sent for which invoice. An
entry for (invoice_id, tier) is the only signal that the tier must never be
sent again. Locking is per invoice: an in-process asyncio lock plus a
Postgres transaction-scoped advisory lock for other service instances.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from core.postgres_client import PostgresClient

from .keyed_locks import KeyedLocks
from .models import ReminderLedgerEntry, ReminderStats, ReminderTier

logger = logging.getLogger(__name__)


class ReminderLedgerRepository:
    """Reminder ledger - PostgreSQL (Async)"""

    def __init__(self, db: PostgresClient, schema: str = "communication"):
        self.db = db
        self.schema = schema
        self.table = "reminder_ledger"
        self._locks = KeyedLocks()

    @asynccontextmanager
    async def lock(self, invoice_id: str) -> AsyncIterator[None]:
        """Serialize reminder processing for one invoice"""
        async with self._locks.hold(invoice_id):
            async with self.db.transaction() as conn:
                await conn.execute(
                    "SELECT pg_advisory_xact_lock(hashtext($1))",
                    f"reminder:{invoice_id}",
                )
                yield

    async def has_entry(self, invoice_id: str, tier: ReminderTier) -> bool:
        row = await self.db.query_row(
            f'''
                SELECT 1 AS present FROM {self.schema}.{self.table}
                WHERE invoice_id = $1 AND tier = $2
            ''',
            [invoice_id, tier.value],
        )
        return row is not None

    async def record_entry(self, entry: ReminderLedgerEntry) -> bool:
        """Insert unless an entry for the key exists. Returns True when inserted."""
        row = await self.db.query_row(
            f'''
                INSERT INTO {self.schema}.{self.table} (
                    invoice_id, tier, sent_at, outcome, channel_results
                ) VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (invoice_id, tier) DO NOTHING
                RETURNING invoice_id
            ''',
            [
                entry.invoice_id,
                entry.tier.value,
                entry.sent_at,
                entry.outcome,
                entry.channel_results,
            ],
        )
        if row is None:
            logger.warning(f"Ledger entry already present for {entry.invoice_id}/{entry.tier.value}")
            return False
        logger.info(f"Ledger entry recorded for {entry.invoice_id}/{entry.tier.value}: {entry.outcome}")
        return True

    async def get_entries(self, invoice_id: str) -> List[ReminderLedgerEntry]:
        rows = await self.db.query(
            f'''
                SELECT invoice_id, tier, sent_at, outcome, channel_results
                FROM {self.schema}.{self.table}
                WHERE invoice_id = $1
                ORDER BY sent_at ASC
            ''',
            [invoice_id],
        )
        return [ReminderLedgerEntry.model_validate(row) for row in rows]

    async def get_stats(self) -> ReminderStats:
        rows = await self.db.query(
            f'SELECT tier, COUNT(*) AS total FROM {self.schema}.{self.table} GROUP BY tier'
        )
        invoices = await self.db.query_row(
            f'SELECT COUNT(DISTINCT invoice_id) AS total FROM {self.schema}.{self.table}'
        )
        by_tier = {tier.value: 0 for tier in ReminderTier}
        for row in rows:
            by_tier[row["tier"]] = row["total"]
        return ReminderStats(
            total_reminders=sum(by_tier.values()),
            reminders_by_tier=by_tier,
            total_invoices_with_reminders=invoices["total"] if invoices else 0,
        )

    async def clear(self, invoice_id: Optional[str] = None) -> int:
        if invoice_id:
            status = await self.db.execute(
                f'DELETE FROM {self.schema}.{self.table} WHERE invoice_id = $1', [invoice_id]
            )
        else:
            status = await self.db.execute(f'DELETE FROM {self.schema}.{self.table}')
        try:
            removed = int((status or "").split()[-1])
        except (IndexError, ValueError):
            removed = 0
        logger.warning(f"Reminder ledger cleared ({invoice_id or 'all invoices'}): {removed} entries removed")
        return removed


__all__ = ["ReminderLedgerRepository"]
