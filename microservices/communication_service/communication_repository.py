"""
Communication Service Data Repository

Data access layer - PostgreSQL (Async) for broadcasts, delivery outcomes
and offers. Each aggregate is stored as a JSONB document alongside the
scalar columns used for filtering.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from core.postgres_client import PostgresClient

from .models import (
    Broadcast,
    BroadcastStatus,
    BroadcastType,
    Channel,
    DeliveryOutcome,
    Offer,
    OfferType,
    ProductType,
)
from .protocols import RepositoryError

logger = logging.getLogger(__name__)


class CommunicationRepository:
    """Broadcast and offer repository - PostgreSQL (Async)"""

    def __init__(self, db: PostgresClient, schema: str = "communication"):
        self.db = db
        self.schema = schema

        # Table names
        self.broadcasts_table = "broadcasts"
        self.outcomes_table = "delivery_outcomes"
        self.offers_table = "offers"

    async def initialize(self):
        """Initialize database connection"""
        await self.db.connect()
        logger.info("Communication repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Communication repository database connection closed")

    async def health_check(self) -> bool:
        """Check repository health"""
        return await self.db.health_check()

    # ====================
    # Broadcasts
    # ====================

    async def save_broadcast(self, broadcast: Broadcast) -> Broadcast:
        """Insert or replace a broadcast"""
        query = f'''
            INSERT INTO {self.schema}.{self.broadcasts_table} (
                broadcast_id, title, description, broadcast_type, status,
                approval_status, channels, schedule, created_by,
                created_at, updated_at, document
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            ON CONFLICT (broadcast_id) DO UPDATE SET
                title = EXCLUDED.title,
                description = EXCLUDED.description,
                broadcast_type = EXCLUDED.broadcast_type,
                status = EXCLUDED.status,
                approval_status = EXCLUDED.approval_status,
                channels = EXCLUDED.channels,
                schedule = EXCLUDED.schedule,
                updated_at = EXCLUDED.updated_at,
                document = EXCLUDED.document
        '''
        params = [
            broadcast.broadcast_id,
            broadcast.title,
            broadcast.description,
            broadcast.type.value,
            broadcast.status.value,
            broadcast.approval.status.value,
            [c.value for c in broadcast.channels],
            broadcast.schedule,
            broadcast.created_by,
            broadcast.created_at,
            broadcast.updated_at,
            broadcast.model_dump(mode="json"),
        ]
        try:
            await self.db.execute(query, params)
        except Exception as e:
            logger.error(f"Failed to save broadcast {broadcast.broadcast_id}: {e}")
            raise RepositoryError(f"Failed to save broadcast: {e}") from e
        return broadcast

    async def get_broadcast(self, broadcast_id: str) -> Optional[Broadcast]:
        query = f'''
            SELECT document FROM {self.schema}.{self.broadcasts_table}
            WHERE broadcast_id = $1
        '''
        row = await self.db.query_row(query, [broadcast_id])
        return self._row_to_broadcast(row) if row else None

    async def delete_broadcast(self, broadcast_id: str) -> bool:
        query = f'DELETE FROM {self.schema}.{self.broadcasts_table} WHERE broadcast_id = $1'
        result = await self.db.execute(query, [broadcast_id])
        return _affected_rows(result) > 0

    async def list_broadcasts(
        self,
        broadcast_type: Optional[BroadcastType] = None,
        status: Optional[BroadcastStatus] = None,
        channel: Optional[Channel] = None,
        approval_status: Optional[str] = None,
        search: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Broadcast], int]:
        conditions = []
        params: List[Any] = []

        def add(condition: str, value: Any) -> None:
            params.append(value)
            conditions.append(condition.format(n=len(params)))

        if broadcast_type:
            add("broadcast_type = ${n}", broadcast_type.value)
        if status:
            add("status = ${n}", status.value)
        if channel:
            add("${n} = ANY(channels)", channel.value)
        if approval_status:
            add("approval_status = ${n}", approval_status)
        if search:
            add("(title ILIKE ${n} OR description ILIKE ${n})", f"%{search}%")
        if date_from:
            add("created_at >= ${n}", date_from)
        if date_to:
            add("created_at <= ${n}", date_to)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        count_row = await self.db.query_row(
            f'SELECT COUNT(*) AS total FROM {self.schema}.{self.broadcasts_table} {where}',
            params,
        )
        total = count_row["total"] if count_row else 0

        page_params = params + [limit, offset]
        rows = await self.db.query(
            f'''
                SELECT document FROM {self.schema}.{self.broadcasts_table} {where}
                ORDER BY created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
            ''',
            page_params,
        )
        return [self._row_to_broadcast(row) for row in rows], total

    async def list_due_broadcasts(self, now: datetime) -> List[Broadcast]:
        query = f'''
            SELECT document FROM {self.schema}.{self.broadcasts_table}
            WHERE status = $1 AND schedule <= $2
            ORDER BY schedule ASC
        '''
        rows = await self.db.query(query, [BroadcastStatus.SCHEDULED.value, now])
        return [self._row_to_broadcast(row) for row in rows]

    # ====================
    # Delivery Outcomes
    # ====================

    async def save_outcomes(self, broadcast_id: str, outcomes: List[DeliveryOutcome]) -> None:
        if not outcomes:
            return
        query = f'''
            INSERT INTO {self.schema}.{self.outcomes_table} (
                broadcast_id, client_id, channel, address, status,
                variant, error, attempted_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        '''
        await self.db.execute_many(
            query,
            [
                [
                    broadcast_id,
                    o.client_id,
                    o.channel.value,
                    o.address,
                    o.status.value,
                    o.variant,
                    o.error,
                    o.attempted_at,
                ]
                for o in outcomes
            ],
        )

    async def list_outcomes(
        self, broadcast_id: str, limit: int = 100, offset: int = 0
    ) -> List[DeliveryOutcome]:
        query = f'''
            SELECT broadcast_id, client_id, channel, address, status,
                   variant, error, attempted_at
            FROM {self.schema}.{self.outcomes_table}
            WHERE broadcast_id = $1
            ORDER BY client_id, channel
            LIMIT $2 OFFSET $3
        '''
        rows = await self.db.query(query, [broadcast_id, limit, offset])
        return [DeliveryOutcome.model_validate(row) for row in rows]

    # ====================
    # Offers
    # ====================

    async def save_offer(self, offer: Offer) -> Offer:
        query = f'''
            INSERT INTO {self.schema}.{self.offers_table} (
                offer_id, title, offer_type, is_active, products,
                valid_from, valid_until, created_at, updated_at, document
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            ON CONFLICT (offer_id) DO UPDATE SET
                title = EXCLUDED.title,
                offer_type = EXCLUDED.offer_type,
                is_active = EXCLUDED.is_active,
                products = EXCLUDED.products,
                valid_from = EXCLUDED.valid_from,
                valid_until = EXCLUDED.valid_until,
                updated_at = EXCLUDED.updated_at,
                document = EXCLUDED.document
        '''
        params = [
            offer.offer_id,
            offer.title,
            offer.type.value,
            offer.is_active,
            [p.value for p in offer.applicable_products],
            offer.valid_from,
            offer.valid_until,
            offer.created_at,
            offer.updated_at,
            offer.model_dump(mode="json"),
        ]
        try:
            await self.db.execute(query, params)
        except Exception as e:
            logger.error(f"Failed to save offer {offer.offer_id}: {e}")
            raise RepositoryError(f"Failed to save offer: {e}") from e
        return offer

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        row = await self.db.query_row(
            f'SELECT document FROM {self.schema}.{self.offers_table} WHERE offer_id = $1',
            [offer_id],
        )
        return Offer.model_validate(row["document"]) if row else None

    async def delete_offer(self, offer_id: str) -> bool:
        result = await self.db.execute(
            f'DELETE FROM {self.schema}.{self.offers_table} WHERE offer_id = $1',
            [offer_id],
        )
        return _affected_rows(result) > 0

    async def list_offers(
        self,
        is_active: Optional[bool] = None,
        offer_type: Optional[OfferType] = None,
        product: Optional[ProductType] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Offer], int]:
        conditions = []
        params: List[Any] = []
        if is_active is not None:
            params.append(is_active)
            conditions.append(f"is_active = ${len(params)}")
        if offer_type:
            params.append(offer_type.value)
            conditions.append(f"offer_type = ${len(params)}")
        if product:
            params.append(product.value)
            conditions.append(f"${len(params)} = ANY(products)")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        count_row = await self.db.query_row(
            f'SELECT COUNT(*) AS total FROM {self.schema}.{self.offers_table} {where}',
            params,
        )
        rows = await self.db.query(
            f'''
                SELECT document FROM {self.schema}.{self.offers_table} {where}
                ORDER BY created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
            ''',
            params + [limit, offset],
        )
        total = count_row["total"] if count_row else 0
        return [Offer.model_validate(row["document"]) for row in rows], total

    # ====================
    # Helpers
    # ====================

    def _row_to_broadcast(self, row: Dict[str, Any]) -> Broadcast:
        """Convert database row to Broadcast model"""
        return Broadcast.model_validate(row["document"])


def _affected_rows(status: Optional[str]) -> int:
    """Row count from an asyncpg command tag such as 'DELETE 3'"""
    try:
        return int((status or "").split()[-1])
    except (IndexError, ValueError):
        return 0


__all__ = ["CommunicationRepository"]
