"""
Communication Event Publishers

Publishes events to NATS JetStream.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from core.nats_client import Event

from ..models import Broadcast, BroadcastStatus, DispatchResult, Offer, utc_now
from .models import (
    STATUS_EVENTS,
    BroadcastDispatchEventData,
    BroadcastEventData,
    CommunicationEventType,
    OfferEventData,
    ReminderScanCompletedEventData,
    ReminderSentEventData,
)

logger = logging.getLogger(__name__)


class CommunicationEventPublisher:
    """Publisher for communication service events"""

    def __init__(self, event_bus=None, source: str = "communication_service"):
        self.event_bus = event_bus
        self.source = source

    async def publish(
        self,
        event_type: CommunicationEventType,
        data: Dict[str, Any],
    ) -> bool:
        """
        Publish an event.

        Args:
            event_type: Member of CommunicationEventType
            data: Event data payload

        Returns:
            True if published successfully, False otherwise
        """
        if not isinstance(event_type, CommunicationEventType):
            raise ValueError(f"Unknown communication event type: {event_type!r}")

        if not self.event_bus:
            logger.debug(f"Event bus not configured, skipping publish: {event_type.value}")
            return False

        try:
            event = Event(event_type=event_type, source=self.source, data=data)
            published = await self.event_bus.publish_event(event)
            logger.debug(f"Published event: {event_type.value}")
            return bool(published)
        except Exception as e:
            logger.error(f"Failed to publish event {event_type.value}: {e}")
            return False

    async def _publish_model(self, event_type: CommunicationEventType, payload: BaseModel) -> bool:
        return await self.publish(event_type, payload.model_dump(mode="json"))

    # ====================
    # Broadcast Events
    # ====================

    async def publish_broadcast_event(
        self,
        event_type: CommunicationEventType,
        broadcast: Broadcast,
        previous_status: Optional[BroadcastStatus] = None,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
        warnings: Optional[List[str]] = None,
    ) -> bool:
        payload = BroadcastEventData(
            broadcast_id=broadcast.broadcast_id,
            title=broadcast.title,
            broadcast_type=broadcast.type.value,
            status=broadcast.status.value,
            previous_status=previous_status.value if previous_status else None,
            actor=actor,
            reason=reason,
            warnings=warnings or [],
            timestamp=utc_now(),
        )
        return await self._publish_model(event_type, payload)

    async def publish_transition(
        self,
        broadcast: Broadcast,
        previous_status: BroadcastStatus,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
        warnings: Optional[List[str]] = None,
    ) -> bool:
        """Publish the lifecycle event for the broadcast's current status"""
        event_type = STATUS_EVENTS[broadcast.status.value]
        return await self.publish_broadcast_event(
            event_type, broadcast, previous_status, actor, reason, warnings
        )

    async def publish_dispatch_finished(self, broadcast: Broadcast, result: Optional[DispatchResult]) -> bool:
        event_type = (
            CommunicationEventType.BROADCAST_SENT
            if broadcast.status == BroadcastStatus.SENT
            else CommunicationEventType.BROADCAST_FAILED
        )
        payload = BroadcastDispatchEventData(
            broadcast_id=broadcast.broadcast_id,
            status=broadcast.status.value,
            total_recipients=broadcast.stats.total_recipients,
            sent_count=broadcast.stats.sent_count,
            failed_count=broadcast.stats.failed_count,
            empty_audience=broadcast.stats.empty_audience,
            unavailable_channels=[c.value for c in result.unavailable_channels] if result else [],
            timestamp=utc_now(),
        )
        return await self._publish_model(event_type, payload)

    # ====================
    # Reminder Events
    # ====================

    async def publish_reminder_sent(self, payload: ReminderSentEventData) -> bool:
        return await self._publish_model(CommunicationEventType.REMINDER_SENT, payload)

    async def publish_scan_completed(self, payload: ReminderScanCompletedEventData) -> bool:
        return await self._publish_model(CommunicationEventType.REMINDER_SCAN_COMPLETED, payload)

    # ====================
    # Offer Events
    # ====================

    async def publish_offer_event(
        self,
        event_type: CommunicationEventType,
        offer: Offer,
        actor: Optional[str] = None,
    ) -> bool:
        payload = OfferEventData(
            offer_id=offer.offer_id,
            title=offer.title,
            offer_type=offer.type.value,
            is_active=offer.is_active,
            actor=actor,
            timestamp=utc_now(),
        )
        return await self._publish_model(event_type, payload)


__all__ = ["CommunicationEventPublisher"]
