"""
Communication Service Events

Event types, payloads and the NATS publisher for communication_service.
"""

from .models import (
    CommunicationEventType,
    BroadcastEventData,
    BroadcastDispatchEventData,
    ReminderSentEventData,
    ReminderScanCompletedEventData,
    OfferEventData,
)
from .publishers import CommunicationEventPublisher

__all__ = [
    "CommunicationEventType",
    "BroadcastEventData",
    "BroadcastDispatchEventData",
    "ReminderSentEventData",
    "ReminderScanCompletedEventData",
    "OfferEventData",
    "CommunicationEventPublisher",
]
