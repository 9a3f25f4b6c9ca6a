"""
Communication Event Data Models

Closed set of event types published by communication_service and their
payload structures.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Event Type Definitions
# =============================================================================


class CommunicationEventType(str, Enum):
    """
    Events published by communication_service.

    This is the complete set; the publisher rejects anything else.
    """
    # Broadcast lifecycle
    BROADCAST_CREATED = "broadcast.created"
    BROADCAST_UPDATED = "broadcast.updated"
    BROADCAST_DELETED = "broadcast.deleted"
    BROADCAST_SUBMITTED = "broadcast.submitted"
    BROADCAST_APPROVED = "broadcast.approved"
    BROADCAST_REJECTED = "broadcast.rejected"
    BROADCAST_SCHEDULED = "broadcast.scheduled"
    BROADCAST_SENDING = "broadcast.sending"
    BROADCAST_SENT = "broadcast.sent"
    BROADCAST_FAILED = "broadcast.failed"

    # Payment reminders
    REMINDER_SENT = "reminder.sent"
    REMINDER_SCAN_COMPLETED = "reminder.scan_completed"

    # Offers
    OFFER_CREATED = "offer.created"
    OFFER_UPDATED = "offer.updated"
    OFFER_DELETED = "offer.deleted"


# Lifecycle event emitted when a broadcast enters each status
STATUS_EVENTS = {
    "pending_approval": CommunicationEventType.BROADCAST_SUBMITTED,
    "approved": CommunicationEventType.BROADCAST_APPROVED,
    "rejected": CommunicationEventType.BROADCAST_REJECTED,
    "scheduled": CommunicationEventType.BROADCAST_SCHEDULED,
    "sending": CommunicationEventType.BROADCAST_SENDING,
    "sent": CommunicationEventType.BROADCAST_SENT,
    "failed": CommunicationEventType.BROADCAST_FAILED,
}


# =============================================================================
# Event Data Models
# =============================================================================


class BroadcastEventData(BaseModel):
    """Payload for broadcast lifecycle events"""
    broadcast_id: str
    title: str
    broadcast_type: str
    status: str
    previous_status: Optional[str] = None
    actor: Optional[str] = None
    reason: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    timestamp: datetime


class BroadcastDispatchEventData(BaseModel):
    """Payload for broadcast.sent / broadcast.failed"""
    broadcast_id: str
    status: str
    total_recipients: int
    sent_count: int
    failed_count: int
    empty_audience: bool = False
    unavailable_channels: List[str] = Field(default_factory=list)
    timestamp: datetime


class ReminderSentEventData(BaseModel):
    invoice_id: str
    invoice_number: str
    client_id: str
    tier: str
    days_past_due: int
    outcome: str
    channel_results: Dict[str, str] = Field(default_factory=dict)
    timestamp: datetime


class ReminderScanCompletedEventData(BaseModel):
    invoices_scanned: int
    overdue_invoices: int
    reminders_sent: int
    invoice_errors: int
    timestamp: datetime


class OfferEventData(BaseModel):
    offer_id: str
    title: str
    offer_type: str
    is_active: bool
    actor: Optional[str] = None
    timestamp: datetime
