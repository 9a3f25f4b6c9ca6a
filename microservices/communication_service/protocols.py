"""
Communication Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncContextManager, Dict, List, Optional, Protocol, Tuple

from .models import (
    Broadcast,
    BroadcastStatus,
    BroadcastType,
    Channel,
    ClientRecord,
    DeliveryOutcome,
    InvoiceRecord,
    Offer,
    OfferType,
    ProductType,
    ReminderLedgerEntry,
    ReminderStats,
    ReminderTier,
)


# ====================
# Repository Protocols
# ====================


class BroadcastRepositoryProtocol(Protocol):
    """Protocol for broadcast persistence"""

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def health_check(self) -> bool:
        ...

    async def save_broadcast(self, broadcast: Broadcast) -> Broadcast:
        """Insert or replace a broadcast"""
        ...

    async def get_broadcast(self, broadcast_id: str) -> Optional[Broadcast]:
        ...

    async def delete_broadcast(self, broadcast_id: str) -> bool:
        ...

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
        """List broadcasts newest first, returning (page, total)"""
        ...

    async def list_due_broadcasts(self, now: datetime) -> List[Broadcast]:
        """Scheduled broadcasts whose schedule is at or before now"""
        ...

    async def save_outcomes(self, broadcast_id: str, outcomes: List[DeliveryOutcome]) -> None:
        ...

    async def list_outcomes(
        self, broadcast_id: str, limit: int = 100, offset: int = 0
    ) -> List[DeliveryOutcome]:
        ...


class OfferRepositoryProtocol(Protocol):
    """Protocol for offer persistence"""

    async def save_offer(self, offer: Offer) -> Offer:
        ...

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        ...

    async def delete_offer(self, offer_id: str) -> bool:
        ...

    async def list_offers(
        self,
        is_active: Optional[bool] = None,
        offer_type: Optional[OfferType] = None,
        product: Optional[ProductType] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Offer], int]:
        ...


class ReminderLedgerProtocol(Protocol):
    """
    Durable at-most-once record of reminder tiers.

    record_entry must insert only when no entry exists for
    (invoice_id, tier) and report whether it inserted.
    """

    def lock(self, invoice_id: str) -> AsyncContextManager[None]:
        """Serialize processing of one invoice"""
        ...

    async def has_entry(self, invoice_id: str, tier: ReminderTier) -> bool:
        ...

    async def record_entry(self, entry: ReminderLedgerEntry) -> bool:
        ...

    async def get_entries(self, invoice_id: str) -> List[ReminderLedgerEntry]:
        ...

    async def get_stats(self) -> ReminderStats:
        ...

    async def clear(self, invoice_id: Optional[str] = None) -> int:
        """Delete entries for one invoice, or all entries. Returns rows removed."""
        ...


# ====================
# Collaborator Protocols
# ====================


@dataclass
class SendResult:
    """Outcome of a single channel send"""
    ok: bool
    error: Optional[str] = None


class ClientDirectoryProtocol(Protocol):
    """Client record lookup"""

    async def list_active_clients(self) -> List[ClientRecord]:
        ...

    async def get_client(self, client_id: str) -> Optional[ClientRecord]:
        ...


class InvoiceSourceProtocol(Protocol):
    """Invoice lookup"""

    async def list_open_invoices(self) -> List[InvoiceRecord]:
        """Invoices not yet paid or cancelled"""
        ...


class ChannelSenderProtocol(Protocol):
    """
    Generic send primitive.

    Returns SendResult for per-message outcomes; raises
    TransportUnavailableError when the whole channel is down.
    """

    async def send(
        self,
        address: str,
        channel: Channel,
        subject: Optional[str],
        body: str,
    ) -> SendResult:
        ...


class EventBusProtocol(Protocol):
    """Protocol for event publishing"""

    async def publish_event(self, event: Any) -> bool:
        ...


# ====================
# Exceptions
# ====================


class CommunicationServiceError(Exception):
    """Base exception for communication service errors"""
    pass


class BroadcastNotFoundError(CommunicationServiceError):
    """Raised when broadcast is not found"""
    pass


class OfferNotFoundError(CommunicationServiceError):
    """Raised when offer is not found"""
    pass


class CommunicationValidationError(CommunicationServiceError):
    """Raised when broadcast, offer or targeting input is malformed"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidTransitionError(CommunicationServiceError):
    """Raised when a lifecycle transition is not allowed"""

    def __init__(
        self,
        message: str,
        current_status: Optional[BroadcastStatus] = None,
        target_status: Optional[BroadcastStatus] = None,
    ):
        super().__init__(message)
        self.current_status = current_status
        self.target_status = target_status


class PartialDeliveryFailure(CommunicationServiceError):
    """Some sends failed during a dispatch. Recorded, never raised to callers."""

    def __init__(self, failed: int, total: int, errors: Optional[Dict[str, str]] = None):
        super().__init__(f"{failed} of {total} deliveries failed")
        self.failed = failed
        self.total = total
        self.errors = errors or {}


class TransportUnavailableError(CommunicationServiceError):
    """Raised by a channel sender when the whole channel is down"""

    def __init__(self, channel: Channel, message: Optional[str] = None):
        super().__init__(message or f"Transport unavailable for channel {channel.value}")
        self.channel = channel


class SchedulerFault(CommunicationServiceError):
    """Internal error during a background scan"""
    pass


class RepositoryError(CommunicationServiceError):
    """Raised when storage access fails"""
    pass


__all__ = [
    "BroadcastRepositoryProtocol",
    "OfferRepositoryProtocol",
    "ReminderLedgerProtocol",
    "ClientDirectoryProtocol",
    "InvoiceSourceProtocol",
    "ChannelSenderProtocol",
    "EventBusProtocol",
    "SendResult",
    "CommunicationServiceError",
    "BroadcastNotFoundError",
    "OfferNotFoundError",
    "CommunicationValidationError",
    "InvalidTransitionError",
    "PartialDeliveryFailure",
    "TransportUnavailableError",
    "SchedulerFault",
    "RepositoryError",
]
