"""
Component Test Fixtures for Communication Service

Provides in-memory repositories and mocked collaborators (client directory,
invoice source, channel sender, event bus) wired into the real services.
"""

import asyncio
import os
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.communication_service.audience_resolver import AudienceResolver
from microservices.communication_service.broadcast_service import BroadcastService
from microservices.communication_service.dispatcher import Dispatcher
from microservices.communication_service.events.publishers import CommunicationEventPublisher
from microservices.communication_service.keyed_locks import KeyedLocks
from microservices.communication_service.models import (
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
from microservices.communication_service.offer_service import OfferService
from microservices.communication_service.protocols import SendResult, TransportUnavailableError
from microservices.communication_service.reminder_scheduler import ReminderScheduler
from tests.contracts.communication.data_contract import CommunicationTestDataFactory


# ====================
# Mock Repositories
# ====================


class MockCommunicationRepository:
    """In-memory broadcast, outcome and offer storage. Stores copies like a real database."""

    def __init__(self):
        self.broadcasts: Dict[str, Broadcast] = {}
        self.outcomes: Dict[str, List[DeliveryOutcome]] = {}
        self.offers: Dict[str, Offer] = {}
        self.save_count = 0

    async def initialize(self):
        pass

    async def close(self):
        pass

    async def health_check(self) -> bool:
        return True

    # Broadcasts
    async def save_broadcast(self, broadcast: Broadcast) -> Broadcast:
        self.broadcasts[broadcast.broadcast_id] = broadcast.model_copy(deep=True)
        self.save_count += 1
        return broadcast

    async def get_broadcast(self, broadcast_id: str) -> Optional[Broadcast]:
        stored = self.broadcasts.get(broadcast_id)
        return stored.model_copy(deep=True) if stored else None

    async def delete_broadcast(self, broadcast_id: str) -> bool:
        return self.broadcasts.pop(broadcast_id, None) is not None

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
        results = list(self.broadcasts.values())
        if broadcast_type:
            results = [b for b in results if b.type == broadcast_type]
        if status:
            results = [b for b in results if b.status == status]
        if channel:
            results = [b for b in results if channel in b.channels]
        if approval_status:
            results = [b for b in results if b.approval.status.value == approval_status]
        if search:
            needle = search.lower()
            results = [
                b for b in results
                if needle in b.title.lower() or needle in (b.description or "").lower()
            ]
        if date_from:
            results = [b for b in results if b.created_at >= date_from]
        if date_to:
            results = [b for b in results if b.created_at <= date_to]

        results.sort(key=lambda b: b.created_at, reverse=True)
        page = results[offset: offset + limit]
        return [b.model_copy(deep=True) for b in page], len(results)

    async def list_due_broadcasts(self, now: datetime) -> List[Broadcast]:
        due = [
            b for b in self.broadcasts.values()
            if b.status == BroadcastStatus.SCHEDULED and b.schedule and b.schedule <= now
        ]
        due.sort(key=lambda b: b.schedule)
        return [b.model_copy(deep=True) for b in due]

    async def save_outcomes(self, broadcast_id: str, outcomes: List[DeliveryOutcome]) -> None:
        self.outcomes.setdefault(broadcast_id, []).extend(outcomes)

    async def list_outcomes(
        self, broadcast_id: str, limit: int = 100, offset: int = 0
    ) -> List[DeliveryOutcome]:
        items = sorted(
            self.outcomes.get(broadcast_id, []), key=lambda o: (o.client_id, o.channel.value)
        )
        return items[offset: offset + limit]

    # Offers
    async def save_offer(self, offer: Offer) -> Offer:
        self.offers[offer.offer_id] = offer.model_copy(deep=True)
        return offer

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        stored = self.offers.get(offer_id)
        return stored.model_copy(deep=True) if stored else None

    async def delete_offer(self, offer_id: str) -> bool:
        return self.offers.pop(offer_id, None) is not None

    async def list_offers(
        self,
        is_active: Optional[bool] = None,
        offer_type: Optional[OfferType] = None,
        product: Optional[ProductType] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Offer], int]:
        results = list(self.offers.values())
        if is_active is not None:
            results = [o for o in results if o.is_active == is_active]
        if offer_type:
            results = [o for o in results if o.type == offer_type]
        if product:
            results = [o for o in results if product in o.applicable_products]
        results.sort(key=lambda o: o.created_at, reverse=True)
        return results[offset: offset + limit], len(results)


class MockReminderLedger:
    """In-memory ledger with per-invoice locking and insert-if-absent"""

    def __init__(self):
        self.entries: Dict[Tuple[str, ReminderTier], ReminderLedgerEntry] = {}
        self._locks = KeyedLocks()

    def lock(self, invoice_id: str):
        return self._locks.hold(invoice_id)

    async def has_entry(self, invoice_id: str, tier: ReminderTier) -> bool:
        return (invoice_id, tier) in self.entries

    async def record_entry(self, entry: ReminderLedgerEntry) -> bool:
        key = (entry.invoice_id, entry.tier)
        if key in self.entries:
            return False
        self.entries[key] = entry
        return True

    async def get_entries(self, invoice_id: str) -> List[ReminderLedgerEntry]:
        found = [e for (inv, _), e in self.entries.items() if inv == invoice_id]
        return sorted(found, key=lambda e: e.tier.threshold_days)

    async def get_stats(self) -> ReminderStats:
        by_tier = {tier.value: 0 for tier in ReminderTier}
        for _, tier in self.entries:
            by_tier[tier.value] += 1
        return ReminderStats(
            total_reminders=len(self.entries),
            reminders_by_tier=by_tier,
            total_invoices_with_reminders=len({inv for inv, _ in self.entries}),
        )

    async def clear(self, invoice_id: Optional[str] = None) -> int:
        keys = [k for k in self.entries if invoice_id is None or k[0] == invoice_id]
        for key in keys:
            del self.entries[key]
        return len(keys)

    def tiers_for(self, invoice_id: str) -> List[ReminderTier]:
        return sorted(
            (tier for inv, tier in self.entries if inv == invoice_id),
            key=lambda t: t.threshold_days,
        )


# ====================
# Mock Collaborators
# ====================


class MockEventBus:
    """Mock NATS event bus"""

    def __init__(self):
        self.published_events: List[Any] = []
        self.is_connected = True

    async def publish_event(self, event) -> bool:
        self.published_events.append(event)
        return True

    def types(self) -> List[str]:
        return [e.type for e in self.published_events]

    def get_events_by_type(self, event_type: str) -> List[Any]:
        return [e for e in self.published_events if e.type == event_type]

    def clear(self):
        self.published_events = []


class MockClientDirectory:
    """Mock client record service"""

    def __init__(self, clients: Optional[List[ClientRecord]] = None):
        self.clients: Dict[str, ClientRecord] = {}
        for client in clients or []:
            self.add(client)
        self.list_calls = 0

    def add(self, client: ClientRecord) -> ClientRecord:
        self.clients[client.client_id] = client
        return client

    async def list_active_clients(self) -> List[ClientRecord]:
        self.list_calls += 1
        return [c for c in self.clients.values() if c.is_active]

    async def get_client(self, client_id: str) -> Optional[ClientRecord]:
        return self.clients.get(client_id)


class MockInvoiceSource:
    """Mock invoice service"""

    def __init__(self, invoices: Optional[List[InvoiceRecord]] = None):
        self.invoices: List[InvoiceRecord] = list(invoices or [])
        self.error: Optional[Exception] = None

    async def list_open_invoices(self) -> List[InvoiceRecord]:
        if self.error:
            raise self.error
        return list(self.invoices)


class MockChannelSender:
    """
    Mock channel gateway.

    - fail_addresses: sends to these addresses return ok=False
    - down_channels: sends over these channels raise TransportUnavailableError
    - error_addresses: sends to these addresses raise a generic error
    - delay: seconds each send takes, for concurrency tests
    """

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.fail_addresses: Set[str] = set()
        self.error_addresses: Set[str] = set()
        self.down_channels: Set[Channel] = set()
        self.delay: float = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, address: str, channel: Channel, subject: Optional[str], body: str) -> SendResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if channel in self.down_channels:
                raise TransportUnavailableError(channel)
            if address in self.error_addresses:
                raise RuntimeError(f"connection reset sending to {address}")
            if address in self.fail_addresses:
                return SendResult(ok=False, error="mailbox unavailable")
            self.sent.append({"address": address, "channel": channel, "subject": subject, "body": body})
            return SendResult(ok=True)
        finally:
            self.in_flight -= 1

    def sent_to(self, channel: Optional[Channel] = None) -> List[str]:
        return [s["address"] for s in self.sent if channel is None or s["channel"] == channel]


class FakeClock:
    """Settable clock shared by services under test"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# ====================
# Fixtures
# ====================


@pytest.fixture
def clock():
    return FakeClock(CommunicationTestDataFactory.NOW)


@pytest.fixture
def mock_repository():
    return MockCommunicationRepository()


@pytest.fixture
def mock_ledger():
    return MockReminderLedger()


@pytest.fixture
def mock_event_bus():
    return MockEventBus()


@pytest.fixture
def mock_directory():
    return MockClientDirectory()


@pytest.fixture
def mock_invoices():
    return MockInvoiceSource()


@pytest.fixture
def mock_sender():
    return MockChannelSender()


@pytest.fixture
def event_publisher(mock_event_bus):
    return CommunicationEventPublisher(mock_event_bus)


@pytest.fixture
def resolver(mock_directory):
    return AudienceResolver(mock_directory)


@pytest.fixture
def dispatcher(resolver, mock_sender):
    return Dispatcher(resolver=resolver, sender=mock_sender, fan_out_limit=5)


@pytest.fixture
def broadcast_service(mock_repository, resolver, dispatcher, event_publisher, clock):
    return BroadcastService(
        repository=mock_repository,
        resolver=resolver,
        dispatcher=dispatcher,
        event_publisher=event_publisher,
        clock=clock,
        channel_unit_cost={"email": 0.1, "sms": 0.5, "whatsapp": 0.3},
    )


@pytest.fixture
def offer_service(mock_repository, resolver, event_publisher, clock):
    return OfferService(
        repository=mock_repository,
        resolver=resolver,
        event_publisher=event_publisher,
        clock=clock,
    )


@pytest.fixture
def reminder_scheduler(mock_ledger, mock_invoices, resolver, dispatcher, event_publisher, clock):
    return ReminderScheduler(
        ledger=mock_ledger,
        invoice_source=mock_invoices,
        resolver=resolver,
        dispatcher=dispatcher,
        interval_seconds=3600,
        clock=clock,
        event_publisher=event_publisher,
    )
