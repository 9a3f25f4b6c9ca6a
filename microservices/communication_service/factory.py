"""
Communication Service Factory

Factory for creating communication service components with proper dependency injection.
"""

import logging
from typing import List, Optional

from core.config_manager import ConfigManager
from core.nats_client import NATSEventBus
from core.postgres_client import PostgresClient

from .audience_resolver import AudienceResolver
from .broadcast_poller import BroadcastDuePoller
from .broadcast_service import BroadcastService
from .clients.channel_sender_client import ChannelSenderClient
from .clients.client_directory_client import ClientDirectoryClient
from .clients.invoice_client import InvoiceClient
from .communication_repository import CommunicationRepository
from .dispatcher import Dispatcher
from .events.publishers import CommunicationEventPublisher
from .models import Channel
from .offer_service import OfferService
from .reminder_ledger import ReminderLedgerRepository
from .reminder_scheduler import ReminderScheduler
from .reminder_templates import ReminderTemplates

logger = logging.getLogger(__name__)


class CommunicationServiceFactory:
    """Factory for creating communication service components"""

    def __init__(self, config: Optional[ConfigManager] = None):
        self.config = config or ConfigManager("communication_service")
        self._db: Optional[PostgresClient] = None
        self._repository: Optional[CommunicationRepository] = None
        self._ledger: Optional[ReminderLedgerRepository] = None
        self._nats_client: Optional[NATSEventBus] = None
        self._event_publisher: Optional[CommunicationEventPublisher] = None
        self._client_directory: Optional[ClientDirectoryClient] = None
        self._invoice_client: Optional[InvoiceClient] = None
        self._channel_sender: Optional[ChannelSenderClient] = None
        self._service: Optional[BroadcastService] = None
        self._offer_service: Optional[OfferService] = None
        self._reminder_scheduler: Optional[ReminderScheduler] = None
        self._broadcast_poller: Optional[BroadcastDuePoller] = None

    async def initialize(self, start_workers: Optional[bool] = None) -> None:
        """Initialize all components"""
        logger.info("Initializing Communication Service components...")
        settings = self.config.settings.communication

        # Initialize storage
        self._db = PostgresClient.from_config(self.config)
        self._repository = CommunicationRepository(self._db)
        await self._repository.initialize()
        self._ledger = ReminderLedgerRepository(self._db)

        # Initialize NATS client
        try:
            self._nats_client = NATSEventBus(
                service_name="communication_service",
                config=self.config,
            )
            await self._nats_client.connect()
            logger.info("NATS client connected")
        except Exception as e:
            logger.warning(f"NATS client initialization failed: {e}")
            self._nats_client = None
        self._event_publisher = CommunicationEventPublisher(self._nats_client)

        # Initialize collaborator clients
        self._client_directory = ClientDirectoryClient(
            self.config,
            service_name=settings.client_directory_service,
            default_port=settings.client_directory_port,
        )
        self._invoice_client = InvoiceClient(
            self.config,
            service_name=settings.invoice_service,
            default_port=settings.invoice_port,
        )
        self._channel_sender = ChannelSenderClient(
            self.config,
            base_url=settings.channel_sender_url,
            timeout=settings.send_timeout_seconds,
        )

        # Initialize engine
        resolver = AudienceResolver(self._client_directory)
        dispatcher = Dispatcher(
            resolver=resolver,
            sender=self._channel_sender,
            fan_out_limit=settings.dispatch_fan_out_limit,
            send_timeout=settings.send_timeout_seconds,
        )

        self._service = BroadcastService(
            repository=self._repository,
            resolver=resolver,
            dispatcher=dispatcher,
            event_publisher=self._event_publisher,
            channel_unit_cost=settings.channel_unit_cost,
        )
        self._offer_service = OfferService(
            repository=self._repository,
            resolver=resolver,
            event_publisher=self._event_publisher,
        )
        self._reminder_scheduler = ReminderScheduler(
            ledger=self._ledger,
            invoice_source=self._invoice_client,
            resolver=resolver,
            dispatcher=dispatcher,
            templates=ReminderTemplates(settings.currency_symbol),
            channels=self._reminder_channels(settings.reminder_channels),
            interval_seconds=settings.reminder_interval_seconds,
            event_publisher=self._event_publisher,
        )
        self._broadcast_poller = BroadcastDuePoller(
            service=self._service,
            interval_seconds=settings.broadcast_poll_interval_seconds,
        )

        if start_workers is None:
            start_workers = settings.reminder_autostart
        if start_workers:
            self._reminder_scheduler.start()
            self._broadcast_poller.start()

        logger.info("Communication Service components initialized")

    @staticmethod
    def _reminder_channels(names: List[str]) -> List[Channel]:
        channels = []
        for name in names:
            try:
                channels.append(Channel(name))
            except ValueError:
                logger.warning(f"Ignoring unknown reminder channel: {name}")
        return channels or [Channel.EMAIL, Channel.WHATSAPP]

    async def close(self) -> None:
        """Close all components"""
        logger.info("Closing Communication Service components...")

        if self._broadcast_poller:
            await self._broadcast_poller.stop()

        if self._reminder_scheduler:
            await self._reminder_scheduler.stop()

        for client in (self._client_directory, self._invoice_client, self._channel_sender):
            if client:
                await client.close()

        if self._nats_client:
            await self._nats_client.close()

        if self._repository:
            await self._repository.close()

        logger.info("Communication Service components closed")

    @property
    def repository(self) -> CommunicationRepository:
        """Get communication repository"""
        if not self._repository:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._repository

    @property
    def ledger(self) -> ReminderLedgerRepository:
        """Get reminder ledger"""
        if not self._ledger:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._ledger

    @property
    def service(self) -> BroadcastService:
        """Get broadcast service"""
        if not self._service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._service

    @property
    def offer_service(self) -> OfferService:
        """Get offer service"""
        if not self._offer_service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._offer_service

    @property
    def reminder_scheduler(self) -> ReminderScheduler:
        """Get reminder scheduler"""
        if not self._reminder_scheduler:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._reminder_scheduler

    @property
    def broadcast_poller(self) -> BroadcastDuePoller:
        """Get scheduled-broadcast poller"""
        if not self._broadcast_poller:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._broadcast_poller

    @property
    def nats_client(self) -> Optional[NATSEventBus]:
        """Get NATS client"""
        return self._nats_client

    @property
    def event_publisher(self) -> Optional[CommunicationEventPublisher]:
        """Get event publisher"""
        return self._event_publisher


# Global factory instance
_factory: Optional[CommunicationServiceFactory] = None


async def get_factory() -> CommunicationServiceFactory:
    """Get or create factory instance"""
    global _factory
    if _factory is None:
        _factory = CommunicationServiceFactory()
        await _factory.initialize()
    return _factory


async def close_factory() -> None:
    """Close factory instance"""
    global _factory
    if _factory:
        await _factory.close()
        _factory = None


__all__ = [
    "CommunicationServiceFactory",
    "get_factory",
    "close_factory",
]
