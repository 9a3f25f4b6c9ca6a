"""
NATS JetStream Client for Python Microservices

Event envelope and a JetStream publisher built on nats-py. Event types are
owned by each service as a closed Enum; the bus only accepts Enum members.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Set, TYPE_CHECKING

import nats
from nats.js.errors import BadRequestError
from tenacity import retry, stop_after_attempt, wait_exponential

if TYPE_CHECKING:
    from core.config_manager import ConfigManager

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: Enum,
        source: str,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        if not isinstance(event_type, Enum):
            raise TypeError(f"event_type must be an Enum member, got {type(event_type).__name__}")
        self.id = str(uuid.uuid4())
        self.type = event_type.value
        self.source = source
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


class NATSEventBus:
    """
    NATS JetStream event bus.

    Streams are named after the first segment of the event type
    (broadcast.sent -> broadcast-stream) and created on first use.
    """

    def __init__(
        self,
        service_name: str,
        config: Optional["ConfigManager"] = None,
        servers: Optional[str] = None,
    ):
        from core.config_manager import ConfigManager

        self.service_name = service_name

        # Priority: explicit servers -> environment / Consul -> default
        if servers is None:
            if config is None:
                config = ConfigManager(service_name)
            infra = config.settings.infra
            if infra.nats_url:
                servers = infra.nats_url
            else:
                host, port = config.discover_service(
                    service_name="nats",
                    default_host=infra.nats_host,
                    default_port=infra.nats_port,
                    env_host_key="NATS_HOST",
                    env_port_key="NATS_PORT",
                )
                servers = f"nats://{host}:{port}"

        self.servers = servers
        self._nc = None
        self._js = None
        self._streams: Set[str] = set()

        logger.info(f"NATS EventBus initialized: {self.servers}")

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.5, max=5), reraise=True)
    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(servers=self.servers, name=self.service_name)
            self._js = self._nc.jetstream()
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    @staticmethod
    def _stream_name_for_event(event_type: str) -> str:
        return f"{event_type.split('.')[0]}-stream"

    async def _ensure_stream(self, stream_name: str, subject_prefix: str) -> None:
        if stream_name in self._streams:
            return
        try:
            await self._js.add_stream(name=stream_name, subjects=[f"{subject_prefix}.>"])
        except BadRequestError as e:
            # Stream already exists with a compatible config
            logger.debug(f"Stream creation note: {e}")
        self._streams.add(stream_name)

    async def publish_event(self, event: Event) -> bool:
        """Publish an event to its JetStream stream"""
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            stream_name = self._stream_name_for_event(event.type)
            await self._ensure_stream(stream_name, event.type.split('.')[0])

            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            ack = await self._js.publish(event.type, data, stream=stream_name)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True
        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def close(self):
        """Drain and close the NATS connection"""
        if self._nc is not None:
            await self._nc.drain()
            self._nc = None
            self._js = None
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected


__all__ = ["DecimalEncoder", "Event", "NATSEventBus"]
