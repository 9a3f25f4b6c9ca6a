"""
Channel Sender Client

Generic send primitive over the messaging gateway. The gateway hides the
concrete email, SMS and WhatsApp providers.
"""

import logging
from typing import Optional

import httpx

from core.service_client_base import BaseServiceClient

from ..models import Channel
from ..protocols import SendResult, TransportUnavailableError

logger = logging.getLogger(__name__)


class ChannelSenderClient(BaseServiceClient):
    """Client for the messaging gateway"""

    service_name = "messaging_gateway"
    default_port = 8208
    env_url_key = "CHANNEL_SENDER_URL"

    async def send(
        self,
        address: str,
        channel: Channel,
        subject: Optional[str],
        body: str,
    ) -> SendResult:
        payload = {"channel": channel.value, "to": address, "body": body}
        if subject:
            payload["subject"] = subject

        try:
            response = await self.post("/api/v1/messages", json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise TransportUnavailableError(channel, f"Gateway unreachable for {channel.value}: {e}") from e

        if response.status_code == 503:
            raise TransportUnavailableError(channel, f"Gateway reports {channel.value} unavailable")
        if response.is_success:
            return SendResult(ok=True)

        logger.debug(f"Gateway rejected {channel.value} send to {address}: {response.status_code}")
        return SendResult(ok=False, error=f"HTTP {response.status_code}: {response.text[:200]}")


__all__ = ["ChannelSenderClient"]
