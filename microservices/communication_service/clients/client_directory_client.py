"""
Client Directory Client

Reads client records (contact addresses, segmentation attributes and
communication preferences) from the client record service.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from core.service_client_base import BaseServiceClient

from ..models import ClientRecord

logger = logging.getLogger(__name__)


class ClientDirectoryClient(BaseServiceClient):
    """Client for the client record service"""

    service_name = "client_service"
    default_port = 8270
    env_url_key = "CLIENT_SERVICE_URL"
    page_size = 200

    async def list_active_clients(self) -> List[ClientRecord]:
        """All active clients, following pagination"""
        clients: List[ClientRecord] = []
        page = 1
        while True:
            response = await self.get(
                "/api/v1/clients",
                params={"status": "active", "page": page, "limit": self.page_size},
            )
            response.raise_for_status()
            items = response.json().get("items", [])
            clients.extend(record for record in map(self._parse, items) if record)
            if len(items) < self.page_size:
                break
            page += 1

        logger.debug(f"Loaded {len(clients)} active clients")
        return clients

    async def get_client(self, client_id: str) -> Optional[ClientRecord]:
        try:
            response = await self.get(f"/api/v1/clients/{client_id}")
            response.raise_for_status()
            return self._parse(response.json())
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            logger.error(f"Error getting client {client_id}: {e.response.text}")
            raise

    @staticmethod
    def _parse(raw: Dict[str, Any]) -> Optional[ClientRecord]:
        data = dict(raw)
        if "client_id" not in data and "id" in data:
            data["client_id"] = str(data["id"])
        if "is_active" not in data and "status" in data:
            data["is_active"] = str(data["status"]).lower() == "active"
        try:
            return ClientRecord.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Skipping malformed client record {data.get('client_id')}: {e}")
            return None


__all__ = ["ClientDirectoryClient"]
