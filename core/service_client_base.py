"""
Base Service Client for Collaborator Communication

Base class for HTTP clients of collaborator services (client records,
invoices, channel gateway). Handles discovery, a shared httpx client and
timeouts.
"""

import logging
from abc import ABC
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class BaseServiceClient(ABC):
    """
    Collaborator client base class.

    Usage:
        class InvoiceClient(BaseServiceClient):
            service_name = "invoice_service"
            default_port = 8271

            async def list_open_invoices(self):
                response = await self.get("/api/v1/invoices", params={"status": "open"})
                return response.json()
    """

    # Subclasses define these
    service_name: str = None
    default_port: int = None
    env_url_key: Optional[str] = None

    def __init__(
        self,
        config=None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        service_name: Optional[str] = None,
        default_port: Optional[int] = None,
    ):
        if service_name:
            self.service_name = service_name
        if default_port:
            self.default_port = default_port
        if not self.service_name:
            raise ValueError(f"{self.__class__.__name__} must define 'service_name'")

        if base_url:
            self.base_url = base_url.rstrip('/')
        else:
            self.base_url = self._discover_service(config)

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=self._build_default_headers(),
            transport=transport,
        )
        logger.debug(f"Initialized {self.service_name} client: {self.base_url}")

    def _discover_service(self, config) -> str:
        """Resolve the base URL, falling back to localhost"""
        try:
            if config is None:
                from core.config_manager import ConfigManager
                config = ConfigManager(self.service_name)
            return config.service_url(self.service_name, self.default_port, self.env_url_key)
        except Exception as e:
            default_url = f"http://localhost:{self.default_port}" if self.default_port else "http://localhost:8000"
            logger.warning(
                f"Service discovery failed for {self.service_name}, "
                f"using default: {default_url}. Error: {e}"
            )
            return default_url

    def _build_default_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": f"communication-service/{self.service_name}",
        }

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()
        logger.debug(f"Closed {self.service_name} client")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ========================================
    # HTTP helpers
    # ========================================

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        return await self.client.get(path, params=params, headers=headers)

    async def post(
        self,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        return await self.client.post(path, json=json, headers=headers)

    async def health_check(self) -> bool:
        try:
            response = await self.get("/health")
            return response.status_code == 200
        except Exception as e:
            logger.warning(f"{self.service_name} health check failed: {e}")
            return False


__all__ = ["BaseServiceClient"]
