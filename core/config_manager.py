"""
Configuration Manager

Per-service access to settings plus host/port discovery for infrastructure
and collaborator services.

Discovery priority: environment variables -> Consul -> default fallback.
"""

import logging
import os
from typing import Optional, Tuple

from .config import AppSettings, get_settings

logger = logging.getLogger(__name__)


class ConfigManager:
    """Configuration access for a single service"""

    def __init__(self, service_name: str, settings: Optional[AppSettings] = None):
        self.service_name = service_name
        self.settings = settings or get_settings()
        self._consul = None

    @property
    def consul(self):
        """Lazily created Consul registry, None when discovery is disabled"""
        if self._consul is None and self.settings.infra.consul_enabled:
            from .consul_registry import ConsulRegistry
            self._consul = ConsulRegistry(
                service_name=self.service_name,
                consul_host=self.settings.infra.consul_host,
                consul_port=self.settings.infra.consul_port,
            )
        return self._consul

    def discover_service(
        self,
        service_name: str,
        default_host: str = "localhost",
        default_port: int = 80,
        env_host_key: Optional[str] = None,
        env_port_key: Optional[str] = None,
    ) -> Tuple[str, int]:
        """
        Resolve host and port for a service.

        Args:
            service_name: Name registered in Consul
            default_host: Fallback host
            default_port: Fallback port
            env_host_key: Environment variable overriding the host
            env_port_key: Environment variable overriding the port

        Returns:
            (host, port) tuple
        """
        env_host = os.getenv(env_host_key) if env_host_key else None
        env_port = os.getenv(env_port_key) if env_port_key else None
        if env_host:
            port = int(env_port) if env_port else default_port
            logger.debug(f"Resolved {service_name} from environment: {env_host}:{port}")
            return env_host, port

        if self.consul is not None:
            instance = self.consul.get_service_instance(service_name)
            if instance:
                logger.debug(f"Resolved {service_name} from Consul: {instance['address']}:{instance['port']}")
                return instance["address"], int(instance["port"])
            logger.warning(f"{service_name} not found in Consul, using default {default_host}:{default_port}")

        return default_host, default_port

    def service_url(self, service_name: str, default_port: int, env_url_key: Optional[str] = None) -> str:
        """Base URL for an HTTP collaborator"""
        if env_url_key and os.getenv(env_url_key):
            return os.getenv(env_url_key).rstrip("/")
        host, port = self.discover_service(
            service_name=service_name,
            default_host="localhost",
            default_port=default_port,
        )
        return f"http://{host}:{port}"
