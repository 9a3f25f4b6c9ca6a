"""
Consul Service Registry Module

Registers the communication service with Consul and looks up healthy
collaborator instances (client records, invoices, messaging gateway).
"""

import logging
import os
import random
import socket
from typing import Any, Dict, List, Optional

import consul

logger = logging.getLogger(__name__)


class ConsulRegistry:
    """Handles service registration and discovery with Consul"""

    def __init__(
        self,
        service_name: Optional[str] = None,
        service_port: Optional[int] = None,
        consul_host: str = "localhost",
        consul_port: int = 8500,
        service_host: Optional[str] = None,
        tags: Optional[List[str]] = None,
        meta: Optional[Dict[str, str]] = None,
    ):
        """
        Args:
            service_name: Name to register under (discovery-only when omitted)
            service_port: Port the service listens on
            consul_host: Consul agent host
            consul_port: Consul agent port
            service_host: Advertised host, defaults to SERVICE_HOST / HOSTNAME
            tags: Service tags
            meta: Route metadata for the gateway
        """
        self.consul = consul.Consul(host=consul_host, port=consul_port)
        self.service_name = service_name
        self.service_port = service_port
        self.tags = tags or []
        self.meta = meta or {}
        self.check_interval = "15s"
        self.deregister_after = "90s"

        if service_host and service_host != "0.0.0.0":
            self.service_host = service_host
        else:
            self.service_host = os.getenv("SERVICE_HOST") or os.getenv("HOSTNAME", socket.gethostname())

        if service_name and service_port is not None:
            self.service_id = f"{service_name}-{self.service_host}-{service_port}"
        else:
            self.service_id = None

    # ====================
    # Registration
    # ====================

    def register(self) -> bool:
        """Register service with an HTTP health check"""
        if not self.service_id:
            raise ValueError("service_name and service_port are required for registration")
        try:
            check = consul.Check.http(
                f"http://{self.service_host}:{self.service_port}/health",
                interval=self.check_interval,
                timeout="5s",
                deregister=self.deregister_after,
            )
            self.consul.agent.service.register(
                name=self.service_name,
                service_id=self.service_id,
                address=self.service_host,
                port=self.service_port,
                tags=self.tags,
                meta=self.meta,
                check=check,
            )
            logger.info(
                f"Service registered with Consul: {self.service_name} "
                f"({self.service_id}) at {self.service_host}:{self.service_port}"
            )
            return True
        except Exception as e:
            logger.error(f"Failed to register service with Consul: {e}")
            return False

    def deregister(self) -> bool:
        """Deregister service from Consul"""
        if not self.service_id:
            return False
        try:
            self.consul.agent.service.deregister(self.service_id)
            logger.info(f"Service deregistered from Consul: {self.service_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to deregister service from Consul: {e}")
            return False

    # ====================
    # Discovery
    # ====================

    def discover_service(self, service_name: str) -> List[Dict[str, Any]]:
        """Discover healthy instances of a service"""
        try:
            index, services = self.consul.health.service(service_name, passing=True)

            instances = []
            for service in services:
                instances.append({
                    'id': service['Service']['ID'],
                    'address': service['Service']['Address'],
                    'port': service['Service']['Port'],
                    'tags': service['Service'].get('Tags', []),
                })
            return instances
        except Exception as e:
            logger.error(f"Failed to discover service {service_name}: {e}")
            return []

    def get_service_instance(self, service_name: str) -> Optional[Dict[str, Any]]:
        """Pick one healthy instance, preferring instances tagged 'preferred'"""
        instances = self.discover_service(service_name)
        if not instances:
            return None

        preferred = [inst for inst in instances if 'preferred' in inst.get('tags', [])]
        return random.choice(preferred or instances)

    def get_service_endpoint(self, service_name: str) -> Optional[str]:
        instance = self.get_service_instance(service_name)
        if not instance:
            return None
        return f"http://{instance['address']}:{instance['port']}"
