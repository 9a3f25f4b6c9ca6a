#!/usr/bin/env python3
"""
Core Module for the Communication Engine

Shared infrastructure components used by the communication microservice.

COMPONENTS:
    - config/: Dataclass configuration loaded from environment (dotenv)
    - config_manager.py: Per-service settings and service discovery
    - consul_registry.py: Consul discovery client
    - logging_setup.py: Root logging configuration
    - postgres_client.py: asyncpg connection pool wrapper
    - nats_client.py: NATS JetStream event bus

USAGE:
    from core.config_manager import ConfigManager
    from core.postgres_client import PostgresClient

    config = ConfigManager("communication_service")
    db = PostgresClient.from_config(config)
"""

from .config_manager import ConfigManager

__all__ = [
    "ConfigManager",
]

__version__ = "2.0.0"
