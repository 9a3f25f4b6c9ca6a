#!/usr/bin/env python3
"""Modular configuration system for the communication engine

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS, Consul)
- communication_config: Broadcast dispatch and reminder scheduler settings
- logging_config: Logging configuration
"""
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .logging_config import LoggingConfig
from .infra_config import InfraConfig
from .communication_config import CommunicationConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)


@dataclass
class AppSettings:
    """Aggregate of all configuration sections"""
    logging: LoggingConfig
    infra: InfraConfig
    communication: CommunicationConfig

    @classmethod
    def from_env(cls) -> 'AppSettings':
        return cls(
            logging=LoggingConfig.from_env(),
            infra=InfraConfig.from_env(),
            communication=CommunicationConfig.from_env(),
        )


# Create global settings instance
settings = AppSettings.from_env()

def get_settings() -> AppSettings:
    """Get global settings instance"""
    return settings

def reload_settings() -> AppSettings:
    """Reload settings from environment"""
    global settings
    settings = AppSettings.from_env()
    return settings

__all__ = [
    'AppSettings',
    'get_settings',
    'reload_settings',
    'settings',
    'LoggingConfig',
    'InfraConfig',
    'CommunicationConfig',
]
