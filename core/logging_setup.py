"""
Logging setup

Configures the root logger once from LoggingConfig. Modules log through
logging.getLogger(__name__).
"""

import logging
from typing import Optional

from .config import LoggingConfig

_configured = False


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure root logging handlers"""
    global _configured
    if _configured:
        return

    config = config or LoggingConfig.from_env()
    handlers = []
    if config.enable_console:
        handlers.append(logging.StreamHandler())
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=config.log_format,
        handlers=handlers or None,
    )
    _configured = True
    logging.getLogger(__name__).debug(
        f"Logging configured for {config.service_name} ({config.environment}) at {config.log_level}"
    )
