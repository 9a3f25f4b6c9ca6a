#!/usr/bin/env python3
"""Communication engine configuration

Tunables for broadcasts, dispatch fan-out and the payment-reminder scheduler.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, List

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default

def _list(val: str, default: List[str]) -> List[str]:
    items = [item.strip() for item in (val or "").split(",") if item.strip()]
    return items or list(default)


@dataclass
class CommunicationConfig:
    """Communication service settings"""

    service_name: str = "communication_service"
    service_port: int = 8260

    # ===========================================
    # Reminder Scheduler
    # ===========================================
    reminder_interval_seconds: int = 3600
    reminder_autostart: bool = True
    reminder_channels: List[str] = field(default_factory=lambda: ["email", "whatsapp"])
    currency_symbol: str = "₹"

    # ===========================================
    # Broadcast dispatch
    # ===========================================
    broadcast_poll_interval_seconds: int = 60
    dispatch_fan_out_limit: int = 10
    send_timeout_seconds: float = 30.0
    channel_unit_cost: Dict[str, float] = field(
        default_factory=lambda: {"email": 0.1, "sms": 0.5, "whatsapp": 0.3}
    )

    # ===========================================
    # Collaborators
    # ===========================================
    channel_sender_url: str = "http://localhost:8208"
    client_directory_service: str = "client_service"
    client_directory_port: int = 8270
    invoice_service: str = "invoice_service"
    invoice_port: int = 8271

    @classmethod
    def from_env(cls) -> 'CommunicationConfig':
        """Load communication configuration from environment variables"""
        return cls(
            service_name=os.getenv("SERVICE_NAME", "communication_service"),
            service_port=_int(os.getenv("SERVICE_PORT", "8260"), 8260),

            reminder_interval_seconds=_int(os.getenv("REMINDER_INTERVAL_SECONDS", "3600"), 3600),
            reminder_autostart=_bool(os.getenv("REMINDER_AUTOSTART", "true")),
            reminder_channels=_list(os.getenv("REMINDER_CHANNELS", ""), ["email", "whatsapp"]),
            currency_symbol=os.getenv("CURRENCY_SYMBOL", "₹"),

            broadcast_poll_interval_seconds=_int(os.getenv("BROADCAST_POLL_INTERVAL_SECONDS", "60"), 60),
            dispatch_fan_out_limit=_int(os.getenv("DISPATCH_FAN_OUT_LIMIT", "10"), 10),
            send_timeout_seconds=_float(os.getenv("SEND_TIMEOUT_SECONDS", "30"), 30.0),
            channel_unit_cost={
                "email": _float(os.getenv("EMAIL_UNIT_COST", "0.1"), 0.1),
                "sms": _float(os.getenv("SMS_UNIT_COST", "0.5"), 0.5),
                "whatsapp": _float(os.getenv("WHATSAPP_UNIT_COST", "0.3"), 0.3),
            },

            channel_sender_url=os.getenv("CHANNEL_SENDER_URL", "http://localhost:8208"),
            client_directory_service=os.getenv("CLIENT_DIRECTORY_SERVICE", "client_service"),
            client_directory_port=_int(os.getenv("CLIENT_DIRECTORY_PORT", "8270"), 8270),
            invoice_service=os.getenv("INVOICE_SERVICE", "invoice_service"),
            invoice_port=_int(os.getenv("INVOICE_PORT", "8271"), 8271),
        )
