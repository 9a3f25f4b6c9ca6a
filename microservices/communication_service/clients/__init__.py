"""
Communication Service Clients

Clients for collaborator services.
"""

from .client_directory_client import ClientDirectoryClient
from .invoice_client import InvoiceClient
from .channel_sender_client import ChannelSenderClient

__all__ = [
    "ClientDirectoryClient",
    "InvoiceClient",
    "ChannelSenderClient",
]
