"""
Invoice Client

Reads open invoices (status, due date, amount, client link) for the
reminder scheduler.
"""

import logging
from typing import List

from pydantic import ValidationError

from core.service_client_base import BaseServiceClient

from ..models import CLOSED_INVOICE_STATUSES, InvoiceRecord

logger = logging.getLogger(__name__)


class InvoiceClient(BaseServiceClient):
    """Client for the invoice service"""

    service_name = "invoice_service"
    default_port = 8271
    env_url_key = "INVOICE_SERVICE_URL"
    page_size = 500

    async def list_open_invoices(self) -> List[InvoiceRecord]:
        """Invoices that are neither paid nor cancelled"""
        invoices: List[InvoiceRecord] = []
        page = 1
        while True:
            response = await self.get(
                "/api/v1/invoices",
                params={"exclude_status": "paid,cancelled", "page": page, "limit": self.page_size},
            )
            response.raise_for_status()
            items = response.json().get("items", [])
            for raw in items:
                try:
                    invoice = InvoiceRecord.model_validate(raw)
                except ValidationError as e:
                    logger.warning(f"Skipping malformed invoice {raw.get('invoice_id')}: {e}")
                    continue
                if invoice.status not in CLOSED_INVOICE_STATUSES:
                    invoices.append(invoice)
            if len(items) < self.page_size:
                break
            page += 1

        logger.debug(f"Loaded {len(invoices)} open invoices")
        return invoices


__all__ = ["InvoiceClient"]
