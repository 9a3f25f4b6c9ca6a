"""
Offer Service

CRUD for targeted incentives plus an audience preview over email.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError

from .audience_resolver import AudienceResolver
from .events.models import CommunicationEventType
from .events.publishers import CommunicationEventPublisher
from .models import (
    Channel,
    EligibleClientsResponse,
    Offer,
    OfferCreateRequest,
    OfferListResponse,
    OfferType,
    OfferUpdateRequest,
    OfferView,
    ProductType,
    utc_now,
)
from .protocols import (
    CommunicationValidationError,
    OfferNotFoundError,
    OfferRepositoryProtocol,
)

logger = logging.getLogger(__name__)

OFFER_CATEGORY = "offer"


class OfferService:
    """Offer business logic layer"""

    MAX_PAGE_SIZE = 100

    def __init__(
        self,
        repository: OfferRepositoryProtocol,
        resolver: Optional[AudienceResolver] = None,
        event_publisher: Optional[CommunicationEventPublisher] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.resolver = resolver
        self.event_publisher = event_publisher
        self.clock = clock

    def view(self, offer: Offer) -> OfferView:
        return OfferView.from_offer(offer, self.clock())

    async def create_offer(self, request: OfferCreateRequest, created_by: str) -> Offer:
        now = self.clock()
        data = request.model_dump()
        data["valid_from"] = data.get("valid_from") or now
        offer = self._build(
            {**data, "created_by": created_by, "created_at": now, "updated_at": now}
        )
        await self.repository.save_offer(offer)
        logger.info(f"Created offer {offer.offer_id} '{offer.title}' by {created_by}")

        await self._publish(CommunicationEventType.OFFER_CREATED, offer, created_by)
        return offer

    async def get_offer(self, offer_id: str) -> Offer:
        offer = await self.repository.get_offer(offer_id)
        if not offer:
            raise OfferNotFoundError(f"Offer not found: {offer_id}")
        return offer

    async def list_offers(
        self,
        is_active: Optional[bool] = None,
        offer_type: Optional[OfferType] = None,
        product: Optional[ProductType] = None,
        page: int = 1,
        limit: int = 20,
    ) -> OfferListResponse:
        page = max(1, page)
        limit = max(1, min(limit, self.MAX_PAGE_SIZE))
        offers, total = await self.repository.list_offers(
            is_active=is_active,
            offer_type=offer_type,
            product=product,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return OfferListResponse(
            items=[self.view(offer) for offer in offers],
            total=total,
            page=page,
            limit=limit,
        )

    async def update_offer(self, offer_id: str, request: OfferUpdateRequest, actor: str) -> Offer:
        offer = await self.get_offer(offer_id)
        changes = request.model_dump(exclude_unset=True)
        if not changes:
            return offer

        data = offer.model_dump()
        # Switching discount kind clears the other one
        if changes.get("discount_percentage") is not None and "discount_amount" not in changes:
            data["discount_amount"] = None
        if changes.get("discount_amount") is not None and "discount_percentage" not in changes:
            data["discount_percentage"] = None

        updated = self._build({**data, **changes, "updated_at": self.clock()})
        await self.repository.save_offer(updated)
        logger.info(f"Updated offer {offer_id} fields {sorted(changes)} by {actor}")

        await self._publish(CommunicationEventType.OFFER_UPDATED, updated, actor)
        return updated

    async def delete_offer(self, offer_id: str, actor: str) -> bool:
        offer = await self.get_offer(offer_id)
        deleted = await self.repository.delete_offer(offer_id)
        if deleted:
            logger.info(f"Deleted offer {offer_id} by {actor}")
            await self._publish(CommunicationEventType.OFFER_DELETED, offer, actor)
        return deleted

    async def eligible_clients(self, offer_id: str, include_recipients: bool = True) -> EligibleClientsResponse:
        """Clients the offer would reach by email"""
        if self.resolver is None:
            raise RuntimeError("Audience resolver not configured")
        offer = await self.get_offer(offer_id)
        return await self.resolver.preview(
            offer.target_audience,
            [Channel.EMAIL],
            OFFER_CATEGORY,
            include_recipients=include_recipients,
        )

    def _build(self, data: dict) -> Offer:
        try:
            return Offer.model_validate(data)
        except ValidationError as e:
            errors = e.errors()
            message = errors[0]["msg"] if errors else str(e)
            field = str(errors[0]["loc"][0]) if errors and errors[0].get("loc") else None
            raise CommunicationValidationError(message, field) from e

    async def _publish(self, event_type: CommunicationEventType, offer: Offer, actor: str) -> None:
        if self.event_publisher:
            await self.event_publisher.publish_offer_event(event_type, offer, actor)


__all__ = ["OfferService"]
