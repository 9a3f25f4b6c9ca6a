"""
Communication Service Data Contract

Test data factories for the Communication Service. The Pydantic models
themselves live in microservices.communication_service.models and are
re-exported here so tests import from one place.

Usage:
    factory = CommunicationTestDataFactory()
    client = factory.make_client(preferences=factory.make_preferences(email=False))
    broadcast = factory.make_broadcast(status=BroadcastStatus.APPROVED)
"""

import random
import string
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import uuid4

from microservices.communication_service.models import (
    ABTestConfig,
    ABVariant,
    Broadcast,
    BroadcastCreateRequest,
    BroadcastStatus,
    BroadcastType,
    Channel,
    ChannelPreference,
    ClientRecord,
    ClientType,
    CommunicationPreferences,
    ComplianceFlags,
    InvoiceRecord,
    InvoiceStatus,
    Offer,
    OfferCreateRequest,
    OfferType,
    ProductType,
    ReminderTier,
    StatusTransition,
    TargetLocation,
    TargetingSpec,
    TierLevel,
)


class CommunicationTestDataFactory:
    """Factory for generating test data for communication service tests"""

    # Fixed clock used by scheduler and lifecycle tests
    NOW = datetime(2024, 6, 15, 9, 0, tzinfo=timezone.utc)

    @staticmethod
    def make_id(prefix: str = "brd") -> str:
        """Generate a unique ID with prefix"""
        return f"{prefix}_{uuid4().hex[:16]}"

    @staticmethod
    def make_client_id(n: Optional[int] = None) -> str:
        if n is not None:
            return f"cli_{n:04d}"
        return f"cli_{uuid4().hex[:12]}"

    @staticmethod
    def make_user_id() -> str:
        return f"usr_{uuid4().hex[:16]}"

    @staticmethod
    def make_email(local: Optional[str] = None) -> str:
        local = local or "".join(random.choices(string.ascii_lowercase, k=8))
        return f"{local}@example.com"

    @staticmethod
    def make_phone() -> str:
        return f"+91{''.join(random.choices(string.digits, k=10))}"

    # ====================
    # Clients
    # ====================

    @staticmethod
    def make_preferences(
        email: Optional[bool] = True,
        sms: Optional[bool] = None,
        whatsapp: Optional[bool] = None,
        categories: Optional[Dict[str, bool]] = None,
    ) -> CommunicationPreferences:
        """Preferences with the given channels recorded; None leaves a channel unrecorded"""
        channels = {}
        for channel, enabled in ((Channel.EMAIL, email), (Channel.SMS, sms), (Channel.WHATSAPP, whatsapp)):
            if enabled is not None:
                channels[channel] = ChannelPreference(enabled=enabled, categories=dict(categories or {}))
        return CommunicationPreferences(channels=channels)

    @classmethod
    def make_client(
        cls,
        client_id: Optional[str] = None,
        name: str = "Asha Rao",
        email: Optional[str] = "",
        phone: Optional[str] = "",
        whatsapp: Optional[str] = None,
        client_type: Optional[ClientType] = ClientType.INDIVIDUAL,
        tier_level: Optional[TierLevel] = TierLevel.SILVER,
        city: Optional[str] = "Mumbai",
        state: Optional[str] = "Maharashtra",
        pincode: Optional[str] = "400001",
        is_active: bool = True,
        policy_count: int = 1,
        preferences: Optional[CommunicationPreferences] = None,
    ) -> ClientRecord:
        """Client with email and phone by default; pass None to drop an address"""
        client_id = client_id or cls.make_client_id()
        return ClientRecord(
            client_id=client_id,
            name=name,
            email=cls.make_email(client_id.replace("_", ".")) if email == "" else email,
            phone=cls.make_phone() if phone == "" else phone,
            whatsapp=whatsapp,
            client_type=client_type,
            tier_level=tier_level,
            city=city,
            state=state,
            pincode=pincode,
            is_active=is_active,
            policy_count=policy_count,
            communication_preferences=preferences,
        )

    @classmethod
    def make_clients(cls, count: int, **kwargs) -> List[ClientRecord]:
        return [cls.make_client(client_id=cls.make_client_id(i), **kwargs) for i in range(count)]

    # ====================
    # Targeting
    # ====================

    @staticmethod
    def make_targeting(
        all_clients: bool = False,
        specific_clients: Optional[List[str]] = None,
        client_types: Optional[List[ClientType]] = None,
        tier_levels: Optional[List[TierLevel]] = None,
        locations: Optional[List[Dict[str, str]]] = None,
    ) -> TargetingSpec:
        return TargetingSpec(
            all_clients=all_clients,
            specific_clients=specific_clients or [],
            client_types=client_types or [],
            tier_levels=tier_levels or [],
            locations=[TargetLocation(**loc) for loc in (locations or [])],
        )

    # ====================
    # Broadcasts
    # ====================

    @staticmethod
    def make_ab_test(weights: Optional[Dict[str, float]] = None) -> ABTestConfig:
        weights = weights or {"A": 1.0, "B": 1.0}
        return ABTestConfig(
            enabled=True,
            variants=[
                ABVariant(name=name, content=f"Variant {name} for {{{{firstName}}}}", weight=weight)
                for name, weight in weights.items()
            ],
        )

    @classmethod
    def make_create_request(
        cls,
        title: str = "Monsoon Health Cover",
        content: str = "Hello {{firstName}}, renew your health cover today.",
        broadcast_type: BroadcastType = BroadcastType.OFFER,
        channels: Optional[List[Channel]] = None,
        target_audience: Optional[TargetingSpec] = None,
        **kwargs,
    ) -> BroadcastCreateRequest:
        return BroadcastCreateRequest(
            title=title,
            content=content,
            type=broadcast_type,
            channels=channels or [Channel.EMAIL],
            target_audience=target_audience or cls.make_targeting(all_clients=True),
            **kwargs,
        )

    @classmethod
    def make_broadcast(
        cls,
        status: BroadcastStatus = BroadcastStatus.DRAFT,
        title: str = "Monsoon Health Cover",
        content: str = "Hello {{firstName}}, renew your health cover today.",
        broadcast_type: BroadcastType = BroadcastType.OFFER,
        channels: Optional[List[Channel]] = None,
        target_audience: Optional[TargetingSpec] = None,
        schedule: Optional[datetime] = None,
        compliance: Optional[ComplianceFlags] = None,
        **kwargs,
    ) -> Broadcast:
        """Broadcast in the given status with a one-entry history"""
        return Broadcast(
            title=title,
            content=content,
            type=broadcast_type,
            channels=channels or [Channel.EMAIL],
            target_audience=target_audience or cls.make_targeting(all_clients=True),
            status=status,
            schedule=schedule,
            compliance=compliance or ComplianceFlags(),
            history=[StatusTransition(to_status=status, actor="system", at=cls.NOW)],
            created_at=cls.NOW,
            updated_at=cls.NOW,
            **kwargs,
        )

    # ====================
    # Invoices
    # ====================

    @classmethod
    def make_invoice(
        cls,
        days_overdue: int = 1,
        today: Optional[date] = None,
        client_id: Optional[str] = None,
        total: Decimal = Decimal("1500.00"),
        status: InvoiceStatus = InvoiceStatus.SENT,
        invoice_number: Optional[str] = None,
    ) -> InvoiceRecord:
        today = today or cls.NOW.date()
        return InvoiceRecord(
            invoice_id=cls.make_id("inv"),
            invoice_number=invoice_number or f"INV-{random.randint(1000, 9999)}",
            client_id=client_id or cls.make_client_id(),
            total=total,
            due_date=today - timedelta(days=days_overdue),
            status=status,
        )

    # ====================
    # Offers
    # ====================

    @classmethod
    def make_offer_request(
        cls,
        title: str = "Health Cover Discount",
        offer_type: OfferType = OfferType.DISCOUNT,
        discount_percentage: Optional[Decimal] = Decimal("10"),
        discount_amount: Optional[Decimal] = None,
        valid_days: int = 30,
        max_usage_count: int = -1,
        target_audience: Optional[TargetingSpec] = None,
    ) -> OfferCreateRequest:
        return OfferCreateRequest(
            title=title,
            type=offer_type,
            applicable_products=[ProductType.HEALTH],
            discount_percentage=discount_percentage,
            discount_amount=discount_amount,
            valid_from=cls.NOW,
            valid_until=cls.NOW + timedelta(days=valid_days),
            max_usage_count=max_usage_count,
            target_audience=target_audience or cls.make_targeting(all_clients=True),
        )

    @classmethod
    def make_offer(
        cls,
        discount_percentage: Optional[Decimal] = Decimal("10"),
        discount_amount: Optional[Decimal] = None,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        max_usage_count: int = -1,
        current_usage_count: int = 0,
        is_active: bool = True,
    ) -> Offer:
        valid_from = valid_from or cls.NOW - timedelta(days=1)
        return Offer(
            title="Health Cover Discount",
            type=OfferType.DISCOUNT,
            applicable_products=[ProductType.HEALTH],
            discount_percentage=discount_percentage,
            discount_amount=discount_amount,
            valid_from=valid_from,
            valid_until=valid_until or valid_from + timedelta(days=30),
            max_usage_count=max_usage_count,
            current_usage_count=current_usage_count,
            is_active=is_active,
        )


__all__ = [
    "CommunicationTestDataFactory",
    "ReminderTier",
]
