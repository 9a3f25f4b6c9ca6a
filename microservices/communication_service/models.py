"""
Communication Service Data Models

Canonical data structures for broadcasts, audience targeting, offers and
payment reminders. Field names follow Python conventions; the HTTP layer
serializes them as-is.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ====================
# Enums
# ====================


class BroadcastType(str, Enum):
    """Broadcast campaign type"""
    OFFER = "offer"
    FESTIVAL = "festival"
    ANNOUNCEMENT = "announcement"
    PROMOTION = "promotion"
    NEWSLETTER = "newsletter"
    REMINDER = "reminder"
    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"


class BroadcastStatus(str, Enum):
    """Broadcast lifecycle status"""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class Channel(str, Enum):
    """Delivery channel"""
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ClientType(str, Enum):
    INDIVIDUAL = "individual"
    CORPORATE = "corporate"
    GROUP = "group"


class TierLevel(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class OfferType(str, Enum):
    DISCOUNT = "discount"
    CASHBACK = "cashback"
    BONUS_POINTS = "bonus_points"
    FREE_ADDON = "free_addon"
    PREMIUM_WAIVER = "premium_waiver"
    SPECIAL_RATE = "special_rate"


class ProductType(str, Enum):
    LIFE = "life"
    HEALTH = "health"
    AUTO = "auto"
    HOME = "home"
    BUSINESS = "business"
    TRAVEL = "travel"
    DISABILITY = "disability"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    AMOUNT = "amount"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    PAID = "paid"
    CANCELLED = "cancelled"


class ReminderTier(str, Enum):
    """Payment reminder escalation tier"""
    FIRST_REMINDER = "first_reminder"
    SECOND_REMINDER = "second_reminder"
    FINAL_REMINDER = "final_reminder"
    ESCALATION = "escalation"

    @property
    def threshold_days(self) -> int:
        return REMINDER_THRESHOLDS[self]


# Days past due at which each tier becomes due, ascending
REMINDER_THRESHOLDS: Dict[ReminderTier, int] = {
    ReminderTier.FIRST_REMINDER: 1,
    ReminderTier.SECOND_REMINDER: 7,
    ReminderTier.FINAL_REMINDER: 14,
    ReminderTier.ESCALATION: 30,
}

CLOSED_INVOICE_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})

PAYMENT_DUE_CATEGORY = "payment_due"

# Preference category consulted for each broadcast type
CATEGORY_BY_TYPE: Dict[BroadcastType, str] = {
    BroadcastType.OFFER: "offer",
    BroadcastType.PROMOTION: "offer",
    BroadcastType.FESTIVAL: "offer",
    BroadcastType.NEWSLETTER: "newsletter",
    BroadcastType.ANNOUNCEMENT: "newsletter",
    BroadcastType.REMINDER: "reminder",
    BroadcastType.BIRTHDAY: "birthday",
    BroadcastType.ANNIVERSARY: "anniversary",
}


# ====================
# Base
# ====================


class BaseContract(BaseModel):
    """Base model for all contracts"""

    model_config = {
        "from_attributes": True,
        "populate_by_name": True,
        "use_enum_values": False,
    }


# ====================
# Client Records (read-only collaborator data)
# ====================


class ChannelPreference(BaseContract):
    """Opt-in state for one channel"""
    enabled: bool = False
    categories: Dict[str, bool] = Field(default_factory=dict)

    def allows(self, category: str) -> bool:
        # Categories never recorded count as opted in
        return self.enabled and self.categories.get(category, True)


class CommunicationPreferences(BaseContract):
    """Per-channel communication preferences recorded on a client"""
    channels: Dict[Channel, ChannelPreference] = Field(default_factory=dict)

    @classmethod
    def default(cls) -> "CommunicationPreferences":
        """Preferences applied to clients who never recorded any"""
        return cls(channels={Channel.EMAIL: ChannelPreference(enabled=True)})

    def allows(self, channel: Channel, category: str) -> bool:
        preference = self.channels.get(channel)
        if preference is None:
            preference = ChannelPreference(enabled=(channel == Channel.EMAIL))
        return preference.allows(category)


class ClientRecord(BaseContract):
    """Client as seen by the communication engine"""
    client_id: str
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    client_type: Optional[ClientType] = None
    tier_level: Optional[TierLevel] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    is_active: bool = True
    policy_count: int = 0
    communication_preferences: Optional[CommunicationPreferences] = None

    @property
    def first_name(self) -> str:
        return self.name.split()[0] if self.name.strip() else ""

    @property
    def preferences(self) -> CommunicationPreferences:
        return self.communication_preferences or CommunicationPreferences.default()

    def address_for(self, channel: Channel) -> Optional[str]:
        if channel == Channel.EMAIL:
            return self.email or None
        if channel == Channel.SMS:
            return self.phone or None
        return self.whatsapp or self.phone or None


class InvoiceRecord(BaseContract):
    """Invoice as seen by the reminder scheduler"""
    invoice_id: str
    invoice_number: str
    client_id: str
    total: Decimal = Field(default=Decimal("0"))
    due_date: date
    status: InvoiceStatus = InvoiceStatus.SENT

    def is_overdue(self, today: date) -> bool:
        return self.status not in CLOSED_INVOICE_STATUSES and self.due_date < today

    def days_past_due(self, today: date) -> int:
        return max(0, (today - self.due_date).days)


# ====================
# Targeting
# ====================


class TargetLocation(BaseContract):
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None

    def matches(self, client: ClientRecord) -> bool:
        """Case-insensitive match on every populated field; empty entries match nothing"""
        pairs = [(self.city, client.city), (self.state, client.state), (self.pincode, client.pincode)]
        populated = [(wanted, actual) for wanted, actual in pairs if wanted and wanted.strip()]
        if not populated:
            return False
        return all(
            actual is not None and wanted.strip().casefold() == actual.strip().casefold()
            for wanted, actual in populated
        )


class TargetingSpec(BaseContract):
    """Declarative audience description"""
    all_clients: bool = False
    specific_clients: List[str] = Field(default_factory=list)
    client_types: List[ClientType] = Field(default_factory=list)
    tier_levels: List[TierLevel] = Field(default_factory=list)
    locations: List[TargetLocation] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.all_clients
            or self.specific_clients
            or self.client_types
            or self.tier_levels
            or self.locations
        )


class RecipientChannelPlan(BaseContract):
    """One recipient reached over one channel"""
    client_id: str
    channel: Channel
    address: str
    client: Optional[ClientRecord] = Field(default=None, exclude=True)


# ====================
# Broadcast Components
# ====================


class EmailChannelConfig(BaseContract):
    subject: Optional[str] = Field(None, max_length=255)
    template: Optional[str] = None
    track_opens: bool = True
    track_clicks: bool = True


class WhatsAppChannelConfig(BaseContract):
    template: Optional[str] = None
    media_url: Optional[str] = None


class SmsChannelConfig(BaseContract):
    provider: Optional[str] = None
    template: Optional[str] = None
    sender_id: Optional[str] = Field(None, max_length=11)


class ChannelConfigs(BaseContract):
    email: Optional[EmailChannelConfig] = None
    whatsapp: Optional[WhatsAppChannelConfig] = None
    sms: Optional[SmsChannelConfig] = None


class ABVariant(BaseContract):
    name: str = Field(..., min_length=1, max_length=100)
    content: Optional[str] = Field(None, max_length=5000)
    subject: Optional[str] = Field(None, max_length=255)
    weight: float = Field(default=1.0, gt=0, description="Relative share of recipients")


class ABTestConfig(BaseContract):
    enabled: bool = False
    variants: List[ABVariant] = Field(default_factory=list)
    winning_variant: Optional[str] = None
    test_duration_hours: int = Field(default=24, ge=1)
    confidence_level: int = Field(default=95, ge=50, le=99)

    @model_validator(mode="after")
    def validate_variants(self):
        if self.enabled:
            if len(self.variants) < 2:
                raise ValueError("A/B test requires at least two variants")
            names = [v.name for v in self.variants]
            if len(set(names)) != len(names):
                raise ValueError("A/B variant names must be unique")
        return self


class ApprovalRecord(BaseContract):
    status: ApprovalStatus = ApprovalStatus.PENDING
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    comment: Optional[str] = None


class ComplianceFlags(BaseContract):
    """Advisory compliance state, never blocks approval"""
    regulatory_approved: bool = False
    legal_reviewed: bool = False
    opt_out_compliant: bool = True
    data_protection_compliant: bool = True
    consent_required: bool = False
    retention_period_days: int = Field(default=365, ge=0)

    def warnings(self) -> List[str]:
        issues = []
        if not self.regulatory_approved:
            issues.append("Regulatory approval has not been recorded")
        if not self.legal_reviewed:
            issues.append("Legal review has not been recorded")
        if not self.opt_out_compliant:
            issues.append("Content is not marked opt-out compliant")
        if not self.data_protection_compliant:
            issues.append("Content is not marked data-protection compliant")
        return issues


class BudgetInfo(BaseContract):
    budget: Decimal = Field(default=Decimal("0"), ge=0)
    cost_per_recipient: Optional[Decimal] = Field(None, ge=0)
    expected_roi: Optional[Decimal] = None


class ChannelCounts(BaseContract):
    total: int = 0
    sent: int = 0
    failed: int = 0


class BroadcastStats(BaseContract):
    total_recipients: int = 0
    sent_count: int = 0
    delivered_count: int = 0
    failed_count: int = 0
    empty_audience: bool = False
    per_channel: Dict[str, ChannelCounts] = Field(default_factory=dict)
    per_variant: Dict[str, ChannelCounts] = Field(default_factory=dict)
    total_cost: Decimal = Field(default=Decimal("0"))
    revenue: Decimal = Field(default=Decimal("0"))
    roi: Optional[Decimal] = None

    def recompute_roi(self) -> None:
        if self.total_cost > 0:
            self.roi = ((self.revenue - self.total_cost) / self.total_cost * 100).quantize(Decimal("0.01"))
        else:
            self.roi = None


class StatusTransition(BaseContract):
    """One entry of a broadcast's audit trail"""
    from_status: Optional[BroadcastStatus] = None
    to_status: BroadcastStatus
    actor: str
    at: datetime = Field(default_factory=utc_now)
    reason: Optional[str] = None


# ====================
# Broadcast
# ====================


class Broadcast(BaseContract):
    """Multi-channel outbound campaign"""
    broadcast_id: str = Field(default_factory=lambda: f"brd_{uuid4().hex[:16]}")
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    content: str = Field(default="", max_length=5000)
    type: BroadcastType
    channels: List[Channel] = Field(..., min_length=1)
    channel_configs: ChannelConfigs = Field(default_factory=ChannelConfigs)
    target_audience: TargetingSpec = Field(default_factory=TargetingSpec)
    status: BroadcastStatus = BroadcastStatus.DRAFT
    approval: ApprovalRecord = Field(default_factory=ApprovalRecord)
    compliance: ComplianceFlags = Field(default_factory=ComplianceFlags)
    ab_test: Optional[ABTestConfig] = None
    budget: BudgetInfo = Field(default_factory=BudgetInfo)
    schedule: Optional[datetime] = None
    stats: BroadcastStats = Field(default_factory=BroadcastStats)
    history: List[StatusTransition] = Field(default_factory=list)
    created_by: str = "system"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    sent_at: Optional[datetime] = None

    @field_validator("channels")
    @classmethod
    def dedupe_channels(cls, value: List[Channel]) -> List[Channel]:
        return list(dict.fromkeys(value))

    @field_validator("schedule", "sent_at")
    @classmethod
    def normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @property
    def category(self) -> str:
        return CATEGORY_BY_TYPE[self.type]


class DeliveryOutcome(BaseContract):
    """Result of one send attempt"""
    broadcast_id: Optional[str] = None
    client_id: str
    channel: Channel
    address: str
    status: DeliveryStatus
    variant: Optional[str] = None
    error: Optional[str] = None
    attempted_at: datetime = Field(default_factory=utc_now)


class DispatchResult(BaseContract):
    """Aggregate of one dispatch run"""
    total: int = 0
    sent: int = 0
    failed: int = 0
    per_channel: Dict[str, ChannelCounts] = Field(default_factory=dict)
    per_variant: Dict[str, ChannelCounts] = Field(default_factory=dict)
    unavailable_channels: List[Channel] = Field(default_factory=list)
    outcomes: List[DeliveryOutcome] = Field(default_factory=list)

    @property
    def empty_audience(self) -> bool:
        return self.total == 0

    @property
    def all_transports_down(self) -> bool:
        """Every channel that had recipients was unavailable"""
        attempted = {channel for channel, counts in self.per_channel.items() if counts.total > 0}
        return (
            bool(attempted)
            and self.sent == 0
            and attempted <= {c.value for c in self.unavailable_channels}
        )


# ====================
# Offers
# ====================


class Offer(BaseContract):
    """Targeted incentive"""
    offer_id: str = Field(default_factory=lambda: f"ofr_{uuid4().hex[:16]}")
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    type: OfferType
    applicable_products: List[ProductType] = Field(default_factory=list)
    discount_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    valid_from: datetime = Field(default_factory=utc_now)
    valid_until: datetime
    max_usage_count: int = Field(default=-1, ge=-1, description="-1 means unlimited")
    current_usage_count: int = Field(default=0, ge=0)
    is_active: bool = True
    target_audience: TargetingSpec = Field(default_factory=TargetingSpec)
    terms: Optional[str] = Field(None, max_length=5000)
    created_by: str = "system"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("valid_from", "valid_until")
    @classmethod
    def normalize_window(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def validate_offer(self):
        if (self.discount_percentage is None) == (self.discount_amount is None):
            raise ValueError("Exactly one of discount_percentage or discount_amount must be set")
        if self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self

    @property
    def discount_type(self) -> DiscountType:
        return DiscountType.PERCENTAGE if self.discount_percentage is not None else DiscountType.AMOUNT

    @property
    def remaining_usage(self) -> int:
        if self.max_usage_count == -1:
            return -1
        return max(0, self.max_usage_count - self.current_usage_count)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return now > self.valid_until or self.remaining_usage == 0

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return self.is_active and self.valid_from <= now and not self.is_expired(now)


# ====================
# Reminders
# ====================


class ReminderLedgerEntry(BaseContract):
    """At-most-once record of a sent tier"""
    invoice_id: str
    tier: ReminderTier
    sent_at: datetime = Field(default_factory=utc_now)
    outcome: str
    channel_results: Dict[str, str] = Field(default_factory=dict)


class ReminderStats(BaseContract):
    total_reminders: int = 0
    reminders_by_tier: Dict[str, int] = Field(default_factory=dict)
    total_invoices_with_reminders: int = 0


class ScanReport(BaseContract):
    """Summary of one reminder scan"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    invoices_scanned: int = 0
    overdue_invoices: int = 0
    reminders_sent: int = 0
    invoice_errors: int = 0


class SchedulerStatus(BaseContract):
    name: str
    running: bool
    interval_seconds: float
    runs: int = 0
    faults: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None


# ====================
# Request Models
# ====================


class BroadcastCreateRequest(BaseContract):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    content: str = Field(default="", max_length=5000)
    type: BroadcastType
    channels: List[Channel] = Field(..., min_length=1)
    channel_configs: ChannelConfigs = Field(default_factory=ChannelConfigs)
    target_audience: TargetingSpec = Field(default_factory=TargetingSpec)
    compliance: ComplianceFlags = Field(default_factory=ComplianceFlags)
    ab_test: Optional[ABTestConfig] = None
    budget: BudgetInfo = Field(default_factory=BudgetInfo)
    schedule: Optional[datetime] = None


class BroadcastUpdateRequest(BaseContract):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    content: Optional[str] = Field(None, max_length=5000)
    type: Optional[BroadcastType] = None
    channels: Optional[List[Channel]] = Field(None, min_length=1)
    channel_configs: Optional[ChannelConfigs] = None
    target_audience: Optional[TargetingSpec] = None
    compliance: Optional[ComplianceFlags] = None
    ab_test: Optional[ABTestConfig] = None
    budget: Optional[BudgetInfo] = None
    schedule: Optional[datetime] = None


class ApproveRequest(BaseContract):
    comment: Optional[str] = Field(None, max_length=1000)


class RejectRequest(BaseContract):
    reason: str = Field(default="", max_length=1000)


class ScheduleRequest(BaseContract):
    scheduled_at: Optional[datetime] = None
    send_immediately: bool = False

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class RevenueRequest(BaseContract):
    amount: Decimal = Field(..., ge=0)


class EligibleClientsRequest(BaseContract):
    target_audience: TargetingSpec
    channels: List[Channel] = Field(..., min_length=1)
    type: Optional[BroadcastType] = None
    category: Optional[str] = None
    include_recipients: bool = True


class OfferCreateRequest(BaseContract):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    type: OfferType
    applicable_products: List[ProductType] = Field(default_factory=list)
    discount_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: datetime
    max_usage_count: int = Field(default=-1, ge=-1)
    is_active: bool = True
    target_audience: TargetingSpec = Field(default_factory=TargetingSpec)
    terms: Optional[str] = Field(None, max_length=5000)


class OfferUpdateRequest(BaseContract):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    type: Optional[OfferType] = None
    applicable_products: Optional[List[ProductType]] = None
    discount_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_usage_count: Optional[int] = Field(None, ge=-1)
    current_usage_count: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    target_audience: Optional[TargetingSpec] = None
    terms: Optional[str] = Field(None, max_length=5000)


# ====================
# Response Models
# ====================


class BroadcastResponse(BaseContract):
    broadcast: Broadcast
    message: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class BroadcastListResponse(BaseContract):
    items: List[Broadcast]
    total: int
    page: int
    limit: int
    pages: int


class PendingApprovalItem(BaseContract):
    broadcast: Broadcast
    warnings: List[str] = Field(default_factory=list)


class BroadcastStatsResponse(BaseContract):
    broadcast_id: str
    status: BroadcastStatus
    stats: BroadcastStats


class EligibleClientsResponse(BaseContract):
    count: int
    unique_clients: int
    empty_audience: bool
    per_channel: Dict[str, int] = Field(default_factory=dict)
    recipients: List[RecipientChannelPlan] = Field(default_factory=list)


class OfferView(BaseContract):
    """Offer plus derived state"""
    offer: Offer
    discount_type: DiscountType
    remaining_usage: int
    is_expired: bool
    is_valid: bool

    @classmethod
    def from_offer(cls, offer: Offer, now: Optional[datetime] = None) -> "OfferView":
        return cls(
            offer=offer,
            discount_type=offer.discount_type,
            remaining_usage=offer.remaining_usage,
            is_expired=offer.is_expired(now),
            is_valid=offer.is_valid(now),
        )


class OfferListResponse(BaseContract):
    items: List[OfferView]
    total: int
    page: int
    limit: int


class ReminderLedgerResponse(BaseContract):
    invoice_id: str
    entries: List[ReminderLedgerEntry]


class HealthResponse(BaseContract):
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class ReadinessResponse(BaseContract):
    ready: bool
    checks: Dict[str, bool] = Field(default_factory=dict)
    details: Dict[str, Any] = Field(default_factory=dict)


class LivenessResponse(BaseContract):
    alive: bool
    uptime_seconds: float
