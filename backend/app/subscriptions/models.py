"""Domain models for subscription plans, entitlements and change requests."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

UNLIMITED = -1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class SubscriptionModel(BaseModel):
    """Immutable model serialised with camelCase keys on the wire."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, alias_generator=to_camel)


class PlanType(str, Enum):
    """Audience a plan is sold to."""

    TEACHER = "teacher"
    INSTITUTE = "institute"
    VENDOR = "vendor"


class SupportLevel(str, Enum):
    BASIC = "basic"
    PRIORITY = "priority"
    DEDICATED = "dedicated"


class SubscriptionStatus(str, Enum):
    """Stored lifecycle status of an entitlement record."""

    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RequestType(str, Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    RENEWAL = "renewal"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UsageCounter(str, Enum):
    """Consumable counters tracked per subscription period."""

    BROWSE = "browse"
    LISTING = "listing"


class ListingKind(str, Enum):
    """Origin of a listing, used to pick the visibility delay."""

    STANDARD = "standard"
    TEACHER = "teacher"


class AlertKind(str, Enum):
    VEHICLE = "vehicle"
    JOB = "job"

    @property
    def flag(self) -> str:
        return f"alerts.instant_{self.value}"


class PlanFeatures(SubscriptionModel):
    """Quota limits and feature flags granted by a plan.

    Every field is required. Counter limits use ``-1`` for unlimited and ``0``
    for none allowed.
    """

    max_listings: int
    max_job_posts: int
    max_monthly_browses: int
    data_delay_days: int = Field(ge=0)
    teacher_data_delay_days: int = Field(ge=0)
    priority_listings: bool
    can_advertise: bool
    instant_vehicle_alerts: bool
    instant_job_alerts: bool
    analytics: bool
    support_level: SupportLevel

    @field_validator("max_listings", "max_job_posts", "max_monthly_browses")
    @classmethod
    def _validate_quota(cls, value: int) -> int:
        if value < UNLIMITED:
            raise ValueError("quota must be -1 (unlimited) or a non-negative count")
        return value

    def limit_for(self, counter: UsageCounter) -> int:
        if counter == UsageCounter.BROWSE:
            return self.max_monthly_browses
        return self.max_listings

    def to_flags(self) -> Dict[str, int | bool | str]:
        """Serialize features to flattened flag keys."""

        return {
            "listings.max": self.max_listings,
            "job_posts.max": self.max_job_posts,
            "browses.monthly_max": self.max_monthly_browses,
            "data.delay_days": self.data_delay_days,
            "data.teacher_delay_days": self.teacher_data_delay_days,
            "listings.priority": self.priority_listings,
            "ads.enabled": self.can_advertise,
            "alerts.instant_vehicle": self.instant_vehicle_alerts,
            "alerts.instant_job": self.instant_job_alerts,
            "analytics.enabled": self.analytics,
            "support.level": self.support_level.value,
        }


class SubscriptionPlan(SubscriptionModel):
    """Administrator managed plan definition."""

    id: str
    name: str = Field(description="Unique system name")
    display_name: str
    description: str = ""
    plan_type: PlanType
    price: int = Field(ge=0, description="Price in minor currency units (paise)")
    currency: str = "INR"
    duration_days: int = Field(ge=1)
    features: PlanFeatures
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("name must not be empty")
        return normalized

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        normalized = value.strip().upper()
        if len(normalized) != 3:
            raise ValueError("currency must be a 3-letter code")
        return normalized


class UserSubscription(SubscriptionModel):
    """The single current entitlement record held by an account."""

    id: str
    account_id: str
    plan_id: str
    plan_name: str
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    payment_status: PaymentStatus = PaymentStatus.PENDING
    start_date: datetime
    end_date: datetime
    browse_count_used: int = Field(default=0, ge=0)
    listing_count_used: int = Field(default=0, ge=0)
    last_usage_reset_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    notes: Optional[str] = None
    suspension_reason: Optional[str] = None
    is_current: bool = True
    superseded_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def used(self, counter: UsageCounter) -> int:
        if counter == UsageCounter.BROWSE:
            return self.browse_count_used
        return self.listing_count_used


class SubscriptionRequest(SubscriptionModel):
    """An account's pending or resolved request to change plans."""

    id: str
    account_id: str
    requested_plan_id: str
    requested_plan_name: str
    current_plan_id: Optional[str] = None
    request_type: RequestType
    status: RequestStatus = RequestStatus.PENDING
    user_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None


class CounterUsage(SubscriptionModel):
    used: int
    allowed: int
    remaining: int
    percentage: float
    limit_reached: bool
    unlimited: bool = False


class UsageStats(SubscriptionModel):
    """Derived counter and expiry summary for a subscription."""

    days_remaining: int
    is_expiring_soon: bool
    is_expired: bool
    browse_count: CounterUsage
    listing_count: CounterUsage


class EntitlementSnapshot(SubscriptionModel):
    """Every derived entitlement fact for an account at one instant."""

    account_id: str
    subscription_id: str
    plan_id: str
    plan_name: str
    plan_type: PlanType
    status: SubscriptionStatus
    payment_status: PaymentStatus
    has_access: bool
    is_suspended: bool
    is_payment_pending: bool
    days_remaining: int
    is_expired: bool
    is_expiring_soon: bool
    start_date: datetime
    end_date: datetime
    usage: UsageStats
    features: PlanFeatures
    generated_at: datetime

    @property
    def feature_flags(self) -> Dict[str, int | bool | str]:
        return self.features.to_flags()


class QuotaDecision(SubscriptionModel):
    """Outcome of a quota check or consumption attempt."""

    allowed: bool
    counter: UsageCounter
    used: int
    allowed_count: int
    remaining: int
    reason: Optional[str] = None


class ListingVisibility(SubscriptionModel):
    visible: bool
    delay_days: int
    visible_at: datetime


class ListingRef(SubscriptionModel):
    """Minimal listing identity needed to decide visibility in bulk."""

    id: str = Field(min_length=1)
    created_at: UtcDatetime
    kind: ListingKind = ListingKind.STANDARD


class VisibilityFilterResult(SubscriptionModel):
    visible: List[ListingRef]
    hidden_count: int


class AlertPermission(SubscriptionModel):
    kind: AlertKind
    allowed: bool
    reason: Optional[str] = None


class SubscriptionFilters(SubscriptionModel):
    """Admin listing filters with pagination."""

    status: Optional[SubscriptionStatus] = None
    plan_id: Optional[str] = None
    account_id: Optional[str] = None
    expiring_within_days: Optional[int] = Field(default=None, ge=0)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=200)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class SubscriptionPage(SubscriptionModel):
    items: List[UserSubscription]
    total: int
    page: int
    page_size: int


class GlobalSubscriptionStats(SubscriptionModel):
    total_subscriptions: int
    active_subscriptions: int
    expired_subscriptions: int
    suspended_subscriptions: int
    expiring_soon: int
    total_plans: int
    active_plans: int
    revenue_projection: int


class PlanStats(SubscriptionModel):
    plan_id: str
    plan_name: str
    active_users: int
    total_revenue: int
    average_browse_usage: float
    average_listing_usage: float


class SubscriptionAuditEventType(str, Enum):
    """Audit events emitted by subscription mutations."""

    PLAN_CREATED = "plan.created"
    PLAN_UPDATED = "plan.updated"
    PLAN_STATUS_TOGGLED = "plan.status_toggled"
    SUBSCRIPTION_ASSIGNED = "subscription.assigned"
    SUBSCRIPTION_EXTENDED = "subscription.extended"
    SUBSCRIPTION_CONTINUED = "subscription.continued"
    SUBSCRIPTION_SUSPENDED = "subscription.suspended"
    SUBSCRIPTION_REACTIVATED = "subscription.reactivated"
    SUBSCRIPTION_EXPIRED = "subscription.expired"
    SUBSCRIPTION_PLAN_CHANGED = "subscription.plan_changed"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    PAYMENT_STATUS_CHANGED = "subscription.payment_status_changed"
    USAGE_RESET = "usage.reset"
    REQUEST_CREATED = "request.created"
    REQUEST_APPROVED = "request.approved"
    REQUEST_REJECTED = "request.rejected"


class SubscriptionAuditEvent(SubscriptionModel):
    event_type: SubscriptionAuditEventType
    subscription_id: Optional[str] = None
    request_id: Optional[str] = None
    plan_id: Optional[str] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_utcnow)


__all__ = [
    "AlertKind",
    "AlertPermission",
    "CounterUsage",
    "EntitlementSnapshot",
    "GlobalSubscriptionStats",
    "ListingKind",
    "ListingRef",
    "ListingVisibility",
    "PaymentStatus",
    "PlanFeatures",
    "PlanStats",
    "PlanType",
    "QuotaDecision",
    "RequestStatus",
    "RequestType",
    "SubscriptionAuditEvent",
    "SubscriptionAuditEventType",
    "SubscriptionFilters",
    "SubscriptionModel",
    "SubscriptionPage",
    "SubscriptionPlan",
    "SubscriptionRequest",
    "SubscriptionStatus",
    "SupportLevel",
    "UNLIMITED",
    "UsageCounter",
    "UsageStats",
    "UtcDatetime",
    "UserSubscription",
    "VisibilityFilterResult",
    "ensure_utc",
]
