"""Subscription plans, entitlement derivation, usage quotas and plan change workflow."""

from .config import SubscriptionConfig, load_subscription_config
from .exceptions import (
    InvalidTransitionError,
    SubscriptionConflictError,
    SubscriptionError,
    SubscriptionNotFoundError,
    SubscriptionValidationError,
)
from .models import (
    UNLIMITED,
    AlertKind,
    AlertPermission,
    CounterUsage,
    EntitlementSnapshot,
    GlobalSubscriptionStats,
    ListingKind,
    ListingRef,
    ListingVisibility,
    PaymentStatus,
    PlanFeatures,
    PlanStats,
    PlanType,
    QuotaDecision,
    RequestStatus,
    RequestType,
    SubscriptionAuditEvent,
    SubscriptionAuditEventType,
    SubscriptionFilters,
    SubscriptionPage,
    SubscriptionPlan,
    SubscriptionRequest,
    SubscriptionStatus,
    SupportLevel,
    UsageCounter,
    UsageStats,
    UserSubscription,
    VisibilityFilterResult,
    ensure_utc,
)
from .overrides import SubscriptionAdminService
from .plans import PlanCatalogService
from .protocols import (
    PlanRepository,
    RequestRepository,
    SubscriptionEventLogger,
    SubscriptionRepository,
)
from .requests import ChangeRequestService, classify_request
from .usage import UsageService

__all__ = [
    "AlertKind",
    "AlertPermission",
    "ChangeRequestService",
    "CounterUsage",
    "EntitlementSnapshot",
    "GlobalSubscriptionStats",
    "InvalidTransitionError",
    "ListingKind",
    "ListingRef",
    "ListingVisibility",
    "PaymentStatus",
    "PlanCatalogService",
    "PlanFeatures",
    "PlanRepository",
    "PlanStats",
    "PlanType",
    "QuotaDecision",
    "RequestRepository",
    "RequestStatus",
    "RequestType",
    "SubscriptionAdminService",
    "SubscriptionAuditEvent",
    "SubscriptionAuditEventType",
    "SubscriptionConfig",
    "SubscriptionConflictError",
    "SubscriptionError",
    "SubscriptionEventLogger",
    "SubscriptionFilters",
    "SubscriptionNotFoundError",
    "SubscriptionPage",
    "SubscriptionPlan",
    "SubscriptionRepository",
    "SubscriptionRequest",
    "SubscriptionStatus",
    "SubscriptionValidationError",
    "SupportLevel",
    "UNLIMITED",
    "UsageCounter",
    "UsageService",
    "UsageStats",
    "UserSubscription",
    "VisibilityFilterResult",
    "classify_request",
    "ensure_utc",
    "load_subscription_config",
]
