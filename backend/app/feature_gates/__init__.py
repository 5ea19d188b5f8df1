"""Feature gating utilities coordinating entitlement enforcement."""
from .context import EntitlementContext
from .enforcement import require_active_subscription, require_feature
from .exceptions import FeatureGateError
from .quota import assert_quota

__all__ = [
    "EntitlementContext",
    "FeatureGateError",
    "assert_quota",
    "require_active_subscription",
    "require_feature",
]
