"""Client-side entitlement fetching with per-account single-flight coordination."""

from .bundle import EntitlementBundle, EntitlementSource
from .fetch_guard import EntitlementFetchCoordinator
from .http_source import EntitlementFetchError, HttpEntitlementSource

__all__ = [
    "EntitlementBundle",
    "EntitlementFetchCoordinator",
    "EntitlementFetchError",
    "EntitlementSource",
    "HttpEntitlementSource",
]
