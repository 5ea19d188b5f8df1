"""Convenience wrapper around an entitlement snapshot for feature gating."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Union

from ..subscriptions.models import CounterUsage, EntitlementSnapshot, PlanType, UsageCounter
from .enforcement import require_active_subscription, require_feature


@dataclass(frozen=True)
class EntitlementContext:
    """Facade exposing gating-centric helpers for an account's entitlements."""

    snapshot: EntitlementSnapshot

    @property
    def feature_flags(self) -> Dict[str, Union[int, bool, str]]:
        return self.snapshot.feature_flags

    @property
    def plan_type(self) -> PlanType:
        return self.snapshot.plan_type

    @property
    def has_access(self) -> bool:
        return self.snapshot.has_access

    def has(self, flag: str) -> bool:
        """Return whether the provided flag evaluates truthy and access is live."""

        return self.snapshot.has_access and bool(self.feature_flags.get(flag))

    def require(self, flag: str, *, error_code: str = "feature_not_in_plan") -> None:
        require_active_subscription(self.snapshot)
        require_feature(self.feature_flags, flag, error_code=error_code)

    def usage(self, counter: UsageCounter) -> CounterUsage:
        usage = self.snapshot.usage
        return usage.browse_count if counter == UsageCounter.BROWSE else usage.listing_count

    def can_consume(self, counter: UsageCounter) -> bool:
        return self.snapshot.has_access and not self.usage(counter).limit_reached


__all__ = ["EntitlementContext"]
