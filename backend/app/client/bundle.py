"""Combined entitlement bundle fetched by clients, and its data source contract."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..subscriptions.models import SubscriptionPlan, UsageStats, UserSubscription


class EntitlementBundle(BaseModel):
    """Subscription, applicable plans and usage stats for one account.

    ``failures`` maps the name of each part that could not be fetched to the
    error message; the part itself falls back to ``None`` or an empty list.
    """

    account_id: str
    subscription: Optional[UserSubscription] = None
    plans: List[SubscriptionPlan] = Field(default_factory=list)
    usage: Optional[UsageStats] = None
    failures: Dict[str, str] = Field(default_factory=dict)
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)


class EntitlementSource(Protocol):
    """Backend reads that make up an :class:`EntitlementBundle`."""

    async def fetch_subscription(self, account_id: str) -> Optional[UserSubscription]:
        ...

    async def fetch_plans(self, account_id: str) -> Sequence[SubscriptionPlan]:
        ...

    async def fetch_usage_stats(self, account_id: str) -> Optional[UsageStats]:
        ...


__all__ = ["EntitlementBundle", "EntitlementSource"]
