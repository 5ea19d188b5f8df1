"""Account-facing entitlement reads and usage counter consumption."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence, Tuple

from .config import SubscriptionConfig, load_subscription_config
from .engine import (
    build_snapshot,
    build_usage_stats,
    check_quota,
    current_time,
    filter_visible_listings,
    listing_visibility,
)
from .exceptions import SubscriptionNotFoundError, SubscriptionValidationError
from .models import (
    EntitlementSnapshot,
    ListingKind,
    ListingRef,
    ListingVisibility,
    QuotaDecision,
    SubscriptionPlan,
    UsageCounter,
    UsageStats,
    UserSubscription,
    VisibilityFilterResult,
)
from .protocols import PlanRepository, SubscriptionRepository

logger = logging.getLogger(__name__)


@dataclass
class UsageService:
    """Derives entitlements for an account and guards counter consumption."""

    plans: PlanRepository
    subscriptions: SubscriptionRepository
    config: SubscriptionConfig = field(default_factory=load_subscription_config)
    clock: Optional[Callable[[], datetime]] = None

    def get_subscription(self, account_id: str) -> Optional[UserSubscription]:
        return self.subscriptions.get_current_subscription(self._require_account(account_id))

    def get_snapshot(self, account_id: str) -> Optional[EntitlementSnapshot]:
        loaded = self._load(account_id)
        if loaded is None:
            return None
        subscription, plan = loaded
        return build_snapshot(
            subscription,
            plan,
            now=current_time(self.clock),
            warning_days=self.config.expiry_warning_days,
        )

    def get_usage_stats(self, account_id: str) -> Optional[UsageStats]:
        loaded = self._load(account_id)
        if loaded is None:
            return None
        subscription, plan = loaded
        return build_usage_stats(
            subscription,
            plan,
            now=current_time(self.clock),
            warning_days=self.config.expiry_warning_days,
        )

    def check_quota(self, account_id: str, counter: UsageCounter, *, amount: int = 1) -> QuotaDecision:
        loaded = self._load(account_id)
        if loaded is None:
            return _no_subscription(counter)
        subscription, plan = loaded
        return check_quota(subscription, plan, counter, now=current_time(self.clock), amount=amount)

    def consume(self, account_id: str, counter: UsageCounter, *, amount: int = 1) -> QuotaDecision:
        """Record ``amount`` units of usage if the plan still allows it.

        The increment is a single conditional write, so concurrent consumers
        can never push the counter past the plan limit.
        """

        if amount < 1:
            raise SubscriptionValidationError("amount must be >= 1")
        loaded = self._load(account_id)
        if loaded is None:
            return _no_subscription(counter)
        subscription, plan = loaded
        now = current_time(self.clock)

        decision = check_quota(subscription, plan, counter, now=now, amount=amount)
        if not decision.allowed:
            logger.info(
                "Usage denied account=%s counter=%s reason=%s",
                subscription.account_id,
                counter.value,
                decision.reason,
            )
            return decision

        limit = plan.features.limit_for(counter)
        updated = self.subscriptions.increment_usage(subscription.id, counter, amount=amount, limit=limit)
        if updated is None:
            latest = self.subscriptions.get_subscription(subscription.id) or subscription
            refused = check_quota(latest, plan, counter, now=now, amount=amount)
            if refused.allowed:
                refused = refused.model_copy(update={"allowed": False, "reason": "quota_exceeded"})
            return refused

        consumed = check_quota(updated, plan, counter, now=now, amount=0)
        return consumed.model_copy(update={"allowed": True, "reason": None})

    def release_listing(self, account_id: str, *, amount: int = 1) -> QuotaDecision:
        """Give back listing allowance, e.g. after a listing is removed."""

        if amount < 1:
            raise SubscriptionValidationError("amount must be >= 1")
        loaded = self._load(account_id)
        if loaded is None:
            raise SubscriptionNotFoundError(f"No subscription for account {account_id}")
        subscription, plan = loaded
        updated = self.subscriptions.release_usage(subscription.id, UsageCounter.LISTING, amount=amount)
        return check_quota(updated or subscription, plan, UsageCounter.LISTING, now=current_time(self.clock))

    def check_listing_visibility(
        self,
        account_id: str,
        *,
        created_at: datetime,
        kind: ListingKind = ListingKind.STANDARD,
    ) -> ListingVisibility:
        return listing_visibility(
            self.get_snapshot(account_id),
            created_at=created_at,
            kind=kind,
            now=current_time(self.clock),
            inactive_delay_days=self.config.inactive_data_delay_days,
        )

    def filter_visible_listings(self, account_id: str, listings: Sequence[ListingRef]) -> VisibilityFilterResult:
        """Drop listings still inside the account's data delay window."""

        result = filter_visible_listings(
            self.get_snapshot(account_id),
            listings,
            now=current_time(self.clock),
            inactive_delay_days=self.config.inactive_data_delay_days,
        )
        if result.hidden_count:
            logger.debug("Hid %s delayed listings for account %s", result.hidden_count, account_id)
        return result

    def _load(self, account_id: str) -> Optional[Tuple[UserSubscription, SubscriptionPlan]]:
        subscription = self.subscriptions.get_current_subscription(self._require_account(account_id))
        if subscription is None:
            return None
        plan = self.plans.get_plan(subscription.plan_id)
        if plan is None:
            raise SubscriptionNotFoundError(
                f"Plan {subscription.plan_id} referenced by subscription {subscription.id} not found"
            )
        return subscription, plan

    @staticmethod
    def _require_account(account_id: str) -> str:
        if not account_id:
            raise SubscriptionValidationError("account_id is required")
        return account_id


def _no_subscription(counter: UsageCounter) -> QuotaDecision:
    return QuotaDecision(
        allowed=False,
        counter=counter,
        used=0,
        allowed_count=0,
        remaining=0,
        reason="no_subscription",
    )


__all__ = ["UsageService"]
