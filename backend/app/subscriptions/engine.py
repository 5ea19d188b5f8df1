"""Pure entitlement derivation shared by every subscription consumer.

All status, expiry and quota facts are computed here from a subscription, the
plan it references and an explicit ``now``. Services, routes and admin views
consume the resulting :class:`EntitlementSnapshot` instead of re-deriving.
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from .catalog import plan_type_for_role
from .models import (
    UNLIMITED,
    CounterUsage,
    EntitlementSnapshot,
    ListingKind,
    ListingRef,
    ListingVisibility,
    PaymentStatus,
    PlanType,
    QuotaDecision,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageCounter,
    UsageStats,
    UserSubscription,
    VisibilityFilterResult,
    ensure_utc,
)

_ONE_DAY = timedelta(days=1)


def current_time(clock: Optional[Callable[[], datetime]]) -> datetime:
    return ensure_utc(clock() if clock else datetime.now(timezone.utc))


def add_months(moment: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping to the last day of shorter months."""

    return moment + relativedelta(months=months)


def days_remaining(end_date: datetime, now: datetime) -> int:
    """Whole days until ``end_date``, rounded up; negative once lapsed by a day."""

    return math.ceil((end_date - now) / _ONE_DAY)


def expiry_flags(end_date: datetime, now: datetime, warning_days: int) -> Tuple[int, bool, bool]:
    remaining = days_remaining(end_date, now)
    is_expired = remaining < 0
    is_expiring_soon = 0 <= remaining <= warning_days
    return remaining, is_expired, is_expiring_soon


def counter_usage(used: int, allowed: int) -> CounterUsage:
    if allowed == UNLIMITED:
        return CounterUsage(
            used=used,
            allowed=UNLIMITED,
            remaining=UNLIMITED,
            percentage=0.0,
            limit_reached=False,
            unlimited=True,
        )
    remaining = max(allowed - used, 0)
    percentage = 100.0 if allowed == 0 else min(round(used / allowed * 100, 2), 100.0)
    return CounterUsage(
        used=used,
        allowed=allowed,
        remaining=remaining,
        percentage=percentage,
        limit_reached=used >= allowed,
    )


def build_usage_stats(
    subscription: UserSubscription,
    plan: SubscriptionPlan,
    *,
    now: datetime,
    warning_days: int,
) -> UsageStats:
    remaining, is_expired, is_expiring_soon = expiry_flags(subscription.end_date, now, warning_days)
    return UsageStats(
        days_remaining=remaining,
        is_expiring_soon=is_expiring_soon,
        is_expired=is_expired,
        browse_count=counter_usage(
            subscription.browse_count_used, plan.features.limit_for(UsageCounter.BROWSE)
        ),
        listing_count=counter_usage(
            subscription.listing_count_used, plan.features.limit_for(UsageCounter.LISTING)
        ),
    )


def denial_reason(subscription: UserSubscription, *, now: datetime) -> Optional[str]:
    """Return why the subscription grants no access, or ``None`` when it does."""

    if subscription.status == SubscriptionStatus.SUSPENDED:
        return "subscription_suspended"
    if subscription.status == SubscriptionStatus.EXPIRED:
        return "subscription_expired"
    if subscription.payment_status == PaymentStatus.FAILED:
        return "payment_failed"
    if days_remaining(subscription.end_date, now) < 0:
        return "subscription_expired"
    return None


def check_quota(
    subscription: UserSubscription,
    plan: SubscriptionPlan,
    counter: UsageCounter,
    *,
    now: datetime,
    amount: int = 1,
) -> QuotaDecision:
    """Decide whether ``amount`` more units of ``counter`` may be consumed."""

    used = subscription.used(counter)
    allowed = plan.features.limit_for(counter)
    usage = counter_usage(used, allowed)
    reason = denial_reason(subscription, now=now)
    if reason is None and allowed != UNLIMITED and used + amount > allowed:
        reason = "quota_exceeded"
    return QuotaDecision(
        allowed=reason is None,
        counter=counter,
        used=used,
        allowed_count=allowed,
        remaining=usage.remaining,
        reason=reason,
    )


def build_snapshot(
    subscription: UserSubscription,
    plan: SubscriptionPlan,
    *,
    now: datetime,
    warning_days: int,
) -> EntitlementSnapshot:
    usage = build_usage_stats(subscription, plan, now=now, warning_days=warning_days)
    return EntitlementSnapshot(
        account_id=subscription.account_id,
        subscription_id=subscription.id,
        plan_id=plan.id,
        plan_name=plan.display_name,
        plan_type=plan.plan_type,
        status=subscription.status,
        payment_status=subscription.payment_status,
        has_access=denial_reason(subscription, now=now) is None,
        is_suspended=subscription.status == SubscriptionStatus.SUSPENDED,
        is_payment_pending=subscription.payment_status == PaymentStatus.PENDING,
        days_remaining=usage.days_remaining,
        is_expired=usage.is_expired,
        is_expiring_soon=usage.is_expiring_soon,
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        usage=usage,
        features=plan.features,
        generated_at=now,
    )


def filter_plans_for_role(
    plans: Iterable[SubscriptionPlan],
    role: Optional[str],
    *,
    default: PlanType = PlanType.INSTITUTE,
) -> List[SubscriptionPlan]:
    plan_type = plan_type_for_role(role, default=default)
    return [plan for plan in plans if plan.plan_type == plan_type]


def listing_visibility(
    snapshot: Optional[EntitlementSnapshot],
    *,
    created_at: datetime,
    kind: ListingKind,
    now: datetime,
    inactive_delay_days: int,
) -> ListingVisibility:
    """Decide whether a listing created at ``created_at`` is visible yet."""

    if snapshot is None or not snapshot.has_access:
        delay_days = inactive_delay_days
    elif kind == ListingKind.TEACHER:
        delay_days = snapshot.features.teacher_data_delay_days
    else:
        delay_days = snapshot.features.data_delay_days
    visible_at = ensure_utc(created_at) + timedelta(days=delay_days)
    return ListingVisibility(visible=now >= visible_at, delay_days=delay_days, visible_at=visible_at)


def filter_visible_listings(
    snapshot: Optional[EntitlementSnapshot],
    listings: Sequence[ListingRef],
    *,
    now: datetime,
    inactive_delay_days: int,
) -> VisibilityFilterResult:
    """Keep the listings whose visibility delay has elapsed, preserving order."""

    visible = [
        listing
        for listing in listings
        if listing_visibility(
            snapshot,
            created_at=listing.created_at,
            kind=listing.kind,
            now=now,
            inactive_delay_days=inactive_delay_days,
        ).visible
    ]
    return VisibilityFilterResult(visible=visible, hidden_count=len(listings) - len(visible))


__all__ = [
    "add_months",
    "build_snapshot",
    "build_usage_stats",
    "check_quota",
    "counter_usage",
    "current_time",
    "days_remaining",
    "denial_reason",
    "expiry_flags",
    "filter_plans_for_role",
    "filter_visible_listings",
    "listing_visibility",
]
