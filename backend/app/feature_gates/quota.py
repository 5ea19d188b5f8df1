"""Usage quota assertions for feature gating."""
from __future__ import annotations

from fastapi import status

from ..subscriptions.models import QuotaDecision
from .exceptions import FeatureGateError

_MESSAGES = {
    "quota_exceeded": "Usage limit reached for this billing period.",
    "subscription_suspended": "Your subscription is suspended.",
    "subscription_expired": "Your subscription has expired.",
    "payment_failed": "Your last payment failed.",
    "no_subscription": "An active subscription is required.",
}


def assert_quota(decision: QuotaDecision) -> QuotaDecision:
    """Raise when a quota decision denies the action."""

    if decision.allowed:
        return decision

    reason = decision.reason or "quota_exceeded"
    status_code = (
        status.HTTP_429_TOO_MANY_REQUESTS if reason == "quota_exceeded" else status.HTTP_403_FORBIDDEN
    )
    raise FeatureGateError(
        code=reason,
        message=_MESSAGES.get(reason, "Action not permitted by your plan."),
        status_code=status_code,
        detail={
            "counter": decision.counter.value,
            "used": decision.used,
            "allowed": decision.allowed_count,
            "remaining": decision.remaining,
        },
    )


__all__ = ["assert_quota"]
