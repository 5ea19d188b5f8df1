"""Helpers for enforcing entitlement checks on API and service layers."""
from __future__ import annotations

from typing import Mapping, Optional

from ..subscriptions.models import EntitlementSnapshot, PaymentStatus
from .exceptions import FeatureGateError


def require_feature(
    feature_flags: Mapping[str, object],
    flag: str,
    *,
    error_code: str = "feature_not_in_plan",
    message: Optional[str] = None,
) -> None:
    """Ensure a plan feature flag is enabled before proceeding.

    Parameters
    ----------
    feature_flags:
        Flattened plan flags as produced by ``PlanFeatures.to_flags``.
    flag:
        The flag that must evaluate truthy, e.g. ``"analytics.enabled"``.
    error_code:
        Optional override for the surfaced error code.
    message:
        Optional human-friendly message explaining the failure.
    """

    if not feature_flags.get(flag):
        raise FeatureGateError(
            code=error_code,
            message=message or f"Your plan does not include '{flag}'.",
            detail={"missing_feature": flag},
        )


def require_active_subscription(snapshot: Optional[EntitlementSnapshot]) -> EntitlementSnapshot:
    """Raise unless the snapshot grants access; suspension is reported distinctly."""

    if snapshot is None:
        raise FeatureGateError(code="subscription_required", message="An active subscription is required.")
    if snapshot.has_access:
        return snapshot
    if snapshot.is_suspended:
        raise FeatureGateError(
            code="subscription_suspended",
            message="Your subscription is suspended.",
            detail={"subscription_id": snapshot.subscription_id},
        )
    if snapshot.payment_status == PaymentStatus.FAILED:
        raise FeatureGateError(
            code="payment_failed",
            message="Your last payment failed.",
            detail={"subscription_id": snapshot.subscription_id},
        )
    raise FeatureGateError(
        code="subscription_expired",
        message="Your subscription has expired.",
        detail={
            "subscription_id": snapshot.subscription_id,
            "end_date": snapshot.end_date.isoformat(),
        },
    )


__all__ = ["require_active_subscription", "require_feature"]
