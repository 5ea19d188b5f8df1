"""Exceptions raised when an account's entitlements block an action."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import status

from ..subscriptions.exceptions import SubscriptionError


@dataclass
class FeatureGateError(SubscriptionError):
    """A plan feature, quota or subscription status denied the action.

    Status based denials surface as 403; quota exhaustion passes 429.
    """

    code: str = "feature_not_in_plan"
    status_code: int = status.HTTP_403_FORBIDDEN


__all__ = ["FeatureGateError"]
