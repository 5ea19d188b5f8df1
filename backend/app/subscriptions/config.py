"""Subscription engine configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os

from .models import PlanType


@dataclass(frozen=True)
class SubscriptionConfig:
    """Policy knobs for entitlement derivation and the approval workflow."""

    expiry_warning_days: int
    approval_reactivates_suspended: bool
    inactive_data_delay_days: int
    default_plan_type: PlanType
    seed_default_plans: bool


@dataclass(frozen=True)
class EntitlementClientConfig:
    """Settings for the HTTP entitlement source used by the fetch coordinator."""

    base_url: str
    timeout_seconds: float


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _to_plan_type(value: Optional[str], *, default: PlanType) -> PlanType:
    if not value:
        return default
    try:
        return PlanType(value.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown plan type {value!r}") from exc


def load_subscription_config(env: Optional[Mapping[str, str]] = None) -> SubscriptionConfig:
    """Load :class:`SubscriptionConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    expiry_warning_days = max(
        0, _to_int(env_mapping.get("SUBSCRIPTION_EXPIRY_WARNING_DAYS"), default=7)
    )
    approval_reactivates_suspended = _to_bool(
        env_mapping.get("SUBSCRIPTION_APPROVAL_REACTIVATES_SUSPENDED"), default=False
    )
    inactive_data_delay_days = max(
        0, _to_int(env_mapping.get("SUBSCRIPTION_INACTIVE_DATA_DELAY_DAYS"), default=7)
    )
    default_plan_type = _to_plan_type(
        env_mapping.get("SUBSCRIPTION_DEFAULT_PLAN_TYPE"), default=PlanType.INSTITUTE
    )
    seed_default_plans = _to_bool(env_mapping.get("SUBSCRIPTION_SEED_DEFAULT_PLANS"), default=True)

    return SubscriptionConfig(
        expiry_warning_days=expiry_warning_days,
        approval_reactivates_suspended=approval_reactivates_suspended,
        inactive_data_delay_days=inactive_data_delay_days,
        default_plan_type=default_plan_type,
        seed_default_plans=seed_default_plans,
    )


def load_client_config(env: Optional[Mapping[str, str]] = None) -> EntitlementClientConfig:
    """Load :class:`EntitlementClientConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    base_url = env_mapping.get("SUBSCRIPTION_CLIENT_BASE_URL", "http://localhost:8000")
    timeout_seconds = max(
        0.1, _to_float(env_mapping.get("SUBSCRIPTION_CLIENT_TIMEOUT"), default=10.0)
    )

    return EntitlementClientConfig(base_url=base_url.rstrip("/"), timeout_seconds=timeout_seconds)


__all__ = [
    "EntitlementClientConfig",
    "SubscriptionConfig",
    "load_client_config",
    "load_subscription_config",
]
