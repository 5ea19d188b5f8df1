"""Static role mapping and the default plan catalog."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .models import UNLIMITED, PlanFeatures, PlanType, SupportLevel

ROLE_PLAN_TYPES: Dict[str, PlanType] = {
    "teacher": PlanType.TEACHER,
    "institute": PlanType.INSTITUTE,
    "school": PlanType.INSTITUTE,
    "vendor": PlanType.VENDOR,
    "supplier": PlanType.VENDOR,
}


def plan_type_for_role(role: Optional[str], *, default: PlanType = PlanType.INSTITUTE) -> PlanType:
    """Map an account role to the plan type it may subscribe to."""

    if not role:
        return default
    return ROLE_PLAN_TYPES.get(role.strip().lower(), default)


@dataclass(frozen=True)
class DefaultPlanDefinition:
    """Seed definition installed into an empty plan catalog."""

    name: str
    display_name: str
    description: str
    plan_type: PlanType
    price: int
    duration_days: int
    features: PlanFeatures
    currency: str = "INR"


BASIC_FEATURES = PlanFeatures(
    max_listings=2,
    max_job_posts=1,
    max_monthly_browses=10,
    data_delay_days=7,
    teacher_data_delay_days=7,
    priority_listings=False,
    can_advertise=False,
    instant_vehicle_alerts=False,
    instant_job_alerts=False,
    analytics=False,
    support_level=SupportLevel.BASIC,
)

STANDARD_FEATURES = PlanFeatures(
    max_listings=10,
    max_job_posts=5,
    max_monthly_browses=50,
    data_delay_days=1,
    teacher_data_delay_days=1,
    priority_listings=False,
    can_advertise=False,
    instant_vehicle_alerts=True,
    instant_job_alerts=True,
    analytics=False,
    support_level=SupportLevel.PRIORITY,
)

PREMIUM_FEATURES = PlanFeatures(
    max_listings=50,
    max_job_posts=25,
    max_monthly_browses=UNLIMITED,
    data_delay_days=0,
    teacher_data_delay_days=0,
    priority_listings=True,
    can_advertise=True,
    instant_vehicle_alerts=True,
    instant_job_alerts=True,
    analytics=True,
    support_level=SupportLevel.DEDICATED,
)

_TIERS: Tuple[Tuple[str, str, str, int, PlanFeatures], ...] = (
    ("basic", "Basic", "Entry-level access for occasional users", 0, BASIC_FEATURES),
    ("standard", "Standard", "For regular users with moderate volume", 49900, STANDARD_FEATURES),
    ("premium", "Premium", "Unlimited browsing and priority placement", 199900, PREMIUM_FEATURES),
)

DEFAULT_PLANS: Tuple[DefaultPlanDefinition, ...] = tuple(
    DefaultPlanDefinition(
        name=f"{plan_type.value}_{tier}",
        display_name=f"{label} {plan_type.value.title()} Plan",
        description=description,
        plan_type=plan_type,
        price=price,
        duration_days=30,
        features=features,
    )
    for plan_type in PlanType
    for tier, label, description, price, features in _TIERS
)


__all__ = [
    "DEFAULT_PLANS",
    "DefaultPlanDefinition",
    "ROLE_PLAN_TYPES",
    "plan_type_for_role",
]
