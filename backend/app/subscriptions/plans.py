"""Administrative plan catalog management."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union
from uuid import uuid4

from pydantic import ValidationError

from .catalog import DEFAULT_PLANS
from .engine import current_time, filter_plans_for_role
from .exceptions import (
    SubscriptionConflictError,
    SubscriptionNotFoundError,
    SubscriptionValidationError,
)
from .models import (
    PlanFeatures,
    PlanType,
    SubscriptionAuditEvent,
    SubscriptionAuditEventType,
    SubscriptionPlan,
)
from .protocols import PlanRepository, SubscriptionEventLogger

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {"name", "display_name", "description", "plan_type", "price", "currency", "duration_days", "features"}
)


def _validation_messages(exc: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]


def build_features(raw: Union[PlanFeatures, Mapping[str, Any]]) -> PlanFeatures:
    """Validate a complete feature record; every field must be supplied."""

    if isinstance(raw, PlanFeatures):
        return raw
    missing = sorted(set(PlanFeatures.model_fields) - set(raw))
    if missing:
        raise SubscriptionValidationError(
            "Plan features are incomplete",
            detail={"missing_fields": missing},
        )
    try:
        return PlanFeatures.model_validate(dict(raw))
    except ValidationError as exc:
        raise SubscriptionValidationError(
            "Plan features are invalid",
            detail={"errors": _validation_messages(exc)},
        ) from exc


def _build_plan(data: Mapping[str, Any]) -> SubscriptionPlan:
    try:
        return SubscriptionPlan.model_validate(dict(data))
    except ValidationError as exc:
        raise SubscriptionValidationError(
            "Plan definition is invalid",
            detail={"errors": _validation_messages(exc)},
        ) from exc


@dataclass
class PlanCatalogService:
    """Reads and administers subscription plan definitions."""

    repository: PlanRepository
    event_logger: SubscriptionEventLogger
    clock: Optional[Callable[[], datetime]] = None
    default_plan_type: PlanType = PlanType.INSTITUTE

    def list_active_plans(self, plan_type: Optional[PlanType] = None) -> Sequence[SubscriptionPlan]:
        return self.repository.list_plans(plan_type=plan_type, active_only=True)

    def list_active_plans_for_role(self, role: Optional[str]) -> List[SubscriptionPlan]:
        plans = self.repository.list_plans(active_only=True)
        return filter_plans_for_role(plans, role, default=self.default_plan_type)

    def list_plans(self) -> Sequence[SubscriptionPlan]:
        return self.repository.list_plans()

    def get_plan(self, plan_id: str) -> SubscriptionPlan:
        plan = self.repository.get_plan(plan_id)
        if plan is None:
            raise SubscriptionNotFoundError(f"Plan {plan_id} not found")
        return plan

    def create_plan(
        self,
        *,
        name: str,
        display_name: str,
        plan_type: PlanType,
        price: int,
        duration_days: int,
        features: Union[PlanFeatures, Mapping[str, Any]],
        description: str = "",
        currency: str = "INR",
        is_active: bool = True,
        actor_id: Optional[str] = None,
    ) -> SubscriptionPlan:
        now = current_time(self.clock)
        plan = _build_plan(
            {
                "id": f"plan_{uuid4().hex}",
                "name": name,
                "display_name": display_name,
                "description": description,
                "plan_type": plan_type,
                "price": price,
                "currency": currency,
                "duration_days": duration_days,
                "features": build_features(features),
                "is_active": is_active,
                "created_at": now,
                "updated_at": now,
            }
        )
        if self.repository.get_plan_by_name(plan.name) is not None:
            raise SubscriptionConflictError(f"A plan named {plan.name!r} already exists")

        stored = self.repository.insert_plan(plan)
        self._log(SubscriptionAuditEventType.PLAN_CREATED, stored, actor_id)
        return stored

    def update_plan(
        self,
        plan_id: str,
        changes: Mapping[str, Any],
        *,
        actor_id: Optional[str] = None,
    ) -> SubscriptionPlan:
        unknown = sorted(set(changes) - _UPDATABLE_FIELDS)
        if unknown:
            raise SubscriptionValidationError(
                "Unsupported plan fields", detail={"fields": unknown}
            )

        def _apply(plan: SubscriptionPlan) -> SubscriptionPlan:
            data: Dict[str, Any] = plan.model_dump()
            data.update({key: value for key, value in changes.items() if key != "features"})
            if "features" in changes:
                raw = changes["features"]
                merged = raw.model_dump() if isinstance(raw, PlanFeatures) else {
                    **plan.features.model_dump(),
                    **dict(raw),
                }
                data["features"] = build_features(merged)
            data["updated_at"] = current_time(self.clock)
            updated = _build_plan(data)
            if updated.name != plan.name:
                clash = self.repository.get_plan_by_name(updated.name)
                if clash is not None and clash.id != plan.id:
                    raise SubscriptionConflictError(f"A plan named {updated.name!r} already exists")
            return updated

        stored = self.repository.update_plan(plan_id, _apply)
        self._log(SubscriptionAuditEventType.PLAN_UPDATED, stored, actor_id)
        return stored

    def toggle_plan_status(self, plan_id: str, *, actor_id: Optional[str] = None) -> SubscriptionPlan:
        """Flip ``is_active``; issued subscriptions keep referencing the plan."""

        def _toggle(plan: SubscriptionPlan) -> SubscriptionPlan:
            return plan.model_copy(
                update={"is_active": not plan.is_active, "updated_at": current_time(self.clock)}
            )

        stored = self.repository.update_plan(plan_id, _toggle)
        self._log(
            SubscriptionAuditEventType.PLAN_STATUS_TOGGLED,
            stored,
            actor_id,
            metadata={"is_active": str(stored.is_active).lower()},
        )
        return stored

    def seed_default_plans(self) -> List[SubscriptionPlan]:
        """Install the default catalog entries that are not yet present."""

        created: List[SubscriptionPlan] = []
        for definition in DEFAULT_PLANS:
            if self.repository.get_plan_by_name(definition.name) is not None:
                continue
            try:
                created.append(
                    self.create_plan(
                        name=definition.name,
                        display_name=definition.display_name,
                        description=definition.description,
                        plan_type=definition.plan_type,
                        price=definition.price,
                        currency=definition.currency,
                        duration_days=definition.duration_days,
                        features=definition.features,
                        actor_id="system",
                    )
                )
            except SubscriptionConflictError:
                logger.info("Default plan %s created concurrently; skipping", definition.name)
        return created

    def _log(
        self,
        event_type: SubscriptionAuditEventType,
        plan: SubscriptionPlan,
        actor_id: Optional[str],
        *,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        self.event_logger.log(
            SubscriptionAuditEvent(
                event_type=event_type,
                plan_id=plan.id,
                actor_id=actor_id,
                metadata={"name": plan.name, **(metadata or {})},
                occurred_at=current_time(self.clock),
            )
        )


__all__ = ["PlanCatalogService", "build_features"]
