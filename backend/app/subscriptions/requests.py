"""Plan change request workflow: create, approve and reject."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence, Tuple
from uuid import uuid4

from .catalog import ROLE_PLAN_TYPES
from .config import SubscriptionConfig, load_subscription_config
from .engine import current_time
from .exceptions import (
    InvalidTransitionError,
    SubscriptionConflictError,
    SubscriptionNotFoundError,
    SubscriptionValidationError,
)
from .models import (
    PaymentStatus,
    RequestStatus,
    RequestType,
    SubscriptionAuditEvent,
    SubscriptionAuditEventType,
    SubscriptionPlan,
    SubscriptionRequest,
    SubscriptionStatus,
    UserSubscription,
)
from .protocols import (
    PlanRepository,
    RequestRepository,
    SubscriptionEventLogger,
    SubscriptionRepository,
)


def classify_request(
    current_plan: Optional[SubscriptionPlan],
    requested_plan: SubscriptionPlan,
    requested_type: Optional[RequestType] = None,
) -> RequestType:
    """Derive the request type from the current and requested plans.

    A caller supplied type is only honoured when the comparison is ambiguous
    (a different plan at the same price); otherwise it must agree with the
    computed type.
    """

    if current_plan is not None and current_plan.id == requested_plan.id:
        computed = RequestType.RENEWAL
    else:
        current_price = current_plan.price if current_plan is not None else 0
        if requested_plan.price > current_price:
            computed = RequestType.UPGRADE
        elif requested_plan.price < current_price:
            computed = RequestType.DOWNGRADE
        elif requested_type in (None, RequestType.UPGRADE, RequestType.DOWNGRADE):
            return requested_type or RequestType.UPGRADE
        else:
            raise SubscriptionValidationError(
                "A renewal must request the current plan",
                detail={"request_type": requested_type.value},
            )

    if requested_type is not None and requested_type != computed:
        raise SubscriptionValidationError(
            f"Request type {requested_type.value!r} does not match the plan change",
            detail={"request_type": requested_type.value, "expected_type": computed.value},
        )
    return computed


@dataclass
class ChangeRequestService:
    """Mediates plan changes through an administrator approval step."""

    plans: PlanRepository
    subscriptions: SubscriptionRepository
    requests: RequestRepository
    event_logger: SubscriptionEventLogger
    config: SubscriptionConfig = field(default_factory=load_subscription_config)
    clock: Optional[Callable[[], datetime]] = None

    def create_request(
        self,
        *,
        account_id: str,
        plan_id: str,
        role: Optional[str] = None,
        request_type: Optional[RequestType] = None,
        user_notes: Optional[str] = None,
    ) -> SubscriptionRequest:
        if not account_id:
            raise SubscriptionValidationError("account_id is required")

        plan = self._require_plan(plan_id)
        if not plan.is_active:
            raise SubscriptionValidationError(f"Plan {plan.name!r} is not available")
        role_key = (role or "").strip().lower()
        if role_key in ROLE_PLAN_TYPES and ROLE_PLAN_TYPES[role_key] != plan.plan_type:
            raise SubscriptionValidationError(
                f"Plan {plan.name!r} is not offered to {role_key} accounts",
                detail={"plan_type": plan.plan_type.value},
            )

        current = self.subscriptions.get_current_subscription(account_id)
        current_plan = self.plans.get_plan(current.plan_id) if current is not None else None
        resolved_type = classify_request(current_plan, plan, request_type)

        if self.requests.has_pending_request(account_id, plan.id):
            raise SubscriptionConflictError(
                "A pending request for this plan already exists",
                detail={"plan_id": plan.id},
            )

        request = SubscriptionRequest(
            id=f"req_{uuid4().hex}",
            account_id=account_id,
            requested_plan_id=plan.id,
            requested_plan_name=plan.display_name,
            current_plan_id=current.plan_id if current is not None else None,
            request_type=resolved_type,
            user_notes=user_notes,
            created_at=current_time(self.clock),
        )
        stored = self.requests.create_request(request)
        self._log(SubscriptionAuditEventType.REQUEST_CREATED, stored, None, account_id)
        return stored

    def list_my_requests(self, account_id: str) -> Sequence[SubscriptionRequest]:
        return self.requests.list_requests(account_id=account_id)

    def list_requests(
        self,
        *,
        status: Optional[RequestStatus] = None,
        account_id: Optional[str] = None,
    ) -> Sequence[SubscriptionRequest]:
        return self.requests.list_requests(account_id=account_id, status=status)

    def approve_request(
        self,
        request_id: str,
        *,
        admin_id: str,
        admin_notes: Optional[str] = None,
    ) -> Tuple[SubscriptionRequest, UserSubscription]:
        """Apply the requested plan to the account's subscription.

        Counters reset to zero and the period restarts from now. A renewal of a
        subscription that has not lapsed extends from its current end date.
        Suspended subscriptions stay suspended unless the configuration allows
        approval to reactivate them.
        """

        now = current_time(self.clock)

        def _resolve(
            request: SubscriptionRequest,
            current: Optional[UserSubscription],
        ) -> Tuple[SubscriptionRequest, Optional[UserSubscription]]:
            self._ensure_pending(request)
            plan = self._require_plan(request.requested_plan_id)
            if current is None:
                subscription = self._new_subscription(request.account_id, plan, now, admin_id, admin_notes)
            else:
                subscription = self._apply_plan(current, plan, request.request_type, now, admin_notes)
            resolved = request.model_copy(
                update={
                    "status": RequestStatus.APPROVED,
                    "admin_notes": admin_notes,
                    "resolved_by": admin_id,
                    "resolved_at": now,
                }
            )
            return resolved, subscription

        resolved, subscription = self.requests.resolve_request(request_id, _resolve)
        if subscription is None:
            raise RuntimeError(f"Approval of request {request_id} produced no subscription")
        self._log(SubscriptionAuditEventType.REQUEST_APPROVED, resolved, admin_id, resolved.account_id, subscription.id)
        return resolved, subscription

    def reject_request(
        self,
        request_id: str,
        *,
        admin_id: str,
        admin_notes: Optional[str] = None,
    ) -> SubscriptionRequest:
        now = current_time(self.clock)

        def _resolve(
            request: SubscriptionRequest,
            current: Optional[UserSubscription],
        ) -> Tuple[SubscriptionRequest, Optional[UserSubscription]]:
            self._ensure_pending(request)
            resolved = request.model_copy(
                update={
                    "status": RequestStatus.REJECTED,
                    "admin_notes": admin_notes,
                    "resolved_by": admin_id,
                    "resolved_at": now,
                }
            )
            return resolved, current

        resolved, _ = self.requests.resolve_request(request_id, _resolve)
        self._log(SubscriptionAuditEventType.REQUEST_REJECTED, resolved, admin_id, resolved.account_id)
        return resolved

    def _ensure_pending(self, request: SubscriptionRequest) -> None:
        if request.status != RequestStatus.PENDING:
            raise InvalidTransitionError(
                f"Request {request.id} is already {request.status.value}",
                detail={"status": request.status.value},
            )

    def _require_plan(self, plan_id: str) -> SubscriptionPlan:
        plan = self.plans.get_plan(plan_id)
        if plan is None:
            raise SubscriptionNotFoundError(f"Plan {plan_id} not found")
        return plan

    def _new_subscription(
        self,
        account_id: str,
        plan: SubscriptionPlan,
        now: datetime,
        admin_id: str,
        admin_notes: Optional[str],
    ) -> UserSubscription:
        return UserSubscription(
            id=f"sub_{uuid4().hex}",
            account_id=account_id,
            plan_id=plan.id,
            plan_name=plan.display_name,
            status=SubscriptionStatus.ACTIVE,
            payment_status=PaymentStatus.PENDING if plan.price > 0 else PaymentStatus.COMPLETED,
            start_date=now,
            end_date=now + timedelta(days=plan.duration_days),
            last_usage_reset_at=now,
            assigned_by=admin_id,
            notes=admin_notes,
            created_at=now,
            updated_at=now,
        )

    def _apply_plan(
        self,
        current: UserSubscription,
        plan: SubscriptionPlan,
        request_type: RequestType,
        now: datetime,
        admin_notes: Optional[str],
    ) -> UserSubscription:
        extend_from_end = (
            request_type == RequestType.RENEWAL
            and current.plan_id == plan.id
            and current.end_date > now
        )
        period_start = current.start_date if extend_from_end else now
        base = current.end_date if extend_from_end else now

        status = current.status
        suspension_reason = current.suspension_reason
        if status != SubscriptionStatus.SUSPENDED or self.config.approval_reactivates_suspended:
            status = SubscriptionStatus.ACTIVE
            suspension_reason = None

        return current.model_copy(
            update={
                "plan_id": plan.id,
                "plan_name": plan.display_name,
                "status": status,
                "suspension_reason": suspension_reason,
                "payment_status": current.payment_status if plan.price > 0 else PaymentStatus.COMPLETED,
                "start_date": period_start,
                "end_date": base + timedelta(days=plan.duration_days),
                "browse_count_used": 0,
                "listing_count_used": 0,
                "last_usage_reset_at": now,
                "notes": admin_notes or current.notes,
                "updated_at": now,
            }
        )

    def _log(
        self,
        event_type: SubscriptionAuditEventType,
        request: SubscriptionRequest,
        actor_id: Optional[str],
        account_id: str,
        subscription_id: Optional[str] = None,
    ) -> None:
        self.event_logger.log(
            SubscriptionAuditEvent(
                event_type=event_type,
                request_id=request.id,
                subscription_id=subscription_id,
                plan_id=request.requested_plan_id,
                actor_id=actor_id or account_id,
                metadata={"request_type": request.request_type.value, "account_id": account_id},
                occurred_at=current_time(self.clock),
            )
        )


__all__ = ["ChangeRequestService", "classify_request"]
