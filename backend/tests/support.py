"""In-memory repositories, fakes and model factories shared by the test suite."""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from backend.app.subscriptions import (
    PaymentStatus,
    PlanFeatures,
    PlanType,
    RequestStatus,
    SubscriptionAuditEvent,
    SubscriptionConflictError,
    SubscriptionFilters,
    SubscriptionNotFoundError,
    SubscriptionPage,
    SubscriptionPlan,
    SubscriptionRequest,
    SubscriptionStatus,
    SupportLevel,
    UsageCounter,
    UserSubscription,
)
from backend.app.subscriptions.engine import days_remaining

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, moment: datetime = NOW) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **kwargs) -> None:
        self.moment = self.moment + timedelta(**kwargs)


class RecordingEventLogger:
    def __init__(self) -> None:
        self.events: List[SubscriptionAuditEvent] = []

    def log(self, event: SubscriptionAuditEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> List[str]:
        return [event.event_type.value for event in self.events]


class InMemorySubscriptionStore:
    """Plan, subscription and request storage guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.plans: Dict[str, SubscriptionPlan] = {}
        self.subscriptions: Dict[str, UserSubscription] = {}
        self.requests: Dict[str, SubscriptionRequest] = {}

    # Plans

    def list_plans(
        self,
        *,
        plan_type: Optional[PlanType] = None,
        active_only: bool = False,
    ) -> Sequence[SubscriptionPlan]:
        with self._lock:
            plans = [
                plan
                for plan in self.plans.values()
                if (plan_type is None or plan.plan_type == plan_type) and (not active_only or plan.is_active)
            ]
        return sorted(plans, key=lambda plan: (plan.plan_type.value, plan.price, plan.name))

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        return self.plans.get(plan_id)

    def get_plan_by_name(self, name: str) -> Optional[SubscriptionPlan]:
        return next((plan for plan in self.plans.values() if plan.name == name), None)

    def insert_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        with self._lock:
            if self.get_plan_by_name(plan.name) is not None:
                raise SubscriptionConflictError(f"A plan named {plan.name!r} already exists")
            self.plans[plan.id] = plan
        return plan

    def update_plan(self, plan_id: str, mutate) -> SubscriptionPlan:
        with self._lock:
            plan = self.plans.get(plan_id)
            if plan is None:
                raise SubscriptionNotFoundError(f"Plan {plan_id} not found")
            updated = mutate(plan)
            self.plans[plan_id] = updated
        return updated

    # Subscriptions

    def get_subscription(self, subscription_id: str) -> Optional[UserSubscription]:
        return self.subscriptions.get(subscription_id)

    def get_current_subscription(self, account_id: str) -> Optional[UserSubscription]:
        with self._lock:
            return next(
                (
                    subscription
                    for subscription in self.subscriptions.values()
                    if subscription.account_id == account_id and subscription.is_current
                ),
                None,
            )

    def list_subscriptions(self, filters: SubscriptionFilters, *, now: datetime) -> SubscriptionPage:
        matches = []
        for subscription in self.list_current_subscriptions():
            if filters.status is not None and subscription.status != filters.status:
                continue
            if filters.plan_id and subscription.plan_id != filters.plan_id:
                continue
            if filters.account_id and subscription.account_id != filters.account_id:
                continue
            if filters.expiring_within_days is not None:
                remaining = days_remaining(subscription.end_date, now)
                if not 0 <= remaining <= filters.expiring_within_days:
                    continue
            matches.append(subscription)
        matches.sort(key=lambda subscription: (subscription.end_date, subscription.id))
        return SubscriptionPage(
            items=matches[filters.offset : filters.offset + filters.page_size],
            total=len(matches),
            page=filters.page,
            page_size=filters.page_size,
        )

    def list_current_subscriptions(self) -> Sequence[UserSubscription]:
        with self._lock:
            current = [subscription for subscription in self.subscriptions.values() if subscription.is_current]
        return sorted(current, key=lambda subscription: subscription.created_at)

    def create_subscription(self, subscription: UserSubscription) -> UserSubscription:
        with self._lock:
            self._supersede_current(subscription.account_id, subscription.created_at)
            self.subscriptions[subscription.id] = subscription
        return subscription

    def update_subscription(self, subscription_id: str, mutate) -> UserSubscription:
        with self._lock:
            subscription = self.subscriptions.get(subscription_id)
            if subscription is None:
                raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
            updated = mutate(subscription)
            self.subscriptions[subscription_id] = updated
        return updated

    def increment_usage(
        self,
        subscription_id: str,
        counter: UsageCounter,
        *,
        amount: int,
        limit: int,
    ) -> Optional[UserSubscription]:
        with self._lock:
            subscription = self.subscriptions.get(subscription_id)
            if subscription is None or not subscription.is_current:
                return None
            if subscription.status != SubscriptionStatus.ACTIVE:
                return None
            if subscription.payment_status == PaymentStatus.FAILED:
                return None
            used = subscription.used(counter)
            if limit != -1 and used + amount > limit:
                return None
            updated = subscription.model_copy(update={_column(counter): used + amount})
            self.subscriptions[subscription_id] = updated
        return updated

    def release_usage(
        self,
        subscription_id: str,
        counter: UsageCounter,
        *,
        amount: int,
    ) -> Optional[UserSubscription]:
        with self._lock:
            subscription = self.subscriptions.get(subscription_id)
            if subscription is None:
                return None
            updated = subscription.model_copy(
                update={_column(counter): max(subscription.used(counter) - amount, 0)}
            )
            self.subscriptions[subscription_id] = updated
        return updated

    def _supersede_current(self, account_id: str, moment: datetime) -> None:
        for key, existing in list(self.subscriptions.items()):
            if existing.account_id == account_id and existing.is_current:
                self.subscriptions[key] = existing.model_copy(
                    update={"is_current": False, "superseded_at": moment, "updated_at": moment}
                )

    # Requests

    def create_request(self, request: SubscriptionRequest) -> SubscriptionRequest:
        with self._lock:
            if self.has_pending_request(request.account_id, request.requested_plan_id):
                raise SubscriptionConflictError("A pending request for this plan already exists")
            self.requests[request.id] = request
        return request

    def get_request(self, request_id: str) -> Optional[SubscriptionRequest]:
        return self.requests.get(request_id)

    def list_requests(
        self,
        *,
        account_id: Optional[str] = None,
        status: Optional[RequestStatus] = None,
    ) -> Sequence[SubscriptionRequest]:
        matches = [
            request
            for request in self.requests.values()
            if (not account_id or request.account_id == account_id) and (status is None or request.status == status)
        ]
        return sorted(matches, key=lambda request: request.created_at, reverse=True)

    def has_pending_request(self, account_id: str, plan_id: str) -> bool:
        return any(
            request.account_id == account_id
            and request.requested_plan_id == plan_id
            and request.status == RequestStatus.PENDING
            for request in self.requests.values()
        )

    def resolve_request(self, request_id: str, resolve) -> Tuple[SubscriptionRequest, Optional[UserSubscription]]:
        with self._lock:
            request = self.requests.get(request_id)
            if request is None:
                raise SubscriptionNotFoundError(f"Request {request_id} not found")
            current = self.get_current_subscription(request.account_id)
            resolved, subscription = resolve(request, current)
            self.requests[request_id] = resolved
            if subscription is None or subscription == current:
                return resolved, current
            if current is not None and subscription.id == current.id:
                self.subscriptions[subscription.id] = subscription
                return resolved, subscription
            self._supersede_current(request.account_id, subscription.created_at)
            self.subscriptions[subscription.id] = subscription
            return resolved, subscription


def _column(counter: UsageCounter) -> str:
    return "browse_count_used" if counter == UsageCounter.BROWSE else "listing_count_used"


def make_features(**overrides) -> PlanFeatures:
    values = dict(
        max_listings=5,
        max_job_posts=2,
        max_monthly_browses=20,
        data_delay_days=3,
        teacher_data_delay_days=5,
        priority_listings=False,
        can_advertise=False,
        instant_vehicle_alerts=False,
        instant_job_alerts=False,
        analytics=False,
        support_level=SupportLevel.BASIC,
    )
    values.update(overrides)
    return PlanFeatures(**values)


def make_plan(plan_id: str, **overrides) -> SubscriptionPlan:
    values = dict(
        id=plan_id,
        name=plan_id,
        display_name=plan_id.replace("_", " ").title(),
        plan_type=PlanType.INSTITUTE,
        price=0,
        duration_days=30,
        features=make_features(),
        created_at=NOW,
        updated_at=NOW,
    )
    values.update(overrides)
    return SubscriptionPlan(**values)


def make_subscription(subscription_id: str, account_id: str, plan: SubscriptionPlan, **overrides) -> UserSubscription:
    values = dict(
        id=subscription_id,
        account_id=account_id,
        plan_id=plan.id,
        plan_name=plan.display_name,
        status=SubscriptionStatus.ACTIVE,
        payment_status=PaymentStatus.COMPLETED,
        start_date=NOW - timedelta(days=5),
        end_date=NOW + timedelta(days=25),
        last_usage_reset_at=NOW - timedelta(days=5),
        created_at=NOW - timedelta(days=5),
        updated_at=NOW - timedelta(days=5),
    )
    values.update(overrides)
    return UserSubscription(**values)
