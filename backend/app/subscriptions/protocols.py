"""Persistence and side-effect interfaces consumed by subscription services."""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Protocol, Sequence, Tuple

from .models import (
    PlanType,
    RequestStatus,
    SubscriptionAuditEvent,
    SubscriptionFilters,
    SubscriptionPage,
    SubscriptionPlan,
    SubscriptionRequest,
    UsageCounter,
    UserSubscription,
)

SubscriptionMutator = Callable[[UserSubscription], UserSubscription]
PlanMutator = Callable[[SubscriptionPlan], SubscriptionPlan]
RequestResolver = Callable[
    [SubscriptionRequest, Optional[UserSubscription]],
    Tuple[SubscriptionRequest, Optional[UserSubscription]],
]


class PlanRepository(Protocol):
    """Storage for plan definitions."""

    def list_plans(
        self,
        *,
        plan_type: Optional[PlanType] = None,
        active_only: bool = False,
    ) -> Sequence[SubscriptionPlan]:
        ...

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        ...

    def get_plan_by_name(self, name: str) -> Optional[SubscriptionPlan]:
        ...

    def insert_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        """Persist a new plan, raising ``SubscriptionConflictError`` on a duplicate name."""

    def update_plan(self, plan_id: str, mutate: PlanMutator) -> SubscriptionPlan:
        """Apply ``mutate`` to the locked plan row and persist the result."""


class SubscriptionRepository(Protocol):
    """Storage for entitlement records and their usage counters.

    Every write to a single subscription is serialised by the implementation.
    ``mutate`` callbacks run while the row is locked and may raise to abort the
    write without side effects.
    """

    def get_subscription(self, subscription_id: str) -> Optional[UserSubscription]:
        ...

    def get_current_subscription(self, account_id: str) -> Optional[UserSubscription]:
        ...

    def list_subscriptions(self, filters: SubscriptionFilters, *, now: datetime) -> SubscriptionPage:
        ...

    def list_current_subscriptions(self) -> Sequence[UserSubscription]:
        ...

    def create_subscription(self, subscription: UserSubscription) -> UserSubscription:
        """Insert ``subscription`` as current, superseding the account's previous record."""

    def update_subscription(self, subscription_id: str, mutate: SubscriptionMutator) -> UserSubscription:
        ...

    def increment_usage(
        self,
        subscription_id: str,
        counter: UsageCounter,
        *,
        amount: int,
        limit: int,
    ) -> Optional[UserSubscription]:
        """Atomically add ``amount`` unless it would exceed ``limit``.

        Returns ``None`` when the increment was refused.
        """

    def release_usage(
        self,
        subscription_id: str,
        counter: UsageCounter,
        *,
        amount: int,
    ) -> Optional[UserSubscription]:
        """Atomically subtract ``amount``, never going below zero."""


class RequestRepository(Protocol):
    """Storage for plan change requests."""

    def create_request(self, request: SubscriptionRequest) -> SubscriptionRequest:
        """Persist a pending request, raising ``SubscriptionConflictError`` on a duplicate."""

    def get_request(self, request_id: str) -> Optional[SubscriptionRequest]:
        ...

    def list_requests(
        self,
        *,
        account_id: Optional[str] = None,
        status: Optional[RequestStatus] = None,
    ) -> Sequence[SubscriptionRequest]:
        ...

    def has_pending_request(self, account_id: str, plan_id: str) -> bool:
        ...

    def resolve_request(
        self,
        request_id: str,
        resolve: RequestResolver,
    ) -> Tuple[SubscriptionRequest, Optional[UserSubscription]]:
        """Lock the request and the account's current subscription, then write both.

        ``resolve`` receives the locked rows and returns their replacements. A
        returned subscription whose id differs from the locked one is inserted
        as the account's new current subscription.
        """


class SubscriptionEventLogger(Protocol):
    """Captures structured subscription audit events."""

    def log(self, event: SubscriptionAuditEvent) -> None:
        ...


__all__ = [
    "PlanMutator",
    "PlanRepository",
    "RequestRepository",
    "RequestResolver",
    "SubscriptionEventLogger",
    "SubscriptionMutator",
    "SubscriptionRepository",
]
