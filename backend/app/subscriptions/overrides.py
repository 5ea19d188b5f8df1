"""Administrative overrides that mutate subscriptions outside the request workflow."""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from .config import SubscriptionConfig, load_subscription_config
from .engine import add_months, current_time, expiry_flags
from .exceptions import (
    InvalidTransitionError,
    SubscriptionNotFoundError,
    SubscriptionValidationError,
)
from .models import (
    GlobalSubscriptionStats,
    PaymentStatus,
    PlanStats,
    SubscriptionAuditEvent,
    SubscriptionAuditEventType,
    SubscriptionFilters,
    SubscriptionPage,
    SubscriptionPlan,
    SubscriptionStatus,
    UserSubscription,
    ensure_utc,
)
from .protocols import PlanRepository, SubscriptionEventLogger, SubscriptionMutator, SubscriptionRepository

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionAdminService:
    """Support and operations tooling for entitlement records.

    Every mutation runs under the repository's per-subscription lock and
    re-checks its precondition against the locked row.
    """

    plans: PlanRepository
    subscriptions: SubscriptionRepository
    event_logger: SubscriptionEventLogger
    config: SubscriptionConfig = field(default_factory=load_subscription_config)
    clock: Optional[Callable[[], datetime]] = None

    def get_subscription(self, subscription_id: str) -> UserSubscription:
        subscription = self.subscriptions.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    def list_subscriptions(self, filters: SubscriptionFilters) -> SubscriptionPage:
        return self.subscriptions.list_subscriptions(filters, now=current_time(self.clock))

    def assign(
        self,
        *,
        account_id: str,
        plan_id: str,
        admin_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        payment_status: Optional[PaymentStatus] = None,
        notes: Optional[str] = None,
    ) -> UserSubscription:
        """Grant a plan directly, superseding any current subscription."""

        if not account_id:
            raise SubscriptionValidationError("account_id is required")
        plan = self._require_plan(plan_id)
        now = current_time(self.clock)
        start = ensure_utc(start_date) if start_date else now
        end = ensure_utc(end_date) if end_date else start + timedelta(days=plan.duration_days)
        if end <= start:
            raise SubscriptionValidationError("end_date must be after start_date")

        subscription = UserSubscription(
            id=f"sub_{uuid4().hex}",
            account_id=account_id,
            plan_id=plan.id,
            plan_name=plan.display_name,
            status=SubscriptionStatus.ACTIVE,
            payment_status=payment_status or (
                PaymentStatus.PENDING if plan.price > 0 else PaymentStatus.COMPLETED
            ),
            start_date=start,
            end_date=end,
            last_usage_reset_at=now,
            assigned_by=admin_id,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        stored = self.subscriptions.create_subscription(subscription)
        self._log(SubscriptionAuditEventType.SUBSCRIPTION_ASSIGNED, stored, admin_id, plan_id=plan.id)
        return stored

    def extend(
        self,
        subscription_id: str,
        new_end_date: datetime,
        *,
        admin_id: str,
        notes: Optional[str] = None,
    ) -> UserSubscription:
        new_end_date = ensure_utc(new_end_date)

        def _extend(subscription: UserSubscription) -> UserSubscription:
            if new_end_date < subscription.end_date:
                raise InvalidTransitionError(
                    "New end date must not be earlier than the current end date",
                    detail={"end_date": subscription.end_date.isoformat()},
                )
            return self._touch(subscription, end_date=new_end_date, notes=notes or subscription.notes)

        updated = self._mutate(subscription_id, _extend)
        self._log(
            SubscriptionAuditEventType.SUBSCRIPTION_EXTENDED,
            updated,
            admin_id,
            end_date=updated.end_date.isoformat(),
        )
        return updated

    def continue_subscription(
        self,
        subscription_id: str,
        months: int,
        *,
        admin_id: str,
        notes: Optional[str] = None,
    ) -> UserSubscription:
        """Extend by calendar months from the end date, or from now once lapsed."""

        if months < 1:
            raise SubscriptionValidationError("months must be >= 1")
        now = current_time(self.clock)

        def _continue(subscription: UserSubscription) -> UserSubscription:
            base = subscription.end_date if subscription.end_date > now else now
            return self._touch(subscription, end_date=add_months(base, months), notes=notes or subscription.notes)

        updated = self._mutate(subscription_id, _continue)
        self._log(
            SubscriptionAuditEventType.SUBSCRIPTION_CONTINUED,
            updated,
            admin_id,
            months=str(months),
            end_date=updated.end_date.isoformat(),
        )
        return updated

    def reset_usage(
        self,
        subscription_id: str,
        *,
        admin_id: str,
        reason: Optional[str] = None,
    ) -> UserSubscription:
        now = current_time(self.clock)

        def _reset(subscription: UserSubscription) -> UserSubscription:
            return self._touch(
                subscription,
                browse_count_used=0,
                listing_count_used=0,
                last_usage_reset_at=now,
            )

        updated = self._mutate(subscription_id, _reset)
        self._log(SubscriptionAuditEventType.USAGE_RESET, updated, admin_id, reason=reason or "")
        return updated

    def suspend(self, subscription_id: str, reason: str, *, admin_id: str) -> UserSubscription:
        if not reason or not reason.strip():
            raise SubscriptionValidationError("A suspension reason is required")

        def _suspend(subscription: UserSubscription) -> UserSubscription:
            if subscription.status == SubscriptionStatus.SUSPENDED:
                raise InvalidTransitionError("Subscription is already suspended")
            return self._touch(
                subscription,
                status=SubscriptionStatus.SUSPENDED,
                suspension_reason=reason.strip(),
            )

        updated = self._mutate(subscription_id, _suspend)
        self._log(SubscriptionAuditEventType.SUBSCRIPTION_SUSPENDED, updated, admin_id, reason=reason.strip())
        return updated

    def reactivate(
        self,
        subscription_id: str,
        *,
        admin_id: str,
        notes: Optional[str] = None,
    ) -> UserSubscription:
        """Return a suspended subscription to ``active``; dates are not touched."""

        def _reactivate(subscription: UserSubscription) -> UserSubscription:
            if subscription.status != SubscriptionStatus.SUSPENDED:
                raise InvalidTransitionError(
                    "Only suspended subscriptions can be reactivated",
                    detail={"status": subscription.status.value},
                )
            return self._touch(
                subscription,
                status=SubscriptionStatus.ACTIVE,
                suspension_reason=None,
                notes=notes or subscription.notes,
            )

        updated = self._mutate(subscription_id, _reactivate)
        self._log(SubscriptionAuditEventType.SUBSCRIPTION_REACTIVATED, updated, admin_id)
        return updated

    def change_plan(
        self,
        subscription_id: str,
        plan_id: str,
        *,
        admin_id: str,
        notes: Optional[str] = None,
    ) -> UserSubscription:
        """Switch plans directly, resetting counters and keeping the end date."""

        plan = self._require_plan(plan_id)
        now = current_time(self.clock)

        def _change(subscription: UserSubscription) -> UserSubscription:
            if subscription.plan_id == plan.id:
                raise InvalidTransitionError("Subscription is already on this plan")
            return self._touch(
                subscription,
                plan_id=plan.id,
                plan_name=plan.display_name,
                browse_count_used=0,
                listing_count_used=0,
                last_usage_reset_at=now,
                notes=notes or subscription.notes,
            )

        updated = self._mutate(subscription_id, _change)
        self._log(SubscriptionAuditEventType.SUBSCRIPTION_PLAN_CHANGED, updated, admin_id, plan_id=plan.id)
        return updated

    def update_payment_status(
        self,
        subscription_id: str,
        payment_status: PaymentStatus,
        *,
        admin_id: str,
    ) -> UserSubscription:
        updated = self._mutate(
            subscription_id,
            lambda subscription: self._touch(subscription, payment_status=payment_status),
        )
        self._log(
            SubscriptionAuditEventType.PAYMENT_STATUS_CHANGED,
            updated,
            admin_id,
            payment_status=payment_status.value,
        )
        return updated

    def cancel(
        self,
        subscription_id: str,
        *,
        admin_id: str,
        reason: Optional[str] = None,
    ) -> UserSubscription:
        """End the subscription now and retire the record without deleting it.

        The account is left without a current subscription until a request is
        approved or a plan is assigned again.
        """

        now = current_time(self.clock)

        def _cancel(subscription: UserSubscription) -> UserSubscription:
            return self._touch(
                subscription,
                status=SubscriptionStatus.EXPIRED,
                is_current=False,
                superseded_at=now,
                notes=reason or subscription.notes,
            )

        updated = self._mutate(subscription_id, _cancel)
        self._log(SubscriptionAuditEventType.SUBSCRIPTION_CANCELLED, updated, admin_id, reason=reason or "")
        return updated

    def expire_lapsed(self, *, admin_id: str = "system") -> List[UserSubscription]:
        """Persist ``expired`` on active subscriptions whose end date has lapsed."""

        now = current_time(self.clock)
        expired: List[UserSubscription] = []
        for candidate in self.subscriptions.list_current_subscriptions():
            if candidate.status != SubscriptionStatus.ACTIVE:
                continue
            if not expiry_flags(candidate.end_date, now, self.config.expiry_warning_days)[1]:
                continue

            def _expire(subscription: UserSubscription) -> UserSubscription:
                _, is_expired, _ = expiry_flags(subscription.end_date, now, self.config.expiry_warning_days)
                if subscription.status != SubscriptionStatus.ACTIVE or not is_expired:
                    raise InvalidTransitionError("Subscription changed before it could be expired")
                return self._touch(subscription, status=SubscriptionStatus.EXPIRED)

            try:
                updated = self._mutate(candidate.id, _expire)
            except InvalidTransitionError:
                logger.info("Skipping expiry of subscription %s; it changed concurrently", candidate.id)
                continue
            self._log(SubscriptionAuditEventType.SUBSCRIPTION_EXPIRED, updated, admin_id)
            expired.append(updated)
        return expired

    def global_stats(self) -> GlobalSubscriptionStats:
        now = current_time(self.clock)
        warning_days = self.config.expiry_warning_days
        plans = {plan.id: plan for plan in self.plans.list_plans()}
        subscriptions = self.subscriptions.list_current_subscriptions()

        active = expired = suspended = expiring_soon = 0
        revenue = 0
        for subscription in subscriptions:
            _, is_expired, is_expiring_soon = expiry_flags(subscription.end_date, now, warning_days)
            if subscription.status == SubscriptionStatus.SUSPENDED:
                suspended += 1
            elif subscription.status == SubscriptionStatus.EXPIRED or is_expired:
                expired += 1
            else:
                active += 1
                if is_expiring_soon:
                    expiring_soon += 1
                plan = plans.get(subscription.plan_id)
                if plan is not None:
                    revenue += plan.price

        return GlobalSubscriptionStats(
            total_subscriptions=len(subscriptions),
            active_subscriptions=active,
            expired_subscriptions=expired,
            suspended_subscriptions=suspended,
            expiring_soon=expiring_soon,
            total_plans=len(plans),
            active_plans=sum(1 for plan in plans.values() if plan.is_active),
            revenue_projection=revenue,
        )

    def plan_stats(self) -> List[PlanStats]:
        now = current_time(self.clock)
        grouped: Dict[str, List[UserSubscription]] = defaultdict(list)
        for subscription in self.subscriptions.list_current_subscriptions():
            _, is_expired, _ = expiry_flags(subscription.end_date, now, self.config.expiry_warning_days)
            if subscription.status == SubscriptionStatus.ACTIVE and not is_expired:
                grouped[subscription.plan_id].append(subscription)

        stats: List[PlanStats] = []
        for plan in self.plans.list_plans():
            members = grouped.get(plan.id, [])
            count = len(members)
            stats.append(
                PlanStats(
                    plan_id=plan.id,
                    plan_name=plan.display_name,
                    active_users=count,
                    total_revenue=plan.price * count,
                    average_browse_usage=round(sum(m.browse_count_used for m in members) / count, 2) if count else 0.0,
                    average_listing_usage=round(sum(m.listing_count_used for m in members) / count, 2) if count else 0.0,
                )
            )
        return stats

    def _mutate(self, subscription_id: str, mutate: SubscriptionMutator) -> UserSubscription:
        def _guarded(subscription: UserSubscription) -> UserSubscription:
            if not subscription.is_current:
                raise InvalidTransitionError(
                    f"Subscription {subscription_id} has been superseded",
                    detail={"superseded_at": subscription.superseded_at.isoformat() if subscription.superseded_at else None},
                )
            return mutate(subscription)

        return self.subscriptions.update_subscription(subscription_id, _guarded)

    def _touch(self, subscription: UserSubscription, **changes) -> UserSubscription:
        return subscription.model_copy(update={**changes, "updated_at": current_time(self.clock)})

    def _require_plan(self, plan_id: str) -> SubscriptionPlan:
        plan = self.plans.get_plan(plan_id)
        if plan is None:
            raise SubscriptionNotFoundError(f"Plan {plan_id} not found")
        return plan

    def _log(
        self,
        event_type: SubscriptionAuditEventType,
        subscription: UserSubscription,
        actor_id: Optional[str],
        *,
        plan_id: Optional[str] = None,
        **metadata: str,
    ) -> None:
        self.event_logger.log(
            SubscriptionAuditEvent(
                event_type=event_type,
                subscription_id=subscription.id,
                plan_id=plan_id or subscription.plan_id,
                actor_id=actor_id,
                metadata={"account_id": subscription.account_id, **metadata},
                occurred_at=current_time(self.clock),
            )
        )


__all__ = ["SubscriptionAdminService"]
