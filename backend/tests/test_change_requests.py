from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from backend.app.subscriptions import (
    ChangeRequestService,
    InvalidTransitionError,
    PaymentStatus,
    PlanType,
    RequestStatus,
    RequestType,
    SubscriptionConflictError,
    SubscriptionNotFoundError,
    SubscriptionStatus,
    SubscriptionValidationError,
    classify_request,
)

from backend.tests.support import NOW, make_features, make_plan, make_subscription


@pytest.fixture
def plans(store):
    catalog = {
        "free": make_plan("free", price=0, features=make_features(max_listings=2)),
        "silver": make_plan("silver", price=499, features=make_features(max_listings=10)),
        "gold": make_plan("gold", price=999, features=make_features(max_listings=30)),
        "gold_alt": make_plan("gold_alt", price=999),
        "teacher_pro": make_plan("teacher_pro", price=299, plan_type=PlanType.TEACHER),
        "retired": make_plan("retired", price=10, is_active=False),
    }
    store.plans.update({plan.id: plan for plan in catalog.values()})
    return catalog


def _subscribe(store, plans, plan_key, **overrides):
    subscription = make_subscription("sub-existing", "acct-1", plans[plan_key], **overrides)
    store.subscriptions[subscription.id] = subscription
    return subscription


def test_classify_request_by_price(plans) -> None:
    assert classify_request(None, plans["silver"]) == RequestType.UPGRADE
    assert classify_request(plans["silver"], plans["gold"]) == RequestType.UPGRADE
    assert classify_request(plans["gold"], plans["silver"]) == RequestType.DOWNGRADE
    assert classify_request(plans["gold"], plans["gold"]) == RequestType.RENEWAL


def test_classify_request_equal_price_honours_caller_type(plans) -> None:
    assert classify_request(plans["gold"], plans["gold_alt"]) == RequestType.UPGRADE
    assert classify_request(plans["gold"], plans["gold_alt"], RequestType.DOWNGRADE) == RequestType.DOWNGRADE

    with pytest.raises(SubscriptionValidationError):
        classify_request(plans["gold"], plans["gold_alt"], RequestType.RENEWAL)


def test_classify_request_rejects_mismatched_type(plans) -> None:
    with pytest.raises(SubscriptionValidationError) as exc:
        classify_request(plans["gold"], plans["silver"], RequestType.UPGRADE)

    assert exc.value.payload["expected_type"] == "downgrade"


def test_create_request_records_pending_upgrade(request_service, store, plans, event_logger) -> None:
    _subscribe(store, plans, "silver")

    request = request_service.create_request(account_id="acct-1", plan_id="gold", user_notes="need more")

    assert request.status == RequestStatus.PENDING
    assert request.request_type == RequestType.UPGRADE
    assert request.current_plan_id == "silver"
    assert request.requested_plan_name == plans["gold"].display_name
    assert request.id.startswith("req_")
    assert event_logger.types == ["request.created"]
    assert request_service.list_my_requests("acct-1") == [request]


def test_create_request_rejects_duplicate_pending(request_service, plans) -> None:
    request_service.create_request(account_id="acct-1", plan_id="gold")

    with pytest.raises(SubscriptionConflictError):
        request_service.create_request(account_id="acct-1", plan_id="gold")


def test_create_request_rejects_inactive_or_unknown_plan(request_service, plans) -> None:
    with pytest.raises(SubscriptionValidationError):
        request_service.create_request(account_id="acct-1", plan_id="retired")
    with pytest.raises(SubscriptionNotFoundError):
        request_service.create_request(account_id="acct-1", plan_id="nope")


def test_create_request_checks_role_plan_type(request_service, plans) -> None:
    with pytest.raises(SubscriptionValidationError):
        request_service.create_request(account_id="acct-1", plan_id="gold", role="teacher")

    request = request_service.create_request(account_id="acct-2", plan_id="gold", role="parent")
    assert request.requested_plan_id == "gold"


def test_approve_without_subscription_creates_one(request_service, store, plans, clock) -> None:
    request = request_service.create_request(account_id="acct-9", plan_id="silver")

    resolved, subscription = request_service.approve_request(request.id, admin_id="admin-1", admin_notes="ok")

    assert resolved.status == RequestStatus.APPROVED
    assert resolved.resolved_by == "admin-1"
    assert resolved.resolved_at == clock()
    assert subscription.account_id == "acct-9"
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.payment_status == PaymentStatus.PENDING
    assert subscription.start_date == NOW
    assert subscription.end_date == NOW + timedelta(days=30)
    assert store.get_current_subscription("acct-9") == subscription


def test_approve_free_plan_marks_payment_completed(request_service, plans) -> None:
    request = request_service.create_request(account_id="acct-9", plan_id="free")

    _, subscription = request_service.approve_request(request.id, admin_id="admin-1")

    assert subscription.payment_status == PaymentStatus.COMPLETED


def test_approve_upgrade_resets_usage_and_restarts_period(request_service, store, plans, event_logger) -> None:
    existing = _subscribe(store, plans, "silver", listing_count_used=9, browse_count_used=15)
    request = request_service.create_request(account_id="acct-1", plan_id="gold")

    _, subscription = request_service.approve_request(request.id, admin_id="admin-1")

    assert subscription.id == existing.id
    assert subscription.plan_id == "gold"
    assert subscription.listing_count_used == 0
    assert subscription.browse_count_used == 0
    assert subscription.last_usage_reset_at == NOW
    assert subscription.start_date == NOW
    assert subscription.end_date == NOW + timedelta(days=30)
    assert subscription.payment_status == PaymentStatus.COMPLETED
    assert event_logger.types[-1] == "request.approved"
    assert event_logger.events[-1].subscription_id == existing.id


def test_approve_renewal_extends_from_current_end(request_service, store, plans) -> None:
    existing = _subscribe(store, plans, "gold", end_date=NOW + timedelta(days=10))
    request = request_service.create_request(account_id="acct-1", plan_id="gold")
    assert request.request_type == RequestType.RENEWAL

    _, subscription = request_service.approve_request(request.id, admin_id="admin-1")

    assert subscription.start_date == existing.start_date
    assert subscription.end_date == NOW + timedelta(days=40)


def test_approve_renewal_of_lapsed_subscription_starts_now(request_service, store, plans) -> None:
    _subscribe(store, plans, "gold", end_date=NOW - timedelta(days=5), status=SubscriptionStatus.EXPIRED)
    request = request_service.create_request(account_id="acct-1", plan_id="gold")

    _, subscription = request_service.approve_request(request.id, admin_id="admin-1")

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.start_date == NOW
    assert subscription.end_date == NOW + timedelta(days=30)


def test_approve_keeps_suspension_by_default(request_service, store, plans) -> None:
    _subscribe(store, plans, "silver", status=SubscriptionStatus.SUSPENDED, suspension_reason="chargeback")
    request = request_service.create_request(account_id="acct-1", plan_id="gold")

    _, subscription = request_service.approve_request(request.id, admin_id="admin-1")

    assert subscription.plan_id == "gold"
    assert subscription.status == SubscriptionStatus.SUSPENDED
    assert subscription.suspension_reason == "chargeback"


def test_approve_can_reactivate_suspended_when_configured(store, event_logger, config, clock, plans) -> None:
    service = ChangeRequestService(
        plans=store,
        subscriptions=store,
        requests=store,
        event_logger=event_logger,
        config=replace(config, approval_reactivates_suspended=True),
        clock=clock,
    )
    _subscribe(store, plans, "silver", status=SubscriptionStatus.SUSPENDED, suspension_reason="chargeback")
    request = service.create_request(account_id="acct-1", plan_id="gold")

    _, subscription = service.approve_request(request.id, admin_id="admin-1")

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.suspension_reason is None


def test_reject_leaves_subscription_untouched(request_service, store, plans, event_logger) -> None:
    existing = _subscribe(store, plans, "silver", listing_count_used=4)
    request = request_service.create_request(account_id="acct-1", plan_id="gold")

    rejected = request_service.reject_request(request.id, admin_id="admin-1", admin_notes="no budget")

    assert rejected.status == RequestStatus.REJECTED
    assert rejected.admin_notes == "no budget"
    assert store.get_current_subscription("acct-1") == existing
    assert event_logger.types[-1] == "request.rejected"


def test_resolved_request_cannot_be_resolved_again(request_service, plans) -> None:
    request = request_service.create_request(account_id="acct-1", plan_id="gold")
    request_service.reject_request(request.id, admin_id="admin-1")

    with pytest.raises(InvalidTransitionError):
        request_service.approve_request(request.id, admin_id="admin-1")
    with pytest.raises(InvalidTransitionError):
        request_service.reject_request(request.id, admin_id="admin-1")


def test_resolved_request_allows_new_request_for_same_plan(request_service, plans) -> None:
    first = request_service.create_request(account_id="acct-1", plan_id="gold")
    request_service.reject_request(first.id, admin_id="admin-1")

    second = request_service.create_request(account_id="acct-1", plan_id="gold")

    assert second.id != first.id
    assert [r.status for r in request_service.list_requests(status=RequestStatus.PENDING)] == [RequestStatus.PENDING]


def test_approve_unknown_request_raises(request_service) -> None:
    with pytest.raises(SubscriptionNotFoundError):
        request_service.approve_request("req_missing", admin_id="admin-1")
