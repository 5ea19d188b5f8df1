from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.app.feature_gates import FeatureGateError
from backend.app.routes import admin_subscriptions as admin_routes
from backend.app.routes import subscriptions as subscription_routes
from backend.app.routes.dependencies import get_session_user
from backend.app.routes.errors import register_exception_handlers
from backend.app.schemas.subscriptions import (
    ConsumeUsageRequest,
    CreateChangeRequest,
    ResolveChangeRequest,
    SuspendSubscriptionRequest,
)
from backend.app.subscriptions import (
    AlertKind,
    ListingKind,
    PlanType,
    RequestStatus,
    SubscriptionStatus,
    UsageCounter,
)

from backend.tests.support import NOW, make_features, make_plan, make_subscription

MEMBER = SimpleNamespace(id=7, username="member", role="institute")
ADMIN = SimpleNamespace(id=1, username="root", role="admin")


@pytest.fixture
def wired(monkeypatch, store, plan_service, request_service, admin_service, usage_service):
    monkeypatch.setattr(subscription_routes, "get_plan_catalog_service", lambda: plan_service)
    monkeypatch.setattr(subscription_routes, "get_change_request_service", lambda: request_service)
    monkeypatch.setattr(subscription_routes, "get_usage_service", lambda: usage_service)
    monkeypatch.setattr(admin_routes, "get_plan_catalog_service", lambda: plan_service)
    monkeypatch.setattr(admin_routes, "get_change_request_service", lambda: request_service)
    monkeypatch.setattr(admin_routes, "get_subscription_admin_service", lambda: admin_service)

    basic = make_plan("basic", features=make_features(max_listings=1))
    gold = make_plan("gold", price=999)
    teacher = make_plan("teacher_basic", plan_type=PlanType.TEACHER)
    store.plans.update({plan.id: plan for plan in (basic, gold, teacher)})
    subscription = make_subscription("sub-7", "7", basic)
    store.subscriptions[subscription.id] = subscription
    return store


def test_list_active_plans_by_role_or_type(wired) -> None:
    by_role = subscription_routes.list_active_plans(plan_type=None, current_user=MEMBER)
    by_type = subscription_routes.list_active_plans(plan_type=PlanType.TEACHER, current_user=MEMBER)

    assert by_role.success is True
    assert [plan.id for plan in by_role.data] == ["basic", "gold"]
    assert [plan.id for plan in by_type.data] == ["teacher_basic"]


def test_my_subscription_usage_and_entitlements(wired) -> None:
    subscription = subscription_routes.get_my_subscription(current_user=MEMBER)
    usage = subscription_routes.get_my_usage(current_user=MEMBER)
    entitlements = subscription_routes.get_my_entitlements(current_user=MEMBER)

    assert subscription.data.id == "sub-7"
    assert usage.data.listing_count.allowed == 1
    assert entitlements.data.has_access is True


def test_my_subscription_is_empty_for_new_account(wired) -> None:
    stranger = SimpleNamespace(id=99, role="vendor")

    assert subscription_routes.get_my_subscription(current_user=stranger).data is None
    assert subscription_routes.get_my_entitlements(current_user=stranger).data is None


def test_consume_usage_raises_gate_error_when_exhausted(wired) -> None:
    first = subscription_routes.consume_usage(UsageCounter.LISTING, None, current_user=MEMBER)

    assert first.data.allowed is True
    assert first.data.used == 1

    with pytest.raises(FeatureGateError) as exc:
        subscription_routes.consume_usage(UsageCounter.LISTING, ConsumeUsageRequest(amount=1), current_user=MEMBER)

    assert exc.value.status_code == 429
    released = subscription_routes.release_listing(None, current_user=MEMBER)
    assert released.data.used == 0


def test_listing_visibility_route(wired) -> None:
    response = subscription_routes.check_listing_visibility(
        created_at=NOW - timedelta(days=1),
        listing_kind=ListingKind.STANDARD,
        current_user=MEMBER,
    )

    assert response.data.delay_days == 3
    assert response.data.visible is False


def test_request_and_admin_approval_flow(wired) -> None:
    created = subscription_routes.create_change_request(
        CreateChangeRequest(planId="gold", userNotes="growing"),
        current_user=MEMBER,
    )
    pending = admin_routes.list_requests(status_filter=RequestStatus.PENDING, account_id=None, admin=ADMIN)

    approved = admin_routes.approve_request(
        created.data.id,
        ResolveChangeRequest(adminNotes="welcome"),
        admin=ADMIN,
    )

    assert [request.id for request in pending.data] == [created.data.id]
    assert approved.data.request.status == RequestStatus.APPROVED
    assert approved.data.request.resolved_by == "1"
    assert approved.data.subscription.plan_id == "gold"
    assert subscription_routes.list_my_requests(current_user=MEMBER).data[0].status == RequestStatus.APPROVED


def test_admin_suspend_and_list(wired) -> None:
    suspended = admin_routes.suspend_subscription("sub-7", SuspendSubscriptionRequest(reason="abuse"), admin=ADMIN)
    listing = admin_routes.list_subscriptions(
        status_filter=SubscriptionStatus.SUSPENDED,
        plan_id=None,
        account_id=None,
        expiring_within_days=None,
        page=1,
        page_size=20,
        admin=ADMIN,
    )

    assert suspended.data.status == SubscriptionStatus.SUSPENDED
    assert listing.data.total == 1
    assert listing.data.items[0].id == "sub-7"


@pytest.fixture
def client(wired) -> TestClient:
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(subscription_routes.router)
    app.include_router(admin_routes.router)
    app.dependency_overrides[get_session_user] = lambda: MEMBER
    return TestClient(app)


def test_envelope_uses_camel_case_keys(client: TestClient) -> None:
    response = client.get("/api/subscriptions/me")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["planId"] == "basic"
    assert body["data"]["listingCountUsed"] == 0


def test_quota_denial_renders_error_envelope(client: TestClient) -> None:
    assert client.post("/api/subscriptions/me/usage/listing/consume").status_code == 200

    response = client.post("/api/subscriptions/me/usage/listing/consume", json={"amount": 1})

    assert response.status_code == 429
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "quota_exceeded"
    assert body["error"]["detail"]["allowed"] == 1


def test_non_admin_is_forbidden(client: TestClient) -> None:
    response = client.get("/api/admin/subscriptions/stats")

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "admin_required"


def test_domain_errors_render_envelope(client: TestClient) -> None:
    client.app.dependency_overrides[get_session_user] = lambda: ADMIN

    missing = client.get("/api/admin/subscriptions/sub-missing")
    invalid = client.put("/api/admin/subscriptions/sub-7/reactivate")
    malformed = client.post("/api/subscriptions/requests", json={})

    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"
    assert invalid.status_code == 409
    assert invalid.json()["error"] == {
        "code": "invalid_transition",
        "message": "Only suspended subscriptions can be reactivated",
        "detail": {"status": "active"},
    }
    assert malformed.status_code == 422
    assert malformed.json()["error"]["code"] == "validation_error"


def test_admin_stats_endpoint(client: TestClient) -> None:
    client.app.dependency_overrides[get_session_user] = lambda: ADMIN

    response = client.get("/api/admin/subscriptions/stats")

    assert response.status_code == 200
    assert response.json()["data"]["activeSubscriptions"] == 1


def test_alert_permission_follows_plan_and_status(wired) -> None:
    vehicle = subscription_routes.get_alert_permission(kind=AlertKind.VEHICLE, current_user=MEMBER)
    assert vehicle.data.allowed is False
    assert vehicle.data.reason == "feature_not_in_plan"

    wired.plans["basic"] = make_plan("basic", features=make_features(max_listings=1, instant_job_alerts=True))
    job = subscription_routes.get_alert_permission(kind=AlertKind.JOB, current_user=MEMBER)
    assert job.data.allowed is True
    assert job.data.reason is None

    wired.subscriptions["sub-7"] = wired.subscriptions["sub-7"].model_copy(
        update={"status": SubscriptionStatus.SUSPENDED}
    )
    suspended = subscription_routes.get_alert_permission(kind=AlertKind.JOB, current_user=MEMBER)
    assert suspended.data.allowed is False
    assert suspended.data.reason == "subscription_suspended"

    stranger = subscription_routes.get_alert_permission(
        kind=AlertKind.JOB, current_user=SimpleNamespace(id=99, role="vendor")
    )
    assert stranger.data.reason == "subscription_required"


def test_extend_accepts_date_without_timezone(client: TestClient) -> None:
    client.app.dependency_overrides[get_session_user] = lambda: ADMIN

    response = client.put("/api/admin/subscriptions/sub-7/extend", json={"endDate": "2030-01-01"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["data"]["endDate"].startswith("2030-01-01T00:00:00")


def test_assign_accepts_naive_datetimes(client: TestClient) -> None:
    client.app.dependency_overrides[get_session_user] = lambda: ADMIN

    response = client.post(
        "/api/admin/subscriptions/assign",
        json={"accountId": "8", "planId": "gold", "startDate": "2024-03-02T00:00:00", "endDate": "2024-04-01"},
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["startDate"].startswith("2024-03-02T00:00:00")
    assert data["endDate"].startswith("2024-04-01T00:00:00")


def test_visibility_query_accepts_naive_created_at(client: TestClient) -> None:
    response = client.get("/api/subscriptions/me/visibility", params={"createdAt": "2024-02-01T00:00:00"})

    assert response.status_code == 200
    body = response.json()
    assert body["data"]["visible"] is True
    assert body["data"]["visibleAt"].startswith("2024-02-04T00:00:00")


def test_visibility_filter_endpoint(client: TestClient) -> None:
    response = client.post(
        "/api/subscriptions/me/visibility/filter",
        json={
            "listings": [
                {"id": "fresh", "createdAt": (NOW - timedelta(days=1)).isoformat()},
                {"id": "aged", "createdAt": "2024-02-01T00:00:00"},
            ]
        },
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert [listing["id"] for listing in data["visible"]] == ["aged"]
    assert data["hiddenCount"] == 1


def test_cancel_endpoint_keeps_record(client: TestClient, wired) -> None:
    client.app.dependency_overrides[get_session_user] = lambda: ADMIN

    response = client.delete("/api/admin/subscriptions/sub-7", params={"reason": "closed"})

    assert response.status_code == 200
    assert response.json()["data"]["isCurrent"] is False
    assert wired.subscriptions["sub-7"].is_current is False

    client.app.dependency_overrides[get_session_user] = lambda: MEMBER
    assert client.get("/api/subscriptions/me").json()["data"] is None
