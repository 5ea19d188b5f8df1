"""API routes for an account's own subscription, usage and plan requests."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..feature_gates import EntitlementContext, FeatureGateError, assert_quota
from ..schemas.subscriptions import (
    ApiEnvelope,
    ConsumeUsageRequest,
    CreateChangeRequest,
    VisibilityFilterRequest,
)
from ..services.subscriptions import (
    get_change_request_service,
    get_plan_catalog_service,
    get_usage_service,
)
from ..subscriptions import (
    AlertKind,
    AlertPermission,
    EntitlementSnapshot,
    ListingKind,
    ListingVisibility,
    PlanType,
    QuotaDecision,
    SubscriptionPlan,
    SubscriptionRequest,
    UsageCounter,
    UsageStats,
    UserSubscription,
    VisibilityFilterResult,
)
from ..subscriptions.models import UtcDatetime
from .dependencies import account_id_for, get_session_user

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


@router.get("/plans/active", response_model=ApiEnvelope[List[SubscriptionPlan]])
def list_active_plans(
    *,
    plan_type: Optional[PlanType] = Query(default=None, alias="planType"),
    current_user=Depends(get_session_user),
) -> ApiEnvelope[List[SubscriptionPlan]]:
    """Active plans for the requested type, or for the caller's role when omitted."""

    service = get_plan_catalog_service()
    if plan_type is not None:
        plans = service.list_active_plans(plan_type)
    else:
        plans = service.list_active_plans_for_role(getattr(current_user, "role", None))
    return ApiEnvelope.ok(list(plans))


@router.get("/me", response_model=ApiEnvelope[Optional[UserSubscription]])
def get_my_subscription(*, current_user=Depends(get_session_user)) -> ApiEnvelope[Optional[UserSubscription]]:
    subscription = get_usage_service().get_subscription(account_id_for(current_user))
    return ApiEnvelope.ok(subscription)


@router.get("/me/usage", response_model=ApiEnvelope[Optional[UsageStats]])
def get_my_usage(*, current_user=Depends(get_session_user)) -> ApiEnvelope[Optional[UsageStats]]:
    return ApiEnvelope.ok(get_usage_service().get_usage_stats(account_id_for(current_user)))


@router.get("/me/entitlements", response_model=ApiEnvelope[Optional[EntitlementSnapshot]])
def get_my_entitlements(
    *, current_user=Depends(get_session_user)
) -> ApiEnvelope[Optional[EntitlementSnapshot]]:
    return ApiEnvelope.ok(get_usage_service().get_snapshot(account_id_for(current_user)))


@router.post("/me/usage/{counter}/consume", response_model=ApiEnvelope[QuotaDecision])
def consume_usage(
    counter: UsageCounter,
    payload: Optional[ConsumeUsageRequest] = None,
    *,
    current_user=Depends(get_session_user),
) -> ApiEnvelope[QuotaDecision]:
    """Record usage; a denied quota surfaces as a feature gate failure."""

    amount = payload.amount if payload else 1
    decision = get_usage_service().consume(account_id_for(current_user), counter, amount=amount)
    assert_quota(decision)
    return ApiEnvelope.ok(decision)


@router.post("/me/usage/listing/release", response_model=ApiEnvelope[QuotaDecision])
def release_listing(
    payload: Optional[ConsumeUsageRequest] = None,
    *,
    current_user=Depends(get_session_user),
) -> ApiEnvelope[QuotaDecision]:
    amount = payload.amount if payload else 1
    decision = get_usage_service().release_listing(account_id_for(current_user), amount=amount)
    return ApiEnvelope.ok(decision)


@router.get("/me/visibility", response_model=ApiEnvelope[ListingVisibility])
def check_listing_visibility(
    *,
    created_at: UtcDatetime = Query(alias="createdAt"),
    listing_kind: ListingKind = Query(default=ListingKind.STANDARD, alias="listingKind"),
    current_user=Depends(get_session_user),
) -> ApiEnvelope[ListingVisibility]:
    visibility = get_usage_service().check_listing_visibility(
        account_id_for(current_user),
        created_at=created_at,
        kind=listing_kind,
    )
    return ApiEnvelope.ok(visibility)


@router.post("/me/visibility/filter", response_model=ApiEnvelope[VisibilityFilterResult])
def filter_visible_listings(
    payload: VisibilityFilterRequest,
    *,
    current_user=Depends(get_session_user),
) -> ApiEnvelope[VisibilityFilterResult]:
    result = get_usage_service().filter_visible_listings(account_id_for(current_user), payload.listings)
    return ApiEnvelope.ok(result)


@router.get("/me/alerts-permission", response_model=ApiEnvelope[AlertPermission])
def get_alert_permission(
    *,
    kind: AlertKind = Query(default=AlertKind.VEHICLE),
    current_user=Depends(get_session_user),
) -> ApiEnvelope[AlertPermission]:
    """Whether the caller's plan includes instant alerts of ``kind``."""

    snapshot = get_usage_service().get_snapshot(account_id_for(current_user))
    if snapshot is None:
        return ApiEnvelope.ok(AlertPermission(kind=kind, allowed=False, reason="subscription_required"))

    try:
        EntitlementContext(snapshot).require(kind.flag)
    except FeatureGateError as exc:
        return ApiEnvelope.ok(AlertPermission(kind=kind, allowed=False, reason=exc.code))
    return ApiEnvelope.ok(AlertPermission(kind=kind, allowed=True))


@router.post(
    "/requests",
    response_model=ApiEnvelope[SubscriptionRequest],
    status_code=status.HTTP_201_CREATED,
)
def create_change_request(
    payload: CreateChangeRequest,
    *,
    current_user=Depends(get_session_user),
) -> ApiEnvelope[SubscriptionRequest]:
    request = get_change_request_service().create_request(
        account_id=account_id_for(current_user),
        plan_id=payload.plan_id,
        role=getattr(current_user, "role", None),
        request_type=payload.request_type,
        user_notes=payload.user_notes,
    )
    return ApiEnvelope.ok(request)


@router.get("/requests/my", response_model=ApiEnvelope[List[SubscriptionRequest]])
def list_my_requests(*, current_user=Depends(get_session_user)) -> ApiEnvelope[List[SubscriptionRequest]]:
    requests = get_change_request_service().list_my_requests(account_id_for(current_user))
    return ApiEnvelope.ok(list(requests))


__all__ = ["router"]
