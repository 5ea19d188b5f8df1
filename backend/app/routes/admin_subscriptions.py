"""Administrator routes for subscriptions, plan change requests and plans."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..schemas.subscriptions import (
    ApiEnvelope,
    ApprovalResult,
    AssignSubscriptionRequest,
    ChangePlanRequest,
    ContinueSubscriptionRequest,
    ExtendSubscriptionRequest,
    PaymentStatusRequest,
    PlanCreateRequest,
    PlanUpdateRequest,
    ReactivateSubscriptionRequest,
    ResetUsageRequest,
    ResolveChangeRequest,
    SuspendSubscriptionRequest,
)
from ..services.subscriptions import (
    get_change_request_service,
    get_plan_catalog_service,
    get_subscription_admin_service,
)
from ..subscriptions import (
    GlobalSubscriptionStats,
    PlanStats,
    RequestStatus,
    SubscriptionFilters,
    SubscriptionPage,
    SubscriptionPlan,
    SubscriptionRequest,
    SubscriptionStatus,
    UserSubscription,
)
from .dependencies import account_id_for, require_admin

router = APIRouter(prefix="/api/admin/subscriptions", tags=["admin-subscriptions"])


@router.get("", response_model=ApiEnvelope[SubscriptionPage])
def list_subscriptions(
    *,
    status_filter: Optional[SubscriptionStatus] = Query(default=None, alias="status"),
    plan_id: Optional[str] = Query(default=None, alias="planId"),
    account_id: Optional[str] = Query(default=None, alias="accountId"),
    expiring_within_days: Optional[int] = Query(default=None, ge=0, alias="expiringWithinDays"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=200, alias="pageSize"),
    admin=Depends(require_admin),
) -> ApiEnvelope[SubscriptionPage]:
    filters = SubscriptionFilters(
        status=status_filter,
        plan_id=plan_id,
        account_id=account_id,
        expiring_within_days=expiring_within_days,
        page=page,
        page_size=page_size,
    )
    return ApiEnvelope.ok(get_subscription_admin_service().list_subscriptions(filters))


@router.get("/stats", response_model=ApiEnvelope[GlobalSubscriptionStats])
def get_stats(*, admin=Depends(require_admin)) -> ApiEnvelope[GlobalSubscriptionStats]:
    return ApiEnvelope.ok(get_subscription_admin_service().global_stats())


@router.get("/plan-stats", response_model=ApiEnvelope[List[PlanStats]])
def get_plan_stats(*, admin=Depends(require_admin)) -> ApiEnvelope[List[PlanStats]]:
    return ApiEnvelope.ok(get_subscription_admin_service().plan_stats())


@router.get("/requests", response_model=ApiEnvelope[List[SubscriptionRequest]])
def list_requests(
    *,
    status_filter: Optional[RequestStatus] = Query(default=None, alias="status"),
    account_id: Optional[str] = Query(default=None, alias="accountId"),
    admin=Depends(require_admin),
) -> ApiEnvelope[List[SubscriptionRequest]]:
    requests = get_change_request_service().list_requests(status=status_filter, account_id=account_id)
    return ApiEnvelope.ok(list(requests))


@router.post("/requests/{request_id}/approve", response_model=ApiEnvelope[ApprovalResult])
def approve_request(
    request_id: str,
    payload: Optional[ResolveChangeRequest] = None,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[ApprovalResult]:
    request, subscription = get_change_request_service().approve_request(
        request_id,
        admin_id=account_id_for(admin),
        admin_notes=payload.admin_notes if payload else None,
    )
    return ApiEnvelope.ok(ApprovalResult(request=request, subscription=subscription))


@router.post("/requests/{request_id}/reject", response_model=ApiEnvelope[SubscriptionRequest])
def reject_request(
    request_id: str,
    payload: Optional[ResolveChangeRequest] = None,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[SubscriptionRequest]:
    request = get_change_request_service().reject_request(
        request_id,
        admin_id=account_id_for(admin),
        admin_notes=payload.admin_notes if payload else None,
    )
    return ApiEnvelope.ok(request)


@router.post(
    "/assign",
    response_model=ApiEnvelope[UserSubscription],
    status_code=status.HTTP_201_CREATED,
)
def assign_subscription(
    payload: AssignSubscriptionRequest,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[UserSubscription]:
    subscription = get_subscription_admin_service().assign(
        account_id=payload.account_id,
        plan_id=payload.plan_id,
        admin_id=account_id_for(admin),
        start_date=payload.start_date,
        end_date=payload.end_date,
        payment_status=payload.payment_status,
        notes=payload.notes,
    )
    return ApiEnvelope.ok(subscription)


@router.post("/expire-lapsed", response_model=ApiEnvelope[List[UserSubscription]])
def expire_lapsed(*, admin=Depends(require_admin)) -> ApiEnvelope[List[UserSubscription]]:
    expired = get_subscription_admin_service().expire_lapsed(admin_id=account_id_for(admin))
    return ApiEnvelope.ok(expired)


@router.get("/plans", response_model=ApiEnvelope[List[SubscriptionPlan]])
def list_plans(*, admin=Depends(require_admin)) -> ApiEnvelope[List[SubscriptionPlan]]:
    return ApiEnvelope.ok(list(get_plan_catalog_service().list_plans()))


@router.post(
    "/plans",
    response_model=ApiEnvelope[SubscriptionPlan],
    status_code=status.HTTP_201_CREATED,
)
def create_plan(
    payload: PlanCreateRequest,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[SubscriptionPlan]:
    plan = get_plan_catalog_service().create_plan(
        name=payload.name,
        display_name=payload.display_name,
        description=payload.description,
        plan_type=payload.plan_type,
        price=payload.price,
        currency=payload.currency,
        duration_days=payload.duration_days,
        features=payload.features,
        is_active=payload.is_active,
        actor_id=account_id_for(admin),
    )
    return ApiEnvelope.ok(plan)


@router.get("/plans/{plan_id}", response_model=ApiEnvelope[SubscriptionPlan])
def get_plan(plan_id: str, *, admin=Depends(require_admin)) -> ApiEnvelope[SubscriptionPlan]:
    return ApiEnvelope.ok(get_plan_catalog_service().get_plan(plan_id))


@router.put("/plans/{plan_id}", response_model=ApiEnvelope[SubscriptionPlan])
def update_plan(
    plan_id: str,
    payload: PlanUpdateRequest,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[SubscriptionPlan]:
    plan = get_plan_catalog_service().update_plan(plan_id, payload.changes(), actor_id=account_id_for(admin))
    return ApiEnvelope.ok(plan)


@router.put("/plans/{plan_id}/toggle-status", response_model=ApiEnvelope[SubscriptionPlan])
def toggle_plan_status(plan_id: str, *, admin=Depends(require_admin)) -> ApiEnvelope[SubscriptionPlan]:
    plan = get_plan_catalog_service().toggle_plan_status(plan_id, actor_id=account_id_for(admin))
    return ApiEnvelope.ok(plan)


@router.get("/{subscription_id}", response_model=ApiEnvelope[UserSubscription])
def get_subscription(subscription_id: str, *, admin=Depends(require_admin)) -> ApiEnvelope[UserSubscription]:
    return ApiEnvelope.ok(get_subscription_admin_service().get_subscription(subscription_id))


@router.put("/{subscription_id}/extend", response_model=ApiEnvelope[UserSubscription])
def extend_subscription(
    subscription_id: str,
    payload: ExtendSubscriptionRequest,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[UserSubscription]:
    subscription = get_subscription_admin_service().extend(
        subscription_id,
        payload.end_date,
        admin_id=account_id_for(admin),
        notes=payload.notes,
    )
    return ApiEnvelope.ok(subscription)


@router.put("/{subscription_id}/continue", response_model=ApiEnvelope[UserSubscription])
def continue_subscription(
    subscription_id: str,
    payload: ContinueSubscriptionRequest,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[UserSubscription]:
    subscription = get_subscription_admin_service().continue_subscription(
        subscription_id,
        payload.months,
        admin_id=account_id_for(admin),
        notes=payload.notes,
    )
    return ApiEnvelope.ok(subscription)


@router.put("/{subscription_id}/reset-usage", response_model=ApiEnvelope[UserSubscription])
def reset_usage(
    subscription_id: str,
    payload: Optional[ResetUsageRequest] = None,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[UserSubscription]:
    subscription = get_subscription_admin_service().reset_usage(
        subscription_id,
        admin_id=account_id_for(admin),
        reason=payload.reason if payload else None,
    )
    return ApiEnvelope.ok(subscription)


@router.put("/{subscription_id}/suspend", response_model=ApiEnvelope[UserSubscription])
def suspend_subscription(
    subscription_id: str,
    payload: SuspendSubscriptionRequest,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[UserSubscription]:
    subscription = get_subscription_admin_service().suspend(
        subscription_id,
        payload.reason,
        admin_id=account_id_for(admin),
    )
    return ApiEnvelope.ok(subscription)


@router.put("/{subscription_id}/reactivate", response_model=ApiEnvelope[UserSubscription])
def reactivate_subscription(
    subscription_id: str,
    payload: Optional[ReactivateSubscriptionRequest] = None,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[UserSubscription]:
    subscription = get_subscription_admin_service().reactivate(
        subscription_id,
        admin_id=account_id_for(admin),
        notes=payload.notes if payload else None,
    )
    return ApiEnvelope.ok(subscription)


@router.put("/{subscription_id}/change-plan", response_model=ApiEnvelope[UserSubscription])
def change_plan(
    subscription_id: str,
    payload: ChangePlanRequest,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[UserSubscription]:
    subscription = get_subscription_admin_service().change_plan(
        subscription_id,
        payload.plan_id,
        admin_id=account_id_for(admin),
        notes=payload.notes,
    )
    return ApiEnvelope.ok(subscription)


@router.put("/{subscription_id}/payment-status", response_model=ApiEnvelope[UserSubscription])
def update_payment_status(
    subscription_id: str,
    payload: PaymentStatusRequest,
    *,
    admin=Depends(require_admin),
) -> ApiEnvelope[UserSubscription]:
    subscription = get_subscription_admin_service().update_payment_status(
        subscription_id,
        payload.payment_status,
        admin_id=account_id_for(admin),
    )
    return ApiEnvelope.ok(subscription)


@router.delete("/{subscription_id}", response_model=ApiEnvelope[UserSubscription])
def cancel_subscription(
    subscription_id: str,
    *,
    reason: Optional[str] = Query(default=None, max_length=500),
    admin=Depends(require_admin),
) -> ApiEnvelope[UserSubscription]:
    """Retire the subscription; the record is kept for history."""

    subscription = get_subscription_admin_service().cancel(
        subscription_id,
        admin_id=account_id_for(admin),
        reason=reason,
    )
    return ApiEnvelope.ok(subscription)


__all__ = ["router"]
