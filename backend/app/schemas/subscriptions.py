"""API schemas for subscription endpoints."""
from __future__ import annotations

from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ..subscriptions import (
    ListingRef,
    PaymentStatus,
    PlanType,
    RequestType,
    SubscriptionRequest,
    UserSubscription,
)
from ..subscriptions.models import UtcDatetime

DataT = TypeVar("DataT")


class ApiError(BaseModel):
    code: str
    message: str
    detail: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class ApiEnvelope(BaseModel, Generic[DataT]):
    """Uniform response body; ``success`` is authoritative."""

    success: bool
    data: Optional[DataT] = None
    error: Optional[ApiError] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def ok(cls, data: Any = None) -> "ApiEnvelope[DataT]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: str, message: str, detail: Optional[Dict[str, Any]] = None) -> "ApiEnvelope[DataT]":
        return cls(success=False, error=ApiError(code=code, message=message, detail=detail or {}))


class CreateChangeRequest(BaseModel):
    plan_id: str = Field(alias="planId", min_length=1)
    request_type: Optional[RequestType] = Field(alias="requestType", default=None)
    user_notes: Optional[str] = Field(alias="userNotes", default=None, max_length=2000)

    model_config = ConfigDict(populate_by_name=True)


class ResolveChangeRequest(BaseModel):
    admin_notes: Optional[str] = Field(alias="adminNotes", default=None, max_length=2000)

    model_config = ConfigDict(populate_by_name=True)


class ApprovalResult(BaseModel):
    request: SubscriptionRequest
    subscription: UserSubscription

    model_config = ConfigDict(populate_by_name=True)


class ConsumeUsageRequest(BaseModel):
    amount: int = Field(default=1, ge=1, le=1000)

    model_config = ConfigDict(populate_by_name=True)


class VisibilityFilterRequest(BaseModel):
    listings: List[ListingRef] = Field(max_length=500)

    model_config = ConfigDict(populate_by_name=True)


class AssignSubscriptionRequest(BaseModel):
    account_id: str = Field(alias="accountId", min_length=1)
    plan_id: str = Field(alias="planId", min_length=1)
    start_date: Optional[UtcDatetime] = Field(alias="startDate", default=None)
    end_date: Optional[UtcDatetime] = Field(alias="endDate", default=None)
    payment_status: Optional[PaymentStatus] = Field(alias="paymentStatus", default=None)
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class ExtendSubscriptionRequest(BaseModel):
    end_date: UtcDatetime = Field(alias="endDate")
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class ContinueSubscriptionRequest(BaseModel):
    months: int = Field(ge=1, le=120)
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class ResetUsageRequest(BaseModel):
    reason: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class SuspendSubscriptionRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)

    model_config = ConfigDict(populate_by_name=True)


class ReactivateSubscriptionRequest(BaseModel):
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class ChangePlanRequest(BaseModel):
    plan_id: str = Field(alias="planId", min_length=1)
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class PaymentStatusRequest(BaseModel):
    payment_status: PaymentStatus = Field(alias="paymentStatus")

    model_config = ConfigDict(populate_by_name=True)


class PlanCreateRequest(BaseModel):
    """Plan definition; ``features`` is checked field by field by the catalog."""

    name: str = Field(min_length=1, max_length=80)
    display_name: str = Field(alias="displayName", min_length=1)
    description: str = ""
    plan_type: PlanType = Field(alias="planType")
    price: int = Field(ge=0)
    currency: str = "INR"
    duration_days: int = Field(alias="durationDays")
    features: Dict[str, Any]
    is_active: bool = Field(alias="isActive", default=True)

    model_config = ConfigDict(populate_by_name=True)


class PlanUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    display_name: Optional[str] = Field(alias="displayName", default=None)
    description: Optional[str] = None
    plan_type: Optional[PlanType] = Field(alias="planType", default=None)
    price: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = None
    duration_days: Optional[int] = Field(alias="durationDays", default=None)
    features: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


__all__ = [
    "ApiEnvelope",
    "ApiError",
    "ApprovalResult",
    "AssignSubscriptionRequest",
    "ChangePlanRequest",
    "ConsumeUsageRequest",
    "ContinueSubscriptionRequest",
    "CreateChangeRequest",
    "ExtendSubscriptionRequest",
    "PaymentStatusRequest",
    "PlanCreateRequest",
    "PlanUpdateRequest",
    "ReactivateSubscriptionRequest",
    "ResetUsageRequest",
    "ResolveChangeRequest",
    "SuspendSubscriptionRequest",
    "VisibilityFilterRequest",
]
