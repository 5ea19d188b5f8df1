"""Domain errors raised by subscription services."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class SubscriptionError(Exception):
    """Base error carrying an API-facing code and HTTP status.

    Subclasses only override the ``code`` and ``status_code`` defaults.
    """

    message: str
    code: str = "subscription_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = field(default=None)

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class SubscriptionValidationError(SubscriptionError, ValueError):
    """Input was malformed or violated a plan/request rule."""

    code: str = "validation_error"
    status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY


@dataclass
class SubscriptionNotFoundError(SubscriptionError, LookupError):
    code: str = "not_found"
    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass
class SubscriptionConflictError(SubscriptionError):
    """A uniqueness rule was violated."""

    code: str = "conflict"
    status_code: int = status.HTTP_409_CONFLICT


@dataclass
class InvalidTransitionError(SubscriptionConflictError):
    """The requested lifecycle transition is not legal from the current state."""

    code: str = "invalid_transition"


__all__ = [
    "InvalidTransitionError",
    "SubscriptionConflictError",
    "SubscriptionError",
    "SubscriptionNotFoundError",
    "SubscriptionValidationError",
]
