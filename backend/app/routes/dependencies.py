"""Shared request dependencies for subscription routers."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Callable, Optional

from fastapi import Cookie, Depends, HTTPException, status

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
ADMIN_ROLE = "admin"


def _resolve_get_current_user() -> Callable[..., Any]:  # pragma: no cover - helper for lazy import
    try:
        from backend.main import get_current_user as resolved
    except ModuleNotFoundError as exc:
        if exc.name != "backend":
            raise
        from ...main import get_current_user as resolved  # type: ignore[no-redef]
    return resolved


@lru_cache(maxsize=1)
def _get_current_user_callable() -> Callable[..., Any]:
    return _resolve_get_current_user()


def get_session_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
) -> Any:
    resolved = _get_current_user_callable()
    return resolved(session_token=session_token)


def require_admin(current_user=Depends(get_session_user)) -> Any:
    if getattr(current_user, "role", None) != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "admin_required", "message": "Administrator access required"},
        )
    return current_user


def account_id_for(user: Any) -> str:
    return str(user.id)


__all__ = ["ADMIN_ROLE", "account_id_for", "get_session_user", "require_admin"]
