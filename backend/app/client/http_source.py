"""HTTP entitlement source reading the subscription API envelope."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..subscriptions.config import EntitlementClientConfig, load_client_config
from ..subscriptions.models import SubscriptionPlan, UsageStats, UserSubscription

logger = logging.getLogger(__name__)


class EntitlementFetchError(RuntimeError):
    """The API answered with ``success=false`` or an unreadable body."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HttpEntitlementSource:
    """Fetches bundle parts from the account subscription endpoints.

    The account is identified by the session cookie carried by the client; the
    ``account_id`` argument only keys logging. Pass ``client`` to reuse a
    long-lived :class:`httpx.AsyncClient`, otherwise one is opened per call.
    """

    def __init__(
        self,
        *,
        config: Optional[EntitlementClientConfig] = None,
        cookies: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config or load_client_config()
        self._cookies = cookies or {}
        self._client = client
        if client is not None and self._cookies:
            client.cookies.update(self._cookies)

    async def fetch_subscription(self, account_id: str) -> Optional[UserSubscription]:
        data = await self._get("/api/subscriptions/me", account_id)
        return UserSubscription.model_validate(data) if data else None

    async def fetch_plans(self, account_id: str) -> List[SubscriptionPlan]:
        data = await self._get("/api/subscriptions/plans/active", account_id)
        return [SubscriptionPlan.model_validate(item) for item in data or []]

    async def fetch_usage_stats(self, account_id: str) -> Optional[UsageStats]:
        data = await self._get("/api/subscriptions/me/usage", account_id)
        return UsageStats.model_validate(data) if data else None

    async def _get(self, path: str, account_id: str) -> Any:
        url = f"{self._config.base_url}{path}"
        if self._client is not None:
            response = await self._client.get(url)
        else:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds, cookies=self._cookies) as client:
                response = await client.get(url)
        return _unwrap(response, path, account_id)


def _unwrap(response: httpx.Response, path: str, account_id: str) -> Any:
    try:
        payload = response.json()
    except ValueError as exc:
        response.raise_for_status()
        raise EntitlementFetchError(
            f"Unreadable response from {path}", status_code=response.status_code
        ) from exc

    if not isinstance(payload, dict) or not payload.get("success"):
        error = payload.get("error") if isinstance(payload, dict) else None
        message = error.get("message") if isinstance(error, dict) else error
        logger.debug("Entitlement request %s failed for account %s: %s", path, account_id, message)
        raise EntitlementFetchError(
            message or f"Request to {path} failed with status {response.status_code}",
            status_code=response.status_code,
        )
    return payload.get("data")


__all__ = ["EntitlementFetchError", "HttpEntitlementSource"]
