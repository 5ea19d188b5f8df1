"""Single-flight coordination of entitlement bundle fetches per account."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..subscriptions.engine import current_time
from .bundle import EntitlementBundle, EntitlementSource

logger = logging.getLogger(__name__)


@dataclass
class _AccountFetchState:
    in_flight: Optional["asyncio.Task[EntitlementBundle]"] = None
    has_loaded: bool = False
    last_result: Optional[EntitlementBundle] = None
    generation: int = 0


class EntitlementFetchCoordinator:
    """Deduplicates concurrent entitlement fetches for the same account.

    A non-forced :meth:`ensure` joins a fetch that is already running, or
    returns the cached bundle once one has loaded. ``force=True`` always starts
    a new fetch; overlapping fetches are not cancelled and the one that
    completes last provides the cached bundle.
    """

    def __init__(
        self,
        source: EntitlementSource,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._source = source
        self._clock = clock
        self._states: Dict[str, _AccountFetchState] = {}
        self._lock = asyncio.Lock()

    async def ensure(self, account_id: Optional[str], *, force: bool = False) -> Optional[EntitlementBundle]:
        if not account_id:
            logger.warning("Skipping entitlement fetch: no account id supplied")
            return None

        async with self._lock:
            state = self._states.setdefault(account_id, _AccountFetchState())
            if force or (state.in_flight is None and not state.has_loaded):
                task = asyncio.create_task(self._fetch(account_id, state, state.generation))
                state.in_flight = task
            elif state.in_flight is not None:
                task = state.in_flight
            else:
                return state.last_result

        # Callers that give up waiting must not cancel a fetch others joined.
        return await asyncio.shield(task)

    def snapshot(self, account_id: str) -> Optional[EntitlementBundle]:
        state = self._states.get(account_id)
        return state.last_result if state else None

    def is_loading(self, account_id: str) -> bool:
        state = self._states.get(account_id)
        return bool(state and state.in_flight is not None)

    def has_loaded(self, account_id: str) -> bool:
        state = self._states.get(account_id)
        return bool(state and state.has_loaded)

    def invalidate(self, account_id: str) -> None:
        """Forget the cached bundle so the next :meth:`ensure` fetches again.

        Fetches already running still resolve for their own callers but no
        longer update the cached state, and later callers do not join them.
        """

        state = self._states.get(account_id)
        if state is not None:
            state.generation += 1
            state.has_loaded = False
            state.last_result = None
            state.in_flight = None

    async def _fetch(self, account_id: str, state: _AccountFetchState, generation: int) -> EntitlementBundle:
        try:
            bundle = await self._load_bundle(account_id)
            if state.generation == generation:
                state.last_result = bundle
            return bundle
        finally:
            if state.generation == generation:
                state.has_loaded = True
            if state.in_flight is asyncio.current_task():
                state.in_flight = None

    async def _load_bundle(self, account_id: str) -> EntitlementBundle:
        subscription, plans, usage = await asyncio.gather(
            self._source.fetch_subscription(account_id),
            self._source.fetch_plans(account_id),
            self._source.fetch_usage_stats(account_id),
            return_exceptions=True,
        )

        failures: Dict[str, str] = {}
        subscription = self._settle("subscription", subscription, None, account_id, failures)
        plans = self._settle("plans", plans, [], account_id, failures)
        usage = self._settle("usage", usage, None, account_id, failures)

        return EntitlementBundle(
            account_id=account_id,
            subscription=subscription,
            plans=list(plans),
            usage=usage,
            failures=failures,
            fetched_at=current_time(self._clock),
        )

    @staticmethod
    def _settle(
        part: str,
        result: Any,
        fallback: Any,
        account_id: str,
        failures: Dict[str, str],
    ) -> Any:
        if isinstance(result, Exception):
            logger.warning(
                "Entitlement %s fetch failed for account %s: %s",
                part,
                account_id,
                result,
            )
            failures[part] = str(result) or result.__class__.__name__
            return fallback
        if isinstance(result, BaseException):
            raise result
        return result


__all__ = ["EntitlementFetchCoordinator"]
