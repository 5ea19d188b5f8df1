from __future__ import annotations

import pytest

from backend.app.subscriptions import (
    ChangeRequestService,
    PlanCatalogService,
    PlanType,
    SubscriptionAdminService,
    SubscriptionConfig,
    UsageService,
)
from backend.tests.support import FakeClock, InMemorySubscriptionStore, RecordingEventLogger


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemorySubscriptionStore:
    return InMemorySubscriptionStore()


@pytest.fixture
def event_logger() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def config() -> SubscriptionConfig:
    return SubscriptionConfig(
        expiry_warning_days=7,
        approval_reactivates_suspended=False,
        inactive_data_delay_days=7,
        default_plan_type=PlanType.INSTITUTE,
        seed_default_plans=True,
    )


@pytest.fixture
def plan_service(store, event_logger, clock) -> PlanCatalogService:
    return PlanCatalogService(repository=store, event_logger=event_logger, clock=clock)


@pytest.fixture
def request_service(store, event_logger, config, clock) -> ChangeRequestService:
    return ChangeRequestService(
        plans=store,
        subscriptions=store,
        requests=store,
        event_logger=event_logger,
        config=config,
        clock=clock,
    )


@pytest.fixture
def admin_service(store, event_logger, config, clock) -> SubscriptionAdminService:
    return SubscriptionAdminService(
        plans=store,
        subscriptions=store,
        event_logger=event_logger,
        config=config,
        clock=clock,
    )


@pytest.fixture
def usage_service(store, config, clock) -> UsageService:
    return UsageService(plans=store, subscriptions=store, config=config, clock=clock)
