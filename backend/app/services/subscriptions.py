"""Application wiring for the subscription services."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..subscriptions import (
    ChangeRequestService,
    PlanCatalogService,
    SubscriptionAdminService,
    SubscriptionAuditEvent,
    SubscriptionConfig,
    SubscriptionEventLogger,
    UsageService,
    load_subscription_config,
)
from ..subscriptions.repository import PostgresSubscriptionRepository


logger = logging.getLogger("subscriptions")


class LoggingSubscriptionEventLogger(SubscriptionEventLogger):
    """Event logger forwarding subscription audit events to logging."""

    def log(self, event: SubscriptionAuditEvent) -> None:
        logger.info(
            "Subscription event %s subscription=%s request=%s plan=%s actor=%s metadata=%s",
            event.event_type.value,
            event.subscription_id,
            event.request_id,
            event.plan_id,
            event.actor_id,
            event.metadata,
            extra={
                "subscription_event": event.event_type.value,
                "subscription_id": event.subscription_id,
                "actor_id": event.actor_id,
            },
        )


@lru_cache(maxsize=1)
def get_subscription_config() -> SubscriptionConfig:
    return load_subscription_config()


@lru_cache(maxsize=1)
def get_subscription_repository() -> PostgresSubscriptionRepository:
    return PostgresSubscriptionRepository()


@lru_cache(maxsize=1)
def get_event_logger() -> SubscriptionEventLogger:
    return LoggingSubscriptionEventLogger()


@lru_cache(maxsize=1)
def get_plan_catalog_service() -> PlanCatalogService:
    config = get_subscription_config()
    return PlanCatalogService(
        repository=get_subscription_repository(),
        event_logger=get_event_logger(),
        default_plan_type=config.default_plan_type,
    )


@lru_cache(maxsize=1)
def get_change_request_service() -> ChangeRequestService:
    repository = get_subscription_repository()
    return ChangeRequestService(
        plans=repository,
        subscriptions=repository,
        requests=repository,
        event_logger=get_event_logger(),
        config=get_subscription_config(),
    )


@lru_cache(maxsize=1)
def get_subscription_admin_service() -> SubscriptionAdminService:
    repository = get_subscription_repository()
    return SubscriptionAdminService(
        plans=repository,
        subscriptions=repository,
        event_logger=get_event_logger(),
        config=get_subscription_config(),
    )


@lru_cache(maxsize=1)
def get_usage_service() -> UsageService:
    repository = get_subscription_repository()
    return UsageService(plans=repository, subscriptions=repository, config=get_subscription_config())


def bootstrap_subscriptions() -> None:
    """Create the schema and install default plans when enabled."""

    get_subscription_repository().ensure_schema()
    if not get_subscription_config().seed_default_plans:
        return
    created = get_plan_catalog_service().seed_default_plans()
    if created:
        logger.info("Seeded %s default subscription plans", len(created))


__all__ = [
    "LoggingSubscriptionEventLogger",
    "bootstrap_subscriptions",
    "get_change_request_service",
    "get_plan_catalog_service",
    "get_subscription_admin_service",
    "get_subscription_config",
    "get_usage_service",
]
