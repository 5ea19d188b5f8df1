from __future__ import annotations

import pytest

from backend.app.subscriptions import PlanType, load_subscription_config
from backend.app.subscriptions.config import load_client_config


def test_subscription_config_defaults() -> None:
    config = load_subscription_config({})

    assert config.expiry_warning_days == 7
    assert config.approval_reactivates_suspended is False
    assert config.inactive_data_delay_days == 7
    assert config.default_plan_type == PlanType.INSTITUTE
    assert config.seed_default_plans is True


def test_subscription_config_reads_environment() -> None:
    config = load_subscription_config(
        {
            "SUBSCRIPTION_EXPIRY_WARNING_DAYS": "14",
            "SUBSCRIPTION_APPROVAL_REACTIVATES_SUSPENDED": "yes",
            "SUBSCRIPTION_INACTIVE_DATA_DELAY_DAYS": "-3",
            "SUBSCRIPTION_DEFAULT_PLAN_TYPE": "Vendor",
            "SUBSCRIPTION_SEED_DEFAULT_PLANS": "off",
        }
    )

    assert config.expiry_warning_days == 14
    assert config.approval_reactivates_suspended is True
    assert config.inactive_data_delay_days == 0
    assert config.default_plan_type == PlanType.VENDOR
    assert config.seed_default_plans is False


@pytest.mark.parametrize(
    "env",
    [
        {"SUBSCRIPTION_EXPIRY_WARNING_DAYS": "soon"},
        {"SUBSCRIPTION_DEFAULT_PLAN_TYPE": "enterprise"},
    ],
)
def test_subscription_config_rejects_bad_values(env) -> None:
    with pytest.raises(ValueError):
        load_subscription_config(env)


def test_client_config_trims_base_url_and_bounds_timeout() -> None:
    config = load_client_config(
        {"SUBSCRIPTION_CLIENT_BASE_URL": "https://api.example.com/", "SUBSCRIPTION_CLIENT_TIMEOUT": "0"}
    )

    assert config.base_url == "https://api.example.com"
    assert config.timeout_seconds == pytest.approx(0.1)
    assert load_client_config({}).timeout_seconds == pytest.approx(10.0)
