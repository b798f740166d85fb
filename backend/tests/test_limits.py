"""Tests for subscription limit resolution and enforcement."""

from datetime import datetime, timedelta

import pytest

from errors import LimitExceededError, UnresolvedCompanyError
from limits import (
    ResourceType, TRIAL_DEFAULTS, build_limit_report, ensure_capacity, is_subscription_active,
    resolve_limit, usage_percent,
)
from tenancy import resolve_company


def test_override_wins_over_plan():
    plan = {"max_customers": 25}
    assert resolve_limit(ResourceType.CUSTOMERS, {"max_customers": None}, plan) == 25
    assert resolve_limit(ResourceType.CUSTOMERS, {"max_customers": 5}, plan) == 5
    # Zero is a real override, not "unset"
    assert resolve_limit(ResourceType.CUSTOMERS, {"max_customers": 0}, plan) == 0


def test_trial_defaults_without_plan():
    for resource, default in TRIAL_DEFAULTS.items():
        assert resolve_limit(resource, None, None) == default
        assert resolve_limit(resource, {"plan_id": None}, None) == default
    assert TRIAL_DEFAULTS[ResourceType.CUSTOMERS] == 3


def test_usage_percent():
    assert usage_percent(8, 10) == 80.0
    assert usage_percent(15, 10) == 100.0
    assert usage_percent(3, 0) == 0.0


def test_is_subscription_active():
    now = datetime(2025, 3, 1)
    assert is_subscription_active({"status": "active"}, now)
    assert is_subscription_active({"status": "trial", "trial_ends_at": now + timedelta(days=1)}, now)
    assert not is_subscription_active({"status": "trial", "trial_ends_at": now - timedelta(days=1)}, now)
    assert not is_subscription_active({"status": "expired"}, now)
    assert not is_subscription_active(None, now)


async def test_usage_is_counted_by_company_storage_id(gateway, seed):
    plan = await seed.plan(max_customers=10, max_operators=4, max_branches=20, max_warehouses=2)
    company = await seed.tenant(status="active", plan=plan)
    await seed.customers(company, 8)
    await seed.operator(company)

    report = await build_limit_report(gateway, company)
    items = {i.resource: i for i in report.items}

    assert items["customers"].current == 8
    assert items["customers"].max == 10
    assert items["customers"].percent == 80.0
    assert items["customers"].near_limit is True
    assert items["customers"].at_limit is False
    assert items["operators"].current == 1
    assert items["operators"].near_limit is False
    assert report.plan_name == "Pro"
    assert report.subscription_status == "active"


async def test_subscription_override_applies(gateway, seed):
    plan = await seed.plan(max_customers=25)
    company = await seed.tenant(status="active", plan=plan, max_customers=5)

    report = await build_limit_report(gateway, company)
    items = {i.resource: i for i in report.items}
    assert items["customers"].max == 5


async def test_ensure_capacity(gateway, seed, tenant):
    await seed.customers(tenant, 2)

    assert await ensure_capacity(gateway, tenant, ResourceType.CUSTOMERS, 1) == (2, 3)
    with pytest.raises(LimitExceededError) as exc_info:
        await ensure_capacity(gateway, tenant, ResourceType.CUSTOMERS, 2)

    error = exc_info.value
    assert (error.current, error.limit, error.requested, error.remaining) == (2, 3, 2, 1)


async def test_limits_of_other_tenants_are_independent(gateway, seed, tenant):
    other = await seed.tenant(email="other@rival.test", name="Rival")
    await seed.customers(other, 3)

    assert await ensure_capacity(gateway, tenant, ResourceType.CUSTOMERS, 3) == (0, 3)


async def test_profile_without_company_is_unresolved(gateway, seed):
    profile = await seed.profile("lonely@example.com", "company")
    with pytest.raises(UnresolvedCompanyError):
        await resolve_company(gateway, profile["id"])
