"""Tests for the platform admin endpoints."""

from datetime import datetime

import pytest

from platform_admin import add_months, period_end
from table_gateway import eq


@pytest.fixture
async def admin_headers(seed, make_headers):
    admin = await seed.profile("root@platform.test", "admin")
    return make_headers(admin["id"], "admin", "root@platform.test")


def test_add_months_clamps_to_month_end():
    assert add_months(datetime(2025, 1, 31, 10), 1) == datetime(2025, 2, 28, 10)
    assert add_months(datetime(2024, 2, 29), 12) == datetime(2025, 2, 28)
    assert add_months(datetime(2025, 12, 15), 1) == datetime(2026, 1, 15)


def test_period_end_by_billing_period():
    start = datetime(2025, 3, 10)
    assert period_end("weekly", start) == datetime(2025, 3, 17)
    assert period_end("monthly", start) == datetime(2025, 4, 10)
    assert period_end("yearly", start) == datetime(2026, 3, 10)
    assert period_end(None, start) == datetime(2025, 4, 10)


async def test_plans_are_listed_in_display_order(client, seed, admin_headers):
    await seed.plan("Kurumsal", display_order=3)
    await seed.plan("Başlangıç", display_order=1)
    await seed.plan("Eski", display_order=0, is_active=False)

    response = await client.get("/api/platform/plans", headers=admin_headers)
    assert response.status_code == 200
    assert [p["name"] for p in response.json()] == ["Başlangıç", "Kurumsal"]


async def test_limits_lists_every_tenant(client, seed, tenant, admin_headers):
    plan = await seed.plan(max_customers=25)
    other = await seed.tenant(email="other@rival.test", name="Rival", status="active", plan=plan, max_customers=5)
    await seed.customers(other, 2)
    # Subscription whose owner never got a companies row
    orphan = await seed.profile("orphan@example.com", "company")
    await seed.gateway.insert("subscriptions", {"company_id": orphan["id"], "status": "trial"})

    response = await client.get("/api/platform/limits", headers=admin_headers)
    assert response.status_code == 200
    by_owner = {t["owner_profile_id"]: t for t in response.json()}

    rival = by_owner[other.owner_profile_id]
    assert rival["company_id"] == other.company_id
    assert rival["effective"]["customers"] == 5
    assert rival["overrides"]["customers"] == 5
    assert rival["overrides"]["operators"] is None
    assert rival["usage"]["customers"] == 2
    assert rival["plan_name"] == "Pro"

    acme = by_owner[tenant.owner_profile_id]
    assert acme["effective"]["customers"] == 3
    assert acme["usage"]["customers"] == 0

    lost = by_owner[orphan["id"]]
    assert lost["unresolved"] is True
    assert lost["usage"] is None


async def test_assigning_a_plan_activates_the_subscription(client, seed, gateway, tenant, admin_headers):
    plan = await seed.plan("Yıllık", billing_period="yearly", max_customers=100)
    subscription = await gateway.maybe_single("subscriptions", [eq("company_id", tenant.owner_profile_id)])

    response = await client.patch(f"/api/platform/subscriptions/{subscription['id']}", json={
        "plan_id": plan["id"], "max_customers": "", "max_operators": 7,
    }, headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "active"
    assert data["plan_id"] == plan["id"]
    assert data["max_customers"] is None
    assert data["max_operators"] == 7
    period_end_at = datetime.fromisoformat(data["current_period_end"])
    assert (period_end_at - datetime.utcnow()).days >= 364


async def test_override_validation_and_missing_subscription(client, admin_headers):
    response = await client.patch("/api/platform/subscriptions/missing", json={"max_customers": 5}, headers=admin_headers)
    assert response.status_code == 404

    response = await client.patch("/api/platform/subscriptions/missing", json={"max_customers": -1}, headers=admin_headers)
    assert response.status_code == 422


async def test_admin_role_required(client, owner_headers):
    response = await client.get("/api/platform/limits", headers=owner_headers)
    assert response.status_code == 403
