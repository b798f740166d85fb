"""Tests for the table protocol over the async session."""

import pytest

from errors import BackendError, ValidationError
from table_gateway import eq, gte, in_, lte, neq


async def test_insert_returns_rows_with_generated_ids(gateway):
    rows = await gateway.insert("profiles", [
        {"email": "a@example.com", "full_name": "A", "role": "customer"},
        {"email": "b@example.com", "full_name": "B", "role": "operator"},
    ])
    assert len(rows) == 2
    assert all(len(r["id"]) == 36 for r in rows)
    assert {r["email"] for r in rows} == {"a@example.com", "b@example.com"}


async def test_insert_batch_with_different_columns_per_row(gateway):
    rows = await gateway.insert("subscription_plans", [
        {"name": "Basic", "max_customers": 10},
        {"name": "Pro", "display_order": 2, "billing_period": "yearly"},
        {"name": "Legacy", "is_active": False},
    ])

    assert [r["name"] for r in rows] == ["Basic", "Pro", "Legacy"]
    basic, pro, legacy = rows
    assert basic["max_customers"] == 10
    assert basic["display_order"] == 0
    assert basic["billing_period"] == "monthly"
    assert pro["max_customers"] is None
    assert pro["display_order"] == 2
    assert pro["billing_period"] == "yearly"
    assert legacy["is_active"] is False
    assert await gateway.count("subscription_plans") == 3


async def test_failed_batch_insert_writes_nothing(gateway):
    with pytest.raises(BackendError):
        await gateway.insert("profiles", [
            {"email": "first@example.com", "full_name": "First"},
            {"email": "first@example.com", "full_name": "Again", "phone": "555"},
        ])
    assert await gateway.count("profiles") == 0


async def test_select_filters_and_ordering(gateway):
    await gateway.insert("subscription_plans", [
        {"name": "Basic", "display_order": 1, "max_customers": 10},
        {"name": "Pro", "display_order": 2, "max_customers": 50},
        {"name": "Enterprise", "display_order": 3, "max_customers": None},
    ])

    rows = await gateway.select("subscription_plans", filters=[gte("display_order", 2)], order_by="display_order")
    assert [r["name"] for r in rows] == ["Pro", "Enterprise"]

    rows = await gateway.select("subscription_plans", filters=[lte("display_order", 2)],
                                order_by="display_order", descending=True)
    assert [r["name"] for r in rows] == ["Pro", "Basic"]

    rows = await gateway.select("subscription_plans", filters=[in_("name", ["Basic", "Enterprise"])], order_by="name")
    assert [r["name"] for r in rows] == ["Basic", "Enterprise"]

    # eq/neq against None use IS / IS NOT
    rows = await gateway.select("subscription_plans", filters=[eq("max_customers", None)])
    assert [r["name"] for r in rows] == ["Enterprise"]
    assert await gateway.count("subscription_plans", [neq("max_customers", None)]) == 2


async def test_select_projection(gateway):
    await gateway.insert("subscription_plans", {"name": "Basic"})
    rows = await gateway.select("subscription_plans", columns=["name"])
    assert rows == [{"name": "Basic"}]


async def test_select_all_reads_every_page(gateway):
    await gateway.insert("subscription_plans", [{"name": f"Plan {i:02d}", "display_order": i} for i in range(7)])
    rows = await gateway.select_all("subscription_plans", order_by="display_order", page_size=3)
    assert [r["display_order"] for r in rows] == list(range(7))


async def test_update_returns_updated_rows(gateway):
    plan = (await gateway.insert("subscription_plans", {"name": "Basic", "max_customers": 10}))[0]
    updated = await gateway.update("subscription_plans", {"max_customers": 20}, [eq("id", plan["id"])])
    assert len(updated) == 1
    assert updated[0]["max_customers"] == 20

    assert await gateway.update("subscription_plans", {"max_customers": 30}, [eq("id", "missing")]) == []


async def test_delete_requires_a_filter(gateway):
    await gateway.insert("subscription_plans", {"name": "Basic"})
    with pytest.raises(ValidationError):
        await gateway.delete("subscription_plans", [])
    assert await gateway.delete("subscription_plans", [eq("name", "Basic")]) == 1
    assert await gateway.count("subscription_plans") == 0


async def test_upsert_inserts_then_updates_on_conflict(gateway, seed, tenant):
    customer = await seed.customer(tenant)

    first = await gateway.upsert(
        "customer_pricing", {"customer_id": customer["id"], "monthly_price": 1000, "per_visit_price": None},
        on_conflict="customer_id",
    )
    second = await gateway.upsert(
        "customer_pricing", {"customer_id": customer["id"], "monthly_price": None, "per_visit_price": 75},
        on_conflict="customer_id",
    )

    assert second["id"] == first["id"]
    assert second["monthly_price"] is None
    assert second["per_visit_price"] == 75
    assert await gateway.count("customer_pricing", [eq("customer_id", customer["id"])]) == 1


async def test_upsert_requires_conflict_value(gateway):
    with pytest.raises(ValidationError):
        await gateway.upsert("customer_pricing", {"monthly_price": 10}, on_conflict="customer_id")


async def test_unknown_table_and_column_are_rejected(gateway):
    with pytest.raises(ValidationError):
        await gateway.select("no_such_table")
    with pytest.raises(ValidationError):
        await gateway.select("profiles", filters=[eq("no_such_column", 1)])
    with pytest.raises(ValidationError):
        await gateway.insert("profiles", {"email": "x@example.com", "full_name": "X", "bogus": 1})


async def test_database_errors_surface_as_backend_error(gateway):
    await gateway.insert("profiles", {"email": "dup@example.com", "full_name": "A", "role": "customer"})
    with pytest.raises(BackendError) as exc_info:
        await gateway.insert("profiles", {"email": "dup@example.com", "full_name": "B", "role": "customer"})
    assert "UNIQUE" in exc_info.value.message.upper()

    # The session is usable again after the rollback
    assert await gateway.count("profiles") == 1
