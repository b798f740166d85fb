"""Tests for the monthly revenue report."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from errors import BackendError, ValidationError
from pricing import PricingIndex, PricingType
from reporting import aggregate_by_customer, build_revenue_report, group_key, sale_amount, visit_service_shares
from table_gateway import TableGateway


def test_sale_amount_prefers_item_sum():
    sale = {"total_amount": Decimal("999"), "items": [
        {"quantity": 2, "unit_price": Decimal("25")},
        {"quantity": 1, "unit_price": Decimal("10.50")},
    ]}
    assert sale_amount(sale) == Decimal("60.50")
    assert sale_amount({"total_amount": Decimal("12"), "items": []}) == Decimal("12")


def test_monthly_rate_counts_once_per_group():
    pricing = PricingIndex([{"customer_id": "c1", "monthly_price": Decimal("1000")}])
    visits = [{"id": f"v{i}", "customer_id": "c1", "branch_id": None} for i in range(4)]

    rows = aggregate_by_customer(visits, pricing, [], [{"id": "c1", "company_name": "Acme"}], [])

    assert len(rows) == 1
    assert rows[0].pricing_type == PricingType.MONTHLY
    assert rows[0].visit_count == 4
    assert rows[0].service_revenue == Decimal("1000")


def test_visit_shares_split_monthly_rate():
    pricing = PricingIndex(
        [{"customer_id": "c1", "monthly_price": Decimal("900")}],
        [{"branch_id": "b2", "per_visit_price": Decimal("40")}],
    )
    visits = [
        {"id": "v1", "customer_id": "c1", "branch_id": "b1"},
        {"id": "v2", "customer_id": "c1", "branch_id": "b1"},
        {"id": "v3", "customer_id": "c1", "branch_id": "b1"},
        {"id": "v4", "customer_id": "c1", "branch_id": "b2"},
    ]
    shares = visit_service_shares(visits, pricing)
    assert shares["v1"] == shares["v2"] == shares["v3"] == Decimal("300")
    assert shares["v4"] == Decimal("40")


def test_group_key():
    assert group_key("c1", None) == "c1"
    assert group_key("c1", "b1") == "c1::b1"


@pytest.fixture
async def march_revenue(seed, tenant):
    """
    One customer on a 1000/month contract with two branches:
    branch A has its own 50 per-visit price (3 visits), branch B
    inherits the monthly contract (5 visits).
    """
    ali = await seed.operator(tenant, "Ali")
    zeynep = await seed.operator(tenant, "Zeynep")
    customer = await seed.customer(tenant, "Yılmaz Gıda")
    branch_a = await seed.branch(tenant, customer, "Kadıköy")
    branch_b = await seed.branch(tenant, customer, "Beşiktaş")
    await seed.customer_pricing(customer, monthly=Decimal("1000"))
    await seed.branch_pricing(branch_a, per_visit=Decimal("50"))
    material = await seed.material(tenant, "Jel Yem")

    a_visits = [await seed.visit(ali, customer, branch_a, when=datetime(2025, 3, d, 9)) for d in (3, 10, 17)]
    for d in (4, 11, 18):
        await seed.visit(ali, customer, branch_b, when=datetime(2025, 3, d, 9))
    for d in (5, 12):
        await seed.visit(zeynep, customer, branch_b, when=datetime(2025, 3, d, 9))

    # Not completed, or outside March: ignored
    await seed.visit(ali, customer, branch_a, when=datetime(2025, 3, 24, 9), status="pending")
    await seed.visit(ali, customer, branch_a, when=datetime(2025, 4, 2, 9))

    await seed.sale(customer, [(material, 2, Decimal("25"))], visit=a_visits[0], branch=branch_a)
    return {"customer": customer, "branch_a": branch_a, "branch_b": branch_b, "ali": ali, "zeynep": zeynep}


async def test_customer_view(gateway, tenant, march_revenue):
    report = await build_revenue_report(gateway, tenant, 2025, 3, "customer")

    assert [r.branch_name for r in report.customer_rows] == ["Beşiktaş", "Kadıköy"]
    b_row, a_row = report.customer_rows

    assert b_row.pricing_type == PricingType.MONTHLY
    assert b_row.visit_count == 5
    assert b_row.service_revenue == Decimal("1000")
    assert b_row.material_revenue == Decimal("0")

    assert a_row.pricing_type == PricingType.PER_VISIT
    assert a_row.visit_count == 3
    assert a_row.service_revenue == Decimal("150")
    assert a_row.material_revenue == Decimal("50")
    assert a_row.total_revenue == Decimal("200")

    assert report.totals.visit_count == 8
    assert report.totals.total_revenue == Decimal("1200")
    assert report.currency == "TRY"


async def test_operator_view_distributes_monthly_rate(gateway, tenant, march_revenue):
    report = await build_revenue_report(gateway, tenant, 2025, 3, "operator")

    assert [r.operator_name for r in report.operator_rows] == ["Ali", "Zeynep"]
    ali, zeynep = report.operator_rows
    # 3 x 50 per-visit + 3/5 of the 1000 monthly contract + 50 material
    assert ali.visit_count == 6
    assert ali.service_revenue == Decimal("750")
    assert ali.material_revenue == Decimal("50")
    assert ali.total_revenue == Decimal("800")
    assert zeynep.total_revenue == Decimal("400")
    assert report.totals.total_revenue == Decimal("1200")


async def test_other_tenants_do_not_leak(gateway, seed, tenant, march_revenue):
    other = await seed.tenant(email="other@rival.test", name="Rival")
    operator = await seed.operator(other, "Rival Op")
    customer = await seed.customer(other, "Rival Customer")
    await seed.customer_pricing(customer, monthly=Decimal("5000"))
    await seed.visit(operator, customer, when=datetime(2025, 3, 10, 9))

    report = await build_revenue_report(gateway, tenant, 2025, 3, "customer")
    assert report.totals.total_revenue == Decimal("1200")


async def test_empty_tenant_returns_empty_report(gateway, tenant):
    report = await build_revenue_report(gateway, tenant, 2025, 3, "customer")
    assert report.customer_rows == []
    assert report.totals.total_revenue == Decimal("0")


async def test_unknown_view_is_rejected(gateway, tenant):
    with pytest.raises(ValidationError):
        await build_revenue_report(gateway, tenant, 2025, 3, "branch")


async def test_month_window_uses_tenant_timezone(gateway, seed, tenant):
    operator = await seed.operator(tenant)
    customer = await seed.customer(tenant)
    await seed.customer_pricing(customer, per_visit=Decimal("10"))
    # 22:30 UTC on Feb 28 is already March 1st in Istanbul
    await seed.visit(operator, customer, when=datetime(2025, 2, 28, 22, 30))
    # 21:30 UTC on Mar 31 is April 1st in Istanbul
    await seed.visit(operator, customer, when=datetime(2025, 3, 31, 21, 30))

    march = await build_revenue_report(gateway, tenant, 2025, 3, "customer")
    april = await build_revenue_report(gateway, tenant, 2025, 4, "customer")
    assert march.totals.visit_count == 1
    assert april.totals.visit_count == 1


async def test_customer_view_counts_sales_by_sale_date(gateway, seed, tenant):
    operator = await seed.operator(tenant)
    customer = await seed.customer(tenant)
    await seed.visit(operator, customer, when=datetime(2025, 3, 10, 9))
    await seed.sale(customer, total_amount=Decimal("30"), sale_date=date(2025, 3, 20))
    await seed.sale(customer, total_amount=Decimal("70"), sale_date=date(2025, 4, 1))

    report = await build_revenue_report(gateway, tenant, 2025, 3, "customer")
    assert report.customer_rows[0].material_revenue == Decimal("30")
    assert report.customer_rows[0].pricing_type == PricingType.NONE


def test_monthly_shares_add_back_to_the_rate():
    pricing = PricingIndex([{"customer_id": "c1", "monthly_price": Decimal("1000")}])
    visits = [{"id": f"v{i}", "customer_id": "c1", "branch_id": "b1"} for i in range(3)]

    shares = visit_service_shares(visits, pricing)

    assert shares["v0"] == shares["v1"] == Decimal("333.33")
    assert shares["v2"] == Decimal("333.34")
    assert sum(shares.values()) == Decimal("1000")


async def test_operator_and_customer_views_agree_on_a_three_way_split(gateway, seed, tenant):
    ali = await seed.operator(tenant, "Ali")
    zeynep = await seed.operator(tenant, "Zeynep")
    customer = await seed.customer(tenant)
    await seed.customer_pricing(customer, monthly=Decimal("1000"))
    await seed.visit(ali, customer, when=datetime(2025, 3, 3, 9))
    await seed.visit(ali, customer, when=datetime(2025, 3, 10, 9))
    await seed.visit(zeynep, customer, when=datetime(2025, 3, 17, 9))

    by_customer = await build_revenue_report(gateway, tenant, 2025, 3, "customer")
    by_operator = await build_revenue_report(gateway, tenant, 2025, 3, "operator")

    assert by_customer.totals.service_revenue == Decimal("1000")
    assert by_operator.totals.service_revenue == Decimal("1000")
    assert {r.operator_name: r.service_revenue for r in by_operator.operator_rows} == {
        "Ali": Decimal("666.66"), "Zeynep": Decimal("333.34"),
    }


@pytest.fixture
def failing_sales_read(monkeypatch):
    """Make every read of paid_material_sales fail at the backend."""
    select_all = TableGateway.select_all

    async def flaky_select_all(self, table, *args, **kwargs):
        if table == "paid_material_sales":
            raise BackendError("connection reset while reading paid_material_sales")
        return await select_all(self, table, *args, **kwargs)

    monkeypatch.setattr(TableGateway, "select_all", flaky_select_all)


@pytest.mark.parametrize("view", ["customer", "operator"])
async def test_read_failure_aborts_the_report(gateway, tenant, march_revenue, failing_sales_read, view):
    with pytest.raises(BackendError, match="connection reset"):
        await build_revenue_report(gateway, tenant, 2025, 3, view)


async def test_read_failure_is_reported_as_bad_gateway(client, owner_headers, march_revenue, failing_sales_read):
    response = await client.get("/reports/revenue", params={"year": 2025, "month": 3}, headers=owner_headers)

    assert response.status_code == 502
    assert response.json() == {"detail": "connection reset while reading paid_material_sales"}
