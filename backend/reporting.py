"""
Revenue aggregation pipeline.

fetch -> lookup maps -> single fold over visits -> sort by total -> render.

Money stays Decimal all the way through. Monthly rates split across visits
are divided to the cent; everything else is rounded only by the presenter.
"""
import logging
from collections import defaultdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Mapping, Optional

from errors import ValidationError
from models import VisitStatus
from pricing import CENT, PricingIndex, PricingType, ZERO, load_pricing
from schemas import CustomerRevenueRow, OperatorRevenueRow, RevenueReport, RevenueTotals
from table_gateway import TableGateway, eq, gte, in_, lte
from tenancy import CompanyRef
from timezone_utils import get_month_window, month_bounds

logger = logging.getLogger(__name__)

VIEWS = ("customer", "operator")


def group_key(customer_id: str, branch_id: Optional[str]) -> str:
    """Customer+branch grouping key; visits without a branch use the customer alone."""
    if branch_id:
        return f"{customer_id}::{branch_id}"
    return customer_id


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


def sale_amount(sale: Mapping) -> Decimal:
    """Sum of quantity x unit price over the sale's items, else its recorded total."""
    items = sale.get("items") or []
    if not items:
        return to_decimal(sale.get("total_amount"))
    return sum((to_decimal(i.get("quantity")) * to_decimal(i.get("unit_price")) for i in items), ZERO)


def _by_id(rows: Iterable[Mapping]) -> Dict[str, Mapping]:
    if isinstance(rows, Mapping):
        return dict(rows)
    return {r["id"]: r for r in rows}


def _customer_name(customer: Mapping) -> str:
    return customer.get("company_name") or customer.get("full_name") or customer["id"]


def aggregate_by_customer(
    visits: Iterable[Mapping],
    pricing: PricingIndex,
    sales: Iterable[Mapping],
    customers,
    branches,
) -> List[CustomerRevenueRow]:
    """
    Fold completed visits into one row per customer+branch.

    A monthly rate sets the group's service revenue once; a per-visit rate
    is added for every visit. Material revenue is matched by the same
    customer+branch key.
    """
    customers = _by_id(customers)
    branches = _by_id(branches)
    groups: Dict[str, CustomerRevenueRow] = {}

    for visit in visits:
        customer = customers.get(visit["customer_id"])
        if customer is None:
            logger.debug(f"Skipping visit {visit['id']}: customer {visit['customer_id']} not found")
            continue

        branch_id = visit.get("branch_id")
        key = group_key(visit["customer_id"], branch_id)
        row = groups.get(key)
        if row is None:
            branch = branches.get(branch_id) if branch_id else None
            pricing_type, _ = pricing.classify(visit["customer_id"], branch_id)
            row = groups[key] = CustomerRevenueRow(
                key=key,
                customer_id=visit["customer_id"],
                customer_name=_customer_name(customer),
                branch_id=branch_id,
                branch_name=branch["branch_name"] if branch else None,
                pricing_type=pricing_type,
            )

        row.visit_count += 1
        pricing_type, rate = pricing.classify(visit["customer_id"], branch_id)
        if pricing_type == PricingType.MONTHLY:
            row.service_revenue = rate
        elif pricing_type == PricingType.PER_VISIT:
            row.service_revenue += rate

    material: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for sale in sales:
        material[group_key(sale["customer_id"], sale.get("branch_id"))] += sale_amount(sale)

    for key, row in groups.items():
        row.material_revenue = material.get(key, ZERO)
        row.total_revenue = row.service_revenue + row.material_revenue

    return sorted(groups.values(), key=lambda r: (-r.total_revenue, r.customer_name, r.branch_name or ""))


def visit_service_shares(visits: Iterable[Mapping], pricing: PricingIndex) -> Dict[str, Decimal]:
    """
    Service amount attributable to each visit.

    Per-visit pricing gives each visit the rate. Monthly pricing is split
    evenly across the group's visits to the cent, with the rounding
    remainder on the group's last visit, so the shares add up to the
    monthly rate exactly.
    """
    groups: Dict[str, List[Mapping]] = defaultdict(list)
    for visit in visits:
        groups[group_key(visit["customer_id"], visit.get("branch_id"))].append(visit)

    shares: Dict[str, Decimal] = {}
    for members in groups.values():
        pricing_type, rate = pricing.classify(members[0]["customer_id"], members[0].get("branch_id"))
        if pricing_type == PricingType.MONTHLY:
            share = (rate / len(members)).quantize(CENT, rounding=ROUND_HALF_UP)
            for visit in members[:-1]:
                shares[visit["id"]] = share
            shares[members[-1]["id"]] = rate - share * (len(members) - 1)
        else:
            for visit in members:
                shares[visit["id"]] = rate if pricing_type == PricingType.PER_VISIT else ZERO
    return shares


def material_by_visit(sales: Iterable[Mapping]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for sale in sales:
        if sale.get("visit_id"):
            totals[sale["visit_id"]] += sale_amount(sale)
    return totals


def aggregate_by_operator(
    visits: Iterable[Mapping],
    operators,
    pricing: PricingIndex,
    sales: Iterable[Mapping],
) -> List[OperatorRevenueRow]:
    """Fold completed visits into one row per operator; material matched by visit id."""
    visits = list(visits)
    operators = _by_id(operators)
    shares = visit_service_shares(visits, pricing)
    material = material_by_visit(sales)
    rows: Dict[str, OperatorRevenueRow] = {}

    for visit in visits:
        operator = operators.get(visit.get("operator_id"))
        if operator is None:
            continue
        row = rows.get(operator["id"])
        if row is None:
            row = rows[operator["id"]] = OperatorRevenueRow(
                operator_id=operator["id"],
                operator_name=operator.get("full_name") or operator["id"],
            )
        row.visit_count += 1
        row.service_revenue += shares.get(visit["id"], ZERO)
        row.material_revenue += material.get(visit["id"], ZERO)

    for row in rows.values():
        row.total_revenue = row.service_revenue + row.material_revenue

    return sorted(rows.values(), key=lambda r: (-r.total_revenue, r.operator_name))


def totals_of(rows) -> RevenueTotals:
    totals = RevenueTotals()
    for row in rows:
        totals.visit_count += row.visit_count
        totals.service_revenue += row.service_revenue
        totals.material_revenue += row.material_revenue
        totals.total_revenue += row.total_revenue
    return totals


async def attach_sale_items(gateway: TableGateway, sales: List[dict]) -> List[dict]:
    """Load line items for the given sales and set them on each sale as 'items'."""
    if not sales:
        return sales
    items = await gateway.select_all(
        "paid_material_sale_items", filters=[in_("sale_id", [s["id"] for s in sales])]
    )
    by_sale: Dict[str, List[dict]] = defaultdict(list)
    for item in items:
        by_sale[item["sale_id"]].append(item)
    for sale in sales:
        sale["items"] = by_sale.get(sale["id"], [])
    return sales


async def build_revenue_report(
    gateway: TableGateway,
    company: CompanyRef,
    year: int,
    month: int,
    view: str = "customer",
) -> RevenueReport:
    """
    Monthly revenue for a tenant, grouped by customer+branch or by operator.

    Only completed visits count. Reads run one after another and the first
    failure aborts the whole report.
    """
    if view not in VIEWS:
        raise ValidationError(f"Unknown report view '{view}'")

    report = RevenueReport(year=year, month=month, view=view, currency=company.currency, totals=RevenueTotals())

    operators = await gateway.select("operators", filters=[eq("company_id", company.company_id)])
    if not operators:
        logger.info(f"Revenue report ({view}) for company {company.company_id} {year}-{month:02d}: no operators")
        return report

    start, end = get_month_window(year, month, company.timezone)
    visits = await gateway.select_all(
        "visits",
        filters=[
            in_("operator_id", [o["id"] for o in operators]),
            eq("status", VisitStatus.COMPLETED.value),
            gte("visit_date", start),
            lte("visit_date", end),
        ],
        order_by="visit_date",
    )

    customer_ids = sorted({v["customer_id"] for v in visits})
    branch_ids = sorted({v["branch_id"] for v in visits if v.get("branch_id")})
    pricing = await load_pricing(gateway, customer_ids, branch_ids)

    if view == "customer":
        sales = []
        if customer_ids:
            first_day, last_day = month_bounds(year, month)
            sales = await gateway.select_all(
                "paid_material_sales",
                filters=[in_("customer_id", customer_ids), gte("sale_date", first_day), lte("sale_date", last_day)],
            )
        await attach_sale_items(gateway, sales)

        customers = await gateway.select("customers", filters=[in_("id", customer_ids)]) if customer_ids else []
        branches = await gateway.select("customer_branches", filters=[in_("id", branch_ids)]) if branch_ids else []
        report.customer_rows = aggregate_by_customer(visits, pricing, sales, customers, branches)
        report.totals = totals_of(report.customer_rows)
        row_count = len(report.customer_rows)
    else:
        sales = []
        if visits:
            sales = await gateway.select_all(
                "paid_material_sales", filters=[in_("visit_id", [v["id"] for v in visits])]
            )
        await attach_sale_items(gateway, sales)
        report.operator_rows = aggregate_by_operator(visits, operators, pricing, sales)
        report.totals = totals_of(report.operator_rows)
        row_count = len(report.operator_rows)

    logger.info(
        f"Revenue report ({view}) for company {company.company_id} {year}-{month:02d}: "
        f"{len(visits)} visits, {row_count} rows"
    )
    return report
