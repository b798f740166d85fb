"""
Monthly calendar: every visit of the month with its revenue share,
material lines, and per-customer / per-operator / material summaries.
"""
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from errors import NotFoundError, ValidationError
from models import VisitStatus
from pricing import ZERO, load_pricing
from reporting import attach_sale_items, group_key, sale_amount, visit_service_shares, to_decimal
from schemas import (
    BranchMaterialUsage,
    CalendarCustomerSummary,
    CalendarFilters,
    CalendarOperatorSummary,
    CalendarReport,
    CalendarVisit,
    CustomerMaterialUsage,
    DailyBreakdown,
    MaterialLine,
    MaterialUsage,
    RevenueTotals,
)
from table_gateway import TableGateway, eq, gte, in_, lte
from tenancy import CompanyRef
from timezone_utils import get_month_window, utc_to_tenant_date

logger = logging.getLogger(__name__)


def _visit_filters(filters: CalendarFilters):
    clauses = []
    if filters.operator_id:
        clauses.append(eq("operator_id", filters.operator_id))
    if filters.customer_id:
        clauses.append(eq("customer_id", filters.customer_id))
    if filters.branch_id:
        clauses.append(eq("branch_id", filters.branch_id))
    if filters.status:
        clauses.append(eq("status", filters.status))
    if filters.checked == "checked":
        clauses.append(eq("is_checked", True))
    elif filters.checked == "unchecked":
        clauses.append(eq("is_checked", False))
    return clauses


def _material_lines(sale: dict, materials: Dict[str, dict]) -> List[MaterialLine]:
    lines = []
    for item in sale.get("items", []):
        material = materials.get(item.get("material_id"))
        unit_price = to_decimal(item.get("unit_price"))
        lines.append(MaterialLine(
            sale_id=sale["id"],
            material_id=item.get("material_id"),
            material_name=material["name"] if material else "?",
            unit=material.get("unit") if material else None,
            quantity=item["quantity"],
            unit_price=unit_price,
            line_total=unit_price * item["quantity"],
        ))
    return lines


def _add_usage(breakdown: Dict[str, MaterialUsage], line: MaterialLine):
    usage = breakdown.get(line.material_name)
    if usage is None:
        usage = breakdown[line.material_name] = MaterialUsage(
            material_id=line.material_id, material_name=line.material_name, unit=line.unit
        )
    usage.quantity += line.quantity
    usage.amount += line.line_total


async def build_calendar_report(
    gateway: TableGateway,
    company: CompanyRef,
    year: int,
    month: int,
    filters: Optional[CalendarFilters] = None,
) -> CalendarReport:
    filters = filters or CalendarFilters()
    report = CalendarReport(year=year, month=month, currency=company.currency, totals=RevenueTotals())

    operators = await gateway.select("operators", filters=[eq("company_id", company.company_id)])
    if not operators:
        return report
    operators_by_id = {o["id"]: o for o in operators}

    start, end = get_month_window(year, month, company.timezone)
    visits = await gateway.select_all(
        "visits",
        filters=[
            in_("operator_id", list(operators_by_id)),
            gte("visit_date", start),
            lte("visit_date", end),
            *_visit_filters(filters),
        ],
        order_by="visit_date",
    )
    if not visits:
        return report

    customer_ids = sorted({v["customer_id"] for v in visits})
    branch_ids = sorted({v["branch_id"] for v in visits if v.get("branch_id")})
    pricing = await load_pricing(gateway, customer_ids, branch_ids)

    customers = {c["id"]: c for c in await gateway.select("customers", filters=[in_("id", customer_ids)])}
    branches = {}
    if branch_ids:
        branches = {b["id"]: b for b in await gateway.select("customer_branches", filters=[in_("id", branch_ids)])}

    sales = await gateway.select_all("paid_material_sales", filters=[in_("visit_id", [v["id"] for v in visits])])
    await attach_sale_items(gateway, sales)
    material_ids = sorted({i["material_id"] for s in sales for i in s["items"] if i.get("material_id")})
    materials = {}
    if material_ids:
        materials = {m["id"]: m for m in await gateway.select("company_materials", filters=[in_("id", material_ids)])}

    sales_by_visit: Dict[str, List[dict]] = defaultdict(list)
    for sale in sales:
        sales_by_visit[sale["visit_id"]].append(sale)

    billable = [v for v in visits if v["status"] != VisitStatus.CANCELLED.value]
    shares = visit_service_shares(billable, pricing)

    customer_summary: Dict[str, CalendarCustomerSummary] = {}
    operator_summary: Dict[str, CalendarOperatorSummary] = {}
    daily: Dict[str, Dict[str, DailyBreakdown]] = defaultdict(dict)
    usage: Dict[str, CustomerMaterialUsage] = {}
    usage_materials: Dict[str, Dict[str, MaterialUsage]] = defaultdict(dict)
    branch_usage: Dict[str, Dict[str, BranchMaterialUsage]] = defaultdict(dict)
    branch_materials: Dict[tuple, Dict[str, MaterialUsage]] = defaultdict(dict)

    for visit in visits:
        customer = customers.get(visit["customer_id"])
        if customer is None:
            continue
        branch = branches.get(visit.get("branch_id"))
        operator = operators_by_id.get(visit.get("operator_id"))
        completed = visit["status"] == VisitStatus.COMPLETED.value
        local_date = utc_to_tenant_date(visit["visit_date"], company.timezone)

        lines: List[MaterialLine] = []
        material_revenue = ZERO
        for sale in sales_by_visit.get(visit["id"], []):
            sale_lines = _material_lines(sale, materials)
            lines.extend(sale_lines)
            amount = sale_amount(sale)
            material_revenue += amount

            if not completed:
                continue
            cust_usage = usage.get(sale["customer_id"])
            if cust_usage is None:
                cust_usage = usage[sale["customer_id"]] = CustomerMaterialUsage(
                    customer_id=sale["customer_id"], customer_name=customer["company_name"]
                )
            cust_usage.sales_amount += amount
            for line in sale_lines:
                _add_usage(usage_materials[sale["customer_id"]], line)
            if sale.get("branch_id"):
                b_usage = branch_usage[sale["customer_id"]].get(sale["branch_id"])
                if b_usage is None:
                    sale_branch = branches.get(sale["branch_id"])
                    b_usage = branch_usage[sale["customer_id"]][sale["branch_id"]] = BranchMaterialUsage(
                        branch_id=sale["branch_id"],
                        branch_name=sale_branch["branch_name"] if sale_branch else None,
                    )
                b_usage.sales_amount += amount
                for line in sale_lines:
                    _add_usage(branch_materials[(sale["customer_id"], sale["branch_id"])], line)

        service = shares.get(visit["id"], ZERO)
        pricing_type, _ = pricing.classify(visit["customer_id"], visit.get("branch_id"))
        total = service + material_revenue

        report.visits.append(CalendarVisit(
            id=visit["id"],
            visit_date=visit["visit_date"],
            local_date=local_date,
            status=visit["status"],
            is_checked=bool(visit.get("is_checked")),
            customer_id=visit["customer_id"],
            customer_name=customer["company_name"],
            branch_id=visit.get("branch_id"),
            branch_name=branch["branch_name"] if branch else None,
            operator_id=visit.get("operator_id"),
            operator_name=operator["full_name"] if operator else None,
            pricing_type=pricing_type,
            service_revenue=service,
            material_revenue=material_revenue,
            total_revenue=total,
            materials=lines,
        ))

        key = group_key(visit["customer_id"], visit.get("branch_id"))
        summary = customer_summary.get(key)
        if summary is None:
            summary = customer_summary[key] = CalendarCustomerSummary(
                key=key,
                customer_id=visit["customer_id"],
                customer_name=customer["company_name"],
                branch_id=visit.get("branch_id"),
                branch_name=branch["branch_name"] if branch else None,
            )
        summary.visit_count += 1
        summary.service_revenue += service
        summary.material_revenue += material_revenue
        summary.total_revenue += total

        if operator is not None:
            op = operator_summary.get(operator["id"])
            if op is None:
                op = operator_summary[operator["id"]] = CalendarOperatorSummary(
                    operator_id=operator["id"], operator_name=operator["full_name"]
                )
            op.visit_count += 1
            op.service_revenue += service
            op.material_revenue += material_revenue
            op.total_revenue += total
            day = daily[operator["id"]].get(local_date.isoformat())
            if day is None:
                day = daily[operator["id"]][local_date.isoformat()] = DailyBreakdown(date=local_date)
            day.visit_count += 1
            day.total_revenue += total

    for op_id, op in operator_summary.items():
        op.daily = [daily[op_id][d] for d in sorted(daily[op_id])]

    for customer_id, cust_usage in usage.items():
        cust_usage.materials = sorted(usage_materials[customer_id].values(), key=lambda m: m.material_name)
        branch_rows = list(branch_usage[customer_id].values())
        for b in branch_rows:
            b.materials = sorted(branch_materials[(customer_id, b.branch_id)].values(), key=lambda m: m.material_name)
        cust_usage.branches = sorted(branch_rows, key=lambda b: b.branch_name or "")

    report.customer_summary = sorted(customer_summary.values(), key=lambda s: (-s.total_revenue, s.customer_name))
    report.operator_summary = sorted(operator_summary.values(), key=lambda s: (-s.total_revenue, s.operator_name))
    report.material_usage = sorted(usage.values(), key=lambda u: (-u.sales_amount, u.customer_name))

    totals = RevenueTotals()
    for v in report.visits:
        totals.visit_count += 1
        totals.service_revenue += v.service_revenue
        totals.material_revenue += v.material_revenue
        totals.total_revenue += v.total_revenue
    report.totals = totals

    logger.info(
        f"Calendar for company {company.company_id} {year}-{month:02d}: "
        f"{len(report.visits)} visits, {len(report.customer_summary)} customer groups"
    )
    return report


async def set_visit_checked(gateway: TableGateway, company: CompanyRef, visit_id: str, checked: bool) -> dict:
    """Mark a visit as confirmed (or not) on the calendar."""
    visit = await gateway.maybe_single("visits", [eq("id", visit_id)])
    if visit is None:
        raise NotFoundError("Visit not found")

    operator = None
    if visit.get("operator_id"):
        operator = await gateway.maybe_single(
            "operators", [eq("id", visit["operator_id"]), eq("company_id", company.company_id)]
        )
    if operator is None:
        raise NotFoundError("Visit not found")

    if visit["status"] == VisitStatus.CANCELLED.value:
        raise ValidationError("Cancelled visits cannot be checked")

    updated = await gateway.update("visits", {"is_checked": checked}, [eq("id", visit_id)])
    return updated[0]
