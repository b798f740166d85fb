"""
Yearly visit and invoice tracking: one row per branch, one cell per month.
"""
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from models import VisitStatus
from reporting import attach_sale_items
from schemas import AnnualCell, AnnualReport, AnnualRow, MaterialDetail, VisitDetail
from table_gateway import TableGateway, eq, gte, in_, lte, neq
from tenancy import CompanyRef
from timezone_utils import get_year_window, utc_to_tenant_date

logger = logging.getLogger(__name__)


def customer_number(customer_id: str) -> str:
    return customer_id[:8].upper()


def branch_code(branch_id: str) -> str:
    return branch_id.split("-")[0] if "-" in branch_id else branch_id[:8]


def cell_status(total: int, confirmed: int) -> str:
    """full when every item is confirmed, partial when some are, none otherwise"""
    if total > 0 and confirmed >= total:
        return "full"
    if confirmed > 0:
        return "partial"
    return "none"


def _matches(row: AnnualRow, search: str) -> bool:
    needle = search.casefold()
    return (
        needle in row.customer_name.casefold()
        or needle in row.branch_name.casefold()
        or needle in row.customer_no.casefold()
    )


async def build_annual_report(
    gateway: TableGateway,
    company: CompanyRef,
    year: int,
    search: Optional[str] = None,
    descending: bool = False,
) -> AnnualReport:
    branches = await gateway.select_all(
        "customer_branches", filters=[eq("created_by_company_id", company.company_id)]
    )
    report = AnnualReport(year=year)
    if not branches:
        return report

    customer_ids = sorted({b["customer_id"] for b in branches})
    customers = {c["id"]: c for c in await gateway.select_all("customers", filters=[in_("id", customer_ids)])}

    start, end = get_year_window(year, company.timezone)
    visits = await gateway.select_all(
        "visits",
        filters=[
            in_("branch_id", [b["id"] for b in branches]),
            gte("visit_date", start),
            lte("visit_date", end),
            neq("status", VisitStatus.CANCELLED.value),
        ],
        order_by="visit_date",
    )

    operator_ids = sorted({v["operator_id"] for v in visits if v.get("operator_id")})
    operators = {}
    if operator_ids:
        operators = {o["id"]: o for o in await gateway.select("operators", filters=[in_("id", operator_ids)])}

    sales: List[dict] = []
    if visits:
        sales = await gateway.select_all("paid_material_sales", filters=[in_("visit_id", [v["id"] for v in visits])])
    await attach_sale_items(gateway, sales)
    material_ids = sorted({i["material_id"] for s in sales for i in s["items"] if i.get("material_id")})
    materials = {}
    if material_ids:
        materials = {m["id"]: m for m in await gateway.select("company_materials", filters=[in_("id", material_ids)])}

    sales_by_visit: Dict[str, List[dict]] = defaultdict(list)
    for sale in sales:
        sales_by_visit[sale["visit_id"]].append(sale)

    visits_by_branch: Dict[str, List[dict]] = defaultdict(list)
    for visit in visits:
        visits_by_branch[visit["branch_id"]].append(visit)

    rows: List[AnnualRow] = []
    for branch in branches:
        customer = customers.get(branch["customer_id"])
        cells = [AnnualCell(month=m) for m in range(1, 13)]

        for visit in visits_by_branch.get(branch["id"], []):
            local_date = utc_to_tenant_date(visit["visit_date"], company.timezone)
            if local_date.year != year:
                continue
            cell = cells[local_date.month - 1]
            operator = operators.get(visit.get("operator_id"))

            cell.visit_count += 1
            cell.visit_ids.append(visit["id"])
            if visit.get("is_checked"):
                cell.visit_checked_count += 1
            cell.visit_details.append(VisitDetail(
                id=visit["id"],
                date=local_date,
                status=visit["status"],
                operator_name=operator["full_name"] if operator else None,
                is_checked=bool(visit.get("is_checked")),
            ))

            for sale in sales_by_visit.get(visit["id"], []):
                cell.material_sale_ids.append(sale["id"])
                if sale.get("is_invoiced"):
                    cell.invoiced_count += 1
                for item in sale["items"]:
                    material = materials.get(item.get("material_id"))
                    name = material["name"] if material else "?"
                    qty = item.get("quantity") or 0
                    cell.material_breakdown[name] = cell.material_breakdown.get(name, 0) + qty
                    cell.total_material_count += qty
                    cell.material_details.append(MaterialDetail(
                        sale_id=sale["id"],
                        date=local_date,
                        material_name=name,
                        unit=material.get("unit") if material else None,
                        quantity=qty,
                        is_invoiced=bool(sale.get("is_invoiced")),
                    ))

        for cell in cells:
            cell.visit_status = cell_status(cell.visit_count, cell.visit_checked_count)
            cell.invoice_status = cell_status(len(cell.material_sale_ids), cell.invoiced_count)

        rows.append(AnnualRow(
            customer_id=branch["customer_id"],
            customer_no=customer_number(branch["customer_id"]),
            customer_name=customer["company_name"] if customer else "-",
            branch_id=branch["id"],
            branch_code=branch_code(branch["id"]),
            branch_name=branch["branch_name"],
            months=cells,
        ))

    if search:
        rows = [r for r in rows if _matches(r, search)]
    rows.sort(key=lambda r: f"{r.customer_name} {r.branch_name}".casefold(), reverse=descending)
    report.rows = rows

    logger.info(f"Annual report for company {company.company_id} {year}: {len(rows)} branches, {len(visits)} visits")
    return report


async def _tenant_visit_ids(gateway: TableGateway, company: CompanyRef, visit_ids: List[str]) -> List[str]:
    visits = await gateway.select("visits", columns=["id", "operator_id", "branch_id"], filters=[in_("id", visit_ids)])
    operator_ids = {
        o["id"] for o in await gateway.select("operators", columns=["id"], filters=[eq("company_id", company.company_id)])
    }
    branch_ids = {
        b["id"] for b in await gateway.select(
            "customer_branches", columns=["id"], filters=[eq("created_by_company_id", company.company_id)]
        )
    }
    return [v["id"] for v in visits if v.get("operator_id") in operator_ids or v.get("branch_id") in branch_ids]


async def set_visits_checked(gateway: TableGateway, company: CompanyRef, visit_ids: Iterable[str], checked: bool) -> int:
    """Confirm (or un-confirm) visits in bulk; ids of other tenants are ignored."""
    visit_ids = sorted(set(visit_ids))
    if not visit_ids:
        return 0
    allowed = await _tenant_visit_ids(gateway, company, visit_ids)
    if len(allowed) < len(visit_ids):
        logger.warning(f"Ignoring {len(visit_ids) - len(allowed)} visit(s) outside company {company.company_id}")
    if not allowed:
        return 0
    updated = await gateway.update("visits", {"is_checked": checked}, [in_("id", allowed)])
    return len(updated)


async def set_sales_invoiced(gateway: TableGateway, company: CompanyRef, sale_ids: Iterable[str], invoiced: bool) -> int:
    """Mark material sales as invoiced (or not) in bulk; ids of other tenants are ignored."""
    sale_ids = sorted(set(sale_ids))
    if not sale_ids:
        return 0
    sales = await gateway.select("paid_material_sales", columns=["id", "customer_id"], filters=[in_("id", sale_ids)])
    customer_ids = sorted({s["customer_id"] for s in sales})
    own_customers = set()
    if customer_ids:
        own_customers = {
            c["id"] for c in await gateway.select(
                "customers", columns=["id"],
                filters=[in_("id", customer_ids), eq("created_by_company_id", company.company_id)],
            )
        }
    allowed = [s["id"] for s in sales if s["customer_id"] in own_customers]
    if len(allowed) < len(sale_ids):
        logger.warning(f"Ignoring {len(sale_ids) - len(allowed)} sale(s) outside company {company.company_id}")
    if not allowed:
        return 0
    updated = await gateway.update("paid_material_sales", {"is_invoiced": invoiced}, [in_("id", allowed)])
    return len(updated)
