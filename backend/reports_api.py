"""
Report API Endpoints
Monthly revenue, monthly calendar and annual tracking for company owners
"""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse, Response
from typing import Literal, Optional

from annual_report import build_annual_report, set_sales_invoiced, set_visits_checked
from auth import SessionContext, get_current_company, require_roles
from calendar_report import build_calendar_report, set_visit_checked
from i18n import Locale, get_locale
from models import UserRole
from report_export import (
    annual_table, render_html_table, render_pdf, render_workbook, revenue_table, revenue_title
)
from reporting import build_revenue_report
from schemas import (
    AnnualConfirmRequest, AnnualConfirmResponse, CalendarFilters, VisitCheckedUpdate
)
from table_gateway import TableGateway, get_gateway
from tenancy import CompanyRef

router = APIRouter(prefix="/reports", tags=["reports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

owner_only = require_roles(UserRole.COMPANY)


def _attachment(content: bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/revenue")
async def get_revenue_report(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    view: Literal["customer", "operator"] = "customer",
    format: Literal["json", "xlsx", "html", "pdf"] = "json",
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
    locale: Locale = Depends(get_locale),
):
    """
    Monthly revenue of completed visits, grouped by customer+branch or by operator.

    Rows are sorted by total revenue, highest first.
    """
    report = await build_revenue_report(gateway, company, year, month, view)
    if format == "json":
        return report

    headers, rows = revenue_table(report, view, locale)
    title = revenue_title(report, locale)
    filename = f"revenue_{view}_{year}_{month:02d}"
    if format == "xlsx":
        return _attachment(render_workbook(title, headers, rows), XLSX_MEDIA_TYPE, f"{filename}.xlsx")
    html_doc = render_html_table(title, headers, rows)
    if format == "html":
        return HTMLResponse(html_doc)
    return _attachment(render_pdf(html_doc), "application/pdf", f"{filename}.pdf")


@router.get("/calendar")
async def get_calendar(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    operator_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    branch_id: Optional[str] = None,
    status: Optional[str] = None,
    checked: Optional[Literal["checked", "unchecked"]] = None,
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    filters = CalendarFilters(
        operator_id=operator_id, customer_id=customer_id, branch_id=branch_id, status=status, checked=checked
    )
    return await build_calendar_report(gateway, company, year, month, filters)


@router.patch("/calendar/visits/{visit_id}/checked")
async def update_visit_checked(
    visit_id: str,
    data: VisitCheckedUpdate,
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    visit = await set_visit_checked(gateway, company, visit_id, data.is_checked)
    return {"id": visit["id"], "is_checked": visit["is_checked"]}


@router.get("/annual")
async def get_annual_report(
    year: int = Query(..., ge=2000, le=2100),
    search: Optional[str] = None,
    order: Literal["asc", "desc"] = "asc",
    format: Literal["json", "xlsx"] = "json",
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
    locale: Locale = Depends(get_locale),
):
    report = await build_annual_report(gateway, company, year, search=search, descending=order == "desc")
    if format == "json":
        return report

    headers, rows = annual_table(report, locale)
    content = render_workbook(f"{year} {locale.t('annual.title')}", headers, rows)
    return _attachment(content, XLSX_MEDIA_TYPE, f"annual_report_{year}.xlsx")


@router.post("/annual/confirm", response_model=AnnualConfirmResponse)
async def confirm_annual_items(
    data: AnnualConfirmRequest,
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    """Bulk-toggle visit confirmation and material invoicing"""
    visits_updated = await set_visits_checked(gateway, company, data.visit_ids, data.confirmed)
    sales_updated = await set_sales_invoiced(gateway, company, data.sale_ids, data.confirmed)
    return AnnualConfirmResponse(visits_updated=visits_updated, sales_updated=sales_updated)
