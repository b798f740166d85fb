"""
Company Owner API Endpoints
Pricing, subscription limits, customer import and warehouse transfers
"""
from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import Response
from typing import List

from auth import SessionContext, get_current_company, require_roles
from bulk_import import build_template, import_customers, parse_workbook
from function_gateway import FunctionGateway
from i18n import Locale, get_locale
from limits import build_limit_report
from models import UserRole
from pricing import list_company_pricing, save_branch_pricing, save_customer_pricing
from schemas import (
    CompanyPricingResponse, LimitReport, PricingResponse, PricingUpdate,
    StockAlert, TransferCreate, TransferResponse, WarehouseCreate, WarehouseResponse
)
from table_gateway import TableGateway, get_gateway
from tenancy import CompanyRef
import warehouses

router = APIRouter(prefix="/company", tags=["company"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

owner_only = require_roles(UserRole.COMPANY)


def get_function_gateway() -> FunctionGateway:
    return FunctionGateway()


# ============================================================================
# Pricing
# ============================================================================

@router.get("/pricing", response_model=CompanyPricingResponse)
async def get_pricing(
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    return await list_company_pricing(gateway, company)


@router.put("/pricing/customers/{customer_id}", response_model=PricingResponse)
async def put_customer_pricing(
    customer_id: str,
    data: PricingUpdate,
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    """Create or replace the customer-level pricing record"""
    return await save_customer_pricing(gateway, company, customer_id, data.monthly_price, data.per_visit_price)


@router.put("/pricing/branches/{branch_id}", response_model=PricingResponse)
async def put_branch_pricing(
    branch_id: str,
    data: PricingUpdate,
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    """Create or replace the branch-level pricing record (overrides the customer's)"""
    return await save_branch_pricing(gateway, company, branch_id, data.monthly_price, data.per_visit_price)


# ============================================================================
# Limits
# ============================================================================

@router.get("/limits", response_model=LimitReport)
async def get_limits(
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
    locale: Locale = Depends(get_locale),
):
    """Current usage against the effective limit for each resource"""
    return await build_limit_report(gateway, company, locale)


# ============================================================================
# Customer import
# ============================================================================

@router.post("/customers/import")
async def import_customers_from_file(
    file: UploadFile = File(...),
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
    functions: FunctionGateway = Depends(get_function_gateway),
    locale: Locale = Depends(get_locale),
):
    """
    Import customers from an .xlsx file.

    The whole file is rejected when it would exceed the customer limit;
    otherwise each row is created independently and failures are listed.
    """
    content = await file.read()
    rows = parse_workbook(content, locale)
    summary = await import_customers(gateway, company, rows, functions, session.access_token, locale)
    result = summary.model_dump()
    result["message"] = summary.message(locale)
    return result


@router.get("/customers/import-template")
async def download_import_template(
    session: SessionContext = Depends(owner_only),
    locale: Locale = Depends(get_locale),
):
    return Response(
        content=build_template(locale),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="customer_import_template.xlsx"'},
    )


# ============================================================================
# Warehouses
# ============================================================================

@router.get("/warehouses")
async def get_warehouses(
    session: SessionContext = Depends(require_roles(UserRole.COMPANY, UserRole.OPERATOR)),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    return await warehouses.list_warehouses(gateway, company)


@router.post("/warehouses", response_model=WarehouseResponse, status_code=status.HTTP_201_CREATED)
async def create_warehouse(
    data: WarehouseCreate,
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    """Add a warehouse; 409 when the subscription's warehouse limit is reached"""
    return await warehouses.create_warehouse(gateway, company, data.name, data.operator_id)


@router.get("/warehouses/{warehouse_id}/transfers", response_model=List[TransferResponse])
async def get_transfers(
    warehouse_id: str,
    session: SessionContext = Depends(require_roles(UserRole.COMPANY, UserRole.OPERATOR)),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    return await warehouses.list_transfers(gateway, company, warehouse_id)


@router.post("/warehouses/transfers", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
async def create_transfer(
    data: TransferCreate,
    session: SessionContext = Depends(require_roles(UserRole.COMPANY, UserRole.OPERATOR)),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    """Request stock from the company main warehouse"""
    return await warehouses.request_transfer(
        gateway, company, session.profile_id, data.to_warehouse_id, data.material_id, data.quantity, data.notes
    )


@router.post("/warehouses/transfers/{transfer_id}/approve", response_model=TransferResponse)
async def approve_transfer(
    transfer_id: str,
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    return await warehouses.approve_transfer(gateway, company, transfer_id, session.profile_id)


@router.post("/warehouses/transfers/{transfer_id}/reject", response_model=TransferResponse)
async def reject_transfer(
    transfer_id: str,
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    return await warehouses.reject_transfer(gateway, company, transfer_id, session.profile_id)


@router.get("/warehouses/{warehouse_id}/alerts", response_model=List[StockAlert])
async def get_stock_alerts(
    warehouse_id: str,
    session: SessionContext = Depends(owner_only),
    company: CompanyRef = Depends(get_current_company),
    gateway: TableGateway = Depends(get_gateway),
):
    """Main warehouse items outside their min/max thresholds"""
    return await warehouses.stock_alerts(gateway, company, warehouse_id)
