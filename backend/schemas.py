from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List, Dict, Literal
from datetime import datetime, date
from decimal import Decimal

from pricing import PricingType


# Auth Schemas
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    profile_id: str
    role: str


# Pricing Schemas
class PricingUpdate(BaseModel):
    """Either price may be omitted; at least one is required"""
    monthly_price: Optional[Decimal] = None
    per_visit_price: Optional[Decimal] = None


class PricingResponse(BaseModel):
    id: str
    customer_id: Optional[str] = None
    branch_id: Optional[str] = None
    monthly_price: Optional[Decimal] = None
    per_visit_price: Optional[Decimal] = None
    updated_at: Optional[datetime] = None


class CompanyPricingResponse(BaseModel):
    customers: List[PricingResponse]
    branches: List[PricingResponse]


# Revenue Report Schemas
class CustomerRevenueRow(BaseModel):
    key: str
    customer_id: str
    customer_name: str
    branch_id: Optional[str] = None
    branch_name: Optional[str] = None
    visit_count: int = 0
    pricing_type: PricingType = PricingType.NONE
    service_revenue: Decimal = Decimal("0")
    material_revenue: Decimal = Decimal("0")
    total_revenue: Decimal = Decimal("0")


class OperatorRevenueRow(BaseModel):
    operator_id: str
    operator_name: str
    visit_count: int = 0
    service_revenue: Decimal = Decimal("0")
    material_revenue: Decimal = Decimal("0")
    total_revenue: Decimal = Decimal("0")


class RevenueTotals(BaseModel):
    visit_count: int = 0
    service_revenue: Decimal = Decimal("0")
    material_revenue: Decimal = Decimal("0")
    total_revenue: Decimal = Decimal("0")


class RevenueReport(BaseModel):
    year: int
    month: int
    view: Literal["customer", "operator"]
    currency: str
    customer_rows: List[CustomerRevenueRow] = []
    operator_rows: List[OperatorRevenueRow] = []
    totals: RevenueTotals = RevenueTotals()


# Calendar Schemas
class CalendarFilters(BaseModel):
    operator_id: Optional[str] = None
    customer_id: Optional[str] = None
    branch_id: Optional[str] = None
    status: Optional[str] = None
    checked: Optional[Literal["checked", "unchecked"]] = None


class MaterialLine(BaseModel):
    sale_id: str
    material_id: Optional[str] = None
    material_name: str
    unit: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class CalendarVisit(BaseModel):
    id: str
    visit_date: datetime
    local_date: date
    status: str
    is_checked: bool
    customer_id: str
    customer_name: str
    branch_id: Optional[str] = None
    branch_name: Optional[str] = None
    operator_id: Optional[str] = None
    operator_name: Optional[str] = None
    pricing_type: PricingType = PricingType.NONE
    service_revenue: Decimal = Decimal("0")
    material_revenue: Decimal = Decimal("0")
    total_revenue: Decimal = Decimal("0")
    materials: List[MaterialLine] = []


class CalendarCustomerSummary(BaseModel):
    key: str
    customer_id: str
    customer_name: str
    branch_id: Optional[str] = None
    branch_name: Optional[str] = None
    visit_count: int = 0
    service_revenue: Decimal = Decimal("0")
    material_revenue: Decimal = Decimal("0")
    total_revenue: Decimal = Decimal("0")


class DailyBreakdown(BaseModel):
    date: date
    visit_count: int = 0
    total_revenue: Decimal = Decimal("0")


class CalendarOperatorSummary(BaseModel):
    operator_id: str
    operator_name: str
    visit_count: int = 0
    service_revenue: Decimal = Decimal("0")
    material_revenue: Decimal = Decimal("0")
    total_revenue: Decimal = Decimal("0")
    daily: List[DailyBreakdown] = []


class MaterialUsage(BaseModel):
    material_id: Optional[str] = None
    material_name: str
    unit: Optional[str] = None
    quantity: int = 0
    amount: Decimal = Decimal("0")


class BranchMaterialUsage(BaseModel):
    branch_id: Optional[str] = None
    branch_name: Optional[str] = None
    sales_amount: Decimal = Decimal("0")
    materials: List[MaterialUsage] = []


class CustomerMaterialUsage(BaseModel):
    customer_id: str
    customer_name: str
    sales_amount: Decimal = Decimal("0")
    materials: List[MaterialUsage] = []
    branches: List[BranchMaterialUsage] = []


class CalendarReport(BaseModel):
    year: int
    month: int
    currency: str
    visits: List[CalendarVisit] = []
    customer_summary: List[CalendarCustomerSummary] = []
    operator_summary: List[CalendarOperatorSummary] = []
    material_usage: List[CustomerMaterialUsage] = []
    totals: RevenueTotals = RevenueTotals()


class VisitCheckedUpdate(BaseModel):
    is_checked: bool


# Annual Report Schemas
class VisitDetail(BaseModel):
    id: str
    date: date
    status: str
    operator_name: Optional[str] = None
    is_checked: bool = False


class MaterialDetail(BaseModel):
    sale_id: str
    date: date
    material_name: str
    unit: Optional[str] = None
    quantity: int
    is_invoiced: bool = False


class AnnualCell(BaseModel):
    month: int
    visit_count: int = 0
    visit_checked_count: int = 0
    visit_ids: List[str] = []
    visit_details: List[VisitDetail] = []
    visit_status: Literal["full", "partial", "none"] = "none"
    material_sale_ids: List[str] = []
    invoiced_count: int = 0
    material_breakdown: Dict[str, int] = {}
    total_material_count: int = 0
    material_details: List[MaterialDetail] = []
    invoice_status: Literal["full", "partial", "none"] = "none"


class AnnualRow(BaseModel):
    customer_id: str
    customer_no: str
    customer_name: str
    branch_id: str
    branch_code: str
    branch_name: str
    months: List[AnnualCell]


class AnnualReport(BaseModel):
    year: int
    rows: List[AnnualRow] = []


class AnnualConfirmRequest(BaseModel):
    visit_ids: List[str] = []
    sale_ids: List[str] = []
    confirmed: bool = True


class AnnualConfirmResponse(BaseModel):
    visits_updated: int = 0
    sales_updated: int = 0


# Limit Schemas
class LimitItem(BaseModel):
    resource: str
    label: str
    current: int
    max: int
    percent: float
    near_limit: bool
    at_limit: bool


class LimitReport(BaseModel):
    company_id: str
    subscription_status: Optional[str] = None
    plan_name: Optional[str] = None
    items: List[LimitItem]


# Warehouse Schemas
class WarehouseCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    operator_id: Optional[str] = None


class WarehouseResponse(BaseModel):
    id: str
    company_id: str
    operator_id: Optional[str] = None
    name: str
    created_at: Optional[datetime] = None


class TransferCreate(BaseModel):
    to_warehouse_id: str
    material_id: str
    quantity: int
    notes: Optional[str] = None


class TransferResponse(BaseModel):
    id: str
    from_warehouse_id: str
    to_warehouse_id: str
    material_id: str
    quantity: int
    status: str
    notes: Optional[str] = None
    requested_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class StockAlert(BaseModel):
    item_id: str
    material_id: str
    material_name: Optional[str] = None
    quantity: int
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    alert: Literal["below_min", "above_max"]


# Platform Admin Schemas
class PlanResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    billing_period: str
    price: Decimal
    currency: str
    max_operators: Optional[int] = None
    max_customers: Optional[int] = None
    max_branches: Optional[int] = None
    max_warehouses: Optional[int] = None
    display_order: int = 0


class TenantLimits(BaseModel):
    subscription_id: str
    owner_profile_id: str
    company_id: Optional[str] = None
    company_name: Optional[str] = None
    unresolved: bool = False
    status: Optional[str] = None
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    effective: Dict[str, int]
    overrides: Dict[str, Optional[int]]
    usage: Optional[Dict[str, int]] = None


class SubscriptionOverrideUpdate(BaseModel):
    """Empty strings in the override fields clear the override"""
    plan_id: Optional[str] = None
    max_operators: Optional[int] = None
    max_customers: Optional[int] = None
    max_branches: Optional[int] = None
    max_warehouses: Optional[int] = None

    @field_validator("plan_id", "max_operators", "max_customers", "max_branches", "max_warehouses", mode="before")
    @classmethod
    def empty_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("max_operators", "max_customers", "max_branches", "max_warehouses")
    @classmethod
    def non_negative(cls, value):
        if value is not None and value < 0:
            raise ValueError("Limits cannot be negative")
        return value


class SubscriptionResponse(BaseModel):
    id: str
    company_id: str
    plan_id: Optional[str] = None
    status: str
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    max_operators: Optional[int] = None
    max_customers: Optional[int] = None
    max_branches: Optional[int] = None
    max_warehouses: Optional[int] = None


class HealthResponse(BaseModel):
    status: str
    app: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
