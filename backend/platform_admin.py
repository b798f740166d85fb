"""
Platform Admin API Router

Subscription plans and per-tenant limit overrides.

Access is restricted to the admin role.
"""

import calendar
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends

from auth import SessionContext, require_roles
from errors import NotFoundError
from limits import ResourceType, count_usage, limit_field, resolve_limits
from models import BillingPeriod, SubscriptionStatus, UserRole
from schemas import PlanResponse, SubscriptionOverrideUpdate, SubscriptionResponse, TenantLimits
from table_gateway import TableGateway, eq, get_gateway, in_
from tenancy import CompanyRef

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/platform", tags=["Platform Admin"])

admin_only = require_roles(UserRole.ADMIN)


def add_months(moment: datetime, months: int) -> datetime:
    """Same day N months later, clamped to the last day of the month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_end(billing_period: Optional[str], start: datetime) -> datetime:
    """weekly +7 days, yearly +1 year, anything else +1 month"""
    if billing_period == BillingPeriod.WEEKLY.value:
        return start + timedelta(days=7)
    if billing_period == BillingPeriod.YEARLY.value:
        return add_months(start, 12)
    return add_months(start, 1)


# =============================================================================
# PLANS
# =============================================================================

@router.get("/plans", response_model=List[PlanResponse])
async def list_plans(
    session: SessionContext = Depends(admin_only),
    gateway: TableGateway = Depends(get_gateway),
):
    """Active subscription plans in display order"""
    return await gateway.select("subscription_plans", filters=[eq("is_active", True)], order_by="display_order")


# =============================================================================
# LIMITS
# =============================================================================

async def collect_tenant_limits(gateway: TableGateway) -> List[TenantLimits]:
    """Every subscription with its company, effective limits, overrides and usage."""
    subscriptions = await gateway.select_all("subscriptions", order_by="created_at")
    if not subscriptions:
        return []

    plan_ids = sorted({s["plan_id"] for s in subscriptions if s.get("plan_id")})
    plans = {}
    if plan_ids:
        plans = {p["id"]: p for p in await gateway.select("subscription_plans", filters=[in_("id", plan_ids)])}

    owner_ids = sorted({s["company_id"] for s in subscriptions})
    companies = {}
    for row in await gateway.select("companies", filters=[in_("owner_id", owner_ids)], order_by="created_at"):
        # First company per owner wins
        companies.setdefault(row["owner_id"], row)

    results = []
    for sub in subscriptions:
        plan = plans.get(sub.get("plan_id"))
        effective = {r.value: v for r, v in resolve_limits(sub, plan).items()}
        overrides = {r.value: sub.get(limit_field(r)) for r in ResourceType}
        company_row = companies.get(sub["company_id"])

        usage = None
        if company_row is not None:
            ref = CompanyRef(company_id=company_row["id"], owner_profile_id=company_row["owner_id"], name=company_row["name"])
            usage = {r.value: await count_usage(gateway, ref, r) for r in ResourceType}
        else:
            logger.warning(f"Subscription {sub['id']} has no company for owner {sub['company_id']}")

        results.append(TenantLimits(
            subscription_id=sub["id"],
            owner_profile_id=sub["company_id"],
            company_id=company_row["id"] if company_row else None,
            company_name=company_row["name"] if company_row else None,
            unresolved=company_row is None,
            status=sub.get("status"),
            plan_id=sub.get("plan_id"),
            plan_name=plan["name"] if plan else None,
            effective=effective,
            overrides=overrides,
            usage=usage,
        ))
    return results


@router.get("/limits", response_model=List[TenantLimits])
async def list_tenant_limits(
    session: SessionContext = Depends(admin_only),
    gateway: TableGateway = Depends(get_gateway),
):
    """
    Limits and usage of every tenant.

    Tenants whose owner has no company row are returned with
    unresolved=true and no usage rather than a zero count.
    """
    return await collect_tenant_limits(gateway)


async def save_subscription_overrides(
    gateway: TableGateway,
    subscription_id: str,
    data: SubscriptionOverrideUpdate,
    now: Optional[datetime] = None,
) -> dict:
    subscription = await gateway.maybe_single("subscriptions", [eq("id", subscription_id)])
    if subscription is None:
        raise NotFoundError("Subscription not found")

    # Only fields present in the request are written; None clears an override
    values = data.model_dump(exclude_unset=True)
    if not values:
        return subscription

    if data.plan_id:
        plan = await gateway.maybe_single("subscription_plans", [eq("id", data.plan_id)])
        if plan is None:
            raise NotFoundError("Plan not found")
        now = now or datetime.utcnow()
        values["status"] = SubscriptionStatus.ACTIVE.value
        values["current_period_end"] = period_end(plan.get("billing_period"), now)

    updated = await gateway.update("subscriptions", values, [eq("id", subscription_id)])
    logger.info(f"Subscription {subscription_id} updated: plan={data.plan_id}, overrides={values}")
    return updated[0]


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: str,
    data: SubscriptionOverrideUpdate,
    session: SessionContext = Depends(admin_only),
    gateway: TableGateway = Depends(get_gateway),
):
    """Assign a plan and set (or clear) the per-tenant limit overrides"""
    return await save_subscription_overrides(gateway, subscription_id, data)
