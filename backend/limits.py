"""
Subscription limit resolution.

Effective limit per resource = subscription override, else the plan's
limit, else the trial default. Usage is counted against the company's
storage id, never the owner profile id.
"""
import enum
import logging
from datetime import datetime
from typing import Dict, Optional, Tuple

from errors import LimitExceededError
from i18n import Locale, get_locale_for
from schemas import LimitItem, LimitReport
from table_gateway import TableGateway, eq
from tenancy import CompanyRef

logger = logging.getLogger(__name__)


class ResourceType(str, enum.Enum):
    OPERATORS = "operators"
    CUSTOMERS = "customers"
    BRANCHES = "branches"
    WAREHOUSES = "warehouses"


TRIAL_DEFAULTS: Dict[ResourceType, int] = {
    ResourceType.OPERATORS: 1,
    ResourceType.CUSTOMERS: 3,
    ResourceType.BRANCHES: 3,
    ResourceType.WAREHOUSES: 2,
}

# (table, column holding the company storage id)
USAGE_SOURCES: Dict[ResourceType, Tuple[str, str]] = {
    ResourceType.OPERATORS: ("operators", "company_id"),
    ResourceType.CUSTOMERS: ("customers", "created_by_company_id"),
    ResourceType.BRANCHES: ("customer_branches", "created_by_company_id"),
    ResourceType.WAREHOUSES: ("warehouses", "company_id"),
}

NEAR_LIMIT_PERCENT = 80


def limit_field(resource: ResourceType) -> str:
    return f"max_{resource.value}"


def resolve_limit(resource: ResourceType, subscription: Optional[dict], plan: Optional[dict]) -> int:
    field = limit_field(resource)
    if subscription and subscription.get(field) is not None:
        return subscription[field]
    if plan and plan.get(field) is not None:
        return plan[field]
    return TRIAL_DEFAULTS[resource]


def resolve_limits(subscription: Optional[dict], plan: Optional[dict]) -> Dict[ResourceType, int]:
    return {resource: resolve_limit(resource, subscription, plan) for resource in ResourceType}


async def load_subscription(gateway: TableGateway, owner_profile_id: str) -> Tuple[Optional[dict], Optional[dict]]:
    """Subscription of a tenant (keyed by owner profile id) and its plan."""
    rows = await gateway.select(
        "subscriptions", filters=[eq("company_id", owner_profile_id)], order_by="created_at", limit=2
    )
    if not rows:
        return None, None
    if len(rows) > 1:
        logger.warning(f"Profile {owner_profile_id} has more than one subscription; using {rows[0]['id']}")
    subscription = rows[0]

    plan = None
    if subscription.get("plan_id"):
        plan = await gateway.maybe_single("subscription_plans", [eq("id", subscription["plan_id"])])
    return subscription, plan


def is_subscription_active(subscription: Optional[dict], now: Optional[datetime] = None) -> bool:
    """Active subscriptions, and trials that have not ended yet"""
    if not subscription:
        return False
    now = now or datetime.utcnow()
    status = subscription.get("status")
    if status == "active":
        return True
    if status == "trial":
        trial_ends_at = subscription.get("trial_ends_at")
        return trial_ends_at is not None and trial_ends_at > now
    return False


async def count_usage(gateway: TableGateway, company: CompanyRef, resource: ResourceType) -> int:
    table, column = USAGE_SOURCES[resource]
    return await gateway.count(table, [eq(column, company.company_id)])


def usage_percent(current: int, maximum: int) -> float:
    if maximum <= 0:
        return 0.0
    return round(min(current / maximum * 100, 100.0), 1)


async def build_limit_report(gateway: TableGateway, company: CompanyRef, locale: Optional[Locale] = None) -> LimitReport:
    locale = locale or get_locale_for(None)
    subscription, plan = await load_subscription(gateway, company.owner_profile_id)
    limits = resolve_limits(subscription, plan)

    items = []
    for resource in ResourceType:
        current = await count_usage(gateway, company, resource)
        maximum = limits[resource]
        percent = usage_percent(current, maximum)
        items.append(LimitItem(
            resource=resource.value,
            label=locale.t(f"limits.{resource.value}"),
            current=current,
            max=maximum,
            percent=percent,
            near_limit=percent >= NEAR_LIMIT_PERCENT,
            at_limit=percent >= 100,
        ))

    return LimitReport(
        company_id=company.company_id,
        subscription_status=subscription.get("status") if subscription else None,
        plan_name=plan.get("name") if plan else None,
        items=items,
    )


async def ensure_capacity(
    gateway: TableGateway,
    company: CompanyRef,
    resource: ResourceType,
    requested: int = 1,
) -> Tuple[int, int]:
    """
    Raise LimitExceededError unless `requested` more rows fit under the limit.

    Returns (current usage, effective limit).
    """
    subscription, plan = await load_subscription(gateway, company.owner_profile_id)
    limit = resolve_limit(resource, subscription, plan)
    current = await count_usage(gateway, company, resource)
    if current + requested > limit:
        logger.info(
            f"Company {company.company_id} {resource.value} limit reached: "
            f"{current} + {requested} > {limit}"
        )
        raise LimitExceededError(resource.value, limit, current, requested)
    return current, limit
