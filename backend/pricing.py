"""
Service pricing: customer-level and branch-level rates.

A branch record always wins over its customer's record for that branch's
visits. Within the resolved record a monthly rate takes precedence over a
per-visit rate.
"""
import enum
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Tuple

from errors import NotFoundError, ValidationError
from table_gateway import TableGateway, eq, in_
from tenancy import CompanyRef

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


class PricingType(str, enum.Enum):
    MONTHLY = "monthly"
    PER_VISIT = "per_visit"
    NONE = "none"


def _money(value) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def classify(record: Optional[dict]) -> Tuple[PricingType, Decimal]:
    """Return the pricing type and its rate for a resolved record."""
    if not record:
        return PricingType.NONE, ZERO
    monthly = _money(record.get("monthly_price"))
    if monthly:
        return PricingType.MONTHLY, monthly
    per_visit = _money(record.get("per_visit_price"))
    if per_visit:
        return PricingType.PER_VISIT, per_visit
    return PricingType.NONE, ZERO


def _index(rows: Iterable[dict], key: str) -> Dict[str, dict]:
    index: Dict[str, dict] = {}
    for row in rows:
        owner = row.get(key)
        if owner is None:
            continue
        if owner in index:
            logger.warning(f"Duplicate pricing for {key}={owner}; keeping the first record")
            continue
        index[owner] = row
    return index


class PricingIndex:
    """Lookup of pricing records by customer id and by branch id"""

    def __init__(self, customer_pricing_rows: Iterable[dict] = (), branch_pricing_rows: Iterable[dict] = ()):
        self.by_customer = _index(customer_pricing_rows, "customer_id")
        self.by_branch = _index(branch_pricing_rows, "branch_id")

    def resolve(self, customer_id: str, branch_id: Optional[str]) -> Optional[dict]:
        if branch_id and branch_id in self.by_branch:
            return self.by_branch[branch_id]
        return self.by_customer.get(customer_id)

    def classify(self, customer_id: str, branch_id: Optional[str]) -> Tuple[PricingType, Decimal]:
        return classify(self.resolve(customer_id, branch_id))


async def load_pricing(gateway: TableGateway, customer_ids: Iterable[str], branch_ids: Iterable[str]) -> PricingIndex:
    """Fetch the pricing records for the given customers and branches."""
    customer_ids = sorted(set(customer_ids))
    branch_ids = sorted(set(b for b in branch_ids if b))
    customer_rows: List[dict] = []
    branch_rows: List[dict] = []
    if customer_ids:
        customer_rows = await gateway.select(
            "customer_pricing", filters=[in_("customer_id", customer_ids)], order_by="created_at"
        )
    if branch_ids:
        branch_rows = await gateway.select(
            "branch_pricing", filters=[in_("branch_id", branch_ids)], order_by="created_at"
        )
    return PricingIndex(customer_rows, branch_rows)


def validate_prices(monthly_price, per_visit_price) -> Tuple[Optional[Decimal], Optional[Decimal]]:
    """Both prices optional, at least one present, neither negative."""
    try:
        monthly = _money(monthly_price)
        per_visit = _money(per_visit_price)
    except (InvalidOperation, ValueError):
        raise ValidationError("Prices must be numbers")

    if monthly is None and per_visit is None:
        raise ValidationError("Enter a monthly price or a per-visit price")
    for label, value in (("Monthly price", monthly), ("Per-visit price", per_visit)):
        if value is not None and value < 0:
            raise ValidationError(f"{label} cannot be negative")
    return monthly, per_visit


async def save_customer_pricing(
    gateway: TableGateway,
    company: CompanyRef,
    customer_id: str,
    monthly_price=None,
    per_visit_price=None,
) -> dict:
    monthly, per_visit = validate_prices(monthly_price, per_visit_price)

    customer = await gateway.maybe_single(
        "customers", [eq("id", customer_id), eq("created_by_company_id", company.company_id)]
    )
    if customer is None:
        raise NotFoundError("Customer not found")

    record = await gateway.upsert(
        "customer_pricing",
        {"customer_id": customer_id, "monthly_price": monthly, "per_visit_price": per_visit},
        on_conflict="customer_id",
    )
    logger.info(f"Saved customer pricing for {customer_id} (company {company.company_id})")
    return record


async def save_branch_pricing(
    gateway: TableGateway,
    company: CompanyRef,
    branch_id: str,
    monthly_price=None,
    per_visit_price=None,
) -> dict:
    monthly, per_visit = validate_prices(monthly_price, per_visit_price)

    branch = await gateway.maybe_single(
        "customer_branches", [eq("id", branch_id), eq("created_by_company_id", company.company_id)]
    )
    if branch is None:
        raise NotFoundError("Branch not found")

    record = await gateway.upsert(
        "branch_pricing",
        {"branch_id": branch_id, "monthly_price": monthly, "per_visit_price": per_visit},
        on_conflict="branch_id",
    )
    logger.info(f"Saved branch pricing for {branch_id} (company {company.company_id})")
    return record


async def list_company_pricing(gateway: TableGateway, company: CompanyRef) -> dict:
    """Pricing records of every customer and branch of the tenant."""
    customers = await gateway.select(
        "customers", columns=["id"], filters=[eq("created_by_company_id", company.company_id)]
    )
    branches = await gateway.select(
        "customer_branches", columns=["id"], filters=[eq("created_by_company_id", company.company_id)]
    )
    index = await load_pricing(gateway, [c["id"] for c in customers], [b["id"] for b in branches])
    return {
        "customers": list(index.by_customer.values()),
        "branches": list(index.by_branch.values()),
    }
