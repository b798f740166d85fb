"""
Tenant identity mapping.

A tenant is known by two ids: the owner's profile id (subscriptions,
profiles.company_id) and the storage id (companies.id), which operators,
customers, branches and warehouses reference. Every dependent query must
go through a CompanyRef so the two never get mixed up.
"""
import logging
from dataclasses import dataclass

from config import settings
from errors import UnresolvedCompanyError, ValidationError
from models import UserRole
from table_gateway import TableGateway, eq

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompanyRef:
    company_id: str          # companies.id
    owner_profile_id: str    # profiles.id of the owner
    name: str
    currency: str = "TRY"
    timezone: str = "Europe/Istanbul"


def _to_ref(row) -> CompanyRef:
    return CompanyRef(
        company_id=row["id"],
        owner_profile_id=row["owner_id"],
        name=row["name"],
        currency=row.get("currency") or settings.DEFAULT_CURRENCY,
        timezone=row.get("timezone") or settings.DEFAULT_TIMEZONE,
    )


async def resolve_company(gateway: TableGateway, owner_profile_id: str) -> CompanyRef:
    """Map an owner's profile id to the company storage row."""
    rows = await gateway.select(
        "companies", filters=[eq("owner_id", owner_profile_id)], order_by="created_at", limit=2
    )
    if not rows:
        raise UnresolvedCompanyError(owner_profile_id)
    if len(rows) > 1:
        logger.warning(f"Profile {owner_profile_id} owns more than one company; using {rows[0]['id']}")
    return _to_ref(rows[0])


async def resolve_company_by_id(gateway: TableGateway, company_id: str) -> CompanyRef:
    row = await gateway.maybe_single("companies", [eq("id", company_id)])
    if row is None:
        raise UnresolvedCompanyError(company_id, f"Company {company_id} not found")
    return _to_ref(row)


async def resolve_session_company(gateway: TableGateway, session) -> CompanyRef:
    """
    Resolve the company a logged-in user acts for.

    Owners map through their own profile id; operators, customers and branch logins
    through the owner profile id stored on their profile.
    """
    if session.role == UserRole.COMPANY.value:
        return await resolve_company(gateway, session.profile_id)

    if session.role in (UserRole.OPERATOR.value, UserRole.CUSTOMER.value, UserRole.CUSTOMER_BRANCH.value):
        profile = await gateway.maybe_single("profiles", [eq("id", session.profile_id)])
        owner_id = profile.get("company_id") if profile else None
        if not owner_id:
            raise UnresolvedCompanyError(session.profile_id)
        return await resolve_company(gateway, owner_id)

    raise ValidationError(f"Role '{session.role}' is not attached to a company")
