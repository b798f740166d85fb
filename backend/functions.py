"""
Privileged functions.

Each function creates a login identity together with the record it stands
for, in one call:

    POST /functions/v1/create-customer   profile + customer + credential
    POST /functions/v1/create-operator   profile + operator + credential
    POST /functions/v1/create-branch     profile + customer branch + credential

The tenant's subscription must be active and the matching resource limit
must have room. Responses follow the function convention: {"error": message}
on failure, never {"detail": ...}.
"""
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Sequence

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from auth import SessionContext, get_password_hash, get_session
from errors import LimitExceededError, ServiceError, ValidationError
from limits import ResourceType, ensure_capacity, is_subscription_active, load_subscription
from models import UserRole
from table_gateway import TableGateway, eq, get_gateway
from tenancy import CompanyRef, resolve_company_by_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["Functions"])

CUSTOMER_FIELDS = ("email", "password", "full_name", "company_name", "created_by_company_id")
OPERATOR_FIELDS = ("email", "password", "full_name", "company_id")
BRANCH_FIELDS = ("email", "password", "full_name", "branch_name", "address", "customer_id", "created_by_company_id")
MIN_PASSWORD_LENGTH = 6

LIMIT_MESSAGES = {
    ResourceType.CUSTOMERS: "Customer limit reached. Your plan allows {limit} customers.",
    ResourceType.OPERATORS: "Operator limit reached. Your plan allows {limit} operators.",
    ResourceType.BRANCHES: "Branch limit reached. Your plan allows {limit} branches.",
}


def _clean(body: Dict[str, Any], key: str) -> str:
    value = body.get(key)
    return str(value).strip() if value is not None else ""


def _validate(body: Dict[str, Any], required: Sequence[str]):
    missing = [f for f in required if not _clean(body, f)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if len(str(body["password"])) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


async def _authorize(
    gateway: TableGateway,
    session: SessionContext,
    company_id: str,
    resource: ResourceType,
) -> CompanyRef:
    """Resolve the target company and check ownership, subscription and capacity."""
    company = await resolve_company_by_id(gateway, company_id)
    if session.role != UserRole.ADMIN.value and company.owner_profile_id != session.profile_id:
        raise ValidationError(f"You can only create {resource.value} for your own company")

    subscription, _ = await load_subscription(gateway, company.owner_profile_id)
    if not is_subscription_active(subscription, datetime.utcnow()):
        raise ValidationError("No active subscription found. Please contact your administrator.")

    try:
        await ensure_capacity(gateway, company, resource, 1)
    except LimitExceededError as e:
        raise ValidationError(LIMIT_MESSAGES[resource].format(limit=e.limit))
    return company


async def _create_account(
    gateway: TableGateway,
    company: CompanyRef,
    body: Dict[str, Any],
    role: UserRole,
    profile_company_name: str,
    record_table: str,
    record: Dict[str, Any],
) -> str:
    """
    Insert profile, record and credential; returns the new profile id.

    Rows already written are deleted again when a later insert fails.
    """
    email = _clean(body, "email").lower()
    if await gateway.maybe_single("profiles", [eq("email", email)]) is not None:
        raise ValidationError(f"A user with e-mail {email} already exists")

    profile = (await gateway.insert("profiles", {
        "email": email,
        "full_name": _clean(body, "full_name"),
        "phone": _clean(body, "phone") or None,
        "role": role.value,
        "company_name": profile_company_name,
        "company_id": company.owner_profile_id,
    }))[0]

    created = [("profiles", "id")]
    try:
        await gateway.insert(record_table, {**record, "profile_id": profile["id"]})
        created.append((record_table, "profile_id"))
        await gateway.insert("user_passwords", {
            "profile_id": profile["id"],
            "hashed_password": get_password_hash(str(body["password"])),
            "created_by": company.company_id,
        })
    except ServiceError:
        for table, column in reversed(created):
            await gateway.delete(table, [eq(column, profile["id"])])
        raise

    logger.info(f"Created {role.value} {email} (profile {profile['id']}) for company {company.company_id}")
    return profile["id"]


async def create_customer_account(gateway: TableGateway, session: SessionContext, body: Dict[str, Any]) -> str:
    _validate(body, CUSTOMER_FIELDS)
    company = await _authorize(gateway, session, _clean(body, "created_by_company_id"), ResourceType.CUSTOMERS)
    company_name = _clean(body, "company_name")
    return await _create_account(gateway, company, body, UserRole.CUSTOMER, company_name, "customers", {
        "company_name": company_name,
        "created_by_company_id": company.company_id,
    })


async def create_operator_account(gateway: TableGateway, session: SessionContext, body: Dict[str, Any]) -> str:
    _validate(body, OPERATOR_FIELDS)
    company = await _authorize(gateway, session, _clean(body, "company_id"), ResourceType.OPERATORS)
    return await _create_account(gateway, company, body, UserRole.OPERATOR, company.name, "operators", {
        "company_id": company.company_id,
        "full_name": _clean(body, "full_name"),
        "email": _clean(body, "email").lower(),
        "phone": _clean(body, "phone") or None,
    })


async def create_branch_account(gateway: TableGateway, session: SessionContext, body: Dict[str, Any]) -> str:
    _validate(body, BRANCH_FIELDS)
    company = await _authorize(gateway, session, _clean(body, "created_by_company_id"), ResourceType.BRANCHES)

    customer = await gateway.maybe_single(
        "customers", [eq("id", _clean(body, "customer_id")), eq("created_by_company_id", company.company_id)]
    )
    if customer is None:
        raise ValidationError("Customer not found")

    return await _create_account(
        gateway, company, body, UserRole.CUSTOMER_BRANCH, customer["company_name"], "customer_branches", {
            "customer_id": customer["id"],
            "branch_name": _clean(body, "branch_name"),
            "address": _clean(body, "address"),
            "phone": _clean(body, "phone") or None,
            "created_by_company_id": company.company_id,
        })


def _error(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _run(
    name: str,
    request: Request,
    session: SessionContext,
    gateway: TableGateway,
    create: Callable[[TableGateway, SessionContext, Dict[str, Any]], Awaitable[str]],
):
    try:
        body = await request.json()
    except ValueError:
        return _error("Invalid JSON body")
    if not isinstance(body, dict):
        return _error("Invalid JSON body")

    try:
        user_id = await create(gateway, session, body)
    except ServiceError as e:
        return _error(e.message)
    except Exception as e:
        logger.exception(f"{name} failed unexpectedly: {e}")
        return _error(str(e) or "Internal error", 500)

    return {"success": True, "user_id": user_id}


@router.post("/create-customer")
async def create_customer_function(
    request: Request,
    session: SessionContext = Depends(get_session),
    gateway: TableGateway = Depends(get_gateway),
):
    return await _run("create-customer", request, session, gateway, create_customer_account)


@router.post("/create-operator")
async def create_operator_function(
    request: Request,
    session: SessionContext = Depends(get_session),
    gateway: TableGateway = Depends(get_gateway),
):
    return await _run("create-operator", request, session, gateway, create_operator_account)


@router.post("/create-branch")
async def create_branch_function(
    request: Request,
    session: SessionContext = Depends(get_session),
    gateway: TableGateway = Depends(get_gateway),
):
    return await _run("create-branch", request, session, gateway, create_branch_account)
