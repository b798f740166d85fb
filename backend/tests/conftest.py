"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  registers every table on Base.metadata
from auth import create_access_token, get_password_hash
from database import Base, get_db
from main import app
from table_gateway import TableGateway
from tenancy import CompanyRef, resolve_company

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a test database session."""
    session_maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest.fixture
def gateway(db_session) -> TableGateway:
    return TableGateway(db_session)


@pytest.fixture
async def client(db_session):
    """Create a test client with database override."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    # Don't raise server exceptions so we can test error status codes
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers_for(profile_id: str, role: str, email: str = "user@example.com") -> dict:
    token = create_access_token(profile_id, role, email)
    return {"Authorization": f"Bearer {token}"}


class Seeder:
    """Inserts rows through the same gateway the services use."""

    def __init__(self, gateway: TableGateway):
        self.gateway = gateway

    async def _one(self, table: str, values: dict) -> dict:
        return (await self.gateway.insert(table, values))[0]

    async def profile(self, email: str, role: str, full_name: str = "Test User", company_id: Optional[str] = None,
                      password: Optional[str] = None) -> dict:
        profile = await self._one("profiles", {
            "email": email, "full_name": full_name, "role": role, "company_id": company_id,
        })
        if password:
            await self._one("user_passwords", {
                "profile_id": profile["id"], "hashed_password": get_password_hash(password),
            })
        return profile

    async def plan(self, name: str = "Pro", billing_period: str = "monthly", **limits) -> dict:
        return await self._one("subscription_plans", {
            "name": name, "billing_period": billing_period, "price": Decimal("499.00"), **limits,
        })

    async def tenant(
        self,
        email: str = "owner@acme.test",
        name: str = "Acme Pest Control",
        status: str = "trial",
        plan: Optional[dict] = None,
        password: Optional[str] = None,
        **overrides,
    ) -> CompanyRef:
        owner = await self.profile(email, "company", full_name=f"{name} Owner", password=password)
        await self._one("companies", {
            "owner_id": owner["id"], "name": name, "currency": "TRY", "timezone": "Europe/Istanbul",
        })
        now = datetime.utcnow()
        await self._one("subscriptions", {
            "company_id": owner["id"],
            "plan_id": plan["id"] if plan else None,
            "status": status,
            "trial_ends_at": now + timedelta(days=14) if status == "trial" else None,
            "current_period_end": now + timedelta(days=30) if status == "active" else None,
            **overrides,
        })
        return await resolve_company(self.gateway, owner["id"])

    async def operator(self, company: CompanyRef, full_name: str = "Ali Operator") -> dict:
        return await self._one("operators", {"company_id": company.company_id, "full_name": full_name})

    async def customer(self, company: CompanyRef, company_name: str = "Yılmaz Gıda") -> dict:
        return await self._one("customers", {"company_name": company_name, "created_by_company_id": company.company_id})

    async def branch(self, company: CompanyRef, customer: dict, branch_name: str = "Merkez") -> dict:
        return await self._one("customer_branches", {
            "customer_id": customer["id"], "branch_name": branch_name, "created_by_company_id": company.company_id,
        })

    async def visit(self, operator: dict, customer: dict, branch: Optional[dict] = None,
                    when: datetime = datetime(2025, 3, 10, 9, 0), status: str = "completed",
                    is_checked: bool = False) -> dict:
        return await self._one("visits", {
            "operator_id": operator["id"],
            "customer_id": customer["id"],
            "branch_id": branch["id"] if branch else None,
            "visit_date": when,
            "status": status,
            "is_checked": is_checked,
        })

    async def material(self, company: CompanyRef, name: str = "Jel Yem", unit: str = "adet",
                       price: Decimal = Decimal("25.00")) -> dict:
        return await self._one("company_materials", {
            "company_id": company.company_id, "name": name, "unit": unit, "price": price,
        })

    async def sale(self, customer: dict, items: Sequence[Tuple[dict, int, Decimal]] = (),
                   visit: Optional[dict] = None, branch: Optional[dict] = None,
                   sale_date=None, total_amount: Optional[Decimal] = None,
                   is_invoiced: bool = False) -> dict:
        if total_amount is None:
            total_amount = sum((Decimal(q) * p for _, q, p in items), Decimal("0"))
        if sale_date is None:
            sale_date = visit["visit_date"].date() if visit else datetime(2025, 3, 10).date()
        sale = await self._one("paid_material_sales", {
            "visit_id": visit["id"] if visit else None,
            "customer_id": customer["id"],
            "branch_id": branch["id"] if branch else None,
            "sale_date": sale_date,
            "total_amount": total_amount,
            "is_invoiced": is_invoiced,
        })
        if items:
            await self.gateway.insert("paid_material_sale_items", [
                {"sale_id": sale["id"], "material_id": m["id"], "quantity": q, "unit_price": p}
                for m, q, p in items
            ])
        return sale

    async def customer_pricing(self, customer: dict, monthly=None, per_visit=None) -> dict:
        return await self._one("customer_pricing", {
            "customer_id": customer["id"], "monthly_price": monthly, "per_visit_price": per_visit,
        })

    async def branch_pricing(self, branch: dict, monthly=None, per_visit=None) -> dict:
        return await self._one("branch_pricing", {
            "branch_id": branch["id"], "monthly_price": monthly, "per_visit_price": per_visit,
        })

    async def customers(self, company: CompanyRef, count: int) -> List[dict]:
        return [await self.customer(company, f"Customer {i}") for i in range(count)]


@pytest.fixture
def seed(gateway) -> Seeder:
    return Seeder(gateway)


@pytest.fixture
async def tenant(seed) -> CompanyRef:
    return await seed.tenant()


@pytest.fixture
def owner_headers(tenant) -> dict:
    """Get authentication headers for the tenant owner."""
    return auth_headers_for(tenant.owner_profile_id, "company", "owner@acme.test")


@pytest.fixture
def make_headers():
    return auth_headers_for
