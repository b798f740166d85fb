from sqlalchemy import Column, Integer, String, Numeric, DateTime, Date, ForeignKey, Boolean, Text, UniqueConstraint, Index, Float
from datetime import datetime
import enum
import uuid
from database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    COMPANY = "company"
    OPERATOR = "operator"
    CUSTOMER = "customer"
    CUSTOMER_BRANCH = "customer_branch"


class VisitStatus(str, enum.Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SubscriptionStatus(str, enum.Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class BillingPeriod(str, enum.Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class TransferStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Profile(Base):
    """Authentication identity for every user of the platform"""
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(150), nullable=False)
    phone = Column(String(30), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.CUSTOMER.value)
    company_name = Column(String(200), nullable=True)

    # Owner profile id of the company this user works for (operators, customers)
    company_id = Column(String(36), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Profile {self.email} ({self.role})>"


class UserPassword(Base):
    """Hashed credential for a profile"""
    __tablename__ = "user_passwords"

    id = Column(String(36), primary_key=True, default=new_id)
    profile_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), unique=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    created_by = Column(String(36), nullable=True)  # Company storage id that created the account
    created_at = Column(DateTime, default=datetime.utcnow)


class Company(Base):
    """
    Storage row of a tenant.

    Dependent rows (operators, customers, branches, warehouses) reference
    companies.id, while subscriptions reference the owner's profile id.
    """
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(30), nullable=True)
    address = Column(Text, nullable=True)
    currency = Column(String(3), default="TRY")
    timezone = Column(String(50), default="Europe/Istanbul")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Company {self.name}>"


class SubscriptionPlanRecord(Base):
    """Named pricing tier with resource ceilings"""
    __tablename__ = "subscription_plans"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    billing_period = Column(String(20), default=BillingPeriod.MONTHLY.value)
    price = Column(Numeric(12, 2), default=0)
    currency = Column(String(3), default="TRY")

    max_operators = Column(Integer, nullable=True)
    max_customers = Column(Integer, nullable=True)
    max_branches = Column(Integer, nullable=True)
    max_warehouses = Column(Integer, nullable=True)

    is_active = Column(Boolean, default=True)
    display_order = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)


class Subscription(Base):
    """A tenant's instantiated, possibly-overridden relationship to a plan"""
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    # Owner profile id, not companies.id
    company_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("subscription_plans.id", ondelete="SET NULL"), nullable=True)

    status = Column(String(20), default=SubscriptionStatus.TRIAL.value)
    trial_ends_at = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)

    # Per-tenant overrides; NULL means "use the plan"
    max_operators = Column(Integer, nullable=True)
    max_customers = Column(Integer, nullable=True)
    max_branches = Column(Integer, nullable=True)
    max_warehouses = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Operator(Base):
    """Field technician performing visits"""
    __tablename__ = "operators"

    id = Column(String(36), primary_key=True, default=new_id)
    profile_id = Column(String(36), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    full_name = Column(String(150), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=new_id)
    profile_id = Column(String(36), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    company_name = Column(String(200), nullable=False)
    address = Column(Text, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_by_company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CustomerBranch(Base):
    """Billable sub-location of a customer"""
    __tablename__ = "customer_branches"

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    profile_id = Column(String(36), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    branch_name = Column(String(200), nullable=False)
    address = Column(Text, nullable=True)
    phone = Column(String(30), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_by_company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CustomerPricing(Base):
    __tablename__ = "customer_pricing"

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), unique=True, nullable=False)
    monthly_price = Column(Numeric(12, 2), nullable=True)
    per_visit_price = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BranchPricing(Base):
    __tablename__ = "branch_pricing"

    id = Column(String(36), primary_key=True, default=new_id)
    branch_id = Column(String(36), ForeignKey("customer_branches.id", ondelete="CASCADE"), unique=True, nullable=False)
    monthly_price = Column(Numeric(12, 2), nullable=True)
    per_visit_price = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Visit(Base):
    """Scheduled or completed service occurrence"""
    __tablename__ = "visits"

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    branch_id = Column(String(36), ForeignKey("customer_branches.id", ondelete="SET NULL"), nullable=True)
    operator_id = Column(String(36), ForeignKey("operators.id", ondelete="SET NULL"), nullable=True)

    visit_date = Column(DateTime, nullable=False)  # Stored as naive UTC
    status = Column(String(20), default=VisitStatus.PENDING.value, nullable=False)
    visit_type = Column(String(50), nullable=True)
    report_number = Column(String(50), nullable=True)

    is_checked = Column(Boolean, default=False, nullable=False)  # Confirmed on the calendar
    is_invoiced = Column(Boolean, default=False, nullable=False)

    notes = Column(Text, nullable=True)
    customer_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_visits_operator_date", "operator_id", "visit_date"),
        Index("idx_visits_branch_date", "branch_id", "visit_date"),
    )


class CompanyMaterial(Base):
    """Consumable product sold during visits"""
    __tablename__ = "company_materials"

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    unit = Column(String(20), default="adet")
    price = Column(Numeric(12, 2), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class PaidMaterialSale(Base):
    __tablename__ = "paid_material_sales"

    id = Column(String(36), primary_key=True, default=new_id)
    visit_id = Column(String(36), ForeignKey("visits.id", ondelete="SET NULL"), nullable=True, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id = Column(String(36), ForeignKey("customer_branches.id", ondelete="SET NULL"), nullable=True)
    sale_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(12, 2), default=0)
    is_invoiced = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class PaidMaterialSaleItem(Base):
    __tablename__ = "paid_material_sale_items"

    id = Column(String(36), primary_key=True, default=new_id)
    sale_id = Column(String(36), ForeignKey("paid_material_sales.id", ondelete="CASCADE"), nullable=False, index=True)
    material_id = Column(String(36), ForeignKey("company_materials.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    unit_price = Column(Numeric(12, 2), nullable=True)


class Warehouse(Base):
    """Operator or branch stock container"""
    __tablename__ = "warehouses"

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    operator_id = Column(String(36), ForeignKey("operators.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(150), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class AdminWarehouse(Base):
    """Company main warehouse (or a platform warehouse when company_id is NULL)"""
    __tablename__ = "admin_warehouses"

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(150), nullable=False)
    warehouse_type = Column(String(30), default="company_main")
    created_at = Column(DateTime, default=datetime.utcnow)


class AdminWarehouseItem(Base):
    __tablename__ = "admin_warehouse_items"

    id = Column(String(36), primary_key=True, default=new_id)
    warehouse_id = Column(String(36), ForeignKey("admin_warehouses.id", ondelete="CASCADE"), nullable=False)
    material_id = Column(String(36), ForeignKey("company_materials.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, default=0, nullable=False)
    min_quantity = Column(Integer, nullable=True)
    max_quantity = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("warehouse_id", "material_id", name="uq_admin_warehouse_item"),
    )


class WarehouseTransfer(Base):
    """Stock movement request between warehouses"""
    __tablename__ = "warehouse_transfers"

    id = Column(String(36), primary_key=True, default=new_id)
    from_warehouse_id = Column(String(36), nullable=False, index=True)
    to_warehouse_id = Column(String(36), nullable=False, index=True)
    material_id = Column(String(36), ForeignKey("company_materials.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False)
    status = Column(String(20), default=TransferStatus.PENDING.value, nullable=False)
    notes = Column(Text, nullable=True)

    requested_by = Column(String(36), nullable=True)
    approved_by = Column(String(36), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
