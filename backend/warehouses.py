"""
Warehouse transfers and stock thresholds.

New warehouses count against the subscription's warehouse limit.
Operators request stock from the company main warehouse; the owner
approves or rejects each request exactly once. The status change is a
single conditional update, so two concurrent decisions cannot both win.
"""
import logging
from datetime import datetime
from typing import List, Optional

from errors import ConflictError, NotFoundError, ValidationError
from limits import ResourceType, ensure_capacity
from models import TransferStatus
from schemas import StockAlert
from table_gateway import TableGateway, eq, in_
from tenancy import CompanyRef

logger = logging.getLogger(__name__)

MAIN_WAREHOUSE_TYPE = "company_main"


async def get_main_warehouse(gateway: TableGateway, company: CompanyRef) -> dict:
    warehouse = await gateway.maybe_single(
        "admin_warehouses",
        [eq("company_id", company.company_id), eq("warehouse_type", MAIN_WAREHOUSE_TYPE)],
        order_by="created_at",
    )
    if warehouse is None:
        raise NotFoundError("Company main warehouse not found")
    return warehouse


async def list_warehouses(gateway: TableGateway, company: CompanyRef) -> dict:
    main = await gateway.select(
        "admin_warehouses",
        filters=[eq("company_id", company.company_id), eq("warehouse_type", MAIN_WAREHOUSE_TYPE)],
    )
    operator_warehouses = await gateway.select(
        "warehouses", filters=[eq("company_id", company.company_id)], order_by="name"
    )
    return {"main": main, "warehouses": operator_warehouses}


async def create_warehouse(
    gateway: TableGateway,
    company: CompanyRef,
    name: str,
    operator_id: Optional[str] = None,
) -> dict:
    """Add an operator or branch warehouse; counts against the warehouse limit."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Warehouse name is required")
    if operator_id is not None:
        operator = await gateway.maybe_single(
            "operators", [eq("id", operator_id), eq("company_id", company.company_id)]
        )
        if operator is None:
            raise NotFoundError("Operator not found")

    await ensure_capacity(gateway, company, ResourceType.WAREHOUSES, 1)

    warehouse = (await gateway.insert("warehouses", {
        "company_id": company.company_id,
        "operator_id": operator_id,
        "name": name,
    }))[0]
    logger.info(f"Warehouse {warehouse['id']} ({name}) created for company {company.company_id}")
    return warehouse


async def _company_warehouse_ids(gateway: TableGateway, company: CompanyRef) -> set:
    own = await gateway.select("warehouses", columns=["id"], filters=[eq("company_id", company.company_id)])
    main = await gateway.select("admin_warehouses", columns=["id"], filters=[eq("company_id", company.company_id)])
    return {w["id"] for w in own} | {w["id"] for w in main}


async def list_transfers(gateway: TableGateway, company: CompanyRef, warehouse_id: str) -> List[dict]:
    """Incoming and outgoing transfers of a warehouse, newest first."""
    if warehouse_id not in await _company_warehouse_ids(gateway, company):
        raise NotFoundError("Warehouse not found")

    outgoing = await gateway.select("warehouse_transfers", filters=[eq("from_warehouse_id", warehouse_id)])
    incoming = await gateway.select("warehouse_transfers", filters=[eq("to_warehouse_id", warehouse_id)])
    transfers = {t["id"]: t for t in outgoing + incoming}
    return sorted(transfers.values(), key=lambda t: t["created_at"] or datetime.min, reverse=True)


async def request_transfer(
    gateway: TableGateway,
    company: CompanyRef,
    requested_by: str,
    to_warehouse_id: str,
    material_id: str,
    quantity: int,
    notes: Optional[str] = None,
) -> dict:
    """Create a pending transfer from the company main warehouse."""
    if quantity is None or quantity <= 0:
        raise ValidationError("Quantity must be greater than zero")

    target = await gateway.maybe_single(
        "warehouses", [eq("id", to_warehouse_id), eq("company_id", company.company_id)]
    )
    if target is None:
        raise NotFoundError("Warehouse not found")

    main = await get_main_warehouse(gateway, company)
    item = await gateway.maybe_single(
        "admin_warehouse_items", [eq("warehouse_id", main["id"]), eq("material_id", material_id)]
    )
    available = item["quantity"] if item else 0
    if quantity > available:
        raise ValidationError(f"Insufficient stock: {available} available, {quantity} requested")

    transfer = (await gateway.insert("warehouse_transfers", {
        "from_warehouse_id": main["id"],
        "to_warehouse_id": to_warehouse_id,
        "material_id": material_id,
        "quantity": quantity,
        "status": TransferStatus.PENDING.value,
        "notes": notes,
        "requested_by": requested_by,
    }))[0]
    logger.info(f"Transfer {transfer['id']} requested: {quantity} x {material_id} -> {to_warehouse_id}")
    return transfer


async def _decide(gateway: TableGateway, company: CompanyRef, transfer_id: str, approver_id: str, status: TransferStatus) -> dict:
    transfer = await gateway.maybe_single("warehouse_transfers", [eq("id", transfer_id)])
    if transfer is None or transfer["from_warehouse_id"] not in await _company_warehouse_ids(gateway, company):
        raise NotFoundError("Transfer not found")

    updated = await gateway.update(
        "warehouse_transfers",
        {"status": status.value, "approved_by": approver_id, "approved_at": datetime.utcnow()},
        [eq("id", transfer_id), eq("status", TransferStatus.PENDING.value)],
    )
    if not updated:
        raise ConflictError("Transfer is no longer pending")

    logger.info(f"Transfer {transfer_id} {status.value} by {approver_id}")
    return updated[0]


async def approve_transfer(gateway: TableGateway, company: CompanyRef, transfer_id: str, approver_id: str) -> dict:
    return await _decide(gateway, company, transfer_id, approver_id, TransferStatus.APPROVED)


async def reject_transfer(gateway: TableGateway, company: CompanyRef, transfer_id: str, approver_id: str) -> dict:
    return await _decide(gateway, company, transfer_id, approver_id, TransferStatus.REJECTED)


async def stock_alerts(gateway: TableGateway, company: CompanyRef, warehouse_id: str) -> List[StockAlert]:
    """Items below their minimum or above their maximum quantity."""
    warehouse = await gateway.maybe_single(
        "admin_warehouses", [eq("id", warehouse_id), eq("company_id", company.company_id)]
    )
    if warehouse is None:
        raise NotFoundError("Warehouse not found")

    items = await gateway.select("admin_warehouse_items", filters=[eq("warehouse_id", warehouse_id)])
    material_ids = sorted({i["material_id"] for i in items})
    materials = {}
    if material_ids:
        materials = {m["id"]: m for m in await gateway.select("company_materials", filters=[in_("id", material_ids)])}

    alerts = []
    for item in items:
        kind = None
        if item.get("min_quantity") is not None and item["quantity"] < item["min_quantity"]:
            kind = "below_min"
        elif item.get("max_quantity") is not None and item["quantity"] > item["max_quantity"]:
            kind = "above_max"
        if kind is None:
            continue
        material = materials.get(item["material_id"])
        alerts.append(StockAlert(
            item_id=item["id"],
            material_id=item["material_id"],
            material_name=material["name"] if material else None,
            quantity=item["quantity"],
            min_quantity=item.get("min_quantity"),
            max_quantity=item.get("max_quantity"),
            alert=kind,
        ))
    return sorted(alerts, key=lambda a: (a.alert, a.material_name or ""))
