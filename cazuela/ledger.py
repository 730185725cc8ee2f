"""Per-branch raw-material stock ledger.

The four ``register_*`` functions are the only writers of ``BranchStock.quantity``.
Each one appends a single ``InventoryMovement`` and updates the stock row inside one
transaction. Entries are the only movements that touch ``Material.average_cost``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from cazuela.db import atomic
from cazuela.errors import Conflict, InsufficientStock, InvalidInput, NotFound
from cazuela.models import (
    Branch,
    BranchStock,
    InventoryMovement,
    Material,
    MaterialCategory,
    MovementType,
)
from cazuela.utils import cost, day_bounds, money, safe_percent, utc_now

logger = logging.getLogger(__name__)

STATUS_OUT_OF_STOCK = "OUT_OF_STOCK"
STATUS_LOW = "LOW"
STATUS_OK = "OK"


@dataclass
class MovementResult:
    movement: InventoryMovement
    stock_before: Decimal
    stock_after: Decimal


def _load_stock(db: Session, branch_id: int, material_id: int) -> tuple[BranchStock, Material]:
    row = db.execute(
        select(BranchStock, Material)
        .join(Material, Material.id == BranchStock.material_id)
        .where(BranchStock.branch_id == branch_id, BranchStock.material_id == material_id)
    ).first()
    if row is None:
        raise NotFound(
            f"no stock for material {material_id} at branch {branch_id}"
        )
    return row[0], row[1]


def _require_positive(quantity: Decimal) -> Decimal:
    quantity = Decimal(quantity)
    if quantity <= 0:
        raise InvalidInput("quantity must be greater than zero")
    return quantity


def _append_movement(
    db: Session,
    stock: BranchStock,
    movement_type: MovementType,
    quantity: Decimal,
    unit_cost: Decimal,
    total_amount: Decimal,
    stock_before: Decimal,
    stock_after: Decimal,
    now: datetime,
    **extra: Any,
) -> InventoryMovement:
    movement = InventoryMovement(
        branch_id=stock.branch_id,
        material_id=stock.material_id,
        movement_type=movement_type,
        quantity=quantity,
        unit_cost=cost(unit_cost),
        total_amount=money(total_amount),
        stock_before=stock_before,
        stock_after=stock_after,
        created_at=now,
        **extra,
    )
    db.add(movement)
    stock.quantity = stock_after
    stock.updated_at = now
    db.flush()
    return movement


def register_entry(
    db: Session,
    branch_id: int,
    material_id: int,
    quantity: Decimal,
    unit_cost: Decimal,
    reason: str,
    reference_document: Optional[str] = None,
    supplier: Optional[str] = None,
    lot_number: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MovementResult:
    quantity = _require_positive(quantity)
    unit_cost = Decimal(unit_cost)
    if unit_cost < 0:
        raise InvalidInput("unit cost cannot be negative")
    now = now or utc_now()
    with atomic(db):
        stock, material = _load_stock(db, branch_id, material_id)
        before = Decimal(stock.quantity)
        after = before + quantity
        movement = _append_movement(
            db,
            stock,
            MovementType.ENTRY,
            quantity,
            unit_cost,
            quantity * unit_cost,
            before,
            after,
            now,
            reason=reason,
            reference_document=reference_document,
            supplier=supplier,
            lot_number=lot_number,
        )
        if after > 0:
            previous_value = Decimal(material.average_cost) * before
            material.average_cost = cost((previous_value + unit_cost * quantity) / after)
    logger.info(
        "entry of %s %s of %s at branch %s (avg cost %s)",
        quantity, material.unit, material.name, branch_id, material.average_cost,
    )
    return MovementResult(movement, before, after)


def _register_outbound(
    db: Session,
    movement_type: MovementType,
    branch_id: int,
    material_id: int,
    quantity: Decimal,
    now: Optional[datetime],
    **extra: Any,
) -> MovementResult:
    quantity = _require_positive(quantity)
    now = now or utc_now()
    with atomic(db):
        stock, material = _load_stock(db, branch_id, material_id)
        before = Decimal(stock.quantity)
        if quantity > before:
            raise InsufficientStock(
                f"requested {quantity} {material.unit} of {material.name}, only {before} on hand"
            )
        average_cost = Decimal(material.average_cost)
        movement = _append_movement(
            db,
            stock,
            movement_type,
            quantity,
            average_cost,
            quantity * average_cost,
            before,
            before - quantity,
            now,
            **extra,
        )
    logger.info(
        "%s of %s %s of %s at branch %s",
        movement_type.value.lower(), quantity, material.unit, material.name, branch_id,
    )
    return MovementResult(movement, before, before - quantity)


def register_exit(
    db: Session,
    branch_id: int,
    material_id: int,
    quantity: Decimal,
    reason: str,
    reference_document: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MovementResult:
    return _register_outbound(
        db,
        MovementType.EXIT,
        branch_id,
        material_id,
        quantity,
        now,
        reason=reason,
        reference_document=reference_document,
    )


def register_waste(
    db: Session,
    branch_id: int,
    material_id: int,
    quantity: Decimal,
    reason: str,
    waste_type: str,
    observations: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MovementResult:
    if observations:
        reason = f"{reason} - {observations}"
    return _register_outbound(
        db,
        MovementType.WASTE,
        branch_id,
        material_id,
        quantity,
        now,
        reason=reason,
        waste_type=waste_type,
    )


def register_adjustment(
    db: Session,
    branch_id: int,
    material_id: int,
    expected_quantity: Decimal,
    new_quantity: Decimal,
    reason: str,
    observations: Optional[str] = None,
    responsible: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MovementResult:
    expected_quantity = Decimal(expected_quantity)
    new_quantity = Decimal(new_quantity)
    if new_quantity < 0:
        raise InvalidInput("new quantity cannot be negative")
    if observations:
        reason = f"{reason} - {observations}"
    if responsible:
        reason = f"{reason} (by {responsible})"
    now = now or utc_now()
    with atomic(db):
        stock, material = _load_stock(db, branch_id, material_id)
        before = Decimal(stock.quantity)
        if before != expected_quantity:
            raise Conflict(
                f"stock of {material.name} is {before}, adjustment expected {expected_quantity}"
            )
        delta = abs(new_quantity - expected_quantity)
        average_cost = Decimal(material.average_cost)
        movement = _append_movement(
            db,
            stock,
            MovementType.ADJUSTMENT,
            delta,
            average_cost,
            delta * average_cost,
            before,
            new_quantity,
            now,
            reason=reason,
        )
    logger.info(
        "adjustment of %s at branch %s: %s -> %s",
        material.name, branch_id, before, new_quantity,
    )
    return MovementResult(movement, before, new_quantity)


def stock_status(quantity: Decimal, min_stock: Decimal) -> str:
    if quantity <= 0:
        return STATUS_OUT_OF_STOCK
    if quantity <= min_stock:
        return STATUS_LOW
    return STATUS_OK


def _stock_rows(db: Session, branch_id: int):
    return db.execute(
        select(BranchStock, Material, MaterialCategory)
        .join(Material, Material.id == BranchStock.material_id)
        .join(MaterialCategory, MaterialCategory.id == Material.category_id)
        .where(BranchStock.branch_id == branch_id)
        .order_by(MaterialCategory.name, Material.name)
    ).all()


def list_branch_stock(db: Session, branch_id: int) -> list[dict]:
    out = []
    for stock, material, category in _stock_rows(db, branch_id):
        quantity = Decimal(stock.quantity)
        min_stock = Decimal(material.min_stock)
        out.append(
            {
                "stock_id": stock.id,
                "material_id": material.id,
                "material": material.name,
                "category": category.name,
                "quantity": quantity,
                "unit": material.unit,
                "min_stock": min_stock,
                "max_stock": Decimal(material.max_stock),
                "average_cost": Decimal(material.average_cost),
                "status": stock_status(quantity, min_stock),
                "stock_percent": safe_percent(quantity, min_stock),
                "inventory_value": money(quantity * Decimal(material.average_cost)),
                "updated_at": stock.updated_at,
            }
        )
    return out


def list_stock_alerts(db: Session, branch_id: int, limit: Optional[int] = None) -> list[dict]:
    alerts = []
    for stock, material, category in _stock_rows(db, branch_id):
        quantity = Decimal(stock.quantity)
        min_stock = Decimal(material.min_stock)
        if quantity > min_stock:
            continue
        alerts.append(
            {
                "material_id": material.id,
                "material": material.name,
                "category": category.name,
                "quantity": quantity,
                "min_stock": min_stock,
                "unit": material.unit,
                "average_cost": Decimal(material.average_cost),
                "stock_percent": safe_percent(quantity, min_stock),
                "alert_type": "OUT_OF_STOCK" if quantity <= 0 else "LOW_STOCK",
                "restock_cost": money(
                    max(Decimal(material.max_stock) - quantity, Decimal(0))
                    * Decimal(material.average_cost)
                ),
            }
        )
    alerts.sort(key=lambda a: (a["stock_percent"], a["material"]))
    if limit is not None:
        alerts = alerts[:limit]
    return alerts


def movement_to_dict(movement: InventoryMovement, material: Material, branch: Branch) -> dict:
    return {
        "movement_id": movement.id,
        "branch_id": branch.id,
        "branch": branch.name,
        "material_id": material.id,
        "material": material.name,
        "unit": material.unit,
        "movement_type": movement.movement_type.value,
        "quantity": Decimal(movement.quantity),
        "unit_cost": Decimal(movement.unit_cost),
        "total_amount": Decimal(movement.total_amount),
        "reason": movement.reason,
        "reference_document": movement.reference_document,
        "supplier": movement.supplier,
        "lot_number": movement.lot_number,
        "waste_type": movement.waste_type,
        "stock_before": Decimal(movement.stock_before),
        "stock_after": Decimal(movement.stock_after),
        "created_at": movement.created_at,
    }


def _movement_query():
    return (
        select(InventoryMovement, Material, Branch)
        .join(Material, Material.id == InventoryMovement.material_id)
        .join(Branch, Branch.id == InventoryMovement.branch_id)
    )


def get_movement(db: Session, movement_id: int) -> dict:
    row = db.execute(_movement_query().where(InventoryMovement.id == movement_id)).first()
    if row is None:
        raise NotFound(f"movement {movement_id} not found")
    return movement_to_dict(*row)


def list_movements(
    db: Session,
    branch_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    movement_type: Optional[MovementType] = None,
    limit: int = 100,
) -> list[dict]:
    query = _movement_query().where(InventoryMovement.branch_id == branch_id)
    if date_from is not None:
        query = query.where(InventoryMovement.created_at >= day_bounds(date_from)[0])
    if date_to is not None:
        query = query.where(InventoryMovement.created_at < day_bounds(date_to)[1])
    if movement_type is not None:
        query = query.where(InventoryMovement.movement_type == movement_type)
    rows = db.execute(
        query.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc()).limit(limit)
    ).all()
    return [movement_to_dict(*row) for row in rows]
