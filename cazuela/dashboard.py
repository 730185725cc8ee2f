"""Read-only business metrics for a branch.

Every function takes a half-open UTC window ``[start, end)`` and only counts
COMPLETED sales. Results are plain dicts and lists with a fixed ordering so
repeated calls over unchanged data return identical structures.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cazuela.config import settings
from cazuela.errors import InvalidInput, NotFound
from cazuela.ledger import list_branch_stock, list_stock_alerts
from cazuela.models import (
    AttributeOption,
    AttributeType,
    Branch,
    InventoryMovement,
    Material,
    MovementType,
    Product,
    ProductCategory,
    ProductVariant,
    Sale,
    SaleLine,
    SaleLineOption,
    SaleStatus,
)
from cazuela.utils import as_utc, day_bounds, money, month_start, safe_percent, utc_now

TAMALES = "Tamales"
BEBIDAS = "Bebidas"
COMBOS = "Combos"
SPICE_ATTRIBUTE = "Picante"
BEVERAGE_ATTRIBUTE = "Tipo Bebida"
NO_SPICE = "Sin Chile"
UNSPECIFIED = "Sin especificar"

PERIODS = ("MORNING", "AFTERNOON", "NIGHT")
WEEKDAYS = ("Lunes", "Martes", "Miércoles", "Jueves", "Viernes", "Sábado", "Domingo")

ZERO = Decimal(0)
REPORT_DAYS = 30


def daily_window(now: datetime) -> tuple[datetime, datetime]:
    return day_bounds(now.date())


def month_window(now: datetime) -> tuple[datetime, datetime]:
    return month_start(now), day_bounds(now.date())[1]


def period_for_hour(hour: int) -> str:
    if 6 <= hour < 12:
        return "MORNING"
    if 12 <= hour < 18:
        return "AFTERNOON"
    return "NIGHT"


def _completed(branch_id: int, start: datetime, end: datetime) -> tuple:
    return (
        Sale.branch_id == branch_id,
        Sale.status == SaleStatus.COMPLETED,
        Sale.sold_at >= start,
        Sale.sold_at < end,
    )


def _dec(value) -> Decimal:
    return Decimal(str(value)) if value is not None else ZERO


def revenue_summary(db: Session, branch_id: int, start: datetime, end: datetime) -> dict:
    revenue, transactions = db.execute(
        select(func.sum(Sale.total), func.count(Sale.id)).where(*_completed(branch_id, start, end))
    ).one()
    revenue = money(_dec(revenue))
    return {
        "revenue": revenue,
        "transactions": transactions,
        "average_ticket": money(revenue / transactions) if transactions else money(ZERO),
    }


def top_tamales(
    db: Session, branch_id: int, start: datetime, end: datetime, limit: int = 10
) -> list[dict]:
    rows = db.execute(
        select(
            Product.id,
            Product.name,
            ProductVariant.id,
            ProductVariant.name,
            func.sum(SaleLine.quantity),
            func.sum(SaleLine.subtotal),
        )
        .select_from(SaleLine)
        .join(Sale, Sale.id == SaleLine.sale_id)
        .join(Product, Product.id == SaleLine.product_id)
        .join(ProductVariant, ProductVariant.id == SaleLine.variant_id)
        .join(ProductCategory, ProductCategory.id == Product.category_id)
        .where(ProductCategory.name == TAMALES, *_completed(branch_id, start, end))
        .group_by(Product.id, Product.name, ProductVariant.id, ProductVariant.name)
    ).all()
    total_units = sum(int(row[4]) for row in rows)
    items = [
        {
            "product_id": product_id,
            "variant_id": variant_id,
            "name": f"{product_name} ({variant_name})",
            "units": int(units),
            "amount": money(_dec(amount)),
            "share_percent": safe_percent(units, total_units),
        }
        for product_id, product_name, variant_id, variant_name, units, amount in rows
    ]
    items.sort(key=lambda i: (-i["units"], -i["amount"], i["name"], i["variant_id"]))
    return items[:limit]


def _option_names(db: Session, line_ids: list[int], attribute_name: str) -> dict[int, str]:
    if not line_ids:
        return {}
    rows = db.execute(
        select(SaleLineOption.sale_line_id, AttributeOption.name)
        .join(AttributeOption, AttributeOption.id == SaleLineOption.attribute_option_id)
        .join(AttributeType, AttributeType.id == SaleLineOption.attribute_type_id)
        .where(
            SaleLineOption.sale_line_id.in_(line_ids),
            AttributeType.name == attribute_name,
        )
        .order_by(SaleLineOption.id)
    ).all()
    names: dict[int, str] = {}
    for line_id, option_name in rows:
        names.setdefault(line_id, option_name)
    return names


def beverages_by_hour(db: Session, branch_id: int, start: datetime, end: datetime) -> dict:
    rows = db.execute(
        select(SaleLine.id, SaleLine.quantity, SaleLine.subtotal, Sale.sold_at)
        .select_from(SaleLine)
        .join(Sale, Sale.id == SaleLine.sale_id)
        .join(Product, Product.id == SaleLine.product_id)
        .join(ProductCategory, ProductCategory.id == Product.category_id)
        .where(ProductCategory.name == BEBIDAS, *_completed(branch_id, start, end))
    ).all()
    kinds = _option_names(db, [row[0] for row in rows], BEVERAGE_ATTRIBUTE)

    buckets: dict[tuple[int, str], list] = defaultdict(lambda: [0, ZERO])
    for line_id, quantity, subtotal, sold_at in rows:
        bucket = buckets[(as_utc(sold_at).hour, kinds.get(line_id, UNSPECIFIED))]
        bucket[0] += quantity
        bucket[1] += _dec(subtotal)

    periods = {period: {"units": 0, "amount": money(ZERO)} for period in PERIODS}
    hours = []
    for (hour, beverage), (units, amount) in sorted(buckets.items()):
        period = period_for_hour(hour)
        periods[period]["units"] += units
        periods[period]["amount"] = money(periods[period]["amount"] + amount)
        hours.append(
            {
                "hour": hour,
                "beverage": beverage,
                "period": period,
                "units": units,
                "amount": money(amount),
            }
        )
    return {"hours": hours, "periods": periods}


def spice_ratio(db: Session, branch_id: int, start: datetime, end: datetime) -> dict:
    rows = db.execute(
        select(AttributeOption.name, func.sum(SaleLine.quantity))
        .select_from(SaleLineOption)
        .join(SaleLine, SaleLine.id == SaleLineOption.sale_line_id)
        .join(Sale, Sale.id == SaleLine.sale_id)
        .join(Product, Product.id == SaleLine.product_id)
        .join(ProductCategory, ProductCategory.id == Product.category_id)
        .join(AttributeType, AttributeType.id == SaleLineOption.attribute_type_id)
        .join(AttributeOption, AttributeOption.id == SaleLineOption.attribute_option_id)
        .where(
            ProductCategory.name == TAMALES,
            AttributeType.name == SPICE_ATTRIBUTE,
            *_completed(branch_id, start, end),
        )
        .group_by(AttributeOption.name)
        .order_by(AttributeOption.name)
    ).all()
    without_spice = sum(int(quantity) for name, quantity in rows if name == NO_SPICE)
    with_spice = sum(int(quantity) for name, quantity in rows if name != NO_SPICE)
    total = with_spice + without_spice
    return {
        "total_with_spice": with_spice,
        "total_without_spice": without_spice,
        "percent_with_spice": safe_percent(with_spice, total),
        "levels": [
            {"level": name, "quantity": int(quantity), "percent": safe_percent(quantity, total)}
            for name, quantity in rows
        ],
    }


def category_profitability(
    db: Session,
    branch_id: int,
    start: datetime,
    end: datetime,
    cost_ratio: Optional[Decimal] = None,
) -> list[dict]:
    """Revenue and estimated margin per product category.

    Cost is ``revenue * cost_ratio``; recipes do not carry material costs, so the
    ratio is a configured estimate. Combo lines are reported under ``Combos``.
    """
    ratio = Decimal(cost_ratio) if cost_ratio is not None else settings.estimated_cost_ratio
    window = _completed(branch_id, start, end)
    product_rows = db.execute(
        select(ProductCategory.name, func.sum(SaleLine.quantity), func.sum(SaleLine.subtotal))
        .select_from(SaleLine)
        .join(Sale, Sale.id == SaleLine.sale_id)
        .join(Product, Product.id == SaleLine.product_id)
        .join(ProductCategory, ProductCategory.id == Product.category_id)
        .where(*window)
        .group_by(ProductCategory.name)
    ).all()
    combo_units, combo_revenue = db.execute(
        select(func.sum(SaleLine.quantity), func.sum(SaleLine.subtotal))
        .select_from(SaleLine)
        .join(Sale, Sale.id == SaleLine.sale_id)
        .where(SaleLine.combo_id.is_not(None), *window)
    ).one()
    rows = list(product_rows)
    if combo_units:
        rows.append((COMBOS, combo_units, combo_revenue))

    out = []
    for name, units, revenue in rows:
        units = int(units)
        revenue = money(_dec(revenue))
        estimated_cost = money(revenue * ratio)
        profit = revenue - estimated_cost
        out.append(
            {
                "category": name,
                "units": units,
                "revenue": revenue,
                "average_unit_price": money(revenue / units) if units else money(ZERO),
                "estimated_cost": estimated_cost,
                "estimated_profit": profit,
                "margin_percent": safe_percent(profit, revenue),
            }
        )
    out.sort(key=lambda c: (-c["revenue"], c["category"]))
    return out


def waste_summary(
    db: Session, branch_id: int, start: datetime, end: datetime, limit: int = 10
) -> dict:
    rows = db.execute(
        select(InventoryMovement, Material.name, Material.unit)
        .join(Material, Material.id == InventoryMovement.material_id)
        .where(
            InventoryMovement.branch_id == branch_id,
            InventoryMovement.movement_type == MovementType.WASTE,
            InventoryMovement.created_at >= start,
            InventoryMovement.created_at < end,
        )
        .order_by(InventoryMovement.created_at, InventoryMovement.id)
    ).all()
    grouped: dict[int, dict] = {}
    for movement, name, unit in rows:
        entry = grouped.setdefault(
            movement.material_id,
            {
                "material_id": movement.material_id,
                "material": name,
                "unit": unit,
                "quantity": ZERO,
                "cost": ZERO,
                "reasons": [],
            },
        )
        entry["quantity"] += _dec(movement.quantity)
        entry["cost"] += _dec(movement.total_amount)
        if movement.reason and movement.reason not in entry["reasons"] and len(entry["reasons"]) < 3:
            entry["reasons"].append(movement.reason)

    total_cost = money(sum((e["cost"] for e in grouped.values()), ZERO))
    items = sorted(grouped.values(), key=lambda e: (-e["cost"], e["material"], e["material_id"]))
    for entry in items:
        entry["cost"] = money(entry["cost"])
        entry["share_percent"] = safe_percent(entry["cost"], total_cost)
    return {"total_cost": total_cost, "items": items[:limit]}


def inventory_snapshot(db: Session, branch_id: int, now: Optional[datetime] = None) -> dict:
    now = now or utc_now()
    stocks = list_branch_stock(db, branch_id)
    day_start, day_end = daily_window(now)
    movements_today = db.scalar(
        select(func.count(InventoryMovement.id)).where(
            InventoryMovement.branch_id == branch_id,
            InventoryMovement.created_at >= day_start,
            InventoryMovement.created_at < day_end,
        )
    )

    def month_total(movement_type: MovementType) -> Decimal:
        month_from, month_to = month_window(now)
        value = db.scalar(
            select(func.sum(InventoryMovement.total_amount)).where(
                InventoryMovement.branch_id == branch_id,
                InventoryMovement.movement_type == movement_type,
                InventoryMovement.created_at >= month_from,
                InventoryMovement.created_at < month_to,
            )
        )
        return money(_dec(value))

    return {
        "inventory_value": money(sum((s["inventory_value"] for s in stocks), ZERO)),
        "total_materials": len(stocks),
        "low_stock": sum(1 for s in stocks if 0 < s["quantity"] <= s["min_stock"]),
        "out_of_stock": sum(1 for s in stocks if s["quantity"] <= 0),
        "movements_today": movements_today or 0,
        "month_purchases": month_total(MovementType.ENTRY),
        "month_waste": month_total(MovementType.WASTE),
        "alerts": list_stock_alerts(db, branch_id, limit=5),
    }


def sales_trend(
    db: Session, branch_id: int, days: int = 7, now: Optional[datetime] = None
) -> list[dict]:
    if days < 1:
        raise InvalidInput("trend needs at least one day")
    today = (now or utc_now()).date()
    first_day = today - timedelta(days=days - 1)
    rows = db.execute(
        select(Sale.sold_at, Sale.total).where(
            *_completed(branch_id, day_bounds(first_day)[0], day_bounds(today)[1])
        )
    ).all()
    totals: dict = defaultdict(lambda: [ZERO, 0])
    for sold_at, total in rows:
        bucket = totals[as_utc(sold_at).date()]
        bucket[0] += _dec(total)
        bucket[1] += 1

    points = []
    for offset in range(days):
        current = first_day + timedelta(days=offset)
        revenue, transactions = totals.get(current, (ZERO, 0))
        points.append(
            {
                "date": current.isoformat(),
                "weekday": WEEKDAYS[current.weekday()],
                "revenue": money(revenue),
                "transactions": transactions,
            }
        )
    return points


def get_branch(db: Session, branch_id: int) -> Branch:
    branch = db.get(Branch, branch_id)
    if branch is None:
        raise NotFound(f"branch {branch_id} not found")
    return branch


def build_dashboard(
    db: Session,
    branch_id: int,
    now: Optional[datetime] = None,
    cost_ratio: Optional[Decimal] = None,
) -> dict:
    now = now or utc_now()
    branch = get_branch(db, branch_id)
    day = daily_window(now)
    month = month_window(now)
    return {
        "branch": {"id": branch.id, "name": branch.name},
        "generated_at": now,
        "daily_sales": revenue_summary(db, branch_id, *day),
        "monthly_sales": revenue_summary(db, branch_id, *month),
        "top_tamales": top_tamales(db, branch_id, *month),
        "beverages_by_hour": beverages_by_hour(db, branch_id, *day),
        "spice_ratio": spice_ratio(db, branch_id, *month),
        "category_profitability": category_profitability(db, branch_id, *month, cost_ratio=cost_ratio),
        "waste": waste_summary(db, branch_id, *month),
        "inventory": inventory_snapshot(db, branch_id, now),
        "trend": sales_trend(db, branch_id, settings.trend_days, now),
    }


def branch_sales_report(
    db: Session,
    branch_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
    limit: int = 10,
) -> dict:
    """Completed sales of an active branch, per day and by product.

    The default window covers the last 30 days plus today.
    """
    today = (now or utc_now()).date()
    start = start or day_bounds(today - timedelta(days=REPORT_DAYS))[0]
    end = end or day_bounds(today)[1]
    branch = db.scalar(select(Branch).where(Branch.id == branch_id, Branch.is_active.is_(True)))
    if branch is None:
        raise NotFound(f"branch {branch_id} not found")

    window = _completed(branch_id, start, end)
    sales = db.execute(select(Sale.sold_at, Sale.total).where(*window)).all()
    days: dict = defaultdict(lambda: [0, ZERO])
    for sold_at, total in sales:
        bucket = days[as_utc(sold_at).date()]
        bucket[0] += 1
        bucket[1] += _dec(total)
    total_amount = money(sum((_dec(total) for _, total in sales), ZERO))

    product_rows = db.execute(
        select(Product.name, func.sum(SaleLine.quantity), func.sum(SaleLine.subtotal))
        .select_from(SaleLine)
        .join(Sale, Sale.id == SaleLine.sale_id)
        .join(Product, Product.id == SaleLine.product_id)
        .where(*window)
        .group_by(Product.name)
    ).all()
    top_products = sorted(
        (
            {"name": name, "units": int(units), "amount": money(_dec(amount))}
            for name, units, amount in product_rows
        ),
        key=lambda p: (-p["units"], p["name"]),
    )

    return {
        "branch": {"id": branch.id, "name": branch.name},
        "start": start,
        "end": end,
        "sales_count": len(sales),
        "total_amount": total_amount,
        "average_ticket": money(total_amount / len(sales)) if sales else money(ZERO),
        "per_day": [
            {
                "date": day.isoformat(),
                "sales": count,
                "total": money(amount),
                "average_ticket": money(amount / count),
            }
            for day, (count, amount) in sorted(days.items())
        ],
        "top_products": top_products[:limit],
    }
