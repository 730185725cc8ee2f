"""Sale registration, pricing and history."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cazuela.db import atomic
from cazuela.errors import InvalidBranch, InvalidInput, InvalidLine, NotFound
from cazuela.models import (
    AttributeOption,
    AttributeType,
    Branch,
    Combo,
    PaymentType,
    Product,
    ProductCategory,
    ProductVariant,
    Sale,
    SaleLine,
    SaleLineOption,
    SaleStatus,
)
from cazuela.utils import as_utc, day_bounds, money, utc_now

logger = logging.getLogger(__name__)


@dataclass
class LineRequest:
    quantity: int
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    combo_id: Optional[int] = None
    option_ids: list[int] = field(default_factory=list)
    notes: Optional[str] = None


@dataclass
class PricedLine:
    request: LineRequest
    unit_price: Decimal
    subtotal: Decimal
    options: list[AttributeOption]


def sale_number(branch_id: int, now: datetime, sales_today: int) -> str:
    return f"{branch_id:02d}{now:%Y%m%d}{sales_today + 1:04d}"


def _resolve_options(db: Session, option_ids: list[int]) -> list[AttributeOption]:
    if not option_ids:
        return []
    option_ids = list(dict.fromkeys(option_ids))
    options = db.scalars(
        select(AttributeOption).where(
            AttributeOption.id.in_(option_ids), AttributeOption.is_active.is_(True)
        )
    ).all()
    by_id = {option.id: option for option in options}
    missing = [option_id for option_id in option_ids if option_id not in by_id]
    if missing:
        raise InvalidLine(f"customization options not available: {missing}")
    return [by_id[option_id] for option_id in option_ids]


def _resolve_product(db: Session, product_id: int, variant_id: int) -> tuple[Product, ProductVariant]:
    product = db.scalar(
        select(Product).where(Product.id == product_id, Product.is_active.is_(True))
    )
    variant = db.scalar(
        select(ProductVariant).where(
            ProductVariant.id == variant_id,
            ProductVariant.product_id == product_id,
            ProductVariant.is_active.is_(True),
        )
    )
    if product is None or variant is None:
        raise InvalidLine(f"product {product_id} or variant {variant_id} not found")
    return product, variant


def price_line(db: Session, line: LineRequest) -> PricedLine:
    if line.quantity <= 0:
        raise InvalidLine("line quantity must be greater than zero")
    has_product = line.product_id is not None or line.variant_id is not None
    if line.combo_id is not None:
        if has_product:
            raise InvalidLine("a line cannot name both a combo and a product")
        if line.option_ids:
            raise InvalidLine("customizations apply to product lines only")
        combo = db.scalar(
            select(Combo).where(Combo.id == line.combo_id, Combo.is_active.is_(True))
        )
        if combo is None:
            raise InvalidLine(f"combo {line.combo_id} not found")
        unit_price = Decimal(combo.price)
        options: list[AttributeOption] = []
    elif line.product_id is not None and line.variant_id is not None:
        product, variant = _resolve_product(db, line.product_id, line.variant_id)
        options = _resolve_options(db, line.option_ids)
        unit_price = Decimal(product.base_price) * Decimal(variant.price_multiplier)
        unit_price += sum((Decimal(option.extra_price) for option in options), Decimal(0))
    else:
        raise InvalidLine("a line needs either a combo or a product with its variant")
    unit_price = money(unit_price)
    return PricedLine(line, unit_price, money(unit_price * line.quantity), options)


def quote_price(
    db: Session,
    product_id: int,
    variant_id: int,
    option_ids: Optional[list[int]] = None,
    quantity: int = 1,
) -> dict:
    product, variant = _resolve_product(db, product_id, variant_id)
    options = _resolve_options(db, option_ids or [])
    type_names: dict[int, str] = {}
    if options:
        rows = db.execute(
            select(AttributeType.id, AttributeType.name).where(
                AttributeType.id.in_({option.attribute_type_id for option in options})
            )
        ).all()
        type_names = {type_id: name for type_id, name in rows}
    base = money(Decimal(product.base_price) * Decimal(variant.price_multiplier))
    extras = money(sum((Decimal(option.extra_price) for option in options), Decimal(0)))
    return {
        "product": product.name,
        "variant": variant.name,
        "base_price": base,
        "customization_price": extras,
        "unit_price": base + extras,
        "quantity": quantity,
        "final_price": money((base + extras) * quantity),
        "customizations": [
            {
                "attribute_type": type_names.get(option.attribute_type_id),
                "option": option.name,
                "extra_price": Decimal(option.extra_price),
            }
            for option in options
        ],
    }


def active_products(db: Session, limit: int = 10) -> list[str]:
    """Short ``name (category) - Qprice`` lines for the first active products."""
    rows = db.execute(
        select(Product.name, ProductCategory.name, Product.base_price)
        .join(ProductCategory, ProductCategory.id == Product.category_id)
        .where(Product.is_active.is_(True))
        .order_by(Product.id)
        .limit(limit)
    ).all()
    return [f"{name} ({category}) - Q{money(Decimal(price))}" for name, category, price in rows]


def register_sale(
    db: Session,
    branch_id: int,
    payment_type: Optional[PaymentType],
    lines: list[LineRequest],
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Sale:
    """Price every line and persist the sale with its lines in one transaction.

    Unit prices and option prices are captured at sale time. The sale number uses a
    count of the branch's sales for the day, which is not safe against concurrent
    inserts for the same branch.
    """
    if not lines:
        raise InvalidInput("a sale needs at least one line")
    now = now or utc_now()
    with atomic(db):
        branch = db.scalar(
            select(Branch).where(Branch.id == branch_id, Branch.is_active.is_(True))
        )
        if branch is None:
            raise InvalidBranch(f"branch {branch_id} is not valid")
        starts_at, ends_at = day_bounds(now.date())
        sales_today = db.scalar(
            select(func.count(Sale.id)).where(
                Sale.branch_id == branch_id,
                Sale.sold_at >= starts_at,
                Sale.sold_at < ends_at,
            )
        )
        sale = Sale(
            branch_id=branch_id,
            sale_number=sale_number(branch_id, now, sales_today or 0),
            sold_at=now,
            payment_type=payment_type,
            status=SaleStatus.COMPLETED,
            customer_name=customer_name,
            customer_phone=customer_phone,
        )
        db.add(sale)
        db.flush()

        subtotal = Decimal(0)
        for line in lines:
            priced = price_line(db, line)
            sale_line = SaleLine(
                sale_id=sale.id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                combo_id=line.combo_id,
                quantity=line.quantity,
                unit_price=priced.unit_price,
                subtotal=priced.subtotal,
                notes=line.notes,
            )
            db.add(sale_line)
            db.flush()
            for option in priced.options:
                db.add(
                    SaleLineOption(
                        sale_line_id=sale_line.id,
                        attribute_type_id=option.attribute_type_id,
                        attribute_option_id=option.id,
                        extra_price=option.extra_price,
                    )
                )
            subtotal += priced.subtotal

        sale.subtotal = subtotal
        sale.discount = Decimal(0)
        sale.total = subtotal
    logger.info("sale %s registered for Q%s", sale.sale_number, sale.total)
    return sale


def sale_summary(sale: Sale, branch_name: str, item_count: int) -> dict:
    return {
        "sale_id": sale.id,
        "sale_number": sale.sale_number,
        "branch_id": sale.branch_id,
        "branch": branch_name,
        "sold_at": sale.sold_at,
        "total": Decimal(sale.total),
        "payment_type": sale.payment_type.value if sale.payment_type else None,
        "status": sale.status.value,
        "customer_name": sale.customer_name,
        "item_count": item_count,
    }


def get_sale(db: Session, sale_id: int) -> dict:
    sale = db.get(Sale, sale_id)
    if sale is None:
        raise NotFound(f"sale {sale_id} not found")
    branch = db.get(Branch, sale.branch_id)
    rows = db.execute(
        select(SaleLine, Product, ProductVariant, Combo)
        .outerjoin(Product, Product.id == SaleLine.product_id)
        .outerjoin(ProductVariant, ProductVariant.id == SaleLine.variant_id)
        .outerjoin(Combo, Combo.id == SaleLine.combo_id)
        .where(SaleLine.sale_id == sale.id)
        .order_by(SaleLine.id)
    ).all()
    line_ids = [row[0].id for row in rows]
    customizations: dict[int, list[dict]] = {line_id: [] for line_id in line_ids}
    if line_ids:
        option_rows = db.execute(
            select(SaleLineOption, AttributeType.name, AttributeOption.name)
            .join(AttributeType, AttributeType.id == SaleLineOption.attribute_type_id)
            .join(AttributeOption, AttributeOption.id == SaleLineOption.attribute_option_id)
            .where(SaleLineOption.sale_line_id.in_(line_ids))
            .order_by(SaleLineOption.id)
        ).all()
        for selection, type_name, option_name in option_rows:
            customizations[selection.sale_line_id].append(
                {
                    "attribute_type": type_name,
                    "option": option_name,
                    "extra_price": Decimal(selection.extra_price),
                }
            )
    lines = []
    for line, product, variant, combo in rows:
        lines.append(
            {
                "line_id": line.id,
                "product_id": line.product_id,
                "product": product.name if product else None,
                "variant_id": line.variant_id,
                "variant": variant.name if variant else None,
                "combo_id": line.combo_id,
                "combo": combo.name if combo else None,
                "quantity": line.quantity,
                "unit_price": Decimal(line.unit_price),
                "subtotal": Decimal(line.subtotal),
                "notes": line.notes,
                "customizations": customizations[line.id],
            }
        )
    data = sale_summary(sale, branch.name if branch else "", sum(line["quantity"] for line in lines))
    data.update(
        {
            "subtotal": Decimal(sale.subtotal),
            "discount": Decimal(sale.discount),
            "customer_phone": sale.customer_phone,
            "cancel_reason": sale.cancel_reason,
            "cancelled_at": sale.cancelled_at,
            "lines": lines,
        }
    )
    return data


def _summaries(db: Session, query) -> list[dict]:
    item_counts = (
        select(SaleLine.sale_id, func.sum(SaleLine.quantity).label("item_count"))
        .group_by(SaleLine.sale_id)
        .subquery()
    )
    rows = db.execute(
        query.add_columns(Branch.name, func.coalesce(item_counts.c.item_count, 0))
        .join(Branch, Branch.id == Sale.branch_id)
        .outerjoin(item_counts, item_counts.c.sale_id == Sale.id)
    ).all()
    return [sale_summary(sale, branch_name, int(items)) for sale, branch_name, items in rows]


def list_sales(
    db: Session,
    branch_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    if page < 1 or page_size < 1:
        raise InvalidInput("page and page size start at 1")
    conditions = [Sale.branch_id == branch_id]
    if date_from is not None:
        conditions.append(Sale.sold_at >= day_bounds(date_from)[0])
    if date_to is not None:
        conditions.append(Sale.sold_at < day_bounds(date_to)[1])
    total = db.scalar(select(func.count(Sale.id)).where(*conditions)) or 0
    query = (
        select(Sale)
        .where(*conditions)
        .order_by(Sale.sold_at.desc(), Sale.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "items": _summaries(db, query),
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size),
    }


def list_sales_for_day(db: Session, branch_id: int, now: Optional[datetime] = None) -> list[dict]:
    starts_at, ends_at = day_bounds((now or utc_now()).date())
    query = (
        select(Sale)
        .where(Sale.branch_id == branch_id, Sale.sold_at >= starts_at, Sale.sold_at < ends_at)
        .order_by(Sale.sold_at.desc(), Sale.id.desc())
    )
    return _summaries(db, query)


def cancel_sale(db: Session, sale_id: int, reason: str, now: Optional[datetime] = None) -> Sale:
    now = now or utc_now()
    with atomic(db):
        sale = db.get(Sale, sale_id)
        if sale is None:
            raise NotFound(f"sale {sale_id} not found")
        if sale.status == SaleStatus.CANCELLED:
            raise InvalidInput(f"sale {sale.sale_number} is already cancelled")
        if as_utc(sale.sold_at).date() != now.date():
            raise InvalidInput("only sales from the current day can be cancelled")
        sale.status = SaleStatus.CANCELLED
        sale.cancel_reason = reason
        sale.cancelled_at = now
    logger.info("sale %s cancelled: %s", sale.sale_number, reason)
    return sale
