"""Demo catalog for local runs and tests.

``seed_demo_data`` is idempotent: rows are looked up by name first, so running it
against a seeded database only returns the existing ids.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from cazuela.db import atomic
from cazuela.models import (
    AttributeOption,
    AttributeType,
    Branch,
    BranchStock,
    Combo,
    ComboComponent,
    ComboType,
    Material,
    MaterialCategory,
    Product,
    ProductCategory,
    ProductVariant,
)
from cazuela.utils import utc_now

logger = logging.getLogger(__name__)

BRANCHES = [
    ("branch", "Cazuela Zona 1", "6a Avenida 8-20, Zona 1", "2232-1000"),
    ("branch_2", "Cazuela Antigua", "5a Calle Poniente 12, Antigua", "7832-2000"),
]

# key, name, category, unit, min, max, average cost, opening stock per branch
MATERIALS = [
    ("harina", "Harina de maíz", "Granos", "kg", "20", "100", "5.00", "50"),
    ("arroz", "Harina de arroz", "Granos", "kg", "5", "30", "9.00", "12"),
    ("cerdo", "Carne de cerdo", "Carnes", "kg", "10", "40", "35.00", "15"),
    ("hoja", "Hoja de plátano", "Empaques", "unidad", "100", "500", "0.50", "80"),
    ("chile", "Chile guaque", "Especias", "kg", "2", "10", "40.00", "0"),
    ("cacao", "Cacao", "Especias", "kg", "3", "15", "60.00", "6"),
]

PRODUCT_CATEGORIES = [("Tamales", "Tamales tradicionales"), ("Bebidas", "Atoles y bebidas calientes")]

PRODUCTS = [
    ("colorado", "Tamales", "Tamal Colorado", "8.00"),
    ("negro", "Tamales", "Tamal Negro", "10.00"),
    ("chuchito", "Tamales", "Chuchito", "6.00"),
    ("atol", "Bebidas", "Atol", "7.00"),
]

TAMAL_VARIANTS = [("unidad", "Unidad", "1.00", 1, None), ("media", "Media docena", "5.50", 6, None),
                  ("docena", "Docena", "10.00", 12, None)]
BEVERAGE_VARIANTS = [("vaso", "Vaso 12oz", "1.00", 1, 355), ("jarro", "Jarro 1L", "2.50", 1, 1000)]

# category, type name, required, multiple, [(key, option name, extra price)]
ATTRIBUTES = [
    ("Tamales", "Masa", True, False, [
        ("maiz_amarillo", "Maíz amarillo", "0.00"),
        ("maiz_blanco", "Maíz blanco", "0.00"),
        ("masa_arroz", "Arroz", "1.00"),
    ]),
    ("Tamales", "Picante", True, False, [
        ("sin_chile", "Sin Chile", "0.00"),
        ("suave", "Suave", "0.00"),
        ("chapin", "Chapín", "0.50"),
    ]),
    ("Bebidas", "Tipo Bebida", True, False, [
        ("atol_elote", "Atol de elote", "0.00"),
        ("atol_shuco", "Atol shuco", "0.00"),
        ("pinol", "Pinol", "0.00"),
        ("cacao_batido", "Cacao batido", "2.00"),
    ]),
    ("Bebidas", "Endulzante", True, False, [
        ("panela", "Panela", "0.00"),
        ("miel", "Miel", "1.00"),
        ("sin_azucar", "Sin azúcar", "0.00"),
    ]),
]

# key, name, price, type, [(product key, variant key, quantity)]
COMBOS = [
    ("fiesta", "Fiesta Patronal", "95.00", ComboType.FIXED,
     [("colorado", "docena", 1), ("atol", "jarro", 2)]),
    ("madrugada", "Madrugada Eléctrica", "60.00", ComboType.FIXED,
     [("negro", "media", 1), ("atol", "vaso", 2)]),
    ("navidad", "Combo Navideño", "180.00", ComboType.SEASONAL,
     [("colorado", "docena", 1), ("negro", "docena", 1), ("atol", "jarro", 2)]),
]


def _first_or_add(db: Session, model, lookup: dict[str, Any], values: dict[str, Any]):
    row = db.scalar(select(model).filter_by(**lookup))
    if row is None:
        row = model(**lookup, **values)
        db.add(row)
        db.flush()
    return row


def seed_demo_data(db: Session, now: Optional[datetime] = None) -> dict[str, int]:
    now = now or utc_now()
    ids: dict[str, int] = {}
    with atomic(db):
        branches = []
        for key, name, address, phone in BRANCHES:
            branch = _first_or_add(
                db, Branch, {"name": name},
                {"address": address, "phone": phone, "is_active": True, "created_at": now},
            )
            branches.append(branch)
            ids[key] = branch.id

        for key, name, category_name, unit, min_stock, max_stock, avg, opening in MATERIALS:
            category = _first_or_add(db, MaterialCategory, {"name": category_name}, {})
            material = _first_or_add(
                db, Material, {"name": name},
                {
                    "category_id": category.id,
                    "unit": unit,
                    "min_stock": Decimal(min_stock),
                    "max_stock": Decimal(max_stock),
                    "average_cost": Decimal(avg),
                    "is_active": True,
                },
            )
            ids[key] = material.id
            for branch in branches:
                _first_or_add(
                    db, BranchStock, {"branch_id": branch.id, "material_id": material.id},
                    {"quantity": Decimal(opening), "updated_at": now},
                )

        categories = {}
        for name, description in PRODUCT_CATEGORIES:
            categories[name] = _first_or_add(
                db, ProductCategory, {"name": name}, {"description": description, "is_active": True}
            )
            ids[f"category_{name.lower()}"] = categories[name].id

        for key, category_name, name, base_price in PRODUCTS:
            product = _first_or_add(
                db, Product, {"name": name},
                {
                    "category_id": categories[category_name].id,
                    "base_price": Decimal(base_price),
                    "is_active": True,
                },
            )
            ids[key] = product.id
            variants = TAMAL_VARIANTS if category_name == "Tamales" else BEVERAGE_VARIANTS
            for variant_key, variant_name, multiplier, unit_count, volume in variants:
                variant = _first_or_add(
                    db, ProductVariant, {"product_id": product.id, "name": variant_name},
                    {
                        "price_multiplier": Decimal(multiplier),
                        "unit_count": unit_count,
                        "volume_ml": volume,
                        "is_active": True,
                    },
                )
                ids[f"{key}_{variant_key}"] = variant.id

        for sort_order, (category_name, type_name, required, multiple, options) in enumerate(ATTRIBUTES):
            attribute_type = _first_or_add(
                db, AttributeType,
                {"category_id": categories[category_name].id, "name": type_name},
                {"is_required": required, "allows_multiple": multiple, "sort_order": sort_order},
            )
            for position, (option_key, option_name, extra) in enumerate(options):
                option = _first_or_add(
                    db, AttributeOption,
                    {"attribute_type_id": attribute_type.id, "name": option_name},
                    {"extra_price": Decimal(extra), "is_active": True, "sort_order": position},
                )
                ids[option_key] = option.id

        for key, name, price, combo_type, components in COMBOS:
            combo = db.scalar(select(Combo).where(Combo.name == name))
            if combo is None:
                combo = Combo(
                    name=name, price=Decimal(price), combo_type=combo_type,
                    is_active=True, created_at=now,
                )
                db.add(combo)
                db.flush()
                for product_key, variant_key, quantity in components:
                    db.add(
                        ComboComponent(
                            combo_id=combo.id,
                            product_id=ids[product_key],
                            variant_id=ids[f"{product_key}_{variant_key}"],
                            quantity=quantity,
                        )
                    )
            ids[key] = combo.id
    logger.info("demo catalog ready (%d keyed rows)", len(ids))
    return ids
