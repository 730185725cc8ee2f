from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from cazuela import dashboard, ledger, sales
from cazuela.config import configure_logging, settings
from cazuela.content import (
    ChatbotRequest,
    ComboRequest,
    ContentGenerator,
    InventoryAlertRequest,
    MarketingRequest,
    SalesAnalysisRequest,
)
from cazuela.db import SessionLocal
from cazuela.errors import CazuelaError
from cazuela.models import MovementType, PaymentType
from cazuela.utils import day_bounds, utc_now

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="La Cazuela Chapina API")


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def _ok(data: Any, warnings: Optional[list[str]] = None) -> dict:
    return {"data": _plain(data), "meta": _meta(warnings=warnings)}


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_content_generator() -> ContentGenerator:
    return ContentGenerator(settings)


@app.exception_handler(CazuelaError)
def handle_domain_error(request: Request, exc: CazuelaError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "internal server error"})


def _window(
    date_from: Optional[date], date_to: Optional[date], default: tuple[datetime, datetime]
) -> tuple[datetime, datetime]:
    start, end = default
    if date_from is not None:
        start = day_bounds(date_from)[0]
    if date_to is not None:
        end = day_bounds(date_to)[1]
    return start, end


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"status": "ok"}


@app.get("/health", tags=["health"])
def health_check() -> dict:
    return {"status": "healthy"}


@app.get("/sucursal/{branch_id}", tags=["Sucursales"])
def get_branch(branch_id: int, db: Session = Depends(get_db)) -> dict:
    branch = dashboard.get_branch(db, branch_id)
    return _ok(
        {
            "branch_id": branch.id,
            "name": branch.name,
            "address": branch.address,
            "phone": branch.phone,
            "is_active": branch.is_active,
            "created_at": branch.created_at,
        }
    )


@app.get("/sucursal/{branch_id}/inventario/estado", tags=["Sucursales"])
def get_branch_inventory_state(branch_id: int, db: Session = Depends(get_db)) -> dict:
    dashboard.get_branch(db, branch_id)
    return _ok(dashboard.inventory_snapshot(db, branch_id))


@app.get("/sucursal/{branch_id}/reportes/ventas", tags=["Sucursales"])
def get_branch_sales_report(
    branch_id: int,
    fecha_desde: Optional[date] = Query(default=None),
    fecha_hasta: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    today = utc_now().date()
    start, end = _window(
        fecha_desde,
        fecha_hasta,
        (day_bounds(today - timedelta(days=dashboard.REPORT_DAYS))[0], day_bounds(today)[1]),
    )
    return _ok(dashboard.branch_sales_report(db, branch_id, start, end))


class EntryCreate(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "branch_id": 1,
                "material_id": 1,
                "quantity": 25,
                "unit_cost": 6.5,
                "reason": "Compra semanal",
                "supplier": "Molino San Juan",
            }
        }
    }
    branch_id: int
    material_id: int
    quantity: Decimal = Field(gt=0)
    unit_cost: Decimal = Field(ge=0)
    reason: str = Field(min_length=1)
    reference_document: Optional[str] = None
    supplier: Optional[str] = None
    lot_number: Optional[str] = None


class ExitCreate(BaseModel):
    branch_id: int
    material_id: int
    quantity: Decimal = Field(gt=0)
    reason: str = Field(min_length=1)
    reference_document: Optional[str] = None


class WasteCreate(BaseModel):
    branch_id: int
    material_id: int
    quantity: Decimal = Field(gt=0)
    reason: str = Field(min_length=1)
    waste_type: str = Field(min_length=1)
    observations: Optional[str] = None


class AdjustmentCreate(BaseModel):
    branch_id: int
    material_id: int
    expected_quantity: Decimal = Field(ge=0)
    new_quantity: Decimal = Field(ge=0)
    reason: str = Field(min_length=1)
    observations: Optional[str] = None
    responsible: Optional[str] = None


@app.get("/inventario/stock/sucursal/{branch_id}", tags=["Inventario"])
def list_stock(branch_id: int, db: Session = Depends(get_db)) -> dict:
    dashboard.get_branch(db, branch_id)
    return _ok(ledger.list_branch_stock(db, branch_id))


@app.get("/inventario/alertas/sucursal/{branch_id}", tags=["Inventario"])
def list_alerts(branch_id: int, db: Session = Depends(get_db)) -> dict:
    dashboard.get_branch(db, branch_id)
    return _ok(ledger.list_stock_alerts(db, branch_id))


@app.post("/inventario/entrada", tags=["Inventario"])
def create_entry(payload: EntryCreate, db: Session = Depends(get_db)) -> dict:
    result = ledger.register_entry(
        db,
        payload.branch_id,
        payload.material_id,
        payload.quantity,
        payload.unit_cost,
        payload.reason,
        reference_document=payload.reference_document,
        supplier=payload.supplier,
        lot_number=payload.lot_number,
    )
    return _ok(ledger.get_movement(db, result.movement.id))


@app.post("/inventario/salida", tags=["Inventario"])
def create_exit(payload: ExitCreate, db: Session = Depends(get_db)) -> dict:
    result = ledger.register_exit(
        db,
        payload.branch_id,
        payload.material_id,
        payload.quantity,
        payload.reason,
        reference_document=payload.reference_document,
    )
    return _ok(ledger.get_movement(db, result.movement.id))


@app.post("/inventario/merma", tags=["Inventario"])
def create_waste(payload: WasteCreate, db: Session = Depends(get_db)) -> dict:
    result = ledger.register_waste(
        db,
        payload.branch_id,
        payload.material_id,
        payload.quantity,
        payload.reason,
        payload.waste_type,
        observations=payload.observations,
    )
    return _ok(ledger.get_movement(db, result.movement.id))


@app.post("/inventario/ajuste", tags=["Inventario"])
def create_adjustment(payload: AdjustmentCreate, db: Session = Depends(get_db)) -> dict:
    result = ledger.register_adjustment(
        db,
        payload.branch_id,
        payload.material_id,
        payload.expected_quantity,
        payload.new_quantity,
        payload.reason,
        observations=payload.observations,
        responsible=payload.responsible,
    )
    return _ok(ledger.get_movement(db, result.movement.id))


@app.get("/inventario/movimiento/{movement_id}", tags=["Inventario"])
def get_movement(movement_id: int, db: Session = Depends(get_db)) -> dict:
    return _ok(ledger.get_movement(db, movement_id))


@app.get("/inventario/movimientos/sucursal/{branch_id}", tags=["Inventario"])
def list_movements(
    branch_id: int,
    fecha_desde: Optional[date] = Query(default=None),
    fecha_hasta: Optional[date] = Query(default=None),
    tipo: Optional[MovementType] = Query(default=None),
    limite: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> dict:
    return _ok(
        ledger.list_movements(
            db,
            branch_id,
            date_from=fecha_desde,
            date_to=fecha_hasta,
            movement_type=tipo,
            limit=limite,
        )
    )


class SaleLineInput(BaseModel):
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    combo_id: Optional[int] = None
    quantity: int = Field(gt=0)
    option_ids: list[int] = Field(default_factory=list)
    notes: Optional[str] = None


class SaleCreate(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "branch_id": 1,
                "payment_type": "CASH",
                "lines": [
                    {"product_id": 1, "variant_id": 1, "quantity": 2, "option_ids": [3, 7]},
                    {"combo_id": 1, "quantity": 1},
                ],
            }
        }
    }
    branch_id: int
    payment_type: Optional[PaymentType] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    lines: list[SaleLineInput] = Field(min_length=1)


class SaleCancel(BaseModel):
    reason: str = Field(min_length=1)


class PriceQuote(BaseModel):
    product_id: int
    variant_id: int
    option_ids: list[int] = Field(default_factory=list)
    quantity: int = Field(default=1, gt=0)


@app.post("/ventas", tags=["Ventas"])
def create_sale(payload: SaleCreate, db: Session = Depends(get_db)) -> dict:
    sale = sales.register_sale(
        db,
        payload.branch_id,
        payload.payment_type,
        [sales.LineRequest(**line.model_dump()) for line in payload.lines],
        customer_name=payload.customer_name,
        customer_phone=payload.customer_phone,
    )
    return _ok(sales.get_sale(db, sale.id))


@app.get("/ventas/sucursal/{branch_id}", tags=["Ventas"])
def list_sales(
    branch_id: int,
    pagina: int = Query(default=1, ge=1),
    tamano_pagina: int = Query(default=20, ge=1, le=200),
    fecha_desde: Optional[date] = Query(default=None),
    fecha_hasta: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    return _ok(
        sales.list_sales(
            db,
            branch_id,
            date_from=fecha_desde,
            date_to=fecha_hasta,
            page=pagina,
            page_size=tamano_pagina,
        )
    )


@app.get("/ventas/sucursal/{branch_id}/hoy", tags=["Ventas"])
def list_sales_today(branch_id: int, db: Session = Depends(get_db)) -> dict:
    return _ok(sales.list_sales_for_day(db, branch_id))


@app.get("/ventas/{sale_id}", tags=["Ventas"])
def get_sale(sale_id: int, db: Session = Depends(get_db)) -> dict:
    return _ok(sales.get_sale(db, sale_id))


@app.patch("/ventas/{sale_id}/cancelar", tags=["Ventas"])
def cancel_sale(sale_id: int, payload: SaleCancel, db: Session = Depends(get_db)) -> dict:
    sales.cancel_sale(db, sale_id, payload.reason)
    return _ok(sales.get_sale(db, sale_id))


@app.post("/productos/calcular-precio", tags=["Productos"])
def quote_price(payload: PriceQuote, db: Session = Depends(get_db)) -> dict:
    return _ok(
        sales.quote_price(
            db, payload.product_id, payload.variant_id, payload.option_ids, payload.quantity
        )
    )


@app.get("/dashboard/sucursal/{branch_id}", tags=["Dashboard"])
def get_dashboard(branch_id: int, db: Session = Depends(get_db)) -> dict:
    return _ok(dashboard.build_dashboard(db, branch_id))


@app.get("/dashboard/sucursal/{branch_id}/ventas-diarias", tags=["Dashboard"])
def get_daily_sales(
    branch_id: int,
    fecha_desde: Optional[date] = Query(default=None),
    fecha_hasta: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    dashboard.get_branch(db, branch_id)
    start, end = _window(fecha_desde, fecha_hasta, dashboard.daily_window(utc_now()))
    return _ok(dashboard.revenue_summary(db, branch_id, start, end))


@app.get("/dashboard/sucursal/{branch_id}/tamales-mas-vendidos", tags=["Dashboard"])
def get_top_tamales(
    branch_id: int,
    fecha_desde: Optional[date] = Query(default=None),
    fecha_hasta: Optional[date] = Query(default=None),
    limite: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> dict:
    dashboard.get_branch(db, branch_id)
    start, end = _window(fecha_desde, fecha_hasta, dashboard.month_window(utc_now()))
    return _ok(dashboard.top_tamales(db, branch_id, start, end, limit=limite))


@app.get("/dashboard/sucursal/{branch_id}/bebidas-por-horario", tags=["Dashboard"])
def get_beverages_by_hour(
    branch_id: int,
    fecha_desde: Optional[date] = Query(default=None),
    fecha_hasta: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    dashboard.get_branch(db, branch_id)
    start, end = _window(fecha_desde, fecha_hasta, dashboard.daily_window(utc_now()))
    return _ok(dashboard.beverages_by_hour(db, branch_id, start, end))


@app.get("/dashboard/sucursal/{branch_id}/proporcion-picante", tags=["Dashboard"])
def get_spice_ratio(
    branch_id: int,
    fecha_desde: Optional[date] = Query(default=None),
    fecha_hasta: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    dashboard.get_branch(db, branch_id)
    start, end = _window(fecha_desde, fecha_hasta, dashboard.month_window(utc_now()))
    return _ok(dashboard.spice_ratio(db, branch_id, start, end))


@app.get("/dashboard/sucursal/{branch_id}/utilidades-por-linea", tags=["Dashboard"])
def get_category_profitability(
    branch_id: int,
    fecha_desde: Optional[date] = Query(default=None),
    fecha_hasta: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    dashboard.get_branch(db, branch_id)
    start, end = _window(fecha_desde, fecha_hasta, dashboard.month_window(utc_now()))
    return _ok(
        dashboard.category_profitability(db, branch_id, start, end),
        warnings=["estimated cost uses a fixed ratio of revenue"],
    )


@app.get("/dashboard/sucursal/{branch_id}/desperdicio", tags=["Dashboard"])
def get_waste(
    branch_id: int,
    fecha_desde: Optional[date] = Query(default=None),
    fecha_hasta: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    dashboard.get_branch(db, branch_id)
    start, end = _window(fecha_desde, fecha_hasta, dashboard.month_window(utc_now()))
    return _ok(dashboard.waste_summary(db, branch_id, start, end))


@app.get("/dashboard/sucursal/{branch_id}/inventario", tags=["Dashboard"])
def get_inventory_snapshot(branch_id: int, db: Session = Depends(get_db)) -> dict:
    dashboard.get_branch(db, branch_id)
    return _ok(dashboard.inventory_snapshot(db, branch_id))


@app.get("/dashboard/sucursal/{branch_id}/tendencia", tags=["Dashboard"])
def get_sales_trend(
    branch_id: int,
    dias: int = Query(default=settings.trend_days, ge=1, le=90),
    db: Session = Depends(get_db),
) -> dict:
    dashboard.get_branch(db, branch_id)
    return _ok(dashboard.sales_trend(db, branch_id, days=dias))


class ComboRecommendationInput(BaseModel):
    people: int = Field(gt=0)
    season: str = Field(min_length=1)
    budget: Optional[Decimal] = Field(default=None, ge=0)
    preferences: list[str] = Field(default_factory=list)


class MarketingInput(BaseModel):
    content_type: str = Field(min_length=1)
    occasion: Optional[str] = None
    products: list[str] = Field(default_factory=list)
    tone: str = "tradicional"


class ChatbotInput(BaseModel):
    message: str = Field(min_length=1)
    extra_context: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {"message": "¿Qué tamales tienen sin chile?", "extra_context": None}
        }
    }


@app.post("/llm/recomendar-combo", tags=["LLM"])
def recommend_combo(
    payload: ComboRecommendationInput,
    generator: ContentGenerator = Depends(get_content_generator),
) -> dict:
    return _ok(generator.recommend_combo(ComboRequest(**payload.model_dump())))


@app.post("/llm/analizar-ventas/{branch_id}", tags=["LLM"])
def analyze_sales(
    branch_id: int,
    db: Session = Depends(get_db),
    generator: ContentGenerator = Depends(get_content_generator),
) -> dict:
    branch = dashboard.get_branch(db, branch_id)
    now = utc_now()
    start, end = dashboard.month_window(now)
    periods = dashboard.beverages_by_hour(db, branch_id, start, end)["periods"]
    request = SalesAnalysisRequest(
        branch_name=branch.name,
        month=f"{now:%m/%Y}",
        days_analyzed=now.day,
        month_revenue=dashboard.revenue_summary(db, branch_id, start, end)["revenue"],
        top_tamales=[
            f"{item['name']}: {item['units']} unidades"
            for item in dashboard.top_tamales(db, branch_id, start, end, limit=5)
        ],
        beverages_by_period=[
            f"{period}: {totals['units']} unidades" for period, totals in periods.items()
        ],
        spice_percent=dashboard.spice_ratio(db, branch_id, start, end)["percent_with_spice"],
        main_waste=[
            f"{item['material']}: {item['quantity']} {item['unit']} (Q{item['cost']})"
            for item in dashboard.waste_summary(db, branch_id, start, end, limit=5)["items"]
        ],
    )
    return _ok({"branch_id": branch.id, "analysis": generator.analyze_sales(request)})


@app.get("/llm/alertas-inventario/{branch_id}", tags=["LLM"])
def inventory_alerts(
    branch_id: int,
    db: Session = Depends(get_db),
    generator: ContentGenerator = Depends(get_content_generator),
) -> dict:
    branch = dashboard.get_branch(db, branch_id)
    alerts = []
    for alert in ledger.list_stock_alerts(db, branch_id, limit=5):
        message = generator.inventory_alert(
            InventoryAlertRequest(
                branch_name=branch.name,
                material=alert["material"],
                quantity=alert["quantity"],
                min_stock=alert["min_stock"],
                unit=alert["unit"],
                average_cost=alert["average_cost"],
                critical=alert["alert_type"] == "OUT_OF_STOCK",
            )
        )
        alerts.append(
            {
                "material_id": alert["material_id"],
                "material": alert["material"],
                "alert_type": alert["alert_type"],
                "message": message,
            }
        )
    return _ok(alerts)


@app.post("/llm/generar-marketing", tags=["LLM"])
def generate_marketing(
    payload: MarketingInput,
    generator: ContentGenerator = Depends(get_content_generator),
) -> dict:
    return _ok({"content": generator.marketing_copy(MarketingRequest(**payload.model_dump()))})


@app.post("/llm/chatbot", tags=["LLM"])
def chatbot(
    payload: ChatbotInput,
    db: Session = Depends(get_db),
    generator: ContentGenerator = Depends(get_content_generator),
) -> dict:
    request = ChatbotRequest(
        message=payload.message,
        products=sales.active_products(db, limit=10),
        extra_context=payload.extra_context,
    )
    logger.info("chatbot message: %s", payload.message[:50])
    return _ok({"answer": generator.chatbot(request)})
