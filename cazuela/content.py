"""Text generation through an OpenAI-compatible chat-completion endpoint.

Each public method returns usable content even when the provider is down: failures
are logged and replaced by a fixed fallback for that content type.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

import requests

from cazuela.config import Settings, settings as default_settings
from cazuela.errors import Unavailable

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Eres un asistente experto en La Cazuela Chapina, especialista en tamales "
    "guatemaltecos y bebidas tradicionales. Responde de manera útil, precisa y amigable."
)

FALLBACK_COMBO = {
    "nombre": "Combo Familiar Chapín",
    "descripcion": "Tamales surtidos con atol de elote para compartir.",
    "componentes": ["6 tamales surtidos", "1 jarro de atol de elote"],
    "precio_sugerido": None,
    "generado": False,
}
FALLBACK_ANALYSIS = (
    "El análisis automático no está disponible en este momento. "
    "Revise el dashboard de la sucursal para ver ventas, producto estrella y desperdicio."
)
FALLBACK_ALERT = "Stock bajo de {material}: {quantity} {unit} (mínimo {min_stock}). Programe reabastecimiento."
FALLBACK_MARKETING = "¡Visita La Cazuela Chapina y disfruta nuestros tamales y atoles tradicionales!"
FALLBACK_CHATBOT = (
    "¡Hola! Gracias por contactar La Cazuela Chapina. En este momento tengo dificultades "
    "técnicas, pero puedes llamarnos al 2234-5678 para hacer tu pedido. ¡Nuestros tamales "
    "y bebidas tradicionales te están esperando!"
)


@dataclass
class ComboRequest:
    people: int
    season: str
    budget: Optional[Decimal] = None
    preferences: list[str] = field(default_factory=list)


@dataclass
class SalesAnalysisRequest:
    branch_name: str
    month: str
    days_analyzed: int
    month_revenue: Decimal
    top_tamales: list[str] = field(default_factory=list)
    beverages_by_period: list[str] = field(default_factory=list)
    spice_percent: float = 0.0
    main_waste: list[str] = field(default_factory=list)


@dataclass
class InventoryAlertRequest:
    branch_name: str
    material: str
    quantity: Decimal
    min_stock: Decimal
    unit: str
    average_cost: Decimal
    critical: bool = False


@dataclass
class MarketingRequest:
    content_type: str
    occasion: Optional[str] = None
    products: list[str] = field(default_factory=list)
    tone: str = "tradicional"


@dataclass
class ChatbotRequest:
    message: str
    products: list[str] = field(default_factory=list)
    extra_context: Optional[str] = None


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items) if items else "- (sin datos)"


def _extract_json(text: str) -> dict[str, Any]:
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise Unavailable("combo recommendation is not JSON")
    try:
        value = json.loads(text[start : end + 1])
    except ValueError as exc:
        raise Unavailable(f"combo recommendation is not JSON: {exc}") from exc
    if not isinstance(value, dict):
        raise Unavailable("combo recommendation is not a JSON object")
    return value


class ContentGenerator:
    def __init__(self, settings: Settings = default_settings) -> None:
        self.settings = settings

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.openrouter_api_key}",
            "HTTP-Referer": self.settings.openrouter_referer,
            "X-Title": self.settings.openrouter_title,
            "Content-Type": "application/json",
        }

    def complete(self, prompt: str, max_tokens: int = 1500) -> str:
        """Send one chat completion and return the trimmed first choice.

        Raises ``Unavailable`` on any transport or payload problem. No retries.
        """
        if not self.settings.openrouter_api_key:
            raise Unavailable("OpenRouter API key is not configured")
        payload = {
            "model": self.settings.openrouter_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": 0.7,
        }
        url = f"{self.settings.openrouter_base_url.rstrip('/')}/chat/completions"
        try:
            resp = requests.post(
                url,
                headers=self._headers(),
                json=payload,
                timeout=self.settings.openrouter_timeout_seconds,
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise Unavailable(f"OpenRouter request failed: {exc}") from exc
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise Unavailable("OpenRouter returned no choices") from exc
        if not content or not content.strip():
            raise Unavailable("OpenRouter returned an empty answer")
        logger.debug("completion of %d chars from %s", len(content), self.settings.openrouter_model)
        return content.strip()

    def recommend_combo(self, request: ComboRequest) -> dict[str, Any]:
        budget = f"Q{request.budget}" if request.budget is not None else "sin límite"
        prompt = (
            f"Recomienda un combo de tamales y bebidas para {request.people} personas "
            f"en temporada de {request.season}. Presupuesto: {budget}.\n"
            f"Preferencias:\n{_bullets(request.preferences)}\n"
            "Responde solo con un objeto JSON con las claves nombre, descripcion, "
            "componentes (lista) y precio_sugerido (número)."
        )
        try:
            combo = _extract_json(self.complete(prompt))
        except Unavailable as exc:
            logger.warning("combo recommendation fell back: %s", exc.message)
            return dict(FALLBACK_COMBO, componentes=list(FALLBACK_COMBO["componentes"]))
        combo.setdefault("generado", True)
        return combo

    def analyze_sales(self, request: SalesAnalysisRequest) -> str:
        prompt = (
            f"Analiza las ventas de la sucursal {request.branch_name} para {request.month} "
            f"({request.days_analyzed} días).\n"
            f"Ventas totales del mes: Q{request.month_revenue}\n"
            f"Tamales más vendidos:\n{_bullets(request.top_tamales)}\n"
            f"Bebidas por horario:\n{_bullets(request.beverages_by_period)}\n"
            f"Proporción con picante: {request.spice_percent}%\n"
            f"Principales desperdicios:\n{_bullets(request.main_waste)}\n"
            "Entrega tendencias, oportunidades de mejora y tres acciones concretas."
        )
        try:
            return self.complete(prompt)
        except Unavailable as exc:
            logger.warning("sales analysis for %s fell back: %s", request.branch_name, exc.message)
            return FALLBACK_ANALYSIS

    def inventory_alert(self, request: InventoryAlertRequest) -> str:
        severity = "CRÍTICA (agotado)" if request.critical else "stock bajo"
        prompt = (
            f"Genera una alerta breve de inventario ({severity}) para la sucursal "
            f"{request.branch_name}.\nMateria prima: {request.material}\n"
            f"Stock actual: {request.quantity} {request.unit}; mínimo: {request.min_stock}\n"
            f"Costo promedio: Q{request.average_cost}\n"
            "Incluye prioridad, cantidad sugerida a comprar y productos afectados."
        )
        try:
            return self.complete(prompt, max_tokens=400)
        except Unavailable as exc:
            logger.warning("inventory alert for %s fell back: %s", request.material, exc.message)
            return FALLBACK_ALERT.format(
                material=request.material,
                quantity=request.quantity,
                unit=request.unit,
                min_stock=request.min_stock,
            )

    def marketing_copy(self, request: MarketingRequest) -> str:
        occasion = request.occasion or "cualquier día"
        prompt = (
            f"Escribe contenido de marketing tipo {request.content_type} con tono "
            f"{request.tone} para {occasion}.\nProductos a destacar:\n{_bullets(request.products)}\n"
            "Usa español guatemalteco y termina con un llamado a la acción."
        )
        try:
            return self.complete(prompt, max_tokens=600)
        except Unavailable as exc:
            logger.warning("marketing copy fell back: %s", exc.message)
            return FALLBACK_MARKETING

    def chatbot(self, request: ChatbotRequest) -> str:
        prompt = (
            "Eres el asistente virtual de La Cazuela Chapina, especialista en tamales y "
            "bebidas tradicionales guatemaltecas.\n"
            f"Productos disponibles:\n{_bullets(request.products)}\n"
        )
        if request.extra_context:
            prompt += f"Contexto adicional: {request.extra_context}\n"
        prompt += (
            f"Mensaje del cliente:\n{request.message}\n"
            "Responde de forma cálida y breve. Si preguntan por precios o disponibilidad usa "
            "la lista de productos; si no tienes el dato, ofrece contactar por teléfono."
        )
        try:
            return self.complete(prompt, max_tokens=500)
        except Unavailable as exc:
            logger.warning("chatbot answer fell back: %s", exc.message)
            return FALLBACK_CHATBOT
