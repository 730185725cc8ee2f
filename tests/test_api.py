from fastapi.testclient import TestClient

from cazuela.config import Settings
from cazuela.content import ContentGenerator
from cazuela.demo_data import seed_demo_data
from cazuela.main import app, get_content_generator, get_db
from conftest import make_sessionmaker


def _make_client() -> tuple[TestClient, dict]:
    TestingSessionLocal = make_sessionmaker()
    with TestingSessionLocal() as db:
        ids = seed_demo_data(db)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_content_generator] = lambda: ContentGenerator(
        Settings(openrouter_api_key="")
    )
    return TestClient(app), ids


def test_health() -> None:
    client, _ = _make_client()
    with client:
        assert client.get("/health").json() == {"status": "healthy"}


def test_inventory_flow() -> None:
    client, ids = _make_client()
    with client:
        entry = client.post(
            "/inventario/entrada",
            json={
                "branch_id": ids["branch"],
                "material_id": ids["chile"],
                "quantity": 10,
                "unit_cost": 5.0,
                "reason": "Compra",
                "supplier": "Mercado La Terminal",
            },
        )
        assert entry.status_code == 200
        body = entry.json()
        assert body["data"]["movement_type"] == "ENTRY"
        assert body["data"]["stock_after"] == 10
        assert body["meta"]["request_id"].startswith("req_")

        exit_resp = client.post(
            "/inventario/salida",
            json={"branch_id": ids["branch"], "material_id": ids["harina"], "quantity": 30, "reason": "Producción"},
        )
        assert exit_resp.status_code == 200

        too_much = client.post(
            "/inventario/salida",
            json={"branch_id": ids["branch"], "material_id": ids["harina"], "quantity": 25, "reason": "Producción"},
        )
        assert too_much.status_code == 400
        assert "only 20" in too_much.json()["detail"]

        conflict = client.post(
            "/inventario/ajuste",
            json={
                "branch_id": ids["branch"],
                "material_id": ids["harina"],
                "expected_quantity": 50,
                "new_quantity": 18,
                "reason": "Conteo",
            },
        )
        assert conflict.status_code == 400

        waste = client.post(
            "/inventario/merma",
            json={
                "branch_id": ids["branch"],
                "material_id": ids["harina"],
                "quantity": 1,
                "reason": "Humedad",
                "waste_type": "DAÑO",
            },
        )
        assert waste.status_code == 200

        stock = client.get(f"/inventario/stock/sucursal/{ids['branch']}").json()["data"]
        harina = next(row for row in stock if row["material_id"] == ids["harina"])
        assert harina["quantity"] == 19
        assert harina["status"] == "LOW"

        movements = client.get(
            f"/inventario/movimientos/sucursal/{ids['branch']}", params={"tipo": "WASTE"}
        ).json()["data"]
        assert len(movements) == 1
        movement = client.get(f"/inventario/movimiento/{movements[0]['movement_id']}")
        assert movement.json()["data"]["reason"] == "Humedad"

        alerts = client.get(f"/inventario/alertas/sucursal/{ids['branch']}").json()["data"]
        assert [a["material"] for a in alerts][0] == "Hoja de plátano"


def test_inventory_validation_errors() -> None:
    client, ids = _make_client()
    with client:
        resp = client.post(
            "/inventario/salida",
            json={"branch_id": ids["branch"], "material_id": ids["harina"], "quantity": 0, "reason": "x"},
        )
        assert resp.status_code == 422
        assert client.get("/inventario/movimiento/999").status_code == 404
        assert client.get("/inventario/stock/sucursal/999").status_code == 404


def test_sale_flow() -> None:
    client, ids = _make_client()
    with client:
        created = client.post(
            "/ventas",
            json={
                "branch_id": ids["branch"],
                "payment_type": "CARD",
                "customer_name": "María",
                "lines": [
                    {
                        "product_id": ids["colorado"],
                        "variant_id": ids["colorado_media"],
                        "quantity": 1,
                        "option_ids": [ids["chapin"]],
                    },
                    {"combo_id": ids["fiesta"], "quantity": 1},
                ],
            },
        )
        assert created.status_code == 200
        sale = created.json()["data"]
        # 8.00 * 5.50 + 0.50 + 95.00
        assert sale["total"] == 139.5
        assert sale["discount"] == 0
        assert sale["status"] == "COMPLETED"
        assert len(sale["lines"]) == 2
        assert sale["lines"][0]["customizations"][0]["option"] == "Chapín"

        assert client.get(f"/ventas/{sale['sale_id']}").json()["data"]["sale_number"] == sale["sale_number"]

        listing = client.get(
            f"/ventas/sucursal/{ids['branch']}", params={"pagina": 1, "tamano_pagina": 10}
        ).json()["data"]
        assert listing["total"] == 1
        assert listing["total_pages"] == 1

        today = client.get(f"/ventas/sucursal/{ids['branch']}/hoy").json()["data"]
        assert [row["sale_id"] for row in today] == [sale["sale_id"]]

        cancelled = client.patch(f"/ventas/{sale['sale_id']}/cancelar", json={"reason": "Error"})
        assert cancelled.status_code == 200
        assert cancelled.json()["data"]["status"] == "CANCELLED"
        again = client.patch(f"/ventas/{sale['sale_id']}/cancelar", json={"reason": "Error"})
        assert again.status_code == 400


def test_sale_rejections() -> None:
    client, ids = _make_client()
    with client:
        bad_branch = client.post(
            "/ventas",
            json={"branch_id": 99, "lines": [{"combo_id": ids["fiesta"], "quantity": 1}]},
        )
        assert bad_branch.status_code == 400

        bad_line = client.post(
            "/ventas",
            json={
                "branch_id": ids["branch"],
                "lines": [{"product_id": ids["colorado"], "variant_id": ids["atol_vaso"], "quantity": 1}],
            },
        )
        assert bad_line.status_code == 400

        assert client.post("/ventas", json={"branch_id": ids["branch"], "lines": []}).status_code == 422
        assert client.get("/ventas/999").status_code == 404
        assert client.get(f"/ventas/sucursal/{ids['branch']}").json()["data"]["total"] == 0


def test_price_quote() -> None:
    client, ids = _make_client()
    with client:
        resp = client.post(
            "/productos/calcular-precio",
            json={
                "product_id": ids["atol"],
                "variant_id": ids["atol_jarro"],
                "option_ids": [ids["cacao_batido"], ids["miel"]],
                "quantity": 2,
            },
        )
        assert resp.status_code == 200
        quote = resp.json()["data"]
        # 7.00 * 2.50 + 2.00 + 1.00
        assert quote["unit_price"] == 20.5
        assert quote["final_price"] == 41.0


def test_dashboard_routes() -> None:
    client, ids = _make_client()
    with client:
        client.post(
            "/ventas",
            json={
                "branch_id": ids["branch"],
                "lines": [
                    {
                        "product_id": ids["colorado"],
                        "variant_id": ids["colorado_unidad"],
                        "quantity": 2,
                        "option_ids": [ids["sin_chile"]],
                    },
                    {
                        "product_id": ids["negro"],
                        "variant_id": ids["negro_unidad"],
                        "quantity": 3,
                        "option_ids": [ids["suave"]],
                    },
                ],
            },
        )
        full = client.get(f"/dashboard/sucursal/{ids['branch']}")
        assert full.status_code == 200
        assert full.json()["data"]["daily_sales"]["transactions"] == 1

        base = f"/dashboard/sucursal/{ids['branch']}"
        assert client.get(f"{base}/ventas-diarias").json()["data"]["revenue"] == 46.0
        assert client.get(f"{base}/proporcion-picante").json()["data"]["percent_with_spice"] == 60.0
        assert client.get(f"{base}/tamales-mas-vendidos").json()["data"][0]["name"] == "Tamal Negro (Unidad)"
        assert "periods" in client.get(f"{base}/bebidas-por-horario").json()["data"]
        profit = client.get(f"{base}/utilidades-por-linea").json()
        assert profit["data"][0]["category"] == "Tamales"
        assert profit["meta"]["warnings"]
        assert client.get(f"{base}/desperdicio").json()["data"]["items"] == []
        assert client.get(f"{base}/inventario").json()["data"]["total_materials"] == 6
        assert len(client.get(f"{base}/tendencia", params={"dias": 3}).json()["data"]) == 3

        assert client.get("/dashboard/sucursal/999").status_code == 404
        assert client.get(f"{base}/tendencia", params={"dias": 0}).status_code == 422


def test_branch_routes() -> None:
    client, ids = _make_client()
    with client:
        branch = client.get(f"/sucursal/{ids['branch']}").json()["data"]
        assert branch["name"] == "Cazuela Zona 1"
        state = client.get(f"/sucursal/{ids['branch']}/inventario/estado").json()["data"]
        assert state["out_of_stock"] == 1
        assert client.get("/sucursal/999").status_code == 404


def test_llm_routes_fall_back_without_provider() -> None:
    client, ids = _make_client()
    with client:
        combo = client.post("/llm/recomendar-combo", json={"people": 4, "season": "cuaresma"})
        assert combo.status_code == 200
        assert combo.json()["data"]["generado"] is False

        analysis = client.post(f"/llm/analizar-ventas/{ids['branch']}")
        assert analysis.json()["data"]["analysis"]

        alerts = client.get(f"/llm/alertas-inventario/{ids['branch']}").json()["data"]
        assert [a["alert_type"] for a in alerts] == ["OUT_OF_STOCK", "LOW_STOCK"]
        assert alerts[0]["message"].startswith("Stock bajo de Chile guaque")

        marketing = client.post("/llm/generar-marketing", json={"content_type": "post"})
        assert "Cazuela" in marketing.json()["data"]["content"]

        assert client.post("/llm/analizar-ventas/999").status_code == 404
        assert client.post("/llm/recomendar-combo", json={"people": 0, "season": "x"}).status_code == 422


def test_branch_sales_report_route() -> None:
    client, ids = _make_client()
    with client:
        client.post(
            "/ventas",
            json={
                "branch_id": ids["branch"],
                "lines": [
                    {
                        "product_id": ids["colorado"],
                        "variant_id": ids["colorado_unidad"],
                        "quantity": 2,
                        "option_ids": [ids["suave"]],
                    }
                ],
            },
        )
        resp = client.get(f"/sucursal/{ids['branch']}/reportes/ventas")
        assert resp.status_code == 200
        report = resp.json()["data"]
        assert report["sales_count"] == 1
        assert report["total_amount"] == 16.0
        assert report["average_ticket"] == 16.0
        assert len(report["per_day"]) == 1
        assert report["top_products"] == [{"name": "Tamal Colorado", "units": 2, "amount": 16.0}]

        past = client.get(
            f"/sucursal/{ids['branch']}/reportes/ventas",
            params={"fecha_desde": "2020-01-01", "fecha_hasta": "2020-01-31"},
        ).json()["data"]
        assert past["sales_count"] == 0
        assert past["start"].startswith("2020-01-01")
        assert client.get("/sucursal/999/reportes/ventas").status_code == 404


def test_chatbot_falls_back_without_provider() -> None:
    client, _ = _make_client()
    with client:
        resp = client.post("/llm/chatbot", json={"message": "¿Tienen tamales sin chile?"})
        assert resp.status_code == 200
        assert resp.json()["data"]["answer"].startswith("¡Hola! Gracias por contactar La Cazuela Chapina")
        assert client.post("/llm/chatbot", json={"message": ""}).status_code == 422
