from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from cazuela import sales
from cazuela.errors import InvalidBranch, InvalidInput, InvalidLine, NotFound
from cazuela.models import AttributeOption, PaymentType, Product, Sale, SaleLine, SaleLineOption, SaleStatus
from cazuela.sales import LineRequest
from conftest import NOW


def _count(db, model) -> int:
    return db.scalar(select(func.count(model.id)))


def _tamal_line(ids, quantity=2, options=("chapin", "maiz_amarillo")) -> LineRequest:
    return LineRequest(
        product_id=ids["colorado"],
        variant_id=ids["colorado_unidad"],
        quantity=quantity,
        option_ids=[ids[key] for key in options],
    )


def test_register_sale_prices_lines_and_totals(db, ids) -> None:
    sale = sales.register_sale(
        db,
        ids["branch"],
        PaymentType.CASH,
        [_tamal_line(ids), LineRequest(combo_id=ids["fiesta"], quantity=1)],
        customer_name="Luis",
        now=NOW,
    )
    assert sale.sale_number == "01202405150001"
    assert sale.status == SaleStatus.COMPLETED
    assert sale.discount == Decimal("0")
    # 2 x (8.00 + 0.50) + 95.00
    assert sale.subtotal == Decimal("112.00")
    assert sale.total == Decimal("112.00")

    lines = db.scalars(select(SaleLine).where(SaleLine.sale_id == sale.id).order_by(SaleLine.id)).all()
    assert [line.unit_price for line in lines] == [Decimal("8.50"), Decimal("95.00")]
    assert sum(line.subtotal for line in lines) == sale.total
    assert _count(db, SaleLineOption) == 2


def test_sale_numbers_follow_daily_sequence(db, ids) -> None:
    first = sales.register_sale(db, ids["branch"], None, [_tamal_line(ids)], now=NOW)
    second = sales.register_sale(db, ids["branch"], None, [_tamal_line(ids)], now=NOW)
    other = sales.register_sale(db, ids["branch_2"], None, [_tamal_line(ids)], now=NOW)
    tomorrow = sales.register_sale(
        db, ids["branch"], None, [_tamal_line(ids)], now=NOW + timedelta(days=1)
    )
    assert first.sale_number == "01202405150001"
    assert second.sale_number == "01202405150002"
    assert other.sale_number == "02202405150001"
    assert tomorrow.sale_number == "01202405160001"


def test_option_price_is_snapshotted(db, ids) -> None:
    sale = sales.register_sale(db, ids["branch"], None, [_tamal_line(ids, quantity=1)], now=NOW)
    db.get(AttributeOption, ids["chapin"]).extra_price = Decimal("3.00")
    db.commit()
    detail = sales.get_sale(db, sale.id)
    chosen = {c["option"]: c["extra_price"] for c in detail["lines"][0]["customizations"]}
    assert chosen == {"Chapín": Decimal("0.50"), "Maíz amarillo": Decimal("0.00")}
    assert detail["lines"][0]["unit_price"] == Decimal("8.50")


@pytest.mark.parametrize(
    "line_factory",
    [
        lambda ids: LineRequest(product_id=ids["colorado"], variant_id=ids["negro_unidad"], quantity=1),
        lambda ids: LineRequest(product_id=ids["colorado"], quantity=1),
        lambda ids: LineRequest(quantity=1),
        lambda ids: LineRequest(
            combo_id=ids["fiesta"], product_id=ids["colorado"], variant_id=ids["colorado_unidad"], quantity=1
        ),
        lambda ids: LineRequest(combo_id=ids["fiesta"], quantity=1, option_ids=[ids["chapin"]]),
        lambda ids: LineRequest(combo_id=999, quantity=1),
        lambda ids: LineRequest(product_id=ids["colorado"], variant_id=ids["colorado_unidad"], quantity=0),
        lambda ids: LineRequest(
            product_id=ids["colorado"], variant_id=ids["colorado_unidad"], quantity=1, option_ids=[999]
        ),
    ],
)
def test_invalid_lines_are_rejected(db, ids, line_factory) -> None:
    with pytest.raises(InvalidLine):
        sales.register_sale(db, ids["branch"], None, [line_factory(ids)], now=NOW)
    assert _count(db, Sale) == 0


def test_inactive_option_is_rejected(db, ids) -> None:
    db.get(AttributeOption, ids["chapin"]).is_active = False
    db.commit()
    with pytest.raises(InvalidLine):
        sales.register_sale(db, ids["branch"], None, [_tamal_line(ids)], now=NOW)


def test_failure_on_later_line_leaves_nothing_behind(db, ids) -> None:
    lines = [_tamal_line(ids), LineRequest(combo_id=999, quantity=1)]
    with pytest.raises(InvalidLine):
        sales.register_sale(db, ids["branch"], None, lines, now=NOW)
    assert _count(db, Sale) == 0
    assert _count(db, SaleLine) == 0
    assert _count(db, SaleLineOption) == 0


def test_invalid_branch_and_empty_sale(db, ids) -> None:
    with pytest.raises(InvalidBranch):
        sales.register_sale(db, 99, None, [_tamal_line(ids)], now=NOW)
    with pytest.raises(InvalidInput):
        sales.register_sale(db, ids["branch"], None, [], now=NOW)


def test_quote_price(db, ids) -> None:
    quote = sales.quote_price(db, ids["negro"], ids["negro_docena"], [ids["masa_arroz"]], 2)
    assert quote["base_price"] == Decimal("100.00")
    assert quote["customization_price"] == Decimal("1.00")
    assert quote["unit_price"] == Decimal("101.00")
    assert quote["final_price"] == Decimal("202.00")
    assert quote["customizations"][0]["attribute_type"] == "Masa"
    with pytest.raises(InvalidLine):
        sales.quote_price(db, ids["negro"], ids["atol_vaso"])


def test_list_sales_paginates_newest_first(db, ids) -> None:
    created = [
        sales.register_sale(db, ids["branch"], None, [_tamal_line(ids)], now=NOW + timedelta(minutes=i))
        for i in range(3)
    ]
    page_one = sales.list_sales(db, ids["branch"], page=1, page_size=2)
    assert page_one["total"] == 3
    assert page_one["total_pages"] == 2
    assert [s["sale_id"] for s in page_one["items"]] == [created[2].id, created[1].id]
    assert page_one["items"][0]["item_count"] == 2

    page_two = sales.list_sales(db, ids["branch"], page=2, page_size=2)
    assert [s["sale_id"] for s in page_two["items"]] == [created[0].id]

    empty = sales.list_sales(db, ids["branch"], date_from=(NOW + timedelta(days=1)).date())
    assert empty["total"] == 0 and empty["total_pages"] == 0


def test_list_sales_for_day(db, ids) -> None:
    sales.register_sale(db, ids["branch"], None, [_tamal_line(ids)], now=NOW - timedelta(days=1))
    today = sales.register_sale(db, ids["branch"], None, [_tamal_line(ids)], now=NOW)
    rows = sales.list_sales_for_day(db, ids["branch"], now=NOW)
    assert [row["sale_id"] for row in rows] == [today.id]
    assert rows[0]["branch"] == "Cazuela Zona 1"


def test_summaries_sum_quantities_across_lines(db, ids) -> None:
    sale = sales.register_sale(
        db,
        ids["branch"],
        None,
        [_tamal_line(ids, quantity=3), LineRequest(combo_id=ids["fiesta"], quantity=2)],
        now=NOW,
    )
    listed = sales.list_sales(db, ids["branch"])["items"]
    assert [(row["sale_id"], row["item_count"]) for row in listed] == [(sale.id, 5)]
    assert sales.list_sales_for_day(db, ids["branch"], now=NOW)[0]["item_count"] == 5


def test_repeated_option_is_priced_once(db, ids) -> None:
    sale = sales.register_sale(
        db, ids["branch"], None, [_tamal_line(ids, quantity=1, options=("chapin", "chapin"))], now=NOW
    )
    assert sale.total == Decimal("8.50")
    assert _count(db, SaleLineOption) == 1
    quote = sales.quote_price(db, ids["colorado"], ids["colorado_unidad"], [ids["chapin"], ids["chapin"]])
    assert quote["unit_price"] == Decimal("8.50")
    assert len(quote["customizations"]) == 1


def test_cancel_sale(db, ids) -> None:
    sale = sales.register_sale(db, ids["branch"], None, [_tamal_line(ids)], now=NOW)
    cancelled = sales.cancel_sale(db, sale.id, "Cliente se retiró", now=NOW + timedelta(hours=1))
    assert cancelled.status == SaleStatus.CANCELLED
    assert cancelled.cancel_reason == "Cliente se retiró"
    with pytest.raises(InvalidInput):
        sales.cancel_sale(db, sale.id, "otra vez", now=NOW)
    with pytest.raises(NotFound):
        sales.cancel_sale(db, 999, "x", now=NOW)


def test_cancel_rejects_previous_day(db, ids) -> None:
    sale = sales.register_sale(db, ids["branch"], None, [_tamal_line(ids)], now=NOW - timedelta(days=1))
    with pytest.raises(InvalidInput):
        sales.cancel_sale(db, sale.id, "tarde", now=NOW)
    assert db.get(Sale, sale.id).status == SaleStatus.COMPLETED


def test_get_sale_missing(db, ids) -> None:
    with pytest.raises(NotFound):
        sales.get_sale(db, 42)


def test_active_products_lists_catalog_lines(db, ids) -> None:
    db.get(Product, ids["chuchito"]).is_active = False
    db.commit()
    assert sales.active_products(db) == [
        "Tamal Colorado (Tamales) - Q8.00",
        "Tamal Negro (Tamales) - Q10.00",
        "Atol (Bebidas) - Q7.00",
    ]
    assert len(sales.active_products(db, limit=1)) == 1
