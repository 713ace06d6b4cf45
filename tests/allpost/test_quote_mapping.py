from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from conftest import quote_payload
from freight_sync.allpost.best_option import make_candidate, select_best_option
from freight_sync.allpost.quote_mapping import item_row, option_rows, order_row, quote_row, shipment_maxima

SAO_PAULO = ZoneInfo("America/Sao_Paulo")


def test_quote_row_maps_vendor_fields() -> None:
    row = quote_row(quote_payload("Q1"), company_id=1, platform_id=2, tz=SAO_PAULO)

    assert row is not None
    assert row["quote_id"] == "Q1"
    assert row["company_id"] == 1
    assert row["platform_id"] == 2
    assert row["partner_platform"] == "vtex"
    assert row["external_quote_id"] == "ext-Q1"
    assert row["date"] == "2024-03-10"
    assert row["time"] == "15:30:00"
    assert row["destination_state"] == "SP"
    assert row["channel"] == "site"
    assert row["store_name"] == "Loja Centro"
    assert row["invoice_value"] == Decimal("199.9")
    assert row["total_weight"] == Decimal("2.5")
    assert row["total_packages"] == 2
    assert row["best_deadline"] == 5
    assert row["best_freight_cost"] == Decimal("25.5")
    assert row["raw"]["retorno"]["idCotacao"] == "Q1"


def test_quote_row_requires_retorno_and_an_id() -> None:
    assert quote_row({"dadosEntrada": {}}, company_id=1, platform_id=2, tz=SAO_PAULO) is None
    assert quote_row({"retorno": {}}, company_id=1, platform_id=2, tz=SAO_PAULO) is None
    fallback = quote_row({"retorno": {}}, company_id=1, platform_id=2, fallback_quote_id="Q9", tz=SAO_PAULO)
    assert fallback is not None
    assert fallback["quote_id"] == "Q9"
    assert fallback["best_deadline"] is None
    assert fallback["best_freight_cost"] is None
    assert fallback["date"] is None


def test_option_rows_use_array_position_as_line_index() -> None:
    options = quote_payload("Q1")["opcoesEntrega"]
    rows = option_rows([options[0], "junk", options[1]], company_id=1, freight_quote_id=10)

    assert [row["line_index"] for row in rows] == [0, 2]
    first = rows[0]
    assert first["shipping_value"] == Decimal("25.5")
    assert first["shipping_cost"] == Decimal("20")
    assert first["carrier"] == "Rapida"
    assert first["shipping_name"] == "Expresso"
    assert first["carrier_deadline"] == 5
    assert first["deadline"] == 6
    assert first["has_stock"] is True
    assert rows[1]["has_stock"] is None


def test_item_row() -> None:
    row = item_row(
        {"sku": "253-1657", "idSku": "1657", "qt": "2", "preco": "99.95", "categoria": "Moveis"},
        company_id=1,
        freight_quote_id=10,
        line_index=0,
        product_id=7,
    )
    assert row["quote_id"] == 10
    assert row["product_id"] == 7
    assert row["partner_sku"] == "253-1657"
    assert row["partner_sku_id"] == "1657"
    assert row["quantity"] == 2
    assert row["price"] == Decimal("99.95")
    assert row["category"] == "Moveis"


def test_shipment_maxima_take_greatest_values() -> None:
    estimated, delivered, delta = shipment_maxima(
        [
            {"prazoEntregaPedido": "2024-05-10 00:00:00", "dataEntrega": None, "diferencaPedidoCotacao": 2},
            {"prazoEntregaPedido": "2024-05-12 00:00:00", "dataEntrega": "2024-05-11 10:00:00", "diferencaPedidoCotacao": "-1"},
            "junk",
        ],
        tz=SAO_PAULO,
    )
    assert estimated == datetime(2024, 5, 12, tzinfo=SAO_PAULO)
    assert delivered == datetime(2024, 5, 11, 10, tzinfo=SAO_PAULO)
    assert delta == 2
    assert shipment_maxima(None, tz=SAO_PAULO) == (None, None, None)


def test_shipment_maxima_skip_missing_values_per_axis() -> None:
    estimated, delivered, delta = shipment_maxima(
        [
            {"prazoEntregaPedido": None, "dataEntrega": "2024-01-02"},
            {"prazoEntregaPedido": "2024-01-01", "dataEntrega": None},
        ],
        tz=SAO_PAULO,
    )
    assert estimated == datetime(2024, 1, 1, tzinfo=SAO_PAULO)
    assert delivered == datetime(2024, 1, 2, tzinfo=SAO_PAULO)
    assert delta is None


def test_insert_time_best_option_matches_stored_options() -> None:
    # Raw deadlines would favour the second option; stored whole days favour the first.
    payload = quote_payload(
        "Q1",
        options=[
            {"freteCobrar": "10", "prazoEntrega": {"prazoTransportadora": 2.9}},
            {"freteCobrar": "12", "prazoEntrega": {"prazoTransportadora": 2}},
        ],
    )
    row = quote_row(payload, company_id=1, platform_id=2, tz=SAO_PAULO)
    stored = option_rows(payload["opcoesEntrega"], company_id=1, freight_quote_id=10)
    rebuilt = select_best_option(
        make_candidate(option["carrier_deadline"], option["shipping_value"]) for option in stored
    )

    assert row is not None
    assert [option["carrier_deadline"] for option in stored] == [2, 2]
    assert row["best_deadline"] == rebuilt.deadline == 2
    assert row["best_freight_cost"] == Decimal(rebuilt.freight_cost) == Decimal("10")


def test_order_row_maps_vendor_fields() -> None:
    order = {
        "_id": "abc",
        "data": "2024-05-01 22:15:00",
        "numeroPedido": "VTEX-998877",
        "nomeLoja": "Loja Centro",
        "idCotacao": "Q1",
        "canal": "site",
        "valorFreteCobrado": "30.00",
        "valorFreteReal": 21.5,
        "valorFreteDiferencaPedidoCotacao": "4.5",
        "enderecoEntrega": {"cep": "01310100", "uf": "SP", "cidade": "São Paulo", "referencia": "apto 3"},
        "envio": [{"prazoEntregaPedido": "2024-05-08 00:00:00", "diferencaPedidoCotacao": 1}],
    }
    row = order_row(order, company_id=1, platform_id=2, external_id="abc", tz=SAO_PAULO)

    assert row["external_id"] == "abc"
    assert row["order_date"] == datetime(2024, 5, 1, 22, 15, tzinfo=SAO_PAULO)
    assert row["date"] == "2024-05-01"
    assert row["time"] == "22:15:00"
    assert row["order_code"] == "998877"
    assert row["quote_id"] == "Q1"
    assert row["freight_amount"] == Decimal("30")
    assert row["freight_cost"] == Decimal("21.5")
    assert row["delta_quote"] == Decimal("4.5")
    assert row["address_city"] == "São Paulo"
    assert row["address_complement"] == "apto 3"
    assert row["estimated_delivery_date"] == datetime(2024, 5, 8, tzinfo=SAO_PAULO)
    assert row["delivery_date"] is None
    assert row["delta_quote_delivery_date"] == Decimal("1")
