"""Map AllPost quote and order payloads onto table rows.

Vendor keys are Portuguese; column names follow the ``freight_*`` tables.
"""
from __future__ import annotations

import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping
from zoneinfo import ZoneInfo

from freight_sync.allpost.best_option import candidates_from_payload, select_best_option
from freight_sync.common.date_utils import to_local_date_and_time
from freight_sync.common.normalize import (
    as_record,
    ensure_array,
    max_date,
    max_number,
    normalize_order_code,
    parse_date,
    parse_partner_date,
    pick_boolean,
    pick_number,
    pick_numeric_string,
    pick_string,
    to_decimal,
)

Row = Dict[str, Any]


def _decimal(obj: Mapping[str, Any], key: str) -> Decimal | None:
    number = pick_number(obj, key)
    return to_decimal(number if number is not None else pick_string(obj, key))


def _int(obj: Mapping[str, Any], key: str) -> int | None:
    number = pick_number(obj, key)
    if number is None or not math.isfinite(number):
        return None
    return int(number)


def quote_parts(payload: Mapping[str, Any]) -> tuple[Mapping[str, Any], Mapping[str, Any], Mapping[str, Any], Mapping[str, Any]] | None:
    """Return ``(retorno, destino, dadosEntrada, carrinho)`` or None without ``retorno``."""

    partner_return = as_record(payload.get("retorno"))
    if partner_return is None:
        return None
    destination = as_record(partner_return.get("destino")) or {}
    quote_input = as_record(payload.get("dadosEntrada")) or {}
    cart = as_record(quote_input.get("carrinho")) or {}
    return partner_return, destination, quote_input, cart


def quote_row(
    payload: Mapping[str, Any],
    *,
    company_id: int,
    platform_id: int,
    fallback_quote_id: str | None = None,
    tz: ZoneInfo | None = None,
) -> Row | None:
    parts = quote_parts(payload)
    if parts is None:
        return None
    partner_return, destination, quote_input, cart = parts
    quote_id = pick_string(partner_return, "idCotacao") or fallback_quote_id
    if not quote_id:
        return None

    quoted_at = parse_date(pick_string(partner_return, "dataCotacao"), tz=tz)
    local_date, local_time = to_local_date_and_time(quoted_at, tz)
    best = select_best_option(candidates_from_payload(payload.get("opcoesEntrega")))

    return {
        "company_id": company_id,
        "platform_id": platform_id,
        "quote_id": quote_id,
        "partner_platform": pick_string(partner_return, "plataforma"),
        "external_quote_id": pick_string(partner_return, "idCotacaoExterno"),
        "quoted_at": quoted_at,
        "date": local_date,
        "time": local_time,
        "best_deadline": int(best.deadline) if best.deadline is not None else None,
        "best_freight_cost": to_decimal(best.freight_cost),
        "destination_zip": pick_string(destination, "cep"),
        "destination_state": pick_string(destination, "uf"),
        "destination_state_name": pick_string(destination, "ufExtenso"),
        "destination_state_region": pick_string(destination, "regiaoUf"),
        "destination_country_region": pick_string(destination, "regiaoPais"),
        "channel": pick_string(quote_input, "canal"),
        "store_name": pick_string(quote_input, "nomeLoja"),
        "invoice_value": _decimal(cart, "valorNF"),
        "total_weight": _decimal(cart, "totalPeso"),
        "total_volume": _decimal(cart, "totalCubagem"),
        "total_packages": _int(cart, "totalVolumes"),
        "store_limit": _int(payload, "limiteCotacaoLoja"),
        "channel_limit": _int(payload, "limiteCotacaoCanal"),
        "timings": payload.get("tempo"),
        "channel_config": payload.get("configCanal"),
        "input": payload.get("dadosEntrada"),
        "category_restrictions": payload.get("restricaoCategoria"),
        "delivery_options": payload.get("opcoesEntrega"),
        "raw": dict(payload),
    }


def option_row(option: Mapping[str, Any], *, company_id: int, freight_quote_id: int, line_index: int) -> Row:
    freight = as_record(option.get("dadosFrete")) or {}
    deadlines = as_record(option.get("prazoEntrega")) or {}
    return {
        "company_id": company_id,
        "freight_quote_id": freight_quote_id,
        "line_index": line_index,
        "shipping_value": _decimal(option, "freteCobrar"),
        "shipping_cost": _decimal(option, "freteReal"),
        "carrier": pick_string(freight, "transportadoraNome"),
        "warehouse_uf": pick_string(freight, "filialUF"),
        "warehouse_city": pick_string(freight, "filialCidade"),
        "warehouse_name": pick_string(freight, "filialNome"),
        "shipping_name": pick_string(freight, "metodoEnvioNome"),
        "carrier_deadline": _int(deadlines, "prazoTransportadora"),
        "holiday_deadline": _int(deadlines, "prazoEntregaFeriado"),
        "warehouse_deadline": _int(deadlines, "prazoAdicionalFilial"),
        "deadline": _int(option, "prazoEntregaTotal"),
        "has_stock": pick_boolean(option.get("possuiEstoque")),
        "raw": dict(option),
    }


def option_rows(options: Any, *, company_id: int, freight_quote_id: int) -> list[Row]:
    """One row per ``opcoesEntrega`` entry; the array position is the line index."""

    rows: list[Row] = []
    for index, raw in enumerate(ensure_array(options)):
        option = as_record(raw)
        if option is None:
            continue
        rows.append(option_row(option, company_id=company_id, freight_quote_id=freight_quote_id, line_index=index))
    return rows


def item_row(
    item: Mapping[str, Any],
    *,
    company_id: int,
    freight_quote_id: int,
    line_index: int,
    product_id: int | None,
) -> Row:
    return {
        "company_id": company_id,
        "quote_id": freight_quote_id,
        "product_id": product_id,
        "line_index": line_index,
        "partner_sku": pick_string(item, "sku"),
        "partner_sku_id": pick_numeric_string(item, "idSku"),
        "quantity": _int(item, "qt"),
        "price": _decimal(item, "preco"),
        "volumes": _int(item, "volumes"),
        "stock": _int(item, "estoque"),
        "stock_product": _int(item, "estoqueProduto"),
        "category": pick_string(item, "categoria"),
        "aggregator": pick_string(item, "agrupador"),
        "partner_original_sku": pick_string(item, "skuOriginal"),
        "channel_price_from": _decimal(item, "precoCanalDe"),
        "registration_price": _decimal(item, "precoCadastro"),
        "channel_price_to": _decimal(item, "precoCanalPor"),
        "raw": dict(item),
    }


def shipment_maxima(shipments: Any, *, tz: ZoneInfo | None = None) -> tuple[datetime | None, datetime | None, int | float | None]:
    """Greatest estimated date, delivery date and quote delta across ``envio[]``."""

    estimated: datetime | None = None
    delivered: datetime | None = None
    delta: int | float | None = None
    for raw in ensure_array(shipments):
        shipment = as_record(raw)
        if shipment is None:
            continue
        estimated = max_date(estimated, parse_partner_date(pick_string(shipment, "prazoEntregaPedido"), tz=tz))
        delivered = max_date(delivered, parse_partner_date(pick_string(shipment, "dataEntrega"), tz=tz))
        delta = max_number(delta, pick_number(shipment, "diferencaPedidoCotacao"))
    return estimated, delivered, delta


def order_row(
    order: Mapping[str, Any],
    *,
    company_id: int,
    platform_id: int,
    external_id: str,
    tz: ZoneInfo | None = None,
) -> Row:
    address = as_record(order.get("enderecoEntrega")) or {}
    estimated, delivered, delta = shipment_maxima(order.get("envio"), tz=tz)
    order_date = parse_partner_date(pick_string(order, "data"), tz=tz)
    local_date, local_time = to_local_date_and_time(order_date, tz)
    return {
        "company_id": company_id,
        "platform_id": platform_id,
        "external_id": external_id,
        "order_date": order_date,
        "date": local_date,
        "time": local_time,
        "order_code": normalize_order_code(pick_string(order, "numeroPedido")),
        "store_name": pick_string(order, "nomeLoja"),
        "quote_id": pick_string(order, "idCotacao"),
        "channel": pick_string(order, "canal"),
        "freight_amount": _decimal(order, "valorFreteCobrado"),
        "freight_cost": _decimal(order, "valorFreteReal"),
        "delta_quote": _decimal(order, "valorFreteDiferencaPedidoCotacao"),
        "address": pick_string(address, "endereco"),
        "address_zip": pick_string(address, "cep"),
        "address_state": pick_string(address, "uf"),
        "address_city": pick_string(address, "cidade"),
        "address_neighborhood": pick_string(address, "bairro"),
        "address_number": pick_string(address, "numero"),
        "address_complement": pick_string(address, "referencia"),
        "estimated_delivery_date": estimated,
        "delivery_date": delivered,
        "delta_quote_delivery_date": to_decimal(delta),
        "raw": dict(order),
    }
