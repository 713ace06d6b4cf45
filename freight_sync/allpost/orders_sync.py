from __future__ import annotations

import argparse
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Mapping
from zoneinfo import ZoneInfo

import sqlalchemy as sa
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from freight_sync.allpost.platform import ALLPOST_SLUG, AllPostContext, load_context
from freight_sync.allpost.quote_mapping import order_row
from freight_sync.allpost.quote_reconciler import QuoteReconciler
from freight_sync.common.cli_args import add_company_argument, bounded_int, range_value, resolve_date_range
from freight_sync.common.date_utils import extract_ymd, get_timezone
from freight_sync.common.db import insert_row, is_missing_relation, is_unique_violation, session_scope
from freight_sync.common.db_tables import freight_orders
from freight_sync.common.errors import MissingSchemaError
from freight_sync.common.http_client import HttpClient
from freight_sync.common.json_logger import JsonLogger, log_event
from freight_sync.common.normalize import as_record, ensure_array, pick_string
from freight_sync.common.run_log import RunLog

COMMAND = "freight-orders"
DEFAULT_DATA_TIPO = "dataCriacaoPedido"
DEFAULT_LIMIT = 100
MAX_LIMIT = 500


@dataclass
class OrdersSyncCounters:
    pages_fetched: int = 0
    fetched: int = 0
    inserted: int = 0
    skipped_existing: int = 0
    skipped_duplicate_on_insert: int = 0
    duplicates_in_response: int = 0
    invalid_rows: int = 0
    quotes_ensured: int = 0
    quotes_failed: int = 0


async def _existing_external_ids(
    session: AsyncSession, *, context: AllPostContext, external_ids: Iterable[str]
) -> set[str]:
    ids = list(external_ids)
    if not ids:
        return set()
    stmt = sa.select(freight_orders.c.external_id).where(
        freight_orders.c.company_id == context.company_id,
        freight_orders.c.platform_id == context.platform_id,
        freight_orders.c.external_id.in_(ids),
    )
    try:
        result = await session.execute(stmt)
    except DBAPIError as exc:
        await session.rollback()
        if is_missing_relation(exc):
            raise MissingSchemaError(freight_orders.name) from exc
        raise
    return set(result.scalars().all())


def _dedupe_page(
    rows: Iterable[Any], *, seen: set[str], counters: OrdersSyncCounters
) -> Dict[str, Mapping[str, Any]]:
    """Keep the first occurrence of each ``_id`` in this page and earlier pages."""

    by_external_id: Dict[str, Mapping[str, Any]] = {}
    for raw in rows:
        order = as_record(raw)
        external_id = pick_string(order, "_id") if order is not None else None
        if order is None or external_id is None:
            counters.invalid_rows += 1
            continue
        if external_id in by_external_id or external_id in seen:
            counters.duplicates_in_response += 1
            continue
        by_external_id[external_id] = order
    return by_external_id


async def _store_page(
    session: AsyncSession,
    orders: Mapping[str, Mapping[str, Any]],
    *,
    context: AllPostContext,
    reconciler: QuoteReconciler,
    counters: OrdersSyncCounters,
    logger: JsonLogger,
    tz: ZoneInfo,
) -> None:
    existing = await _existing_external_ids(session, context=context, external_ids=orders.keys())
    for external_id, order in orders.items():
        if external_id in existing:
            counters.skipped_existing += 1
            continue

        quote_id = pick_string(order, "idCotacao")
        if quote_id:
            try:
                await reconciler.ensure_quote_exists(quote_id)
            except Exception as exc:
                await session.rollback()
                reconciler.record_failure(quote_id, exc)
                log_event(
                    logger=logger,
                    phase="quotes",
                    status="warn",
                    message="Could not reconcile quote referenced by order",
                    quote_id=quote_id,
                    external_id=external_id,
                    error=str(exc),
                )

        row = order_row(
            order,
            company_id=context.company_id,
            platform_id=context.platform_id,
            external_id=external_id,
            tz=tz,
        )
        try:
            await insert_row(session, freight_orders, row)
        except DBAPIError as exc:
            if is_missing_relation(exc):
                raise MissingSchemaError(freight_orders.name) from exc
            if is_unique_violation(exc):
                counters.skipped_duplicate_on_insert += 1
                continue
            raise
        counters.inserted += 1


async def sync_freight_orders(
    *,
    database_url: str,
    company_id: int,
    start_date: str,
    end_date: str,
    base_url: str,
    logger: JsonLogger,
    data_tipo: str = DEFAULT_DATA_TIPO,
    limit: int = DEFAULT_LIMIT,
    http_client: HttpClient | None = None,
    timeout: float = 60.0,
    tz: ZoneInfo | None = None,
) -> OrdersSyncCounters:
    """Ingest AllPost orders for one company and one date window.

    Pages are fetched and stored strictly in order until the vendor returns
    an empty page. Re-running the same window inserts nothing new: rows that
    already exist are skipped by one existence query per page, and unique
    violations at insert time are counted instead of raised.
    """

    logger = logger.bind(command=COMMAND, company_id=company_id)
    zone = tz or get_timezone()
    counters = OrdersSyncCounters()
    periodo = f"{start_date}TO{end_date}"
    run_log = RunLog(
        database_url=database_url,
        company_id=company_id,
        platform_id=None,
        command=COMMAND,
        logger=logger,
        filter_date=extract_ymd(start_date),
    )
    reconciler: QuoteReconciler | None = None

    def _payload() -> Dict[str, Any]:
        if reconciler is not None:
            counters.quotes_ensured = len(reconciler.confirmed_ids)
            counters.quotes_failed = len(reconciler.failed_ids)
        return {
            "company": company_id,
            "platform": {"id": run_log.platform_id, "slug": ALLPOST_SLUG},
            "command": COMMAND,
            "data_tipo": data_tipo,
            "start_date": start_date,
            "end_date": end_date,
            "periodo": periodo,
            **asdict(counters),
        }

    try:
        context = await load_context(database_url, company_id)
        run_log.platform_id = context.platform_id
        token = context.require_orders_token()
        await run_log.start(_payload())

        orders_url = f"{base_url.rstrip('/')}/pedidos/"
        client = http_client or HttpClient(timeout=timeout, logger=logger)
        async with client, session_scope(database_url) as session:
            reconciler = QuoteReconciler(
                session=session,
                http=client,
                context=context,
                quote_url=f"{base_url.rstrip('/')}/cotacao",
                logger=logger,
                tz=zone,
            )
            seen: set[str] = set()
            page = 1
            while True:
                params = {"dataTipo": data_tipo, "periodo": periodo, "pagina": page, "limite": limit}
                result = await client.fetch_json(orders_url, token, params=params)
                result.raise_for_status()
                rows = ensure_array(result.json)
                counters.fetched += len(rows)
                log_event(
                    logger=logger,
                    phase="fetch",
                    message="Fetched orders page",
                    page=page,
                    items=len(rows),
                    total_fetched=counters.fetched,
                )
                if not rows:
                    break
                counters.pages_fetched += 1

                orders = _dedupe_page(rows, seen=seen, counters=counters)
                await _store_page(
                    session,
                    orders,
                    context=context,
                    reconciler=reconciler,
                    counters=counters,
                    logger=logger,
                    tz=zone,
                )
                seen.update(orders.keys())
                page += 1
    except Exception as exc:
        logger.error(phase="orders", message="Freight orders sync failed", error=str(exc))
        await run_log.fail(_payload(), exc)
        raise

    payload = _payload()
    await run_log.finish(payload)
    log_event(logger=logger, phase="orders", message="Freight orders sync complete", **payload)
    return counters


def configure_parser(parser: argparse.ArgumentParser) -> None:
    add_company_argument(parser, required=True)
    parser.add_argument("--start-date", "--startDate", dest="start_date", type=range_value, default=None)
    parser.add_argument("--end-date", "--endDate", dest="end_date", type=range_value, default=None)
    parser.add_argument("--from", dest="legacy_start", type=range_value, default=None, help="Deprecated; use --start-date")
    parser.add_argument("--to", dest="legacy_end", type=range_value, default=None, help="Deprecated; use --end-date")
    parser.add_argument("--data-tipo", "--dataTipo", dest="data_tipo", default=DEFAULT_DATA_TIPO)
    parser.add_argument("--limit", dest="limit", type=bounded_int(1, MAX_LIMIT), default=DEFAULT_LIMIT)


async def run_from_args(args: argparse.Namespace, *, logger: JsonLogger) -> OrdersSyncCounters:
    from freight_sync.config import config

    start_date, end_date = resolve_date_range(
        start=args.start_date,
        end=args.end_date,
        legacy_start=args.legacy_start,
        legacy_end=args.legacy_end,
        logger=logger,
    )
    return await sync_freight_orders(
        database_url=config.database_url,
        company_id=args.company,
        start_date=start_date,
        end_date=end_date,
        base_url=config.allpost_api_base_url,
        logger=logger,
        data_tipo=args.data_tipo,
        limit=args.limit,
        timeout=config.http_timeout_seconds,
    )
