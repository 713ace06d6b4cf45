from __future__ import annotations

import argparse
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Mapping
from zoneinfo import ZoneInfo

import sqlalchemy as sa
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from freight_sync.allpost.platform import ALLPOST_SLUG, AllPostContext, load_context
from freight_sync.allpost.products import ProductLookup
from freight_sync.allpost.quote_mapping import quote_row
from freight_sync.allpost.quote_reconciler import store_quote_children
from freight_sync.common.cli_args import add_company_argument
from freight_sync.common.date_utils import get_timezone
from freight_sync.common.db import insert_row, is_missing_relation, is_unique_violation, session_scope
from freight_sync.common.db_tables import freight_quotes
from freight_sync.common.errors import MissingSchemaError
from freight_sync.common.http_client import HttpClient
from freight_sync.common.json_logger import JsonLogger, log_event
from freight_sync.common.normalize import as_record, ensure_array, pick_string
from freight_sync.common.run_log import RunLog

COMMAND = "freight-quotes"
QUEUE_PAGE_SIZE = 200


@dataclass
class QuotesSyncCounters:
    pages_fetched: int = 0
    total_api: int = 0
    unique_quote_id: int = 0
    inserted: int = 0
    skipped_existing: int = 0
    skipped_duplicate_on_insert: int = 0
    invalid_rows: int = 0


async def _existing_quote_ids(
    session: AsyncSession, *, context: AllPostContext, quote_ids: Iterable[str]
) -> set[str]:
    ids = list(quote_ids)
    if not ids:
        return set()
    stmt = sa.select(freight_quotes.c.quote_id).where(
        freight_quotes.c.company_id == context.company_id,
        freight_quotes.c.platform_id == context.platform_id,
        freight_quotes.c.quote_id.in_(ids),
    )
    try:
        result = await session.execute(stmt)
    except DBAPIError as exc:
        if is_missing_relation(exc):
            raise MissingSchemaError(freight_quotes.name) from exc
        raise
    return set(result.scalars().all())


def _quote_id_of(row: Any) -> str | None:
    record = as_record(row)
    partner_return = as_record(record.get("retorno")) if record is not None else None
    return pick_string(partner_return, "idCotacao") if partner_return is not None else None


async def sync_freight_quotes(
    *,
    database_url: str,
    company_id: int,
    base_url: str,
    logger: JsonLogger,
    http_client: HttpClient | None = None,
    timeout: float = 60.0,
    tz: ZoneInfo | None = None,
) -> QuotesSyncCounters:
    """Drain the AllPost quote queue (``/logCotacaoFila``) into ``freight_quotes``.

    The whole queue is paged first, then deduplicated by ``idCotacao``; quotes
    already stored for the company are skipped and each new quote is written
    with its options and items.
    """

    logger = logger.bind(command=COMMAND, company_id=company_id)
    zone = tz or get_timezone()
    counters = QuotesSyncCounters()
    run_log = RunLog(
        database_url=database_url,
        company_id=company_id,
        platform_id=None,
        command=COMMAND,
        logger=logger,
    )

    def _payload() -> Dict[str, Any]:
        return {
            "company": company_id,
            "platform": {"id": run_log.platform_id, "slug": ALLPOST_SLUG},
            "command": COMMAND,
            "limit": QUEUE_PAGE_SIZE,
            **asdict(counters),
        }

    try:
        context = await load_context(database_url, company_id)
        run_log.platform_id = context.platform_id
        token = context.require_orders_token()
        await run_log.start(_payload())

        queue_url = f"{base_url.rstrip('/')}/logCotacaoFila"
        rows: list[Any] = []
        client = http_client or HttpClient(timeout=timeout, logger=logger)
        async with client:
            page = 1
            while True:
                result = await client.fetch_json(queue_url, token, params={"limite": QUEUE_PAGE_SIZE, "page": page})
                result.raise_for_status()
                page_rows = ensure_array(result.json)
                log_event(
                    logger=logger,
                    phase="fetch",
                    message="Fetched quote queue page",
                    page=page,
                    items=len(page_rows),
                    accumulated=len(rows) + len(page_rows),
                )
                if not page_rows:
                    break
                rows.extend(page_rows)
                counters.pages_fetched += 1
                page += 1
        counters.total_api = len(rows)

        by_quote_id: Dict[str, Mapping[str, Any]] = {}
        for row in rows:
            quote_id = _quote_id_of(row)
            if quote_id is None:
                counters.invalid_rows += 1
                continue
            by_quote_id.setdefault(quote_id, row)
        counters.unique_quote_id = len(by_quote_id)

        async with session_scope(database_url) as session:
            existing = await _existing_quote_ids(session, context=context, quote_ids=by_quote_id.keys())

            products = ProductLookup(session, context.company_id)
            for quote_id, payload in by_quote_id.items():
                if quote_id in existing:
                    counters.skipped_existing += 1
                    continue
                row = quote_row(
                    payload,
                    company_id=context.company_id,
                    platform_id=context.platform_id,
                    tz=zone,
                )
                if row is None:
                    counters.invalid_rows += 1
                    continue
                try:
                    freight_quote_pk = await insert_row(session, freight_quotes, row)
                except DBAPIError as exc:
                    if is_missing_relation(exc):
                        raise MissingSchemaError(freight_quotes.name) from exc
                    if is_unique_violation(exc):
                        counters.skipped_duplicate_on_insert += 1
                        continue
                    raise
                counters.inserted += 1
                if freight_quote_pk is not None:
                    await store_quote_children(
                        session,
                        payload,
                        company_id=context.company_id,
                        freight_quote_pk=freight_quote_pk,
                        products=products,
                        ignore_duplicates=True,
                    )
    except Exception as exc:
        logger.error(phase="quotes", message="Freight quote queue sync failed", error=str(exc))
        await run_log.fail(_payload(), exc)
        raise

    payload = _payload()
    await run_log.finish(payload)
    log_event(logger=logger, phase="quotes", message="Freight quote queue sync complete", **payload)
    return counters


def configure_parser(parser: argparse.ArgumentParser) -> None:
    add_company_argument(parser, required=True)


async def run_from_args(args: argparse.Namespace, *, logger: JsonLogger) -> QuotesSyncCounters:
    from freight_sync.config import config

    return await sync_freight_quotes(
        database_url=config.database_url,
        company_id=args.company,
        base_url=config.allpost_api_base_url,
        logger=logger,
        timeout=config.http_timeout_seconds,
    )
