"""Make sure every quote referenced by an order exists locally.

A missing quote is fetched from the quote-detail endpoint and stored with its
delivery options and cart items. Confirmed and failed ids are remembered for
the lifetime of one reconciler (one run) only.
"""
from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import quote as url_quote
from zoneinfo import ZoneInfo

import sqlalchemy as sa
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from freight_sync.allpost.platform import AllPostContext
from freight_sync.allpost.products import ProductLookup
from freight_sync.allpost.quote_mapping import item_row, option_rows, quote_parts, quote_row
from freight_sync.common.db import insert_row, insert_row_if_absent, is_unique_violation
from freight_sync.common.db_tables import freight_quote_options, freight_quotes, freight_quotes_items
from freight_sync.common.http_client import HttpClient
from freight_sync.common.json_logger import JsonLogger, log_event
from freight_sync.common.normalize import as_record, ensure_array, pick_numeric_string, pick_string

STORE_NOT_FOUND_MARKER = "Loja não encontrada"


class QuoteReconciler:
    def __init__(
        self,
        *,
        session: AsyncSession,
        http: HttpClient,
        context: AllPostContext,
        quote_url: str,
        logger: JsonLogger,
        products: ProductLookup | None = None,
        tz: ZoneInfo | None = None,
    ) -> None:
        self.session = session
        self.http = http
        self.context = context
        self.quote_url = quote_url.rstrip("/")
        self.logger = logger
        self.products = products or ProductLookup(session, context.company_id)
        self.tz = tz
        self.confirmed_ids: set[str] = set()
        self.failed_ids: set[str] = set()

    async def ensure_quote_exists(self, quote_id: str | None) -> None:
        qid = (quote_id or "").strip()
        if not qid or qid in self.confirmed_ids or qid in self.failed_ids:
            return

        token = self.context.quotes_token
        if not token:
            self.failed_ids.add(qid)
            log_event(
                logger=self.logger,
                phase="quotes",
                status="warn",
                message="Cannot reconcile quote: token_cotacao is not configured for this company",
                quote_id=qid,
            )
            return

        if await self._find_quote_pk(qid) is not None:
            self.confirmed_ids.add(qid)
            return

        result = await self.http.fetch_json(f"{self.quote_url}/{url_quote(qid, safe='')}", token)
        result.raise_for_status()
        payload = as_record(result.json)
        if payload is None:
            return
        row = quote_row(
            payload,
            company_id=self.context.company_id,
            platform_id=self.context.platform_id,
            fallback_quote_id=qid,
            tz=self.tz,
        )
        if row is None:
            return
        row["quote_id"] = qid

        try:
            freight_quote_pk = await insert_row(self.session, freight_quotes, row)
        except DBAPIError as exc:
            if not is_unique_violation(exc):
                raise
            freight_quote_pk = await self._find_quote_pk(qid)
        if freight_quote_pk is None:
            return

        await store_quote_children(
            self.session,
            payload,
            company_id=self.context.company_id,
            freight_quote_pk=freight_quote_pk,
            products=self.products,
            ignore_duplicates=True,
        )
        self.confirmed_ids.add(qid)
        log_event(logger=self.logger, phase="quotes", message="Quote reconciled", quote_id=qid)

    def record_failure(self, quote_id: str, exc: BaseException) -> None:
        """Pin ``quote_id`` as failed when the vendor reports an unknown store."""

        if STORE_NOT_FOUND_MARKER in str(exc):
            self.failed_ids.add(quote_id.strip())

    async def _find_quote_pk(self, qid: str) -> int | None:
        stmt = sa.select(freight_quotes.c.id).where(
            freight_quotes.c.company_id == self.context.company_id,
            freight_quotes.c.platform_id == self.context.platform_id,
            freight_quotes.c.quote_id == qid,
        )
        value = (await self.session.execute(stmt)).scalar_one_or_none()
        return int(value) if value is not None else None


async def store_quote_children(
    session: AsyncSession,
    payload: Mapping[str, Any],
    *,
    company_id: int,
    freight_quote_pk: int,
    products: ProductLookup,
    ignore_duplicates: bool,
) -> tuple[int, int]:
    """Insert delivery options and cart items for a stored quote.

    Line indexes are the positions in the vendor arrays. Returns the number
    of ``(options, items)`` written.
    """

    async def _write(table: sa.Table, row: Mapping[str, Any]) -> bool:
        if ignore_duplicates:
            return await insert_row_if_absent(session, table, row)
        await insert_row(session, table, row)
        return True

    options_written = 0
    for row in option_rows(payload.get("opcoesEntrega"), company_id=company_id, freight_quote_id=freight_quote_pk):
        if await _write(freight_quote_options, row):
            options_written += 1

    parts = quote_parts(payload)
    cart = parts[3] if parts else {}
    items_written = 0
    for index, raw in enumerate(ensure_array(cart.get("produto"))):
        item = as_record(raw)
        if item is None:
            continue
        product_id = await products.resolve(pick_string(item, "sku"), pick_numeric_string(item, "idSku"))
        row = item_row(
            item,
            company_id=company_id,
            freight_quote_id=freight_quote_pk,
            line_index=index,
            product_id=product_id,
        )
        if await _write(freight_quotes_items, row):
            items_written += 1
    return options_written, items_written
