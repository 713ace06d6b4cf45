from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Any, List, Mapping, Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError

from freight_sync.allpost.quote_mapping import option_rows
from freight_sync.common.cli_args import add_company_argument, bounded_int
from freight_sync.common.db import is_missing_relation, session_scope
from freight_sync.common.db_tables import freight_quote_options, freight_quotes
from freight_sync.common.errors import MissingSchemaError
from freight_sync.common.json_logger import JsonLogger, log_event

COMMAND = "backfill-quote-options"
DEFAULT_BATCH_SIZE = 500
MAX_BATCH_SIZE = 5000


@dataclass
class QuoteOptionsBackfillSummary:
    processed_quotes: int = 0
    inserted_options: int = 0
    last_id: int = 0


def _make_insert_ignore(table: sa.Table, rows: Sequence[Mapping[str, Any]], *, use_sqlite: bool) -> sa.sql.dml.Insert:
    insert_fn = sqlite_insert if use_sqlite else pg_insert
    conflict_cols: List[str] = []
    for constraint in table.constraints:
        if isinstance(constraint, sa.UniqueConstraint):
            conflict_cols = [col.name for col in constraint.columns]
            break
    return insert_fn(table).values(list(rows)).on_conflict_do_nothing(index_elements=conflict_cols)


async def backfill_quote_options(
    *,
    database_url: str,
    logger: JsonLogger,
    company_id: int | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> QuoteOptionsBackfillSummary:
    """Rebuild ``freight_quote_options`` from each quote's stored ``delivery_options``.

    Options already present for a ``(freight_quote_id, line_index)`` are left
    untouched, so the backfill can be re-run at any time.
    """

    summary = QuoteOptionsBackfillSummary()
    use_sqlite = database_url.startswith("sqlite")
    async with session_scope(database_url) as session:
        while True:
            stmt = (
                sa.select(freight_quotes.c.id, freight_quotes.c.company_id, freight_quotes.c.delivery_options)
                .where(freight_quotes.c.id > summary.last_id, freight_quotes.c.delivery_options.is_not(None))
                .order_by(freight_quotes.c.id)
                .limit(batch_size)
            )
            if company_id is not None:
                stmt = stmt.where(freight_quotes.c.company_id == company_id)
            quotes = (await session.execute(stmt)).all()
            if not quotes:
                break

            for quote in quotes:
                summary.last_id = int(quote.id)
                summary.processed_quotes += 1
                rows = option_rows(
                    quote.delivery_options, company_id=int(quote.company_id), freight_quote_id=int(quote.id)
                )
                if not rows:
                    continue
                try:
                    result = await session.execute(
                        _make_insert_ignore(freight_quote_options, rows, use_sqlite=use_sqlite)
                    )
                    await session.commit()
                except DBAPIError as exc:
                    await session.rollback()
                    if is_missing_relation(exc):
                        raise MissingSchemaError(freight_quote_options.name) from exc
                    raise
                summary.inserted_options += max(result.rowcount or 0, 0)

            log_event(
                logger=logger,
                phase="backfill",
                message="Quote options batch written",
                command=COMMAND,
                processed_quotes=summary.processed_quotes,
                inserted_options=summary.inserted_options,
                last_id=summary.last_id,
            )

    log_event(
        logger=logger,
        phase="backfill",
        message="Quote options backfill complete",
        command=COMMAND,
        company=company_id if company_id is not None else "ALL",
        processed_quotes=summary.processed_quotes,
        inserted_options=summary.inserted_options,
    )
    return summary


def configure_parser(parser: argparse.ArgumentParser) -> None:
    add_company_argument(parser, required=False)
    parser.add_argument("--batch", dest="batch", type=bounded_int(1, MAX_BATCH_SIZE), default=DEFAULT_BATCH_SIZE)


async def run_from_args(args: argparse.Namespace, *, logger: JsonLogger) -> QuoteOptionsBackfillSummary:
    from freight_sync.config import config

    return await backfill_quote_options(
        database_url=config.database_url,
        logger=logger,
        company_id=args.company,
        batch_size=args.batch,
    )
