"""Fill the local ``date``/``time`` split of stored quotes and orders."""
from __future__ import annotations

import argparse
from dataclasses import dataclass
from zoneinfo import ZoneInfo

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from freight_sync.common.cli_args import add_company_argument, bounded_int
from freight_sync.common.date_utils import get_timezone, to_local_date_and_time
from freight_sync.common.db import is_postgres, session_scope
from freight_sync.common.db_tables import freight_orders, freight_quotes
from freight_sync.common.json_logger import JsonLogger, log_event

QUOTE_COMMAND = "backfill-quote-date-time"
ORDER_COMMAND = "backfill-order-date-time"
DEFAULT_BATCH_SIZE = 500
MAX_BATCH_SIZE = 5000

_PENDING_QUOTE_DAYS = """
    SELECT DISTINCT (quoted_at AT TIME ZONE :tz)::date AS day
    FROM freight_quotes
    WHERE quoted_at IS NOT NULL
      AND (date IS NULL OR time IS NULL)
      {company_filter}
    ORDER BY day
"""

_UPDATE_QUOTE_DAY = """
    UPDATE freight_quotes
    SET
      date = to_char(quoted_at AT TIME ZONE :tz, 'YYYY-MM-DD'),
      time = to_char(quoted_at AT TIME ZONE :tz, 'HH24:MI:SS')
    WHERE quoted_at IS NOT NULL
      AND (date IS NULL OR time IS NULL)
      AND (quoted_at AT TIME ZONE :tz)::date = CAST(:day AS date)
      {company_filter}
"""


@dataclass
class DateTimeBackfillSummary:
    updated: int = 0
    days: int = 0
    last_id: int = 0


def _company_filter(company_id: int | None) -> str:
    return "AND company_id = :company_id" if company_id is not None else ""


async def _backfill_by_day(
    session: AsyncSession,
    *,
    zone: ZoneInfo,
    company_id: int | None,
    summary: DateTimeBackfillSummary,
    logger: JsonLogger,
) -> None:
    params = {"tz": zone.key}
    if company_id is not None:
        params["company_id"] = company_id
    days_stmt = sa.text(_PENDING_QUOTE_DAYS.format(company_filter=_company_filter(company_id)))
    days = [row.day for row in (await session.execute(days_stmt, params)).all()]
    update_stmt = sa.text(_UPDATE_QUOTE_DAY.format(company_filter=_company_filter(company_id)))
    for day in days:
        result = await session.execute(update_stmt, {**params, "day": day})
        await session.commit()
        summary.days += 1
        summary.updated += max(result.rowcount or 0, 0)
        log_event(
            logger=logger,
            phase="backfill",
            message="Quote date/time day written",
            command=QUOTE_COMMAND,
            day=day,
            updated=result.rowcount,
            total_updated=summary.updated,
        )


async def _backfill_by_id(
    session: AsyncSession,
    table: sa.Table,
    timestamp: sa.Column,
    *,
    zone: ZoneInfo,
    company_id: int | None,
    batch_size: int,
    summary: DateTimeBackfillSummary,
    logger: JsonLogger,
    command: str,
) -> None:
    while True:
        stmt = (
            sa.select(table.c.id, timestamp)
            .where(
                table.c.id > summary.last_id,
                timestamp.is_not(None),
                sa.or_(table.c.date.is_(None), table.c.time.is_(None)),
            )
            .order_by(table.c.id)
            .limit(batch_size)
        )
        if company_id is not None:
            stmt = stmt.where(table.c.company_id == company_id)
        rows = (await session.execute(stmt)).all()
        if not rows:
            break
        for row in rows:
            summary.last_id = int(row.id)
            local_date, local_time = to_local_date_and_time(row[1], zone)
            await session.execute(
                sa.update(table).where(table.c.id == row.id).values(date=local_date, time=local_time)
            )
            summary.updated += 1
        await session.commit()
        log_event(
            logger=logger,
            phase="backfill",
            message="Date/time batch written",
            command=command,
            last_id=summary.last_id,
            total_updated=summary.updated,
        )


async def backfill_quote_date_time(
    *,
    database_url: str,
    logger: JsonLogger,
    company_id: int | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    tz: ZoneInfo | None = None,
) -> DateTimeBackfillSummary:
    """Fill quote ``date``/``time`` from ``quoted_at``.

    On PostgreSQL each pending local day is updated with one statement;
    other databases fall back to id-ordered batches.
    """

    zone = tz or get_timezone()
    summary = DateTimeBackfillSummary()
    async with session_scope(database_url) as session:
        if is_postgres(database_url):
            await _backfill_by_day(session, zone=zone, company_id=company_id, summary=summary, logger=logger)
        else:
            await _backfill_by_id(
                session,
                freight_quotes,
                freight_quotes.c.quoted_at,
                zone=zone,
                company_id=company_id,
                batch_size=batch_size,
                summary=summary,
                logger=logger,
                command=QUOTE_COMMAND,
            )
    log_event(
        logger=logger,
        phase="backfill",
        message="Quote date/time backfill complete",
        command=QUOTE_COMMAND,
        company=company_id if company_id is not None else "ALL",
        total_updated=summary.updated,
    )
    return summary


async def backfill_order_date_time(
    *,
    database_url: str,
    logger: JsonLogger,
    company_id: int | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    tz: ZoneInfo | None = None,
) -> DateTimeBackfillSummary:
    zone = tz or get_timezone()
    summary = DateTimeBackfillSummary()
    async with session_scope(database_url) as session:
        await _backfill_by_id(
            session,
            freight_orders,
            freight_orders.c.order_date,
            zone=zone,
            company_id=company_id,
            batch_size=batch_size,
            summary=summary,
            logger=logger,
            command=ORDER_COMMAND,
        )
    log_event(
        logger=logger,
        phase="backfill",
        message="Order date/time backfill complete",
        command=ORDER_COMMAND,
        company=company_id if company_id is not None else "ALL",
        total_updated=summary.updated,
    )
    return summary


def configure_parser(parser: argparse.ArgumentParser) -> None:
    add_company_argument(parser, required=False)
    parser.add_argument("--batch", dest="batch", type=bounded_int(1, MAX_BATCH_SIZE), default=DEFAULT_BATCH_SIZE)


async def run_quotes_from_args(args: argparse.Namespace, *, logger: JsonLogger) -> DateTimeBackfillSummary:
    from freight_sync.config import config

    return await backfill_quote_date_time(
        database_url=config.database_url, logger=logger, company_id=args.company, batch_size=args.batch
    )


async def run_orders_from_args(args: argparse.Namespace, *, logger: JsonLogger) -> DateTimeBackfillSummary:
    from freight_sync.config import config

    return await backfill_order_date_time(
        database_url=config.database_url, logger=logger, company_id=args.company, batch_size=args.batch
    )
