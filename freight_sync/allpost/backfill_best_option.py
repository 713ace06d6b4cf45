from __future__ import annotations

import argparse
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Sequence, Tuple

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from freight_sync.allpost.best_option import OptionCandidate, make_candidate, select_best_option
from freight_sync.common.cli_args import add_company_argument, bounded_int
from freight_sync.common.db import is_postgres, session_scope
from freight_sync.common.db_tables import freight_quote_options, freight_quotes
from freight_sync.common.json_logger import JsonLogger, log_event

COMMAND = "backfill-best-option"
DEFAULT_BATCH_SIZE = 2000
MAX_BATCH_SIZE = 10000

BestUpdate = Tuple[int, int | None, str | None]

_UNNEST_UPDATE = sa.text(
    """
    UPDATE freight_quotes AS fq
    SET best_deadline = v.best_deadline, best_freight_cost = v.best_freight_cost::numeric
    FROM (
        SELECT * FROM unnest(CAST(:ids AS bigint[]), CAST(:deadlines AS int[]), CAST(:costs AS text[]))
            AS t(id, best_deadline, best_freight_cost)
    ) AS v
    WHERE fq.id = v.id
    """
)


@dataclass
class BestOptionBackfillSummary:
    batches: int = 0
    updated: int = 0
    last_id: int | None = None


async def _pending_quote_ids(
    session: AsyncSession, *, company_id: int | None, before_id: int | None, batch_size: int
) -> List[int]:
    stmt = (
        sa.select(freight_quotes.c.id)
        .where(sa.or_(freight_quotes.c.best_deadline.is_(None), freight_quotes.c.best_freight_cost.is_(None)))
        .order_by(freight_quotes.c.id.desc())
        .limit(batch_size)
    )
    if before_id is not None:
        stmt = stmt.where(freight_quotes.c.id < before_id)
    if company_id is not None:
        stmt = stmt.where(freight_quotes.c.company_id == company_id)
    return [int(value) for value in (await session.execute(stmt)).scalars().all()]


async def _candidates_by_quote(session: AsyncSession, quote_ids: Sequence[int]) -> Dict[int, List[OptionCandidate]]:
    stmt = (
        sa.select(
            freight_quote_options.c.freight_quote_id,
            freight_quote_options.c.carrier_deadline,
            freight_quote_options.c.shipping_value,
        )
        .where(freight_quote_options.c.freight_quote_id.in_(list(quote_ids)))
        .order_by(freight_quote_options.c.freight_quote_id, freight_quote_options.c.line_index)
    )
    grouped: Dict[int, List[OptionCandidate]] = defaultdict(list)
    for row in (await session.execute(stmt)).all():
        candidate = make_candidate(row.carrier_deadline, row.shipping_value)
        if candidate is not None:
            grouped[int(row.freight_quote_id)].append(candidate)
    return grouped


async def _apply_updates(session: AsyncSession, updates: Sequence[BestUpdate], *, use_unnest: bool) -> None:
    """Write one batch of best-option pairs in a single statement."""

    if not updates:
        return
    if use_unnest:
        await session.execute(
            _UNNEST_UPDATE,
            {
                "ids": [quote_id for quote_id, _, _ in updates],
                "deadlines": [deadline for _, deadline, _ in updates],
                "costs": [cost for _, _, cost in updates],
            },
        )
        return
    stmt = (
        sa.update(freight_quotes)
        .where(freight_quotes.c.id == sa.bindparam("quote_pk"))
        .values(best_deadline=sa.bindparam("deadline"), best_freight_cost=sa.bindparam("cost"))
    )
    params: List[Dict[str, Any]] = [
        {"quote_pk": quote_id, "deadline": deadline, "cost": Decimal(cost) if cost is not None else None}
        for quote_id, deadline, cost in updates
    ]
    connection = await session.connection()
    await connection.execute(stmt, params)


async def backfill_best_option(
    *,
    database_url: str,
    logger: JsonLogger,
    company_id: int | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> BestOptionBackfillSummary:
    """Fill ``best_deadline``/``best_freight_cost`` for quotes that lack them.

    Quotes are visited newest first with keyset paging on ``id`` so a quote
    without any valid option is seen once and left unset.
    """

    summary = BestOptionBackfillSummary()
    use_unnest = is_postgres(database_url)
    async with session_scope(database_url) as session:
        while True:
            quote_ids = await _pending_quote_ids(
                session, company_id=company_id, before_id=summary.last_id, batch_size=batch_size
            )
            if not quote_ids:
                break
            summary.last_id = quote_ids[-1]

            candidates = await _candidates_by_quote(session, quote_ids)
            updates: List[BestUpdate] = []
            for quote_id in quote_ids:
                best = select_best_option(candidates.get(quote_id, []))
                deadline = int(best.deadline) if best.deadline is not None else None
                updates.append((quote_id, deadline, best.freight_cost))
            await _apply_updates(session, updates, use_unnest=use_unnest)
            await session.commit()

            summary.batches += 1
            summary.updated += len(updates)
            log_event(
                logger=logger,
                phase="backfill",
                message="Best option batch written",
                command=COMMAND,
                last_id=summary.last_id,
                total_updated=summary.updated,
            )

    log_event(
        logger=logger,
        phase="backfill",
        message="Best option backfill complete",
        command=COMMAND,
        company=company_id if company_id is not None else "ALL",
        total_updated=summary.updated,
    )
    return summary


def configure_parser(parser: argparse.ArgumentParser) -> None:
    add_company_argument(parser, required=False)
    parser.add_argument("--batch", dest="batch", type=bounded_int(1, MAX_BATCH_SIZE), default=DEFAULT_BATCH_SIZE)


async def run_from_args(args: argparse.Namespace, *, logger: JsonLogger) -> BestOptionBackfillSummary:
    from freight_sync.config import config

    return await backfill_best_option(
        database_url=config.database_url,
        logger=logger,
        company_id=args.company,
        batch_size=args.batch,
    )
