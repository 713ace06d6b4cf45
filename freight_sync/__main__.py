from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from freight_sync.allpost import (
    backfill_best_option,
    backfill_date_time,
    backfill_quote_options,
    orders_sync,
    quotes_sync,
)
from freight_sync.common.db import dispose_engines, run_alembic_upgrade
from freight_sync.common.errors import CliArgumentError, ConfigError
from freight_sync.common.json_logger import JsonLogger, get_logger, log_event, timed_event

Runner = Callable[..., Awaitable[Any]]

JOBS: Dict[str, Tuple[str, Callable[[argparse.ArgumentParser], None], Runner]] = {
    orders_sync.COMMAND: (
        "Ingest AllPost freight orders for a date window",
        orders_sync.configure_parser,
        orders_sync.run_from_args,
    ),
    quotes_sync.COMMAND: (
        "Drain the AllPost freight quote queue",
        quotes_sync.configure_parser,
        quotes_sync.run_from_args,
    ),
    backfill_best_option.COMMAND: (
        "Derive best deadline/cost for quotes missing them",
        backfill_best_option.configure_parser,
        backfill_best_option.run_from_args,
    ),
    backfill_quote_options.COMMAND: (
        "Rebuild quote options from stored delivery_options",
        backfill_quote_options.configure_parser,
        backfill_quote_options.run_from_args,
    ),
    backfill_date_time.QUOTE_COMMAND: (
        "Fill local date/time on quotes",
        backfill_date_time.configure_parser,
        backfill_date_time.run_quotes_from_args,
    ),
    backfill_date_time.ORDER_COMMAND: (
        "Fill local date/time on orders",
        backfill_date_time.configure_parser,
        backfill_date_time.run_orders_from_args,
    ),
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="freight_sync", description="AllPost freight ingestion jobs")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for command, (help_text, configure, _) in JOBS.items():
        job_parser = subparsers.add_parser(command, help=help_text)
        job_parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")
        configure(job_parser)

    upgrade_parser = subparsers.add_parser("db-upgrade", help="Run Alembic upgrade head")
    upgrade_parser.add_argument("--revision", default="head")
    return parser


async def _run_job(args: argparse.Namespace, logger: JsonLogger) -> None:
    _, _, runner = JOBS[args.command]
    try:
        with timed_event(logger=logger, phase="job", message=args.command, command=args.command):
            await runner(args, logger=logger)
    finally:
        await dispose_engines()


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        # argparse already printed usage; bad arguments share the failure code
        if exc.code in (0, None):
            raise
        return 1

    if args.command == "db-upgrade":
        try:
            from freight_sync.config import config as runtime_config

            run_alembic_upgrade(
                revision=args.revision,
                database_url=runtime_config.database_url,
                alembic_config_path=runtime_config.alembic_config,
            )
        except Exception as exc:
            print(f"[db-upgrade] error: {exc}", file=sys.stderr)
            return 1
        return 0

    try:
        logger = get_logger(run_id=args.run_id)
    except ConfigError as exc:
        print(f"[{args.command}] error: {exc}", file=sys.stderr)
        return 1

    try:
        from freight_sync.config import config as runtime_config

        log_event(
            logger=logger,
            phase="init",
            message="Starting job",
            command=args.command,
            run_env=runtime_config.run_env,
        )
        asyncio.run(_run_job(args, logger))
    except CliArgumentError as exc:
        print(f"[{args.command}] {exc}", file=sys.stderr)
        return 1
    except Exception as exc:
        log_event(
            logger=logger,
            phase="orchestrator",
            status="error",
            message="Job failed",
            command=args.command,
            error=repr(exc),
        )
        print(f"[{args.command}] error: {exc}", file=sys.stderr)
        return 1
    finally:
        logger.close()
    return 0


def cli() -> None:
    raise SystemExit(main())


if __name__ == "__main__":  # pragma: no cover
    cli()
