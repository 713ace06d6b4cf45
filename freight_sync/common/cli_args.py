"""argparse value types and range checks shared by the job commands."""
from __future__ import annotations

import argparse
import re
from typing import Callable

from freight_sync.common.errors import CliArgumentError
from freight_sync.common.json_logger import JsonLogger

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_TIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}$")


def positive_int(value: str) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise argparse.ArgumentTypeError(f"Invalid value {value!r}; expected a positive integer") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"Invalid value {value!r}; expected a positive integer")
    return parsed


def bounded_int(minimum: int, maximum: int) -> Callable[[str], int]:
    def _parse(value: str) -> int:
        try:
            parsed = int(str(value).strip())
        except (TypeError, ValueError) as exc:
            raise argparse.ArgumentTypeError(f"Invalid value {value!r}; expected {minimum}..{maximum}") from exc
        if not minimum <= parsed <= maximum:
            raise argparse.ArgumentTypeError(f"Invalid value {value!r}; expected {minimum}..{maximum}")
        return parsed

    _parse.__name__ = f"int[{minimum}..{maximum}]"
    return _parse


def range_value(value: str) -> str:
    """Accept ``YYYY-MM-DD`` or ``YYYY-MM-DDTHH:MM:SS``; plain dates start at midnight."""

    text = str(value).strip()
    if _DATE_ONLY.match(text):
        return f"{text}T00:00:00"
    if _DATE_TIME.match(text):
        return text
    raise argparse.ArgumentTypeError(f"Invalid date {value!r}; expected YYYY-MM-DD[THH:MM:SS]")


def resolve_date_range(
    *,
    start: str | None,
    end: str | None,
    legacy_start: str | None = None,
    legacy_end: str | None = None,
    logger: JsonLogger | None = None,
) -> tuple[str, str]:
    """Pick the window from ``--start-date/--end-date`` or the deprecated aliases."""

    if not start and legacy_start and logger is not None:
        logger.warn(phase="args", message='"--from/--to" is deprecated; use "--start-date/--end-date"')
    resolved_start = start or legacy_start
    resolved_end = end or legacy_end
    if not resolved_start or not resolved_end:
        raise CliArgumentError(
            "Required parameters: --start-date=YYYY-MM-DD[THH:MM:SS] and --end-date=YYYY-MM-DD[THH:MM:SS]"
        )
    if resolved_start > resolved_end:
        raise CliArgumentError(f"--start-date ({resolved_start}) must not be after --end-date ({resolved_end})")
    return resolved_start, resolved_end


def add_company_argument(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument(
        "--company",
        dest="company",
        type=positive_int,
        required=required,
        default=None,
        help="Company (tenant) id" if required else "Restrict to one company (tenant) id",
    )
