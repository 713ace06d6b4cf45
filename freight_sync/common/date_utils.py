"""Shared helpers for timezone-aware date/time splits."""
from __future__ import annotations

import re
from datetime import datetime
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Sao_Paulo"

_YMD_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2})")


def get_timezone() -> ZoneInfo:
    """Return the configured pipeline timezone.

    The timezone comes from ``PIPELINE_TIMEZONE`` (see :mod:`freight_sync.config`).
    Naive vendor timestamps and the local ``date``/``time`` columns of quotes
    and orders are both interpreted in this zone so that day boundaries stay
    consistent regardless of the machine locale.
    """

    from freight_sync.config import config

    return ZoneInfo(config.pipeline_timezone or DEFAULT_TIMEZONE)


def to_local_date_and_time(value: datetime | None, tz: ZoneInfo | None = None) -> tuple[str | None, str | None]:
    """Split ``value`` into ``("YYYY-MM-DD", "HH:MM:SS")`` in the pipeline timezone."""

    if value is None:
        return None, None
    zone = tz or get_timezone()
    aware = value if value.tzinfo else value.replace(tzinfo=zone)
    local = aware.astimezone(zone)
    return local.strftime("%Y-%m-%d"), local.strftime("%H:%M:%S")


def extract_ymd(value: str | None) -> str | None:
    match = _YMD_PREFIX.match((value or "").strip())
    return match.group(1) if match else None
