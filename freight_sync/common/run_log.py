"""Best-effort audit rows in the ``logs`` table, one per job run."""
from __future__ import annotations

import traceback
from datetime import date, datetime, timezone
from typing import Any, Dict, Mapping

import sqlalchemy as sa

from freight_sync.common.db import session_scope
from freight_sync.common.db_tables import logs
from freight_sync.common.json_logger import JsonLogger, log_event

STATUS_PROCESSING = "processing"
STATUS_FINISHED = "finished"
STATUS_ERROR = "error"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_date(value: date | str | None) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def error_payload(exc: BaseException) -> Dict[str, Any]:
    return {
        "name": type(exc).__name__,
        "message": str(exc),
        "stack": "".join(traceback.format_exception(exc)),
    }


class RunLog:
    """Record a run as ``processing`` and later ``finished`` or ``error``.

    Every write opens its own session and swallows its own failures after a
    warning, so a broken log table never hides the run's real outcome.
    """

    def __init__(
        self,
        *,
        database_url: str,
        company_id: int,
        platform_id: int | None,
        command: str,
        logger: JsonLogger,
        filter_date: date | str | None = None,
    ) -> None:
        self.database_url = database_url
        self.company_id = company_id
        self.platform_id = platform_id
        self.command = command
        self.filter_date = _coerce_date(filter_date)
        self.logger = logger
        self.log_id: int | None = None

    async def start(self, payload: Mapping[str, Any]) -> None:
        try:
            self.log_id = await self._insert(STATUS_PROCESSING, payload, errors=None)
        except Exception as exc:
            self._warn("Failed to record run start", exc)

    async def finish(self, payload: Mapping[str, Any]) -> None:
        await self._close(STATUS_FINISHED, payload, errors=None)

    async def fail(self, payload: Mapping[str, Any], exc: BaseException) -> None:
        await self._close(STATUS_ERROR, payload, errors=error_payload(exc))

    async def _close(self, status: str, payload: Mapping[str, Any], *, errors: Dict[str, Any] | None) -> None:
        try:
            if self.log_id is not None:
                await self._update(status, payload, errors=errors)
            else:
                self.log_id = await self._insert(status, payload, errors=errors)
        except Exception as exc:
            self._warn(f"Failed to record run status {status}", exc)

    async def _insert(self, status: str, payload: Mapping[str, Any], *, errors: Dict[str, Any] | None) -> int | None:
        stmt = sa.insert(logs).values(
            processed_at=_utc_now(),
            date=self.filter_date,
            status=status,
            command=self.command,
            log={**payload, "status": status},
            errors=errors,
            company_id=self.company_id,
            platform_id=self.platform_id,
        )
        async with session_scope(self.database_url) as session:
            result = await session.execute(stmt)
            await session.commit()
        primary_key = result.inserted_primary_key
        return int(primary_key[0]) if primary_key and primary_key[0] is not None else None

    async def _update(self, status: str, payload: Mapping[str, Any], *, errors: Dict[str, Any] | None) -> None:
        stmt = (
            sa.update(logs)
            .where(logs.c.id == self.log_id)
            .values(processed_at=_utc_now(), status=status, log={**payload, "status": status}, errors=errors)
        )
        async with session_scope(self.database_url) as session:
            await session.execute(stmt)
            await session.commit()

    def _warn(self, message: str, exc: BaseException) -> None:
        log_event(
            logger=self.logger,
            phase="run_log",
            status="warn",
            message=message,
            command=self.command,
            company_id=self.company_id,
            error=str(exc),
        )
