from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping

import sqlalchemy as sa
from alembic import command
from alembic.config import Config
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

UNIQUE_VIOLATION_SQLSTATE = "23505"
UNDEFINED_TABLE_SQLSTATE = "42P01"

_engine_cache: dict[str, AsyncEngine] = {}
_session_factory_cache: dict[str, async_sessionmaker[AsyncSession]] = {}


def _ensure_async_engine(database_url: str) -> AsyncEngine:
    if database_url not in _engine_cache:
        _engine_cache[database_url] = create_async_engine(database_url, future=True)
    return _engine_cache[database_url]


def _ensure_sessionmaker(database_url: str) -> async_sessionmaker[AsyncSession]:
    if database_url not in _session_factory_cache:
        engine = _ensure_async_engine(database_url)
        _session_factory_cache[database_url] = async_sessionmaker(engine, expire_on_commit=False)
    return _session_factory_cache[database_url]


@asynccontextmanager
async def session_scope(database_url: str) -> AsyncIterator[AsyncSession]:
    factory = _ensure_sessionmaker(database_url)
    async with factory() as session:
        yield session


async def dispose_engines() -> None:
    for engine in list(_engine_cache.values()):
        await engine.dispose()
    _engine_cache.clear()
    _session_factory_cache.clear()


def is_postgres(database_url: str) -> bool:
    return database_url.startswith("postgresql")


def run_alembic_upgrade(revision: str, *, database_url: str, alembic_config_path: str) -> None:
    alembic_cfg = Config(alembic_config_path)
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(alembic_cfg, revision)


# ── Driver error classification ─────────────────────────────────────────────


def _driver_errors(exc: BaseException) -> list[BaseException]:
    errors: list[BaseException] = [exc]
    orig = exc.orig if isinstance(exc, DBAPIError) else None
    if orig is not None:
        errors.append(orig)
        if orig.__cause__ is not None:
            errors.append(orig.__cause__)
    return errors


def _sqlstate(exc: BaseException) -> str | None:
    for err in _driver_errors(exc):
        for attr in ("sqlstate", "pgcode"):
            code = getattr(err, attr, None)
            if code:
                return str(code)
    return None


def _driver_message(exc: BaseException) -> str:
    return " ".join(str(err) for err in _driver_errors(exc)).lower()


def is_unique_violation(exc: BaseException) -> bool:
    """Return True when ``exc`` reports a unique constraint violation."""

    if not isinstance(exc, DBAPIError):
        return False
    code = _sqlstate(exc)
    if code is not None:
        return code == UNIQUE_VIOLATION_SQLSTATE
    return "unique constraint failed" in _driver_message(exc)


def is_missing_relation(exc: BaseException) -> bool:
    """Return True when ``exc`` reports that a table or view does not exist."""

    if not isinstance(exc, DBAPIError):
        return False
    code = _sqlstate(exc)
    if code is not None:
        return code == UNDEFINED_TABLE_SQLSTATE
    return "no such table" in _driver_message(exc)


# ── Row writes ──────────────────────────────────────────────────────────────


async def insert_row(session: AsyncSession, table: sa.Table, row: Mapping[str, Any]) -> int | None:
    """Insert and commit one row, returning its primary key.

    The session is rolled back before the error is re-raised so the caller can
    keep using it after a classified failure.
    """

    try:
        result = await session.execute(sa.insert(table).values(**row))
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    primary_key = result.inserted_primary_key
    return int(primary_key[0]) if primary_key and primary_key[0] is not None else None


async def insert_row_if_absent(session: AsyncSession, table: sa.Table, row: Mapping[str, Any]) -> bool:
    """Insert one row; a unique violation means the row is already there."""

    try:
        await insert_row(session, table, row)
    except DBAPIError as exc:
        if is_unique_violation(exc):
            return False
        raise
    return True
