"""Resolve the tenant, the AllPost platform row and the tenant's vendor tokens."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import sqlalchemy as sa

from freight_sync.common.db import session_scope
from freight_sync.common.db_tables import companies, company_platforms, platforms
from freight_sync.common.errors import ConfigError
from freight_sync.common.normalize import normalize_bearer_token

ALLPOST_SLUG = "allpost"


@dataclass(slots=True, frozen=True)
class AllPostContext:
    company_id: int
    platform_id: int
    orders_token: str | None
    quotes_token: str | None

    def require_orders_token(self) -> str:
        if not self.orders_token:
            raise ConfigError('AllPost config must contain "token_api" or "token_cotacao" (Bearer).')
        return self.orders_token


def _token(config: Mapping[str, Any], key: str) -> str | None:
    value = config.get(key)
    if not isinstance(value, str):
        return None
    return normalize_bearer_token(value) or None


def tokens_from_config(config: Any) -> tuple[str | None, str | None]:
    """Return ``(orders_token, quotes_token)`` from a company_platforms config blob.

    The orders and queue endpoints use ``token_api`` and fall back to
    ``token_cotacao``; the quote-detail endpoint only accepts ``token_cotacao``.
    """

    cfg = config if isinstance(config, Mapping) else {}
    token_api = _token(cfg, "token_api")
    token_quote = _token(cfg, "token_cotacao")
    return token_api or token_quote, token_quote


async def load_context(database_url: str, company_id: int) -> AllPostContext:
    async with session_scope(database_url) as session:
        company = (
            await session.execute(sa.select(companies.c.id).where(companies.c.id == company_id))
        ).first()
        if company is None:
            raise ConfigError(f"Company {company_id} not found.")

        platform = (
            await session.execute(sa.select(platforms.c.id).where(platforms.c.slug == ALLPOST_SLUG))
        ).first()
        if platform is None:
            raise ConfigError(f'Platform slug="{ALLPOST_SLUG}" not found. Register and install it first.')

        installation = (
            await session.execute(
                sa.select(company_platforms.c.config).where(
                    company_platforms.c.company_id == company_id,
                    company_platforms.c.platform_id == platform.id,
                )
            )
        ).first()
        if installation is None:
            raise ConfigError(
                f'Platform "{ALLPOST_SLUG}" is not installed for company {company_id} (company_platforms).'
            )

    orders_token, quotes_token = tokens_from_config(installation.config)
    return AllPostContext(
        company_id=company_id,
        platform_id=int(platform.id),
        orders_token=orders_token,
        quotes_token=quotes_token,
    )
