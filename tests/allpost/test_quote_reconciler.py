from __future__ import annotations

from zoneinfo import ZoneInfo

import httpx
import pytest
import sqlalchemy as sa

from conftest import BASE_URL, quote_payload, read_events, sync_engine
from freight_sync.allpost.platform import load_context
from freight_sync.allpost.quote_reconciler import QuoteReconciler
from freight_sync.common.db import session_scope
from freight_sync.common.db_tables import freight_quote_options, freight_quotes, freight_quotes_items, products
from freight_sync.common.errors import VendorHttpError

SAO_PAULO = ZoneInfo("America/Sao_Paulo")


async def _count(database_url: str, table: sa.Table) -> int:
    async with session_scope(database_url) as session:
        return int(await session.scalar(sa.select(sa.func.count()).select_from(table)))


def _reconciler(session, client, context, logger) -> QuoteReconciler:
    return QuoteReconciler(
        session=session,
        http=client,
        context=context,
        quote_url=f"{BASE_URL}/cotacao",
        logger=logger,
        tz=SAO_PAULO,
    )


@pytest.mark.asyncio
async def test_missing_quote_is_fetched_and_stored_once(database_url, seed_tenant, allpost, logger) -> None:
    seed_tenant(database_url)
    engine = sync_engine(database_url)
    with engine.begin() as connection:
        connection.execute(sa.insert(products).values(company_id=1, sku="253", name="Sofa"))
    engine.dispose()
    allpost.quotes["Q1"] = quote_payload("Q1")
    context = await load_context(database_url, 1)

    async with allpost.client() as client, session_scope(database_url) as session:
        reconciler = _reconciler(session, client, context, logger)
        await reconciler.ensure_quote_exists("Q1")
        await reconciler.ensure_quote_exists(" Q1 ")

    assert len(allpost.requests_to("/cotacao/")) == 1
    assert allpost.requests[0].headers["Authorization"] == "Bearer quote-token"
    assert await _count(database_url, freight_quotes) == 1
    assert await _count(database_url, freight_quote_options) == 2
    assert await _count(database_url, freight_quotes_items) == 1

    async with session_scope(database_url) as session:
        quote = (await session.execute(sa.select(freight_quotes))).one()
        item = (await session.execute(sa.select(freight_quotes_items))).one()
    assert quote.quote_id == "Q1"
    assert quote.best_deadline == 5
    assert quote.date == "2024-03-10"
    assert item.product_id is not None

    # a new run finds the stored quote without calling the vendor
    async with allpost.client() as client, session_scope(database_url) as session:
        await _reconciler(session, client, context, logger).ensure_quote_exists("Q1")
    assert len(allpost.requests_to("/cotacao/")) == 1


@pytest.mark.asyncio
async def test_missing_quote_token_marks_quote_failed(database_url, seed_tenant, allpost, logger, log_stream) -> None:
    seed_tenant(database_url, config={"token_api": "api-only"})
    context = await load_context(database_url, 1)

    async with allpost.client() as client, session_scope(database_url) as session:
        reconciler = _reconciler(session, client, context, logger)
        await reconciler.ensure_quote_exists("Q1")

    assert reconciler.failed_ids == {"Q1"}
    assert allpost.requests == []
    warnings = [event for event in read_events(log_stream) if event["status"] == "warn"]
    assert "token_cotacao" in warnings[0]["message"]


@pytest.mark.asyncio
async def test_store_not_found_is_pinned_for_the_run(database_url, seed_tenant, allpost, logger) -> None:
    seed_tenant(database_url)
    allpost.quote_errors["Q404"] = httpx.Response(404, text="Loja não encontrada")
    allpost.quote_errors["Q500"] = httpx.Response(500, text="internal error")
    context = await load_context(database_url, 1)

    async with allpost.client() as client, session_scope(database_url) as session:
        reconciler = _reconciler(session, client, context, logger)
        for quote_id in ("Q404", "Q500"):
            with pytest.raises(VendorHttpError) as excinfo:
                await reconciler.ensure_quote_exists(quote_id)
            reconciler.record_failure(quote_id, excinfo.value)

        await reconciler.ensure_quote_exists("Q404")
        with pytest.raises(VendorHttpError):
            await reconciler.ensure_quote_exists("Q500")

    assert reconciler.failed_ids == {"Q404"}
    assert len(allpost.requests_to("/cotacao/Q404")) == 1
    assert len(allpost.requests_to("/cotacao/Q500")) == 2


@pytest.mark.asyncio
async def test_concurrent_insert_is_treated_as_existing(database_url, seed_tenant, allpost, logger, monkeypatch) -> None:
    platform_id = seed_tenant(database_url)
    engine = sync_engine(database_url)
    with engine.begin() as connection:
        connection.execute(sa.insert(freight_quotes).values(company_id=1, platform_id=platform_id, quote_id="Q1"))
    engine.dispose()
    allpost.quotes["Q1"] = quote_payload("Q1")
    context = await load_context(database_url, 1)

    async with allpost.client() as client, session_scope(database_url) as session:
        reconciler = _reconciler(session, client, context, logger)
        real_find = reconciler._find_quote_pk
        calls = {"n": 0}

        async def racing_find(qid: str):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await real_find(qid)

        monkeypatch.setattr(reconciler, "_find_quote_pk", racing_find)
        await reconciler.ensure_quote_exists("Q1")

    assert reconciler.confirmed_ids == {"Q1"}
    assert await _count(database_url, freight_quotes) == 1
    assert await _count(database_url, freight_quote_options) == 2
