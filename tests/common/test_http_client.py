from __future__ import annotations

from datetime import datetime, timezone
from typing import List

import httpx
import pytest

from conftest import read_events
from freight_sync.common.errors import VendorHttpError
from freight_sync.common.http_client import (
    DEFAULT_RETRY_AFTER_SECONDS,
    HttpClient,
    HttpResult,
    backoff_delay,
    is_transient_error,
    retry_after_seconds,
)

URL = "https://allpost.test/api/v1/pedidos/"


class _Sleeps:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(handler, sleeper: _Sleeps, **kwargs) -> HttpClient:
    return HttpClient(transport=httpx.MockTransport(handler), sleeper=sleeper, **kwargs)


def test_backoff_delay_doubles_and_caps() -> None:
    assert [backoff_delay(n) for n in range(1, 8)] == [2, 4, 8, 16, 32, 60, 60]


def test_retry_after_seconds_variants() -> None:
    now = datetime(2015, 10, 21, 7, 27, 30, tzinfo=timezone.utc)
    assert retry_after_seconds("2") == 2
    assert retry_after_seconds("0") == 0
    assert retry_after_seconds(None) == DEFAULT_RETRY_AFTER_SECONDS
    assert retry_after_seconds("-5") == DEFAULT_RETRY_AFTER_SECONDS
    assert retry_after_seconds("inf") == DEFAULT_RETRY_AFTER_SECONDS
    assert retry_after_seconds("soon") == DEFAULT_RETRY_AFTER_SECONDS
    assert retry_after_seconds("Wed, 21 Oct 2015 07:28:00 GMT", now=now) == 30
    assert retry_after_seconds("Wed, 21 Oct 2015 07:00:00 GMT", now=now) == 0


def test_is_transient_error() -> None:
    request = httpx.Request("GET", URL)
    assert is_transient_error(httpx.ConnectError("boom", request=request))
    assert is_transient_error(httpx.ReadTimeout("slow", request=request))
    assert is_transient_error(RuntimeError("ECONNRESET by peer"))
    assert not is_transient_error(ValueError("bad payload"))


def test_http_result_raise_for_status() -> None:
    HttpResult(status=200, json=[], raw_text="[]", url=URL).raise_for_status()
    HttpResult(status=204, json=None, raw_text="", url=URL).raise_for_status()

    with pytest.raises(VendorHttpError) as not_found:
        HttpResult(status=404, json=None, raw_text="Loja não encontrada", url=URL).raise_for_status()
    assert not_found.value.status == 404
    assert "HTTP 404" in str(not_found.value)
    assert "Loja não encontrada" in str(not_found.value)

    with pytest.raises(VendorHttpError, match="not valid JSON"):
        HttpResult(status=200, json=None, raw_text="<html>", url=URL).raise_for_status()


@pytest.mark.asyncio
async def test_fetch_json_sends_bearer_token_and_params() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"_id": "a"}])

    sleeper = _Sleeps()
    async with _client(handler, sleeper) as client:
        result = await client.fetch_json(URL, "secret", params={"pagina": 1, "limite": 100})

    assert result.ok
    assert result.json == [{"_id": "a"}]
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert seen[0].url.params["pagina"] == "1"
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_rate_limit_waits_retry_after_without_using_transient_budget(logger, log_stream) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, headers={"Retry-After": "2"}, text="slow down")
        if calls["n"] == 2:
            raise httpx.ConnectError("reset", request=request)
        return httpx.Response(200, json={"ok": True})

    sleeper = _Sleeps()
    async with _client(handler, sleeper, logger=logger, max_transient_attempts=2) as client:
        result = await client.fetch_json(URL, "t")

    assert result.json == {"ok": True}
    assert sleeper.delays == [2, 2]
    events = read_events(log_stream)
    assert [event["message"] for event in events] == [
        "rate limited, waiting before retry",
        "transient error, retrying",
    ]
    assert all(event["phase"] == "http" and event["status"] == "warn" for event in events)


@pytest.mark.asyncio
async def test_transient_errors_back_off_then_succeed() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] <= 3:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json=[])

    sleeper = _Sleeps()
    async with _client(handler, sleeper) as client:
        result = await client.fetch_json(URL, "t")

    assert result.status == 200
    assert sleeper.delays == [2, 4, 8]


@pytest.mark.asyncio
async def test_transient_budget_exhaustion_reraises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    sleeper = _Sleeps()
    async with _client(handler, sleeper) as client:
        with pytest.raises(httpx.ConnectError):
            await client.fetch_json(URL, "t")

    assert sleeper.delays == [2, 4, 8, 16]


@pytest.mark.asyncio
async def test_non_transient_errors_are_not_retried() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise ValueError("bad handler")

    sleeper = _Sleeps()
    async with _client(handler, sleeper) as client:
        with pytest.raises(ValueError):
            await client.fetch_json(URL, "t")
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_rate_limit_budget_exhaustion_returns_429() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="too many")

    sleeper = _Sleeps()
    async with _client(handler, sleeper, max_rate_limit_retries=3) as client:
        result = await client.fetch_json(URL, "t")

    assert result.status == 429
    assert result.json is None
    assert sleeper.delays == [DEFAULT_RETRY_AFTER_SECONDS] * 3


@pytest.mark.asyncio
async def test_other_statuses_are_returned_untouched() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    sleeper = _Sleeps()
    async with _client(handler, sleeper) as client:
        result = await client.fetch_json(URL, "t")

    assert result.status == 500
    assert result.raw_text == "boom"
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_fetch_json_requires_context_manager() -> None:
    with pytest.raises(RuntimeError):
        await HttpClient().fetch_json(URL, "t")
