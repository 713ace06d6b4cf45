"""Bearer-authenticated JSON GETs with transient and rate-limit retry budgets."""
from __future__ import annotations

import asyncio
import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping

import httpx
from dateutil import parser

from freight_sync.common.errors import VendorHttpError
from freight_sync.common.json_logger import JsonLogger, log_event

__all__ = [
    "HttpResult",
    "HttpClient",
    "backoff_delay",
    "is_transient_error",
    "retry_after_seconds",
]

MAX_TRANSIENT_ATTEMPTS = 5
MAX_RATE_LIMIT_RETRIES = 10
BASE_BACKOFF_SECONDS = 2.0
MAX_BACKOFF_SECONDS = 60.0
DEFAULT_RETRY_AFTER_SECONDS = 60.0
BODY_PREVIEW_CHARS = 500

_TRANSIENT_MARKERS = ("fetch failed", "timeout", "timed out", "econnreset", "enotfound", "eai_again")

Sleeper = Callable[[float], Awaitable[Any]]


@dataclass(slots=True)
class HttpResult:
    status: int
    json: Any
    raw_text: str
    url: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def raise_for_status(self) -> None:
        """Raise :class:`VendorHttpError` for non-2xx or non-JSON 2xx bodies."""

        preview = self.raw_text[:BODY_PREVIEW_CHARS]
        if not self.ok:
            raise VendorHttpError(
                f"HTTP {self.status} calling {self.url}. Body: {preview}", status=self.status, url=self.url
            )
        if self.json is None and self.raw_text.strip():
            raise VendorHttpError(
                f"Response is not valid JSON calling {self.url}. Body: {preview}", status=self.status, url=self.url
            )


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after the ``attempt``-th transient failure (1-based)."""

    return min(MAX_BACKOFF_SECONDS, BASE_BACKOFF_SECONDS * 2 ** (attempt - 1))


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    text = f"{type(exc).__name__} {exc}".lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def retry_after_seconds(value: str | None, *, now: datetime | None = None) -> float:
    """Parse a ``Retry-After`` header given either as seconds or as an HTTP date."""

    if value is None or not value.strip():
        return DEFAULT_RETRY_AFTER_SECONDS
    text = value.strip()
    try:
        seconds = float(text)
    except ValueError:
        seconds = None
    if seconds is not None:
        return seconds if math.isfinite(seconds) and seconds >= 0 else DEFAULT_RETRY_AFTER_SECONDS
    try:
        when = parser.parse(text)
    except (ValueError, OverflowError):
        return DEFAULT_RETRY_AFTER_SECONDS
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    reference = now or datetime.now(timezone.utc)
    return max(0.0, (when - reference).total_seconds())


class HttpClient:
    """Async GET client for vendor JSON endpoints.

    Transient network failures are retried with exponential backoff; HTTP 429
    responses are retried on a separate budget using ``Retry-After``. Any
    other status is handed back to the caller untouched.
    """

    def __init__(
        self,
        *,
        timeout: float = 60.0,
        logger: JsonLogger | None = None,
        sleeper: Sleeper | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_transient_attempts: int = MAX_TRANSIENT_ATTEMPTS,
        max_rate_limit_retries: int = MAX_RATE_LIMIT_RETRIES,
    ) -> None:
        self.timeout = timeout
        self.logger = logger
        self.sleeper: Sleeper = sleeper or asyncio.sleep
        self.transport = transport
        self.max_transient_attempts = max_transient_attempts
        self.max_rate_limit_retries = max_rate_limit_retries
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HttpClient":
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _log(self, status: str, message: str, **fields: Any) -> None:
        if self.logger is not None:
            log_event(logger=self.logger, phase="http", status=status, message=message, **fields)

    async def fetch_json(
        self, url: str, token: str, *, params: Mapping[str, Any] | None = None
    ) -> HttpResult:
        if self._client is None:
            raise RuntimeError("HttpClient not initialized. Use async with.")

        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        transient_attempt = 0
        rate_limited = 0
        while True:
            try:
                response = await self._client.get(url, params=params, headers=headers)
            except Exception as exc:
                if not is_transient_error(exc):
                    raise
                transient_attempt += 1
                if transient_attempt >= self.max_transient_attempts:
                    self._log(
                        "error",
                        "transient error retry budget exhausted",
                        url=url,
                        attempts=transient_attempt,
                        error=repr(exc),
                    )
                    raise
                delay = backoff_delay(transient_attempt)
                self._log(
                    "warn",
                    "transient error, retrying",
                    url=url,
                    attempt=transient_attempt,
                    delay_seconds=delay,
                    error=repr(exc),
                )
                await self.sleeper(delay)
                continue

            result = _to_result(response)
            if result.status != 429:
                return result
            if rate_limited >= self.max_rate_limit_retries:
                self._log("warn", "rate limit retry budget exhausted", url=result.url, retries=rate_limited)
                return result
            rate_limited += 1
            delay = retry_after_seconds(response.headers.get("Retry-After"))
            self._log(
                "warn",
                "rate limited, waiting before retry",
                url=result.url,
                retry=rate_limited,
                delay_seconds=delay,
            )
            await self.sleeper(delay)


def _to_result(response: httpx.Response) -> HttpResult:
    text = response.text or ""
    payload: Any = None
    if 200 <= response.status_code < 300 and text.strip():
        try:
            payload = json.loads(text)
        except ValueError:
            payload = None
    return HttpResult(status=response.status_code, json=payload, raw_text=text, url=str(response.request.url))
