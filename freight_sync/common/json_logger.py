"""NDJSON event logger shared by the sync jobs, backfills and the CLI.

Every event is one JSON object per line carrying ``run_id``, ``ts``,
``phase``, ``status`` and ``message`` plus whatever context was bound.
Tenant credentials never reach the output: any field whose name mentions a
token or an authorization header is masked before encoding.
"""
from __future__ import annotations

import json
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, TextIO

__all__ = ["JsonLogger", "get_logger", "log_event", "timed_event", "new_run_id"]

REDACTED = "***"
_SECRET_MARKERS = ("token", "authorization", "password")


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S%f")


def _default_log_file_path() -> str | None:
    from freight_sync.config import config

    return config.json_log_file.strip() or None


def _redact(fields: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        key: REDACTED if value and any(marker in key.lower() for marker in _SECRET_MARKERS) else value
        for key, value in fields.items()
    }


class _Sink:
    """Output targets owned by a root logger and shared with its children."""

    def __init__(self, stream: TextIO, log_file_path: str | None) -> None:
        self.stream = stream
        self.log_file_path = self._prepare(log_file_path)
        self.file_handle = open(self.log_file_path, "a", encoding="utf-8") if self.log_file_path else None
        self.closed = False

    @staticmethod
    def _prepare(raw_path: str | None) -> str | None:
        if not raw_path:
            return None
        path = Path(raw_path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)

    def write(self, line: str) -> None:
        if self.closed:
            return
        self.stream.write(line + "\n")
        self.stream.flush()
        if self.file_handle:
            self.file_handle.write(line + "\n")
            self.file_handle.flush()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.file_handle:
            self.file_handle.close()
            self.file_handle = None


_AUTO = object()


class JsonLogger:
    """Emit newline-delimited JSON events.

    ``bind`` returns a child that shares the parent's sink, so closing the
    root silences every child; closing a child is a no-op.
    """

    def __init__(
        self,
        run_id: Optional[str] = None,
        stream: TextIO | None = None,
        *,
        log_file_path: str | None | object = _AUTO,
    ):
        self.run_id = run_id or new_run_id()
        if log_file_path is _AUTO:
            log_file_path = _default_log_file_path()
        self._sink = _Sink(stream or sys.stdout, log_file_path)  # type: ignore[arg-type]
        self._owns_sink = True
        self.context: Dict[str, Any] = {"run_id": self.run_id}

    @property
    def log_file_path(self) -> str | None:
        return self._sink.log_file_path

    @property
    def closed(self) -> bool:
        return self._sink.closed

    def bind(self, **context: Any) -> "JsonLogger":
        child = object.__new__(JsonLogger)
        child.run_id = self.run_id
        child._sink = self._sink
        child._owns_sink = False
        child.context = {**self.context, **context}
        return child

    def info(self, *, phase: str, status: str = "ok", message: str = "", **fields: Any) -> None:
        event = {
            **self.context,
            "ts": datetime.now(timezone.utc).isoformat(),
            "phase": phase,
            "status": status,
            "message": message,
            **fields,
        }
        self._sink.write(json.dumps(_redact(event), default=str, ensure_ascii=False))

    def warn(self, *, phase: str, message: str, **fields: Any) -> None:
        self.info(phase=phase, status="warn", message=message, **fields)

    def error(self, *, phase: str, message: str, **fields: Any) -> None:
        self.info(phase=phase, status="error", message=message, **fields)

    def close(self) -> None:
        if self._owns_sink:
            self._sink.close()


def get_logger(run_id: Optional[str] = None) -> JsonLogger:
    return JsonLogger(run_id=run_id)


def log_event(*, logger: JsonLogger, phase: str, status: str = "ok", message: str = "", **extras: Any) -> None:
    logger.info(phase=phase, status=status, message=message, **extras)


@contextmanager
def timed_event(*, logger: JsonLogger, phase: str, message: str = "", **fields: Any) -> Iterator[None]:
    """Log ``phase`` with its wall-clock duration once the block exits."""

    start = time.perf_counter()
    try:
        yield
    except Exception as exc:
        logger.error(
            phase=phase,
            message=f"{message} failed: {exc}",
            duration_ms=int((time.perf_counter() - start) * 1000),
            exception=repr(exc),
            **fields,
        )
        raise
    logger.info(phase=phase, message=message, duration_ms=int((time.perf_counter() - start) * 1000), **fields)
