"""
CONFIG.PY - SINGLE SOURCE OF TRUTH (SSOT)

This module is the ONLY place allowed to read environment variables.

Per-tenant vendor credentials are NOT configuration: they live in the
company_platforms table and are resolved by the ingestion jobs themselves.

Config is loaded ONCE on first access and cached in a single in-memory Config
object. To use a config value, import:

    from freight_sync.config import config

Do not access os.getenv directly from any other module.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from freight_sync.common.errors import ConfigError

# Determine project root correctly (directory containing the top-level package)
PROJECT_ROOT = Path(__file__).resolve().parents[1]

# Load variables from .env if it exists; OS env overrides these automatically
load_dotenv(PROJECT_ROOT / ".env")

logger = logging.getLogger(__name__)

REQUIRED_ENV_KEYS = [
    "DATABASE_URL",
]

OPTIONAL_ENV_DEFAULTS: Dict[str, str] = {
    "RUN_ENV": "local",
    "PIPELINE_TIMEZONE": "America/Sao_Paulo",
    "ALEMBIC_CONFIG": "alembic.ini",
    "JSON_LOG_FILE": "",
    "ALLPOST_API_BASE_URL": "https://www.allpost.com.br/api/v1",
    "HTTP_TIMEOUT_SECONDS": "60",
}


def _require_env(key: str) -> str:
    value = os.getenv(key)
    if value is None:
        message = f"Missing required environment variable: {key}"
        logger.error(message)
        raise ConfigError(message)
    stripped = value.strip()
    if not stripped:
        message = f"Environment variable {key} cannot be blank"
        logger.error(message)
        raise ConfigError(message)
    return stripped


def _optional_env(key: str) -> str:
    value = os.getenv(key)
    if value is None or not value.strip():
        return OPTIONAL_ENV_DEFAULTS[key]
    return value.strip()


def _parse_float(value: str, *, key: str) -> float:
    try:
        parsed = float(value.strip())
    except (TypeError, ValueError):
        message = f"Config key {key} must be a number; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    if parsed <= 0:
        message = f"Config key {key} must be positive; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    return parsed


def _clean_url(value: str, *, key: str) -> str:
    stripped = value.strip().rstrip("/")
    if not stripped:
        message = f"Config key {key} cannot be blank"
        logger.error(message)
        raise ConfigError(message)
    return stripped


@dataclass(slots=True, frozen=True)
class Config:
    run_env: str
    pipeline_timezone: str
    database_url: str
    alembic_config: str
    json_log_file: str
    allpost_api_base_url: str
    http_timeout_seconds: float

    @classmethod
    def load_from_env(cls) -> Config:
        required = {key: _require_env(key) for key in REQUIRED_ENV_KEYS}
        optional = {key: _optional_env(key) for key in OPTIONAL_ENV_DEFAULTS}

        return cls(
            run_env=optional["RUN_ENV"],
            pipeline_timezone=optional["PIPELINE_TIMEZONE"],
            database_url=required["DATABASE_URL"],
            alembic_config=optional["ALEMBIC_CONFIG"],
            json_log_file=optional["JSON_LOG_FILE"],
            allpost_api_base_url=_clean_url(optional["ALLPOST_API_BASE_URL"], key="ALLPOST_API_BASE_URL"),
            http_timeout_seconds=_parse_float(optional["HTTP_TIMEOUT_SECONDS"], key="HTTP_TIMEOUT_SECONDS"),
        )


_config: Config | None = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config.load_from_env()
    return _config


def reset_config() -> None:
    """Drop the cached Config so the next access re-reads the environment."""

    global _config
    _config = None


def __getattr__(name: str) -> Any:
    if name == "config":
        return get_config()
    raise AttributeError(name)
