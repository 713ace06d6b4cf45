from __future__ import annotations


class FreightSyncError(Exception):
    """Base class for errors raised by the freight ingestion jobs."""


class ConfigError(FreightSyncError, RuntimeError):
    """Raised when configuration (env, tenant, platform or credential) cannot be resolved."""


class CliArgumentError(FreightSyncError, ValueError):
    """Raised when a job receives invalid command line arguments."""


class VendorHttpError(FreightSyncError):
    """Raised when the vendor API answers with a status the caller cannot absorb."""

    def __init__(self, message: str, *, status: int | None = None, url: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.url = url


class MissingSchemaError(FreightSyncError):
    """Raised when an expected table is missing from the database."""

    def __init__(self, table: str) -> None:
        super().__init__(
            f'Table "{table}" does not exist. Run `python -m freight_sync db-upgrade` '
            "(alembic upgrade head) and restart the scheduler."
        )
        self.table = table
