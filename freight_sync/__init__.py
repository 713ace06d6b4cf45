"""Freight quote and order ingestion for the AllPost logistics platform."""

from typing import Any

__all__ = ["sync_freight_orders", "sync_freight_quotes"]


def __getattr__(name: str) -> Any:
    if name == "sync_freight_orders":
        from freight_sync.allpost.orders_sync import sync_freight_orders as _sync_freight_orders

        return _sync_freight_orders
    if name == "sync_freight_quotes":
        from freight_sync.allpost.quotes_sync import sync_freight_quotes as _sync_freight_quotes

        return _sync_freight_quotes
    raise AttributeError(name)
