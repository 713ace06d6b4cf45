from __future__ import annotations

from typing import Dict

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from freight_sync.common.db_tables import products
from freight_sync.common.normalize import (
    is_store_reference_candidate,
    product_sku_from_partner_sku,
    split_store_reference,
)


class ProductLookup:
    """Run-scoped product id resolution for vendor cart lines."""

    def __init__(self, session: AsyncSession, company_id: int) -> None:
        self.session = session
        self.company_id = company_id
        self._by_sku: Dict[str, int | None] = {}
        self._by_reference: Dict[str, int | None] = {}

    async def by_sku(self, sku: str) -> int | None:
        if sku not in self._by_sku:
            self._by_sku[sku] = await self._first_id(products.c.sku == sku)
        return self._by_sku[sku]

    async def by_reference(self, reference: str) -> int | None:
        key = reference.strip()
        if key not in self._by_reference:
            self._by_reference[key] = await self._first_id(products.c.store_reference == key)
        return self._by_reference[key]

    async def resolve(self, partner_sku: str | None, partner_sku_id: str | None) -> int | None:
        """Match a cart line to a product id.

        Large separator-free SKUs (and ``"ref[external]"`` SKUs) are tried as
        store references first; otherwise the numeric prefix of the SKU, or
        the vendor's numeric SKU id, is matched against ``products.sku``.
        """

        product_id: int | None = None
        if is_store_reference_candidate(partner_sku):
            product_id = await self.by_reference(partner_sku or "")
        elif partner_sku and "[" in partner_sku:
            store_reference, _ = split_store_reference(partner_sku)
            if store_reference:
                product_id = await self.by_reference(store_reference)
        if product_id is not None:
            return product_id
        sku = product_sku_from_partner_sku(partner_sku) or partner_sku_id
        return await self.by_sku(sku) if sku else None

    async def _first_id(self, condition: sa.ColumnElement[bool]) -> int | None:
        stmt = (
            sa.select(products.c.id)
            .where(products.c.company_id == self.company_id, condition)
            .order_by(products.c.id)
            .limit(1)
        )
        value = (await self.session.execute(stmt)).scalar_one_or_none()
        return int(value) if value is not None else None
