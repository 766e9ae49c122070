"""Sale snapshot provider backed by the sales tables."""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import ProductReturn, ReturnItem, Sale
from app.services.eligibility import PriorReturnLine, SaleLineItem, SaleSnapshot
from app.services.errors import SaleNotFound


def _as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise SaleNotFound(value)


def to_snapshot(sale: Sale, prior_returns: list[PriorReturnLine]) -> SaleSnapshot:
    return SaleSnapshot(
        sale_id=str(sale.id),
        store_id=sale.store_id,
        status=sale.status,
        sale_number=sale.sale_number,
        tax_rate=Decimal(sale.tax_rate) if sale.tax_rate is not None else None,
        customer_name=sale.customer_name or "",
        total_amount=Decimal(sale.total_amount or 0),
        items=[
            SaleLineItem(
                sale_item_id=str(item.id),
                product_id=item.product_id,
                variation_id=item.variation_id,
                ordered_quantity=item.quantity,
                unit_price=Decimal(item.unit_price),
                line_total=Decimal(item.total_price or 0),
                product_name=item.product_name or "",
                sku=item.sku or "",
            )
            for item in sale.items
        ],
        prior_returns=prior_returns,
    )


class SqlSaleSnapshotProvider:
    """Reads a sale, its lines and its return history in the caller's session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_sale_snapshot(self, sale_id, lock: bool = False) -> SaleSnapshot:
        """Fetch a sale snapshot or raise ``SaleNotFound``.

        ``lock=True`` row-locks the sale for the rest of the transaction so
        concurrent return creations against it serialize.
        """
        stmt = select(Sale).where(Sale.id == _as_uuid(sale_id))
        if lock:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        sale = result.scalar_one_or_none()
        if not sale:
            raise SaleNotFound(sale_id)
        history = await self.prior_returns(sale.id)
        return to_snapshot(sale, history)

    async def prior_returns(self, sale_id) -> list[PriorReturnLine]:
        result = await self.db.execute(
            select(ReturnItem.sale_item_id, ReturnItem.quantity, ProductReturn.status, ProductReturn.id)
            .join(ProductReturn, ReturnItem.return_id == ProductReturn.id)
            .where(ProductReturn.sale_id == _as_uuid(sale_id))
        )
        return [
            PriorReturnLine(
                sale_item_id=str(sale_item_id),
                quantity=quantity,
                status=status,
                return_id=str(return_id),
            )
            for sale_item_id, quantity, status, return_id in result.all()
        ]
