"""Returns & refunds management service."""

from __future__ import annotations

import logging
import math
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, desc, func, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.models import ProductReturn, ReturnItem, Sale
from app.services.eligibility import (
    EligibleLine,
    PriorReturnLine,
    SaleSnapshot,
    compute_eligibility,
    returnable_amount,
    returned_quantity_index,
    summarize_sale,
)
from app.services.errors import ReturnError, ReturnValidationError, ValidationIssue
from app.services.gateways import InventoryGateway, RefundGateway
from app.services.lifecycle import ReturnLifecycle, event_data
from app.services.notification import NotificationEvent, NotificationService, notification_service
from app.services.refund_calc import RefundCalculator, RefundSplit, round_money
from app.services.snapshots import SqlSaleSnapshotProvider, to_snapshot
from app.services.validation import ReturnRequest, validate_return

logger = logging.getLogger(__name__)


@dataclass
class ReturnPage:
    items: list[ProductReturn]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class ReturnableSale:
    snapshot: SaleSnapshot
    lines: list[EligibleLine]
    created_at: Optional[datetime] = None
    return_status: str = "not_returned"
    returnable_amount: Decimal = Decimal("0")
    returnable_lines: list[EligibleLine] = field(default_factory=list)

    @property
    def has_returnable_items(self) -> bool:
        return bool(self.returnable_lines)


class ReturnsManager:
    """Returns and refunds over the return store.

    One instance per request/session. Eligibility is always recomputed from
    the current database state; nothing is cached between calls. A failed
    create or transition rolls the session back and expires every return
    loaded through it, so hold on to ids and re-fetch with ``get_return``.
    """

    def __init__(
        self,
        db: AsyncSession,
        inventory: InventoryGateway,
        refunds: RefundGateway,
        settings: Optional[Settings] = None,
        notifier: NotificationService = notification_service,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.notifier = notifier
        self.snapshots = SqlSaleSnapshotProvider(db)
        self.lifecycle = ReturnLifecycle(db, inventory, refunds, notifier)

    def generate_return_number(self) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
        return f"{self.settings.return_number_prefix}-{stamp}-{uuid.uuid4().hex[:6].upper()}"

    # --- Eligibility ---

    async def get_returnable_lines(self, sale_id) -> list[EligibleLine]:
        snapshot = await self.snapshots.get_sale_snapshot(sale_id)
        return compute_eligibility(snapshot)

    async def get_sale_eligibility(self, sale_id) -> ReturnableSale:
        snapshot = await self.snapshots.get_sale_snapshot(sale_id)
        return self._returnable_sale(snapshot)

    @staticmethod
    def _returnable_sale(snapshot: SaleSnapshot, created_at: Optional[datetime] = None) -> ReturnableSale:
        lines = compute_eligibility(snapshot)
        return ReturnableSale(
            snapshot=snapshot,
            lines=lines,
            created_at=created_at,
            return_status=summarize_sale(lines),
            returnable_amount=returnable_amount(lines),
            returnable_lines=[line for line in lines if line.returnable_quantity > 0],
        )

    async def list_returnable_sales(
        self,
        store_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> list[ReturnableSale]:
        """Completed sales inside the return window, with what is left to return."""
        since = datetime.now(timezone.utc) - timedelta(days=self.settings.return_window_days)
        stmt = select(Sale).where(Sale.status == "completed", Sale.created_at >= since)
        if store_id:
            stmt = stmt.where(Sale.store_id == store_id)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                Sale.sale_number.ilike(pattern)
                | Sale.customer_name.ilike(pattern)
                | Sale.customer_email.ilike(pattern)
            )
        stmt = stmt.order_by(Sale.created_at.desc()).offset((page - 1) * limit).limit(limit)
        sales = (await self.db.execute(stmt)).scalars().all()
        if not sales:
            return []

        history: dict[uuid.UUID, list[PriorReturnLine]] = defaultdict(list)
        rows = await self.db.execute(
            select(ProductReturn.sale_id, ReturnItem.sale_item_id, ReturnItem.quantity, ProductReturn.status)
            .join(ProductReturn, ReturnItem.return_id == ProductReturn.id)
            .where(ProductReturn.sale_id.in_([s.id for s in sales]))
        )
        for sale_id, sale_item_id, quantity, status in rows.all():
            history[sale_id].append(PriorReturnLine(str(sale_item_id), quantity, status))

        return [
            self._returnable_sale(to_snapshot(sale, history[sale.id]), sale.created_at)
            for sale in sales
        ]

    # --- Create ---

    async def create_return(self, request: ReturnRequest) -> ProductReturn:
        """Validate a return against fresh eligibility and persist it as pending."""
        try:
            snapshot = await self.snapshots.get_sale_snapshot(request.sale_id, lock=True)
            if snapshot.status != "completed":
                raise ReturnValidationError([ValidationIssue(
                    ReturnValidationError.SALE_NOT_RETURNABLE,
                    f"Sale {snapshot.sale_number or snapshot.sale_id} is '{snapshot.status}'; "
                    f"only completed sales can be returned",
                )])

            validated = validate_return(request, compute_eligibility(snapshot))
            tax_rate = snapshot.tax_rate if snapshot.tax_rate is not None else self.settings.default_tax_rate
            totals = RefundCalculator.compute(validated.lines, tax_rate, self.settings.currency_precision)

            ret = ProductReturn(
                return_number=self.generate_return_number(),
                sale_id=uuid.UUID(snapshot.sale_id),
                store_id=validated.store_id,
                user_id=validated.user_id,
                status="pending",
                total_amount=totals.subtotal,
                tax_amount=totals.tax_amount,
                refund_amount=totals.total,
                refund_type=validated.refund_type,
                refund_status="pending",
                restock_items=validated.restock_items,
                notes=validated.notes,
            )
            ret.items = [
                ReturnItem(
                    sale_item_id=uuid.UUID(line.sale_item_id),
                    product_id=line.product_id,
                    variation_id=line.variation_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_price=line.total_price,
                    condition=line.condition,
                    return_reason=line.return_reason,
                    restock=line.restock,
                    notes=line.notes,
                )
                for line in validated.lines
            ]
            self.db.add(ret)
            await self.db.flush()
            await self._ensure_within_ordered(snapshot)
            await self.db.commit()
        except ReturnError:
            await self.db.rollback()
            raise

        logger.info(
            f"Return {ret.return_number} created for sale {snapshot.sale_number or snapshot.sale_id}: "
            f"{totals.subtotal} + {totals.tax_amount} tax = {totals.total}"
        )
        ret = await self.lifecycle.load(ret.id)
        self.notifier.notify_return(NotificationEvent.RETURN_CREATED, event_data(ret, request.user_id))
        return ret

    async def _ensure_within_ordered(self, snapshot: SaleSnapshot) -> None:
        """Re-read every non-rejected return of the sale, including the one just written."""
        returned = returned_quantity_index(await self.snapshots.prior_returns(snapshot.sale_id))
        issues = [
            ValidationIssue(
                ReturnValidationError.QUANTITY_EXCEEDS_ELIGIBLE,
                f"Sale item {item.sale_item_id} was returned concurrently; "
                f"{returned[item.sale_item_id]} of {item.ordered_quantity} now claimed",
                item.sale_item_id,
            )
            for item in snapshot.items
            if returned.get(item.sale_item_id, 0) > item.ordered_quantity
        ]
        if issues:
            raise ReturnValidationError(issues)

    # --- Read ---

    async def get_return(self, return_id) -> ProductReturn:
        return await self.lifecycle.load(return_id)

    async def list_returns(
        self,
        status: Optional[str] = None,
        store_id: Optional[str] = None,
        search: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        sale_id: Optional[uuid.UUID] = None,
        page: int = 1,
        limit: int = 10,
    ) -> ReturnPage:
        conditions = self._filters(store_id, start_date, end_date)
        if status and status != "all":
            conditions.append(ProductReturn.status == status)
        if sale_id:
            conditions.append(ProductReturn.sale_id == sale_id)
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(
                ProductReturn.return_number.ilike(pattern),
                Sale.sale_number.ilike(pattern),
                Sale.customer_name.ilike(pattern),
            ))

        base = select(ProductReturn).join(Sale, ProductReturn.sale_id == Sale.id)
        if conditions:
            base = base.where(and_(*conditions))

        total = (await self.db.execute(
            select(func.count()).select_from(base.subquery())
        )).scalar_one()
        result = await self.db.execute(
            base.order_by(ProductReturn.return_date.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return ReturnPage(items=list(result.scalars().all()), page=page, limit=limit, total=total)

    @staticmethod
    def _filters(
        store_id: Optional[str],
        start_date: Optional[datetime],
        end_date: Optional[datetime],
    ) -> list:
        conditions = []
        if store_id and store_id != "all":
            conditions.append(ProductReturn.store_id == store_id)
        if start_date:
            conditions.append(ProductReturn.return_date >= start_date)
        if end_date:
            conditions.append(ProductReturn.return_date <= end_date)
        return conditions

    # --- Transitions ---

    async def update_return(
        self,
        return_id,
        notes: Optional[str] = None,
        refund_type: Optional[str] = None,
        restock_items: Optional[bool] = None,
        expected_status: Optional[str] = None,
    ) -> ProductReturn:
        return await self.lifecycle.update_details(
            return_id, notes, refund_type, restock_items, expected_status,
        )

    async def update_status(
        self,
        return_id,
        target_status: str,
        actor_id: str,
        comment: Optional[str] = None,
        expected_status: Optional[str] = None,
        refund_splits: Optional[list[RefundSplit]] = None,
    ) -> ProductReturn:
        return await self.lifecycle.transition(
            return_id, target_status, actor_id, comment, expected_status, refund_splits,
        )

    async def delete_return(self, return_id, expected_status: Optional[str] = None) -> None:
        await self.lifecycle.delete(return_id, expected_status)

    # --- Reporting ---

    async def stats(
        self,
        store_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        top: int = 10,
    ) -> dict:
        """Summary report: totals plus breakdowns by status, refund type and reason."""
        conditions = self._filters(store_id, start_date, end_date)
        where = and_(*conditions) if conditions else true()

        count, refunded = (await self.db.execute(
            select(func.count(ProductReturn.id), func.coalesce(func.sum(ProductReturn.refund_amount), 0))
            .where(where)
        )).one()
        total_refund = self._money(refunded)

        by_status = {
            status: {"count": n, "refund_amount": self._money(amount)}
            for status, n, amount in (await self.db.execute(
                select(ProductReturn.status, func.count(ProductReturn.id), func.sum(ProductReturn.refund_amount))
                .where(where).group_by(ProductReturn.status)
            )).all()
        }
        by_type = {
            refund_type: {"count": n, "refund_amount": self._money(amount)}
            for refund_type, n, amount in (await self.db.execute(
                select(ProductReturn.refund_type, func.count(ProductReturn.id), func.sum(ProductReturn.refund_amount))
                .where(where).group_by(ProductReturn.refund_type)
            )).all()
        }
        by_reason = {
            (reason or "unspecified"): {"count": n, "quantity": int(qty or 0)}
            for reason, n, qty in (await self.db.execute(
                select(ReturnItem.return_reason, func.count(ReturnItem.id), func.sum(ReturnItem.quantity))
                .join(ProductReturn, ReturnItem.return_id == ProductReturn.id)
                .where(where).group_by(ReturnItem.return_reason)
            )).all()
        }
        qty_col = func.sum(ReturnItem.quantity).label("quantity")
        top_products = [
            {"product_id": product_id, "quantity": int(qty or 0), "count": n}
            for product_id, qty, n in (await self.db.execute(
                select(ReturnItem.product_id, qty_col, func.count(ReturnItem.id))
                .join(ProductReturn, ReturnItem.return_id == ProductReturn.id)
                .where(where)
                .group_by(ReturnItem.product_id)
                .order_by(desc(qty_col))
                .limit(top)
            )).all()
        ]

        return {
            "total": count,
            "total_refund_amount": total_refund,
            "average_refund_amount": self._money(total_refund / count) if count else Decimal("0.00"),
            "by_status": by_status,
            "by_refund_type": by_type,
            "by_reason": by_reason,
            "top_returned_products": top_products,
        }

    def _money(self, value) -> Decimal:
        return round_money(Decimal(str(value or 0)), self.settings.currency_precision)
