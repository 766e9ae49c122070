"""Return lifecycle: status transitions and the side effects they commit.

    pending --approve--> approved --complete--> completed
       |
       +----reject-----> rejected

Only pending returns may be edited or deleted. Every transition claims the
row with ``UPDATE ... WHERE status = <observed>``; losing that race raises
``StaleStatus``.

Approval restocks after the claim and before commit; a restock failure rolls
the approval back. Every restock carries a per-line idempotency key so a
retried approval does not restock a line twice. Completion issues refund legs
under per-leg references and records each one as it is paid, then claims the
row; a failed leg leaves the return approved for a retry.

A failed transition rolls the session back, which expires every return loaded
through it. Keep ids, not instances, and re-fetch after an error.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import ProductReturn, ReturnItem, ReturnRefund
from app.services.errors import (
    CollaboratorFailure,
    InvalidTransition,
    ReturnNotFound,
    ReturnValidationError,
    StaleStatus,
    ValidationIssue,
)
from app.services.gateways import InventoryGateway, RefundGateway, RestockRequest
from app.services.notification import NotificationEvent, NotificationService, notification_service
from app.services.refund_calc import RefundCalculator, RefundSplit
from app.services.validation import VALID_REFUND_TYPES

logger = logging.getLogger(__name__)


class ReturnStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


TRANSITIONS: dict[str, frozenset[str]] = {
    ReturnStatus.PENDING.value: frozenset({ReturnStatus.APPROVED.value, ReturnStatus.REJECTED.value}),
    ReturnStatus.APPROVED.value: frozenset({ReturnStatus.COMPLETED.value}),
    ReturnStatus.REJECTED.value: frozenset(),
    ReturnStatus.COMPLETED.value: frozenset(),
}

EDITABLE_STATUSES = frozenset({ReturnStatus.PENDING.value})
DELETABLE_STATUSES = frozenset({ReturnStatus.PENDING.value})


def allowed_transitions(status: str) -> frozenset[str]:
    return TRANSITIONS.get(status, frozenset())


def check_transition(current: str, target: str) -> None:
    if target not in allowed_transitions(current):
        raise InvalidTransition(current, target)


def leg_reference(return_number: str, position: int) -> str:
    return f"{return_number}-{position}"


def utcnow():
    return datetime.now(timezone.utc)


def _as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ReturnNotFound(value)


def event_data(ret: ProductReturn, actor_id: Optional[str] = None) -> dict:
    return {
        "return_id": str(ret.id),
        "return_number": ret.return_number,
        "sale_id": str(ret.sale_id),
        "store_id": ret.store_id,
        "status": ret.status,
        "refund_amount": str(ret.refund_amount),
        "refund_type": ret.refund_type,
        "user_id": ret.user_id,
        "actor_id": actor_id,
    }


class ReturnLifecycle:
    """Drives a persisted return through its states."""

    def __init__(
        self,
        db: AsyncSession,
        inventory: InventoryGateway,
        refunds: RefundGateway,
        notifier: NotificationService = notification_service,
    ):
        self.db = db
        self.inventory = inventory
        self.refunds = refunds
        self.notifier = notifier

    # --- Loading ---

    async def load(self, return_id) -> ProductReturn:
        result = await self.db.execute(
            select(ProductReturn)
            .where(ProductReturn.id == _as_uuid(return_id))
            .execution_options(populate_existing=True)
        )
        ret = result.scalar_one_or_none()
        if not ret:
            raise ReturnNotFound(return_id)
        return ret

    @staticmethod
    def _check_expected(ret: ProductReturn, expected_status: Optional[str]) -> None:
        if expected_status and expected_status != ret.status:
            raise StaleStatus(ret.id, expected_status, ret.status)

    @staticmethod
    def _require_actor(actor_id: Optional[str]) -> None:
        if not actor_id or not actor_id.strip():
            raise ReturnValidationError([ValidationIssue(
                "missing_actor", "An actor id is required for status changes",
            )])

    async def _claim(self, return_id: uuid.UUID, observed: str, **values) -> None:
        """Conditionally write ``values`` if the status is still ``observed``."""
        result = await self.db.execute(
            update(ProductReturn)
            .where(ProductReturn.id == return_id, ProductReturn.status == observed)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            actual = await self._current_status(return_id)
            raise StaleStatus(return_id, observed, actual)

    async def _current_status(self, return_id: uuid.UUID) -> Optional[str]:
        result = await self.db.execute(
            select(ProductReturn.status).where(ProductReturn.id == return_id)
        )
        return result.scalar_one_or_none()

    # --- Transitions ---

    async def transition(
        self,
        return_id,
        target: str,
        actor_id: str,
        comment: Optional[str] = None,
        expected_status: Optional[str] = None,
        refund_splits: Optional[list[RefundSplit]] = None,
    ) -> ProductReturn:
        """Move a return to ``target``. Raises ``InvalidTransition`` for illegal moves."""
        if target == ReturnStatus.APPROVED.value:
            return await self.approve(return_id, actor_id, comment, expected_status)
        if target == ReturnStatus.REJECTED.value:
            return await self.reject(return_id, actor_id, comment, expected_status)
        if target == ReturnStatus.COMPLETED.value:
            return await self.complete(return_id, actor_id, comment, expected_status, refund_splits)
        ret = await self.load(return_id)
        raise InvalidTransition(ret.status, target)

    async def approve(
        self,
        return_id,
        actor_id: str,
        comment: Optional[str] = None,
        expected_status: Optional[str] = None,
    ) -> ProductReturn:
        """Approve a pending return and restock the lines flagged for it."""
        self._require_actor(actor_id)
        ret = await self.load(return_id)
        self._check_expected(ret, expected_status)
        check_transition(ret.status, ReturnStatus.APPROVED.value)

        rid, number, observed = ret.id, ret.return_number, ret.status
        restocks = [
            RestockRequest(
                product_id=item.product_id,
                variation_id=item.variation_id,
                quantity=item.quantity,
                store_id=ret.store_id,
                reference=number,
                idempotency_key=f"{number}:{item.sale_item_id}",
            )
            for item in ret.items
            if ret.restock_items and item.restock
        ]

        await self._claim(
            rid, observed,
            status=ReturnStatus.APPROVED.value,
            approved_by=actor_id,
            approved_at=utcnow(),
            status_comment=comment,
        )
        try:
            for req in restocks:
                await self.inventory.restock(req)
        except CollaboratorFailure:
            await self.db.rollback()
            logger.error(f"Approval of {number} rolled back: restock failed")
            raise
        await self.db.commit()

        logger.info(f"Return {number} approved by {actor_id} ({len(restocks)} restock line(s))")
        ret = await self.load(rid)
        self.notifier.notify_return(NotificationEvent.RETURN_APPROVED, event_data(ret, actor_id))
        for req in restocks:
            self.notifier.notify_restocked({
                "product_id": req.product_id,
                "variation_id": req.variation_id,
                "quantity": req.quantity,
                "store_id": req.store_id,
                "reference": req.reference,
            })
        return ret

    async def reject(
        self,
        return_id,
        actor_id: str,
        comment: Optional[str] = None,
        expected_status: Optional[str] = None,
    ) -> ProductReturn:
        """Reject a pending return. No side effects; terminal."""
        self._require_actor(actor_id)
        ret = await self.load(return_id)
        self._check_expected(ret, expected_status)
        check_transition(ret.status, ReturnStatus.REJECTED.value)

        rid, number = ret.id, ret.return_number
        await self._claim(
            rid, ret.status,
            status=ReturnStatus.REJECTED.value,
            rejected_by=actor_id,
            rejected_at=utcnow(),
            status_comment=comment,
        )
        await self.db.commit()

        logger.info(f"Return {number} rejected by {actor_id}")
        ret = await self.load(rid)
        self.notifier.notify_return(NotificationEvent.RETURN_REJECTED, event_data(ret, actor_id))
        return ret

    async def complete(
        self,
        return_id,
        actor_id: str,
        comment: Optional[str] = None,
        expected_status: Optional[str] = None,
        refund_splits: Optional[list[RefundSplit]] = None,
    ) -> ProductReturn:
        """Pay out an approved return and close it.

        Each payout leg is issued under a stable reference and recorded as soon
        as the refund service accepts it. If a leg fails the return stays
        approved; a retry with the same split only issues the missing legs.
        """
        self._require_actor(actor_id)
        ret = await self.load(return_id)
        self._check_expected(ret, expected_status)
        check_transition(ret.status, ReturnStatus.COMPLETED.value)

        rid, number, observed = ret.id, ret.return_number, ret.status
        plan = RefundCalculator.plan_refunds(Decimal(ret.refund_amount), ret.refund_type, refund_splits)
        already_issued = self._issued_legs(ret, plan)

        for position, leg in enumerate(plan, start=1):
            reference = leg_reference(number, position)
            if reference in already_issued:
                continue
            try:
                issued = await self.refunds.issue_refund(leg.amount, leg.method, reference)
            except CollaboratorFailure:
                await self.db.rollback()
                logger.error(
                    f"Completion of {number} stopped at refund leg {position}/{len(plan)}; "
                    f"issued legs are kept for retry"
                )
                raise
            self.db.add(ReturnRefund(
                return_id=rid,
                reference=reference,
                amount=issued.amount,
                method=issued.method,
                transaction_id=issued.transaction_id,
                processed_by=actor_id,
                processed_at=issued.processed_at,
                status=issued.status,
            ))
            try:
                await self.db.commit()
            except IntegrityError:
                # Same leg recorded by a concurrent completion.
                await self.db.rollback()

        await self._claim(
            rid, observed,
            status=ReturnStatus.COMPLETED.value,
            refund_status="completed",
            processed_by=actor_id,
            processed_at=utcnow(),
            status_comment=comment,
        )
        await self.db.commit()

        logger.info(f"Return {number} completed by {actor_id}: {len(plan)} refund(s)")
        ret = await self.load(rid)
        self.notifier.notify_return(NotificationEvent.RETURN_COMPLETED, event_data(ret, actor_id))
        return ret

    @staticmethod
    def _issued_legs(ret: ProductReturn, plan: list[RefundSplit]) -> set[str]:
        """References of legs issued by an earlier attempt. They must match ``plan``."""
        planned = {leg_reference(ret.return_number, i): leg for i, leg in enumerate(plan, start=1)}
        issued = set()
        for refund in ret.refunds:
            leg = planned.get(refund.reference)
            if leg is None or Decimal(refund.amount) != leg.amount or refund.method != leg.method:
                raise ReturnValidationError([ValidationIssue(
                    ReturnValidationError.REFUND_SPLIT_MISMATCH,
                    f"Refund {refund.reference} of {refund.amount} via {refund.method} was already "
                    f"issued; retry with the same refund split",
                )])
            issued.add(refund.reference)
        return issued

    async def update_details(
        self,
        return_id,
        notes: Optional[str] = None,
        refund_type: Optional[str] = None,
        restock_items: Optional[bool] = None,
        expected_status: Optional[str] = None,
    ) -> ProductReturn:
        """Edit a pending return's notes, refund type or restock default."""
        ret = await self.load(return_id)
        self._check_expected(ret, expected_status)
        if ret.status not in EDITABLE_STATUSES:
            raise InvalidTransition(
                ret.status, ret.status, f"Cannot edit a return in status '{ret.status}'",
            )
        if refund_type is not None and refund_type not in VALID_REFUND_TYPES:
            raise ReturnValidationError([ValidationIssue(
                ReturnValidationError.INVALID_REFUND_TYPE, f"Invalid refund type: {refund_type}",
            )])

        values = {}
        if notes is not None:
            values["notes"] = notes
        if refund_type is not None:
            values["refund_type"] = refund_type
        if restock_items is not None:
            values["restock_items"] = restock_items
        if not values:
            return ret

        rid = ret.id
        await self._claim(rid, ret.status, **values)
        await self.db.commit()
        return await self.load(rid)

    async def delete(self, return_id, expected_status: Optional[str] = None) -> None:
        """Delete a pending return and its lines. Nothing was applied, so nothing is undone."""
        ret = await self.load(return_id)
        self._check_expected(ret, expected_status)
        if ret.status not in DELETABLE_STATUSES:
            raise InvalidTransition(
                ret.status, "deleted", f"Only pending returns can be deleted (status '{ret.status}')",
            )

        rid, observed = ret.id, ret.status
        data = event_data(ret)
        self.db.expunge(ret)

        await self.db.execute(
            delete(ReturnItem).where(ReturnItem.return_id == rid)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(ReturnRefund).where(ReturnRefund.return_id == rid)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(
            delete(ProductReturn)
            .where(ProductReturn.id == rid, ProductReturn.status == observed)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise StaleStatus(rid, observed, await self._current_status(rid))
        await self.db.commit()

        logger.info(f"Return {data['return_number']} deleted")
        self.notifier.notify_return(NotificationEvent.RETURN_DELETED, data)
