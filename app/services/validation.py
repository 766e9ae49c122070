"""Return request validation against current eligibility."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from app.services.eligibility import EligibleLine
from app.services.errors import ReturnValidationError, ValidationIssue

VALID_CONDITIONS = ("good", "damaged", "defective")
VALID_REFUND_TYPES = ("cash", "card", "adjustment", "credit")


@dataclass
class ReturnItemInput:
    sale_item_id: str
    quantity: int
    condition: str = "good"
    return_reason: Optional[str] = None
    restock: bool = True
    notes: Optional[str] = None


@dataclass
class ReturnRequest:
    sale_id: str
    store_id: str
    user_id: str
    items: list[ReturnItemInput] = field(default_factory=list)
    refund_type: str = "cash"
    restock_items: bool = True
    notes: Optional[str] = None


@dataclass(frozen=True)
class ValidatedReturnLine:
    sale_item_id: str
    product_id: str
    variation_id: Optional[str]
    quantity: int
    unit_price: Decimal  # from the sale, never from the client
    condition: str = "good"
    return_reason: Optional[str] = None
    restock: bool = True
    notes: Optional[str] = None

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class ValidatedReturn:
    sale_id: str
    store_id: str
    user_id: str
    refund_type: str
    restock_items: bool
    lines: list[ValidatedReturnLine]
    notes: Optional[str] = None


def validate_return(request: ReturnRequest, eligibility: list[EligibleLine]) -> ValidatedReturn:
    """Check a proposed return against eligibility. All-or-nothing.

    Every problem is collected and raised together in a single
    ``ReturnValidationError`` so the caller can fix the whole request at once.
    """
    issues: list[ValidationIssue] = []

    if not request.items:
        raise ReturnValidationError([ValidationIssue(
            ReturnValidationError.EMPTY_RETURN, "At least one item is required",
        )])

    if request.refund_type not in VALID_REFUND_TYPES:
        issues.append(ValidationIssue(
            ReturnValidationError.INVALID_REFUND_TYPE,
            f"Invalid refund type: {request.refund_type}",
        ))

    by_id = {line.sale_item_id: line for line in eligibility}
    requested: dict[str, int] = defaultdict(int)

    for item in request.items:
        sid = str(item.sale_item_id)
        if sid not in by_id:
            issues.append(ValidationIssue(
                ReturnValidationError.UNKNOWN_SALE_ITEM,
                f"Sale item {sid} does not belong to sale {request.sale_id}",
                sid,
            ))
            continue
        if item.quantity < 1:
            issues.append(ValidationIssue(
                ReturnValidationError.INVALID_QUANTITY,
                f"Quantity must be at least 1 for sale item {sid}",
                sid,
            ))
            continue
        if item.condition not in VALID_CONDITIONS:
            issues.append(ValidationIssue(
                ReturnValidationError.INVALID_CONDITION,
                f"Invalid condition '{item.condition}' for sale item {sid}",
                sid,
            ))
        requested[sid] += item.quantity

    # Repeated entries for one line are judged on their combined quantity.
    for sid, qty in requested.items():
        line = by_id[sid]
        if qty > line.returnable_quantity:
            issues.append(ValidationIssue(
                ReturnValidationError.QUANTITY_EXCEEDS_ELIGIBLE,
                f"Cannot return {qty} of sale item {sid}: "
                f"only {line.returnable_quantity} of {line.ordered_quantity} still returnable",
                sid,
            ))

    if issues:
        raise ReturnValidationError(issues)

    lines = []
    for item in request.items:
        line = by_id[str(item.sale_item_id)]
        lines.append(ValidatedReturnLine(
            sale_item_id=line.sale_item_id,
            product_id=line.product_id,
            variation_id=line.variation_id,
            quantity=item.quantity,
            unit_price=line.unit_price,
            condition=item.condition,
            return_reason=item.return_reason,
            restock=item.restock,
            notes=item.notes,
        ))

    return ValidatedReturn(
        sale_id=str(request.sale_id),
        store_id=request.store_id,
        user_id=request.user_id,
        refund_type=request.refund_type,
        restock_items=request.restock_items,
        lines=lines,
        notes=request.notes,
    )
