"""Return eligibility: how much of each sale line can still come back.

Everything here is pure. Callers recompute eligibility from freshly read
state on every validation; results are never cached between requests.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaleLineItem:
    sale_item_id: str
    product_id: str
    ordered_quantity: int
    unit_price: Decimal
    variation_id: Optional[str] = None
    line_total: Decimal = Decimal("0")
    product_name: str = ""
    sku: str = ""


@dataclass(frozen=True)
class PriorReturnLine:
    """A line of an existing return, with the status of the return owning it."""
    sale_item_id: str
    quantity: int
    status: str
    return_id: Optional[str] = None


@dataclass
class SaleSnapshot:
    sale_id: str
    store_id: str
    status: str = "completed"
    sale_number: str = ""
    tax_rate: Optional[Decimal] = None
    customer_name: str = ""
    total_amount: Decimal = Decimal("0")
    items: list[SaleLineItem] = field(default_factory=list)
    prior_returns: list[PriorReturnLine] = field(default_factory=list)


@dataclass(frozen=True)
class DataIntegrityWarning:
    sale_item_id: str
    ordered_quantity: int
    returned_quantity: int

    @property
    def message(self) -> str:
        return (
            f"Sale item {self.sale_item_id}: {self.returned_quantity} returned "
            f"but only {self.ordered_quantity} ordered"
        )


@dataclass(frozen=True)
class EligibleLine:
    sale_item_id: str
    product_id: str
    variation_id: Optional[str]
    ordered_quantity: int
    returned_quantity: int
    returnable_quantity: int
    unit_price: Decimal
    returnable_amount: Decimal
    product_name: str = ""
    sku: str = ""
    clamped: bool = False


# Statuses whose lines do not reserve quantity.
RELEASED_STATUSES = frozenset({"rejected"})


def returned_quantity_index(prior_returns: Iterable[PriorReturnLine]) -> dict[str, int]:
    """Sum returned quantity per sale item over non-rejected returns."""
    index: dict[str, int] = defaultdict(int)
    for line in prior_returns:
        if line.status in RELEASED_STATUSES:
            continue
        index[line.sale_item_id] += line.quantity
    return dict(index)


def compute_eligibility(
    sale: SaleSnapshot,
    prior_returns: Optional[Iterable[PriorReturnLine]] = None,
    warnings: Optional[list[DataIntegrityWarning]] = None,
) -> list[EligibleLine]:
    """Derive the still-returnable quantity and amount for every sale line.

    ``prior_returns`` defaults to the snapshot's own return history. Pending,
    approved and completed returns all count. A line whose history exceeds
    the ordered quantity is clamped to zero and reported as a
    ``DataIntegrityWarning`` (logged, and appended to ``warnings`` if given).
    """
    history = sale.prior_returns if prior_returns is None else prior_returns
    returned = returned_quantity_index(history)

    lines = []
    for item in sale.items:
        returned_qty = returned.get(item.sale_item_id, 0)
        remaining = item.ordered_quantity - returned_qty
        clamped = remaining < 0
        if clamped:
            issue = DataIntegrityWarning(item.sale_item_id, item.ordered_quantity, returned_qty)
            logger.warning(f"Data integrity: {issue.message} (sale {sale.sale_id})")
            if warnings is not None:
                warnings.append(issue)
            remaining = 0
        lines.append(EligibleLine(
            sale_item_id=item.sale_item_id,
            product_id=item.product_id,
            variation_id=item.variation_id,
            ordered_quantity=item.ordered_quantity,
            returned_quantity=returned_qty,
            returnable_quantity=remaining,
            unit_price=item.unit_price,
            returnable_amount=item.unit_price * remaining,
            product_name=item.product_name,
            sku=item.sku,
            clamped=clamped,
        ))
    return lines


def summarize_sale(lines: Iterable[EligibleLine]) -> str:
    """Return status of a whole sale: not_returned, partially_returned or fully_returned."""
    lines = list(lines)
    returned = sum(line.returned_quantity for line in lines)
    if returned == 0:
        return "not_returned"
    if all(line.returnable_quantity == 0 for line in lines):
        return "fully_returned"
    return "partially_returned"


def returnable_amount(lines: Iterable[EligibleLine]) -> Decimal:
    return sum((line.returnable_amount for line in lines), Decimal("0"))
