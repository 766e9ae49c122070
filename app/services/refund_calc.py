"""Refund calculation for validated return lines."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from app.services.errors import ReturnValidationError, ValidationIssue
from app.services.validation import VALID_REFUND_TYPES, ValidatedReturnLine

CENT = Decimal("0.01")


def round_money(value: Decimal, precision: Decimal = CENT) -> Decimal:
    """Round half-up to the currency minor unit (register-tape rounding)."""
    return Decimal(value).quantize(precision, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RefundTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class RefundSplit:
    """One payout leg of a refund."""
    amount: Decimal
    method: str


class RefundCalculator:
    """Computes refund totals. Deterministic, no side effects."""

    @staticmethod
    def compute(
        lines: Iterable[ValidatedReturnLine],
        tax_rate: Decimal,
        precision: Decimal = CENT,
    ) -> RefundTotals:
        subtotal = round_money(
            sum((line.unit_price * line.quantity for line in lines), Decimal("0")),
            precision,
        )
        tax_amount = round_money(subtotal * Decimal(tax_rate), precision)
        return RefundTotals(
            subtotal=subtotal,
            tax_amount=tax_amount,
            total=subtotal + tax_amount,
        )

    @staticmethod
    def plan_refunds(
        total: Decimal,
        refund_type: str,
        splits: Optional[list[RefundSplit]] = None,
    ) -> list[RefundSplit]:
        """Decide the payout legs for a refund.

        Without explicit splits the whole total goes out through the return's
        refund type. Explicit splits must be positive, use known methods and
        add up to the total exactly.
        """
        if not splits:
            return [RefundSplit(amount=total, method=refund_type)]

        issues = []
        for split in splits:
            if split.method not in VALID_REFUND_TYPES:
                issues.append(ValidationIssue(
                    ReturnValidationError.INVALID_REFUND_TYPE,
                    f"Invalid refund method: {split.method}",
                ))
            if split.amount <= 0:
                issues.append(ValidationIssue(
                    ReturnValidationError.REFUND_SPLIT_MISMATCH,
                    f"Refund amounts must be positive, got {split.amount}",
                ))
        planned = sum((s.amount for s in splits), Decimal("0"))
        if planned != total:
            issues.append(ValidationIssue(
                ReturnValidationError.REFUND_SPLIT_MISMATCH,
                f"Refund splits add up to {planned}, expected {total}",
            ))
        if issues:
            raise ReturnValidationError(issues)
        return list(splits)


def compute_refund(lines: Iterable[ValidatedReturnLine], tax_rate: Decimal) -> RefundTotals:
    return RefundCalculator.compute(lines, tax_rate)
