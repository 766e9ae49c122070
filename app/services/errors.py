"""Return & refund error taxonomy."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional


class ReturnError(ValueError):
    """Base class for every returns-domain failure."""


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message: str
    sale_item_id: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class ReturnValidationError(ReturnError):
    """Client-fixable request problems. Carries every issue found."""

    EMPTY_RETURN = "empty_return"
    UNKNOWN_SALE_ITEM = "unknown_sale_item"
    QUANTITY_EXCEEDS_ELIGIBLE = "quantity_exceeds_eligible"
    INVALID_QUANTITY = "invalid_quantity"
    INVALID_CONDITION = "invalid_condition"
    INVALID_REFUND_TYPE = "invalid_refund_type"
    SALE_NOT_RETURNABLE = "sale_not_returnable"
    REFUND_SPLIT_MISMATCH = "refund_split_mismatch"

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = list(issues)
        super().__init__("; ".join(i.message for i in self.issues))

    @property
    def codes(self) -> list[str]:
        return [i.code for i in self.issues]


class InvalidTransition(ReturnError):
    def __init__(self, current: str, target: str, message: str = ""):
        self.current = current
        self.target = target
        super().__init__(message or f"Cannot move return from '{current}' to '{target}'")


class StaleStatus(ReturnError):
    """Another actor changed the return first. Re-fetch and retry."""

    def __init__(self, return_id, expected: str, actual: Optional[str] = None):
        self.return_id = return_id
        self.expected = expected
        self.actual = actual
        detail = f", now '{actual}'" if actual else ""
        super().__init__(f"Return {return_id} is no longer '{expected}'{detail}")


class CollaboratorFailure(ReturnError):
    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator} failed: {message}")


class SaleNotFound(ReturnError):
    def __init__(self, sale_id):
        self.sale_id = sale_id
        super().__init__(f"Sale not found: {sale_id}")


class ReturnNotFound(ReturnError):
    def __init__(self, return_id):
        self.return_id = return_id
        super().__init__(f"Return not found: {return_id}")
