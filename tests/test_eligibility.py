"""Tests for return eligibility."""

import logging
from decimal import Decimal

from app.services.eligibility import (
    PriorReturnLine,
    SaleLineItem,
    SaleSnapshot,
    compute_eligibility,
    returnable_amount,
    returned_quantity_index,
    summarize_sale,
)


def _sale(*lines, prior=()):
    return SaleSnapshot(
        sale_id="sale-1",
        store_id="store-1",
        items=[
            SaleLineItem(sale_item_id=sid, product_id=f"p-{sid}", ordered_quantity=qty, unit_price=Decimal(price))
            for sid, qty, price in lines
        ],
        prior_returns=list(prior),
    )


class TestReturnedQuantityIndex:
    def test_sums_per_item(self):
        index = returned_quantity_index([
            PriorReturnLine("a", 1, "pending"),
            PriorReturnLine("a", 2, "completed"),
            PriorReturnLine("b", 1, "approved"),
        ])
        assert index == {"a": 3, "b": 1}

    def test_rejected_releases_quantity(self):
        index = returned_quantity_index([
            PriorReturnLine("a", 4, "rejected"),
            PriorReturnLine("a", 1, "pending"),
        ])
        assert index == {"a": 1}


class TestComputeEligibility:
    def test_no_history(self):
        lines = compute_eligibility(_sale(("a", 5, "10.00")))
        assert len(lines) == 1
        assert lines[0].returnable_quantity == 5
        assert lines[0].returnable_amount == Decimal("50.00")
        assert lines[0].returned_quantity == 0

    def test_pending_reserves_quantity(self):
        sale = _sale(("a", 5, "10.00"), prior=[PriorReturnLine("a", 2, "pending")])
        line = compute_eligibility(sale)[0]
        assert line.returnable_quantity == 3
        assert line.returnable_amount == Decimal("30.00")

    def test_explicit_history_overrides_snapshot(self):
        sale = _sale(("a", 5, "10.00"), prior=[PriorReturnLine("a", 2, "pending")])
        line = compute_eligibility(sale, [])[0]
        assert line.returnable_quantity == 5

    def test_rejected_does_not_count(self):
        sale = _sale(("a", 5, "10.00"), prior=[PriorReturnLine("a", 5, "rejected")])
        assert compute_eligibility(sale)[0].returnable_quantity == 5

    def test_over_returned_is_clamped_and_reported(self, caplog):
        sale = _sale(("a", 2, "4.50"), prior=[
            PriorReturnLine("a", 2, "completed"),
            PriorReturnLine("a", 1, "approved"),
        ])
        warnings = []
        with caplog.at_level(logging.WARNING):
            line = compute_eligibility(sale, warnings=warnings)[0]
        assert line.returnable_quantity == 0
        assert line.returnable_amount == Decimal("0")
        assert line.clamped
        assert len(warnings) == 1
        assert warnings[0].returned_quantity == 3
        assert "Data integrity" in caplog.text

    def test_idempotent(self):
        sale = _sale(("a", 5, "10.00"), ("b", 1, "3.33"), prior=[PriorReturnLine("b", 1, "approved")])
        assert compute_eligibility(sale) == compute_eligibility(sale)

    def test_does_not_mutate_snapshot(self):
        prior = [PriorReturnLine("a", 1, "pending")]
        sale = _sale(("a", 5, "10.00"), prior=prior)
        compute_eligibility(sale)
        assert sale.prior_returns == prior
        assert sale.items[0].ordered_quantity == 5


class TestSaleSummary:
    def test_not_returned(self):
        lines = compute_eligibility(_sale(("a", 5, "10.00")))
        assert summarize_sale(lines) == "not_returned"

    def test_partially_returned(self):
        lines = compute_eligibility(_sale(
            ("a", 5, "10.00"), ("b", 1, "2.00"),
            prior=[PriorReturnLine("b", 1, "completed")],
        ))
        assert summarize_sale(lines) == "partially_returned"
        assert returnable_amount(lines) == Decimal("50.00")

    def test_fully_returned(self):
        lines = compute_eligibility(_sale(("a", 2, "10.00"), prior=[PriorReturnLine("a", 2, "approved")]))
        assert summarize_sale(lines) == "fully_returned"
        assert returnable_amount(lines) == Decimal("0")
