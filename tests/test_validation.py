"""Tests for return request validation."""

from decimal import Decimal

import pytest

from app.services.eligibility import PriorReturnLine, SaleLineItem, SaleSnapshot, compute_eligibility
from app.services.errors import ReturnValidationError
from app.services.validation import ReturnItemInput, ReturnRequest, validate_return


@pytest.fixture
def eligibility():
    sale = SaleSnapshot(
        sale_id="sale-1",
        store_id="store-1",
        items=[
            SaleLineItem("line-a", "prod-a", 5, Decimal("10.00"), variation_id="var-1"),
            SaleLineItem("line-b", "prod-b", 2, Decimal("7.25")),
        ],
        prior_returns=[PriorReturnLine("line-b", 1, "pending")],
    )
    return compute_eligibility(sale)


def _request(*items, **overrides):
    defaults = dict(sale_id="sale-1", store_id="store-1", user_id="user-1", items=list(items))
    defaults.update(overrides)
    return ReturnRequest(**defaults)


class TestValidateReturn:
    def test_valid_request(self, eligibility):
        validated = validate_return(
            _request(ReturnItemInput("line-a", 2, condition="damaged", return_reason="cracked")),
            eligibility,
        )
        assert len(validated.lines) == 1
        line = validated.lines[0]
        assert line.product_id == "prod-a"
        assert line.variation_id == "var-1"
        assert line.unit_price == Decimal("10.00")
        assert line.total_price == Decimal("20.00")
        assert line.condition == "damaged"

    def test_empty_return(self, eligibility):
        with pytest.raises(ReturnValidationError) as exc:
            validate_return(_request(), eligibility)
        assert exc.value.codes == ["empty_return"]

    def test_unknown_sale_item(self, eligibility):
        with pytest.raises(ReturnValidationError) as exc:
            validate_return(_request(ReturnItemInput("line-z", 1)), eligibility)
        assert exc.value.codes == ["unknown_sale_item"]
        assert exc.value.issues[0].sale_item_id == "line-z"

    def test_invalid_quantity(self, eligibility):
        with pytest.raises(ReturnValidationError) as exc:
            validate_return(_request(ReturnItemInput("line-a", 0)), eligibility)
        assert exc.value.codes == ["invalid_quantity"]

    def test_negative_quantity(self, eligibility):
        with pytest.raises(ReturnValidationError) as exc:
            validate_return(_request(ReturnItemInput("line-a", -3)), eligibility)
        assert exc.value.codes == ["invalid_quantity"]

    def test_quantity_exceeds_eligible(self, eligibility):
        with pytest.raises(ReturnValidationError) as exc:
            validate_return(_request(ReturnItemInput("line-b", 2)), eligibility)
        assert exc.value.codes == ["quantity_exceeds_eligible"]
        assert "only 1 of 2" in str(exc.value)

    def test_all_or_nothing(self, eligibility):
        with pytest.raises(ReturnValidationError) as exc:
            validate_return(
                _request(ReturnItemInput("line-a", 1), ReturnItemInput("line-b", 5)),
                eligibility,
            )
        assert exc.value.codes == ["quantity_exceeds_eligible"]

    def test_duplicate_lines_are_combined(self, eligibility):
        with pytest.raises(ReturnValidationError) as exc:
            validate_return(
                _request(ReturnItemInput("line-a", 3), ReturnItemInput("line-a", 3)),
                eligibility,
            )
        assert exc.value.codes == ["quantity_exceeds_eligible"]

    def test_reports_every_issue(self, eligibility):
        with pytest.raises(ReturnValidationError) as exc:
            validate_return(
                _request(
                    ReturnItemInput("line-z", 1),
                    ReturnItemInput("line-a", 0),
                    ReturnItemInput("line-b", 9),
                ),
                eligibility,
            )
        assert sorted(exc.value.codes) == sorted([
            "unknown_sale_item", "invalid_quantity", "quantity_exceeds_eligible",
        ])

    def test_invalid_condition(self, eligibility):
        with pytest.raises(ReturnValidationError) as exc:
            validate_return(_request(ReturnItemInput("line-a", 1, condition="used")), eligibility)
        assert exc.value.codes == ["invalid_condition"]

    def test_invalid_refund_type(self, eligibility):
        with pytest.raises(ReturnValidationError) as exc:
            validate_return(_request(ReturnItemInput("line-a", 1), refund_type="bitcoin"), eligibility)
        assert "invalid_refund_type" in exc.value.codes

    def test_price_comes_from_sale(self, eligibility):
        item = ReturnItemInput("line-a", 1)
        item.unit_price = Decimal("999.99")  # anything the client sends is ignored
        validated = validate_return(_request(item), eligibility)
        assert validated.lines[0].unit_price == Decimal("10.00")

    def test_is_a_value_error(self, eligibility):
        with pytest.raises(ValueError, match="(?i)at least one"):
            validate_return(_request(), eligibility)
