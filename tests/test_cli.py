"""CLI tests."""

import json

import pytest

from cli import main, parse_item


@pytest.fixture
def sale_file(tmp_path):
    path = tmp_path / "sale.json"
    path.write_text(json.dumps({
        "sale_id": "sale-1",
        "store_id": "store-1",
        "tax_rate": "0.10",
        "items": [
            {"sale_item_id": "line-a", "product_id": "prod-a", "quantity": 5, "unit_price": "10.00"},
            {"sale_item_id": "line-b", "product_id": "prod-b", "quantity": 1, "unit_price": "3.50"},
        ],
        "returns": [
            {"sale_item_id": "line-a", "quantity": 2, "status": "approved"},
            {"sale_item_id": "line-a", "quantity": 3, "status": "rejected"},
        ],
    }))
    return path


class TestParseItem:
    def test_parse(self):
        item = parse_item("line-a:2")
        assert item.sale_item_id == "line-a"
        assert item.quantity == 2

    def test_missing_quantity(self):
        with pytest.raises(ValueError):
            parse_item("line-a")


class TestCommands:
    def test_eligibility_show(self, sale_file, capsys):
        main(["eligibility", "show", str(sale_file)])
        out = capsys.readouterr().out
        assert "line-a" in out
        assert "partially_returned" in out

    def test_refund_quote(self, sale_file, capsys):
        main(["refund", "quote", str(sale_file), "--item", "line-a:2", "--item", "line-b:1"])
        data = json.loads(capsys.readouterr().out)
        assert data["subtotal"] == "23.50"
        assert data["tax_amount"] == "2.35"
        assert data["total"] == "25.85"

    def test_refund_quote_tax_override(self, sale_file, capsys):
        main(["refund", "quote", str(sale_file), "--item", "line-a:1", "--tax-rate", "0"])
        data = json.loads(capsys.readouterr().out)
        assert data["total"] == "10.00"

    def test_refund_quote_over_eligible(self, sale_file, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["refund", "quote", str(sale_file), "--item", "line-a:4"])
        assert exc.value.code == 1
        assert "quantity_exceeds_eligible" in capsys.readouterr().out

    def test_refund_quote_bad_item(self, sale_file):
        with pytest.raises(SystemExit) as exc:
            main(["refund", "quote", str(sale_file), "--item", "line-a:two"])
        assert exc.value.code == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main(["eligibility", "show", str(tmp_path / "nope.json")])
        assert exc.value.code == 1

    @pytest.mark.parametrize("content", [
        "{not json",
        json.dumps({"items": []}),
        json.dumps({"sale_id": "s-1", "items": [{"sale_item_id": "a", "product_id": "p"}]}),
        json.dumps({"sale_id": "s-1", "items": [
            {"sale_item_id": "a", "product_id": "p", "quantity": 1, "unit_price": "ten"},
        ]}),
    ])
    def test_malformed_sale_file(self, tmp_path, capsys, content):
        path = tmp_path / "bad.json"
        path.write_text(content)
        with pytest.raises(SystemExit) as exc:
            main(["eligibility", "show", str(path)])
        assert exc.value.code == 2
        assert "Invalid sale file" in capsys.readouterr().out

    def test_transitions(self, capsys):
        main(["returns", "transitions"])
        out = capsys.readouterr().out
        assert "pending" in out
        assert "(terminal)" in out
