"""POS returns CLI: offline eligibility checks and refund quotes.

Usage:
    python -m cli eligibility show sale.json
    python -m cli refund quote sale.json --item <sale_item_id>:2 --item <sale_item_id>:1
    python -m cli refund quote sale.json --item <sale_item_id>:2 --tax-rate 0.08
    python -m cli returns transitions

The sale file holds one sale snapshot:
    {"sale_id": "...", "store_id": "...", "tax_rate": "0.10",
     "items": [{"sale_item_id": "...", "product_id": "...", "quantity": 5, "unit_price": "10.00"}],
     "returns": [{"sale_item_id": "...", "quantity": 2, "status": "approved"}]}
"""

from __future__ import annotations

import argparse
import json
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from app.config import get_settings
from app.services.eligibility import (
    DataIntegrityWarning,
    PriorReturnLine,
    SaleLineItem,
    SaleSnapshot,
    compute_eligibility,
    summarize_sale,
)
from app.services.errors import ReturnValidationError
from app.services.lifecycle import TRANSITIONS
from app.services.notification import DecimalEncoder
from app.services.refund_calc import RefundCalculator
from app.services.validation import ReturnItemInput, ReturnRequest, validate_return


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="pos-returns",
        description="POS back office returns CLI",
    )
    sub = parser.add_subparsers(dest="command", help="Top-level command")

    # ── Eligibility ──────────────────────────────────────
    elig_parser = sub.add_parser("eligibility", help="Returnable quantities")
    elig_sub = elig_parser.add_subparsers(dest="action")

    show = elig_sub.add_parser("show", help="Show returnable lines of a sale")
    show.add_argument("file", help="Sale snapshot JSON file")

    # ── Refund ───────────────────────────────────────────
    refund_parser = sub.add_parser("refund", help="Refund quotes")
    refund_sub = refund_parser.add_subparsers(dest="action")

    quote = refund_sub.add_parser("quote", help="Validate a return and quote its refund")
    quote.add_argument("file", help="Sale snapshot JSON file")
    quote.add_argument(
        "--item", action="append", default=[], metavar="SALE_ITEM_ID:QTY",
        help="Line to return (repeatable)",
    )
    quote.add_argument("--tax-rate", help="Override the sale's tax rate")
    quote.add_argument("--refund-type", default="cash", help="cash, card, adjustment or credit")

    # ── Returns ──────────────────────────────────────────
    returns_parser = sub.add_parser("returns", help="Return lifecycle")
    returns_sub = returns_parser.add_subparsers(dest="action")
    returns_sub.add_parser("transitions", help="Print the status graph")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    handlers = {
        "eligibility": handle_eligibility,
        "refund": handle_refund,
        "returns": handle_returns,
    }
    handler = handlers.get(args.command)
    if handler:
        handler(args)
    else:
        parser.print_help()


def load_snapshot(path: Path) -> SaleSnapshot:
    data = json.loads(path.read_text(encoding="utf-8"))
    tax_rate = data.get("tax_rate")
    return SaleSnapshot(
        sale_id=str(data["sale_id"]),
        store_id=str(data.get("store_id", "")),
        status=data.get("status", "completed"),
        sale_number=data.get("sale_number", ""),
        tax_rate=Decimal(str(tax_rate)) if tax_rate is not None else None,
        items=[
            SaleLineItem(
                sale_item_id=str(item["sale_item_id"]),
                product_id=str(item["product_id"]),
                variation_id=item.get("variation_id"),
                ordered_quantity=int(item["quantity"]),
                unit_price=Decimal(str(item["unit_price"])),
                product_name=item.get("product_name", ""),
                sku=item.get("sku", ""),
            )
            for item in data.get("items", [])
        ],
        prior_returns=[
            PriorReturnLine(
                sale_item_id=str(r["sale_item_id"]),
                quantity=int(r["quantity"]),
                status=r.get("status", "pending"),
            )
            for r in data.get("returns", [])
        ],
    )


def parse_item(value: str) -> ReturnItemInput:
    sale_item_id, sep, qty = value.rpartition(":")
    if not sep or not sale_item_id:
        raise ValueError(f"Expected SALE_ITEM_ID:QTY, got '{value}'")
    return ReturnItemInput(sale_item_id=sale_item_id, quantity=int(qty))


def _read_snapshot(file: str) -> SaleSnapshot:
    path = Path(file)
    if not path.exists():
        print(f"File not found: {file}")
        sys.exit(1)
    try:
        return load_snapshot(path)
    except (KeyError, TypeError, ValueError, InvalidOperation) as e:
        print(f"❌ Invalid sale file {file}: {e.__class__.__name__} {e}")
        sys.exit(2)


# ── Command Handlers ────────────────────────────────────

def handle_eligibility(args):
    if args.action == "show":
        snapshot = _read_snapshot(args.file)
        warnings: list[DataIntegrityWarning] = []
        lines = compute_eligibility(snapshot, warnings=warnings)

        print(f"{'Sale item':<38} {'Ordered':>7} {'Returned':>8} {'Left':>5} {'Amount':>10}")
        print("-" * 72)
        for line in lines:
            print(
                f"{line.sale_item_id:<38} {line.ordered_quantity:>7} "
                f"{line.returned_quantity:>8} {line.returnable_quantity:>5} {line.returnable_amount:>10}"
            )
        print(f"\nReturn status: {summarize_sale(lines)}")
        for w in warnings:
            print(f"⚠️  {w.message}")
    else:
        print("Usage: pos-returns eligibility show sale.json")


def handle_refund(args):
    if args.action == "quote":
        snapshot = _read_snapshot(args.file)
        settings = get_settings()
        try:
            items = [parse_item(s) for s in args.item]
            tax_rate = Decimal(args.tax_rate) if args.tax_rate else (
                snapshot.tax_rate if snapshot.tax_rate is not None else settings.default_tax_rate
            )
        except (ValueError, InvalidOperation) as e:
            print(f"❌ {e}")
            sys.exit(2)

        request = ReturnRequest(
            sale_id=snapshot.sale_id,
            store_id=snapshot.store_id,
            user_id="cli",
            items=items,
            refund_type=args.refund_type,
        )
        try:
            validated = validate_return(request, compute_eligibility(snapshot))
        except ReturnValidationError as e:
            print("❌ Return rejected:")
            for issue in e.issues:
                print(f"  [{issue.code}] {issue.message}")
            sys.exit(1)

        totals = RefundCalculator.compute(validated.lines, tax_rate, settings.currency_precision)
        print(json.dumps({
            "sale_id": snapshot.sale_id,
            "refund_type": validated.refund_type,
            "tax_rate": tax_rate,
            "lines": [
                {
                    "sale_item_id": line.sale_item_id,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                    "total_price": line.total_price,
                }
                for line in validated.lines
            ],
            "subtotal": totals.subtotal,
            "tax_amount": totals.tax_amount,
            "total": totals.total,
        }, indent=2, cls=DecimalEncoder))
    else:
        print("Usage: pos-returns refund quote sale.json --item SALE_ITEM_ID:QTY")


def handle_returns(args):
    if args.action == "transitions":
        for status, targets in TRANSITIONS.items():
            arrow = ", ".join(sorted(targets)) if targets else "(terminal)"
            print(f"{status:<10} -> {arrow}")
    else:
        print("Usage: pos-returns returns transitions")


if __name__ == "__main__":
    main()
