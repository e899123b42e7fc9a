"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Line item calculator                                                        ║
║                                                                              ║
║  1. Per-line and aggregate amounts                                           ║
║  2. Sum first, round last                                                    ║
║  3. Validation of quantity / price / discount / tax                          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import pytest

from services.errors import InvalidLineItem, ValidationError
from services.line_items import compute_totals, totals_are_consistent, validate_line_item


class TestComputeTotals:

    def test_reference_line(self, scenario_line):
        """2 x 100 at 10% discount and 18% tax"""
        totals = compute_totals([scenario_line])
        assert totals["subtotal"] == 200.0
        assert totals["total_discount"] == 20.0
        assert totals["total_tax"] == 32.4
        assert totals["total_amount"] == 212.4
        assert totals["line_items"][0]["line_total"] == 212.4

    def test_empty_list_is_zero(self):
        totals = compute_totals([])
        assert totals == {
            "line_items": [],
            "subtotal": 0.0,
            "total_discount": 0.0,
            "total_tax": 0.0,
            "total_amount": 0.0,
        }
        assert compute_totals(None)["total_amount"] == 0.0

    def test_defaults_for_optional_fields(self):
        totals = compute_totals([{"product_name": "Widget", "unit_price": 12.5}])
        item = totals["line_items"][0]
        assert item["quantity"] == 1.0
        assert item["discount_percent"] == 0.0
        assert item["tax_percent"] == 0.0
        assert totals["total_amount"] == 12.5

    def test_multiple_lines_summed(self):
        totals = compute_totals([
            {"quantity": 3, "unit_price": 10, "tax_percent": 20},
            {"quantity": 1, "unit_price": 50, "discount_percent": 50},
        ])
        assert totals["subtotal"] == 80.0
        assert totals["total_discount"] == 25.0
        assert totals["total_tax"] == 6.0
        assert totals["total_amount"] == 61.0

    def test_rounding_happens_once_on_the_sum(self):
        """Three lines of 0.333 tax each: summed then rounded, not rounded per line"""
        line = {"quantity": 1, "unit_price": 3.33, "tax_percent": 10}
        totals = compute_totals([line, line, line])
        assert totals["subtotal"] == 9.99
        assert totals["total_tax"] == 1.0
        assert totals["total_amount"] == 10.99

    def test_total_identity_holds(self):
        totals = compute_totals([
            {"quantity": 7, "unit_price": 19.99, "discount_percent": 12.5, "tax_percent": 7.7},
            {"quantity": 3, "unit_price": 0.15, "discount_percent": 3, "tax_percent": 19},
        ])
        assert round(totals["subtotal"] - totals["total_discount"] + totals["total_tax"], 2) == totals["total_amount"]

    def test_client_keys_kept_and_unknown_dropped(self):
        totals = compute_totals([{
            "product_id": "p-1",
            "product_name": "Widget",
            "description": "Blue",
            "unit_price": 1,
            "line_total": 999,
            "injected": True,
        }])
        item = totals["line_items"][0]
        assert item["product_id"] == "p-1"
        assert item["description"] == "Blue"
        assert item["line_total"] == 1.0
        assert "injected" not in item

    def test_consistency_check(self, scenario_line):
        document = compute_totals([scenario_line])
        assert totals_are_consistent(document)
        assert not totals_are_consistent({**document, "total_amount": 999})


class TestLineItemValidation:

    @pytest.mark.parametrize("item, field", [
        ({"quantity": 0, "unit_price": 10}, "quantity"),
        ({"quantity": 1, "unit_price": -1}, "unit_price"),
        ({"quantity": 1, "unit_price": 10, "discount_percent": 101}, "discount_percent"),
        ({"quantity": 1, "unit_price": 10, "discount_percent": -5}, "discount_percent"),
        ({"quantity": 1, "unit_price": 10, "tax_percent": -1}, "tax_percent"),
        ({"quantity": 1}, "unit_price"),
        ({"quantity": "two", "unit_price": 10}, "quantity"),
        ({"quantity": 1, "unit_price": True}, "unit_price"),
        ({"quantity": 1, "unit_price": float("nan")}, "unit_price"),
    ])
    def test_rejected(self, item, field):
        with pytest.raises(InvalidLineItem) as exc:
            validate_line_item(item, 0)
        assert exc.value.details["field"] == field

    def test_invalid_line_is_a_validation_error(self):
        with pytest.raises(ValidationError) as exc:
            compute_totals([{"unit_price": 10}, {"quantity": 0, "unit_price": 10}])
        assert exc.value.details["index"] == 1
        assert "Line item 2" in exc.value.message

    def test_boundaries_accepted(self):
        values = validate_line_item({"quantity": 1, "unit_price": 0, "discount_percent": 100, "tax_percent": 0})
        assert values["discount_percent"] == 100

    def test_non_object_rejected(self):
        with pytest.raises(InvalidLineItem):
            compute_totals(["not a line"])

    def test_line_total_beyond_precision(self):
        with pytest.raises(InvalidLineItem) as exc:
            compute_totals([{"quantity": 1, "unit_price": 1e27}])
        assert exc.value.details == {"index": 0, "field": "line_total"}

    def test_aggregate_beyond_precision(self):
        line = {"quantity": 1, "unit_price": 6e25}
        with pytest.raises(InvalidLineItem) as exc:
            compute_totals([line, line])
        assert exc.value.details["field"] == "subtotal"
