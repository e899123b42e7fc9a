"""
Line item calculator

Per item:
    item_subtotal = quantity * unit_price
    item_discount = item_subtotal * discount_percent / 100
    taxable       = item_subtotal - item_discount
    item_tax      = taxable * tax_percent / 100
    line_total    = taxable + item_tax

Document aggregates are sums of the unrounded per-item values, rounded once
at the end (sum first, round last). total_amount is derived from the rounded
aggregates so that total_amount == subtotal - total_discount + total_tax holds
to the cent.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from services.errors import InvalidLineItem

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# Client-supplied keys we keep on a stored line item; anything else is dropped
LINE_ITEM_FIELDS = (
    "product_id",
    "product_name",
    "description",
    "quantity",
    "unit_price",
    "discount_percent",
    "tax_percent",
)

TOTAL_FIELDS = ("subtotal", "total_discount", "total_tax", "total_amount")


def to_decimal(value: Any) -> Decimal:
    """Decimal from the shortest decimal representation of a number"""
    if isinstance(value, bool):
        raise InvalidOperation(f"boolean is not a number: {value}")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def as_float(value: Decimal) -> float:
    return float(money(value))


def _field(item: dict, name: str, index: int, default: Optional[Decimal] = None) -> Decimal:
    raw = item.get(name)
    if raw is None:
        if default is None:
            raise InvalidLineItem(
                f"Line item {index + 1}: {name} is required",
                {"index": index, "field": name},
            )
        return default
    try:
        value = to_decimal(raw)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidLineItem(
            f"Line item {index + 1}: {name} must be a number (got {raw!r})",
            {"index": index, "field": name},
        )
    if not value.is_finite():
        raise InvalidLineItem(
            f"Line item {index + 1}: {name} must be finite",
            {"index": index, "field": name},
        )
    return value


def validate_line_item(item: dict, index: int = 0) -> Dict[str, Decimal]:
    """
    Validate one raw line item and return its numeric fields as Decimals.

    Raises InvalidLineItem on: quantity < 1, negative unit price,
    discount outside [0, 100], negative tax.
    """
    if not isinstance(item, dict):
        raise InvalidLineItem(f"Line item {index + 1} must be an object", {"index": index})

    quantity = _field(item, "quantity", index, default=Decimal(1))
    unit_price = _field(item, "unit_price", index)
    discount_percent = _field(item, "discount_percent", index, default=Decimal(0))
    tax_percent = _field(item, "tax_percent", index, default=Decimal(0))

    if quantity < 1:
        raise InvalidLineItem(
            f"Line item {index + 1}: quantity must be at least 1",
            {"index": index, "field": "quantity", "value": str(quantity)},
        )
    if unit_price < 0:
        raise InvalidLineItem(
            f"Line item {index + 1}: unit_price cannot be negative",
            {"index": index, "field": "unit_price", "value": str(unit_price)},
        )
    if discount_percent < 0 or discount_percent > HUNDRED:
        raise InvalidLineItem(
            f"Line item {index + 1}: discount_percent must be between 0 and 100",
            {"index": index, "field": "discount_percent", "value": str(discount_percent)},
        )
    if tax_percent < 0:
        raise InvalidLineItem(
            f"Line item {index + 1}: tax_percent cannot be negative",
            {"index": index, "field": "tax_percent", "value": str(tax_percent)},
        )

    return {
        "quantity": quantity,
        "unit_price": unit_price,
        "discount_percent": discount_percent,
        "tax_percent": tax_percent,
    }


def _rounded(value: Decimal, details: dict) -> Decimal:
    # quantize raises past the context precision (28 digits)
    try:
        return money(value)
    except InvalidOperation:
        raise InvalidLineItem(f"{details['field']} is too large to represent", details)


def compute_line(item: dict, index: int = 0) -> Dict[str, Decimal]:
    """Unrounded per-item breakdown"""
    values = validate_line_item(item, index)

    item_subtotal = values["quantity"] * values["unit_price"]
    item_discount = item_subtotal * values["discount_percent"] / HUNDRED
    taxable = item_subtotal - item_discount
    item_tax = taxable * values["tax_percent"] / HUNDRED

    return {
        **values,
        "item_subtotal": item_subtotal,
        "item_discount": item_discount,
        "taxable_amount": taxable,
        "item_tax": item_tax,
        "line_total": taxable + item_tax,
    }


def compute_totals(line_items: Optional[List[dict]]) -> Dict[str, Any]:
    """
    Compute line totals and document aggregates.

    Returns {"line_items": [...], "subtotal", "total_discount", "total_tax",
    "total_amount"} with money values as floats rounded to 2 places.
    An empty list is a valid draft: every total is 0.
    """
    line_items = line_items or []

    subtotal = Decimal(0)
    total_discount = Decimal(0)
    total_tax = Decimal(0)
    computed_items = []

    for index, item in enumerate(line_items):
        line = compute_line(item, index)

        subtotal += line["item_subtotal"]
        total_discount += line["item_discount"]
        total_tax += line["item_tax"]

        stored = {key: item.get(key) for key in LINE_ITEM_FIELDS if key in item}
        stored.update({
            "product_name": item.get("product_name") or "",
            "description": item.get("description") or "",
            "quantity": float(line["quantity"]),
            "unit_price": float(line["unit_price"]),
            "discount_percent": float(line["discount_percent"]),
            "tax_percent": float(line["tax_percent"]),
            "line_total": float(_rounded(line["line_total"], {"index": index, "field": "line_total"})),
        })
        computed_items.append(stored)

    subtotal = _rounded(subtotal, {"field": "subtotal"})
    total_discount = _rounded(total_discount, {"field": "total_discount"})
    total_tax = _rounded(total_tax, {"field": "total_tax"})
    total_amount = subtotal - total_discount + total_tax

    return {
        "line_items": computed_items,
        "subtotal": float(subtotal),
        "total_discount": float(total_discount),
        "total_tax": float(total_tax),
        "total_amount": float(total_amount),
    }


def totals_are_consistent(document: dict) -> bool:
    """True when the stored aggregates match a fresh computation of the line items"""
    expected = compute_totals(document.get("line_items") or [])
    return all(
        to_decimal(document.get(key, 0)) == to_decimal(expected[key])
        for key in TOTAL_FIELDS
    )
