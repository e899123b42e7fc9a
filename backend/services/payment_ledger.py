"""
Invoice payment ledger

Payments are append-only entries on the invoice. total_paid, balance_due and
the payment-driven part of the status are pure functions of
(payments, total_amount, current status):

    balance_due <= 0 and total_paid > 0  ->  paid
    total_paid > 0 and balance_due > 0   ->  partially_paid
    otherwise                            ->  status left as explicitly set

A cancelled invoice keeps its status. The same recompute runs after a new
payment, a line item edit or an explicit status change.
"""

import uuid
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional

from config import now_iso
from services.errors import InvalidStateError, ValidationError
from services.line_items import as_float, money, to_decimal


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    CHEQUE = "cheque"
    OTHER = "other"


PAYMENT_METHODS = [m.value for m in PaymentMethod]


def total_paid(payments) -> Decimal:
    return sum((to_decimal(p.get("amount", 0)) for p in payments or []), Decimal(0))


def derive_status(status: str, paid: Decimal, balance_due: Decimal) -> str:
    if status == "cancelled":
        return status
    if balance_due <= 0 and paid > 0:
        return "paid"
    if paid > 0 and balance_due > 0:
        return "partially_paid"
    return status


def recompute(invoice: dict) -> dict:
    """
    Return the derived ledger fields for `invoice`:
    {"total_paid", "balance_due", "status", "paid_at"}.
    Side-effect free.
    """
    paid = money(total_paid(invoice.get("payments")))
    balance_due = money(to_decimal(invoice.get("total_amount", 0))) - paid
    status = derive_status(invoice.get("status", "draft"), paid, balance_due)

    paid_at = None
    if status == "paid":
        paid_at = invoice.get("paid_at") or now_iso()

    return {
        "total_paid": as_float(paid),
        "balance_due": as_float(balance_due),
        "status": status,
        "paid_at": paid_at,
    }


def apply_recompute(invoice: dict) -> dict:
    return {**invoice, **recompute(invoice)}


def build_payment(
    amount,
    method: str,
    recorded_by: str,
    reference_number: Optional[str] = None,
    notes: Optional[str] = None,
    payment_date: Optional[str] = None,
) -> dict:
    """Validate and build one ledger entry"""
    try:
        value = to_decimal(amount)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Payment amount must be a number (got {amount!r})", {"field": "amount"})

    if not value.is_finite() or value <= 0:
        raise ValidationError("Payment amount must be greater than 0", {"field": "amount", "value": str(amount)})

    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Unknown payment method: {method}",
            {"field": "method", "allowed": PAYMENT_METHODS},
        )

    try:
        amount_value = as_float(value)
    except InvalidOperation:
        raise ValidationError("Payment amount is too large to represent", {"field": "amount", "value": str(amount)})

    recorded_at = now_iso()
    return {
        "id": str(uuid.uuid4()),
        "amount": amount_value,
        "method": method,
        "reference_number": reference_number or "",
        "notes": notes or "",
        "payment_date": payment_date or recorded_at,
        "recorded_by": recorded_by,
        "recorded_at": recorded_at,
    }


def record_payment(invoice: dict, amount, method: str, recorded_by: str, **extra) -> dict:
    """
    Append a payment to `invoice` and return the recomputed invoice.
    The input dict is not modified. Overpayment is accepted.
    """
    if invoice.get("status") == "cancelled":
        raise InvalidStateError(
            "Cannot record a payment on a cancelled invoice",
            {"invoice_id": invoice.get("id"), "status": "cancelled"},
        )

    payment = build_payment(amount, method, recorded_by, **extra)
    updated = {**invoice, "payments": list(invoice.get("payments") or []) + [payment]}
    return apply_recompute(updated)
