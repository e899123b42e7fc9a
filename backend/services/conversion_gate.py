"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Conversion Gate & document state machines                                   ║
║                                                                              ║
║  Conversions (the only cross-type transitions, one-shot):                    ║
║    RFI            -> Quotation   (any status, forces "converted")            ║
║    Quotation      -> Invoice     (any status, forces "accepted")             ║
║    PurchaseOrder  -> Invoice     (only from "approved", forces "completed")  ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - a conversion flag only ever flips false -> true                           ║
║  - the flag is claimed atomically BEFORE the target document exists          ║
║  - commercial fields cross the boundary through the explicit mappers below   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import copy
from typing import Dict, List, NamedTuple, Optional, Tuple

from services.errors import AlreadyConvertedError, InvalidStateError


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS (explicit status updates)
# ════════════════════════════════════════════════════════════════════════════

VALID_RFI_TRANSITIONS = {
    "draft": ["sent", "closed"],
    "sent": ["responded", "closed"],
    "responded": ["closed"],
    "converted": [],  # TERMINAL - only via convert_rfi_to_quotation
    "closed": [],  # TERMINAL
}

VALID_QUOTATION_TRANSITIONS = {
    "draft": ["sent", "viewed", "accepted", "rejected", "expired"],
    "sent": ["viewed", "accepted", "rejected", "expired"],
    "viewed": ["accepted", "rejected", "expired"],
    "accepted": [],  # TERMINAL
    "rejected": [],  # TERMINAL
    "expired": [],  # TERMINAL
}

VALID_PURCHASE_ORDER_TRANSITIONS = {
    "draft": ["received", "approved", "cancelled"],
    "received": ["approved", "cancelled"],
    "approved": ["in_progress", "completed", "cancelled"],
    "in_progress": ["completed", "cancelled"],
    "completed": [],  # TERMINAL
    "cancelled": [],  # TERMINAL
}

# paid / partially_paid are never set explicitly, the payment ledger derives them
VALID_INVOICE_TRANSITIONS = {
    "draft": ["sent", "overdue", "cancelled"],
    "sent": ["overdue", "cancelled"],
    "partially_paid": ["cancelled"],
    "overdue": ["cancelled"],
    "paid": [],  # TERMINAL
    "cancelled": [],  # TERMINAL
}

VALID_TRANSITIONS = {
    "rfi": VALID_RFI_TRANSITIONS,
    "quotation": VALID_QUOTATION_TRANSITIONS,
    "purchase_order": VALID_PURCHASE_ORDER_TRANSITIONS,
    "invoice": VALID_INVOICE_TRANSITIONS,
}

DERIVED_STATUSES = {
    "invoice": ["paid", "partially_paid"],
}

# Statuses from which a document may be (re)sent to the customer
SENDABLE_STATUSES = {
    "rfi": ["draft", "sent", "responded"],
    "quotation": ["draft", "sent", "viewed"],
    "invoice": ["draft", "sent", "partially_paid", "overdue"],
}


def validate_transition(document_type: str, document_id: str, from_status: str, to_status: str) -> bool:
    """
    Validate an explicit status change. Raises InvalidStateError.
    Setting the current status again is a no-op and allowed.
    """
    table = VALID_TRANSITIONS[document_type]

    if to_status not in table:
        raise InvalidStateError(
            f"Unknown {document_type} status: '{to_status}'",
            {"document_id": document_id, "allowed": list(table.keys())},
        )

    if to_status in DERIVED_STATUSES.get(document_type, []):
        raise InvalidStateError(
            f"Status '{to_status}' is derived from recorded payments and cannot be set directly",
            {"document_id": document_id, "status": to_status},
        )

    if from_status == to_status:
        return True

    valid_next = table.get(from_status, [])
    if to_status not in valid_next:
        raise InvalidStateError(
            f"Invalid transition: {document_type} {document_id} cannot go from "
            f"'{from_status}' to '{to_status}'",
            {"document_id": document_id, "from": from_status, "to": to_status, "valid_next": valid_next},
        )
    return True


def is_terminal(document_type: str, status: str) -> bool:
    return not VALID_TRANSITIONS[document_type].get(status)


# ════════════════════════════════════════════════════════════════════════════
# CONVERSION GATES
# ════════════════════════════════════════════════════════════════════════════

class Conversion(NamedTuple):
    source_type: str
    target_type: str
    flag_field: str
    ref_field: str
    allowed_from: Optional[Tuple[str, ...]]  # None = any status
    status_after: str


CONVERSIONS: Dict[Tuple[str, str], Conversion] = {
    ("rfi", "quotation"): Conversion(
        "rfi", "quotation", "converted_to_quotation", "quotation_id",
        None, "converted",
    ),
    ("quotation", "invoice"): Conversion(
        "quotation", "invoice", "converted_to_invoice", "invoice_id",
        None, "accepted",
    ),
    ("purchase_order", "invoice"): Conversion(
        "purchase_order", "invoice", "converted_to_invoice", "invoice_id",
        ("approved",), "completed",
    ),
}

# Conversion flag carried by each source type
CONVERSION_FLAGS = {c.source_type: c.flag_field for c in CONVERSIONS.values()}


def get_conversion(source_type: str, target_type: str) -> Conversion:
    try:
        return CONVERSIONS[(source_type, target_type)]
    except KeyError:
        raise InvalidStateError(
            f"{source_type} cannot be converted to {target_type}",
            {"source_type": source_type, "target_type": target_type},
        )


def is_converted(document_type: str, document: dict) -> bool:
    flag = CONVERSION_FLAGS.get(document_type)
    return bool(flag and document.get(flag))


def check_conversion_gate(conversion: Conversion, source: dict) -> bool:
    """
    Precondition check on a loaded source document.
    Raises AlreadyConvertedError or InvalidStateError.
    """
    if source.get(conversion.flag_field):
        raise AlreadyConvertedError(
            f"{conversion.source_type} {source.get('number')} already converted to {conversion.target_type}",
            {"source_id": source.get("id"), conversion.ref_field: source.get(conversion.ref_field)},
        )

    status = source.get("status")
    if conversion.allowed_from is not None and status not in conversion.allowed_from:
        raise InvalidStateError(
            f"{conversion.source_type} {source.get('number')} must be in "
            f"{' / '.join(conversion.allowed_from)} to convert (current: {status})",
            {"source_id": source.get("id"), "status": status, "required": list(conversion.allowed_from)},
        )
    return True


def claim_filter(conversion: Conversion, tenant_id: str, source_id: str, revision: Optional[int] = None) -> dict:
    """
    Mongo filter matching the source only while the gate is still open.
    With `revision`, it also requires the source to be unchanged since the
    snapshot was taken.
    """
    query = {
        "id": source_id,
        "tenant_id": tenant_id,
        conversion.flag_field: {"$ne": True},
    }
    if conversion.allowed_from is not None:
        query["status"] = {"$in": list(conversion.allowed_from)}
    if revision is not None:
        query["revision"] = revision
    return query


def claim_update(conversion: Conversion, target_id: str, user_id: str, now: str) -> dict:
    return {
        "$set": {
            conversion.flag_field: True,
            conversion.ref_field: target_id,
            "status": conversion.status_after,
            "converted_at": now,
            "converted_by": user_id,
            "updated_at": now,
            "last_modified_by": user_id,
        },
        "$inc": {"revision": 1},
    }


def release_update(conversion: Conversion, previous_status: str) -> dict:
    """Undo a claim whose target document could not be persisted"""
    return {
        "$set": {
            conversion.flag_field: False,
            conversion.ref_field: None,
            "status": previous_status,
            "converted_at": None,
            "converted_by": None,
        },
        "$inc": {"revision": 1},
    }


# ════════════════════════════════════════════════════════════════════════════
# SNAPSHOT MAPPERS (one per source/target pair, no object spread)
# ════════════════════════════════════════════════════════════════════════════

CUSTOMER_FIELDS = (
    "customer",
    "customer_name",
    "customer_email",
    "customer_phone",
    "customer_address",
)

TOTAL_FIELDS = ("subtotal", "total_discount", "total_tax", "total_amount")


def _customer_snapshot(source: dict) -> dict:
    return {field: copy.deepcopy(source.get(field)) for field in CUSTOMER_FIELDS}


def _line_items_snapshot(source: dict) -> List[dict]:
    return [dict(item) for item in source.get("line_items") or []]


def rfi_to_quotation(rfi: dict, request: dict) -> dict:
    """
    RFI -> Quotation. The RFI supplies customer identity, title and
    description; pricing (line items), terms, notes and validity come from
    the conversion request.
    """
    return {
        **_customer_snapshot(rfi),
        "title": request.get("title") or rfi.get("title"),
        "description": request.get("description") or rfi.get("description") or "",
        "line_items": list(request.get("line_items") or []),
        "terms": request.get("terms"),
        "notes": request.get("notes") or "",
        "expiry_date": request.get("expiry_date"),
        "rfi_id": rfi["id"],
    }


def quotation_to_invoice(quotation: dict) -> dict:
    return {
        **_customer_snapshot(quotation),
        "title": quotation.get("title"),
        "description": quotation.get("description") or "",
        "line_items": _line_items_snapshot(quotation),
        **{field: quotation.get(field, 0) for field in TOTAL_FIELDS},
        "terms": quotation.get("terms"),
        "notes": quotation.get("notes") or "",
        "quotation_id": quotation["id"],
        "purchase_order_id": None,
        "customer_po_number": None,
    }


def purchase_order_to_invoice(purchase_order: dict) -> dict:
    return {
        **_customer_snapshot(purchase_order),
        "title": purchase_order.get("title"),
        "description": purchase_order.get("description") or "",
        "line_items": _line_items_snapshot(purchase_order),
        **{field: purchase_order.get(field, 0) for field in TOTAL_FIELDS},
        "terms": purchase_order.get("terms") or purchase_order.get("payment_terms"),
        "notes": purchase_order.get("notes") or "",
        "quotation_id": purchase_order.get("quotation_id"),
        "purchase_order_id": purchase_order["id"],
        "customer_po_number": purchase_order.get("customer_po_number"),
    }


def quotation_to_purchase_order_seed(quotation: dict) -> dict:
    """Fields a purchase order inherits from the quotation it answers"""
    return {
        **_customer_snapshot(quotation),
        "title": quotation.get("title"),
        "description": quotation.get("description") or "",
        "line_items": _line_items_snapshot(quotation),
        "terms": quotation.get("terms"),
        "notes": quotation.get("notes") or "",
    }


SNAPSHOT_MAPPERS = {
    ("quotation", "invoice"): quotation_to_invoice,
    ("purchase_order", "invoice"): purchase_order_to_invoice,
}
