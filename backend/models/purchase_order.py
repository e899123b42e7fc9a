"""
Purchase Order (customer PO received against a quotation)

LIFECYCLE: draft → received → approved → in_progress → completed | cancelled
Conversion to invoice requires status "approved" and moves the PO to "completed".
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel

from .common import CustomerFields, CustomerRef, LineItemInput


class PurchaseOrderStatus(str, Enum):
    DRAFT = "draft"
    RECEIVED = "received"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PurchaseOrderCreate(CustomerFields):
    customer_po_number: str  # Customer's own PO reference (external)
    title: Optional[str] = None  # defaults to the quotation's title
    description: Optional[str] = ""
    quotation_id: Optional[str] = None
    # None = copy the line items of quotation_id
    line_items: Optional[List[LineItemInput]] = None
    po_date: Optional[str] = None
    delivery_date: Optional[str] = None
    payment_terms: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = ""


class PurchaseOrderUpdate(BaseModel):
    customer_po_number: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    customer: Optional[CustomerRef] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    line_items: Optional[List[LineItemInput]] = None
    delivery_date: Optional[str] = None
    payment_terms: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = None
