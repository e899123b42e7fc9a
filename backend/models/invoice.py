"""
Invoice

LIFECYCLE: draft → sent → partially_paid → paid
overdue / cancelled are side states; paid and partially_paid are derived
from the payment ledger, never set directly.
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel

from .common import CustomerFields, CustomerRef, LineItemInput

DEFAULT_INVOICE_TERMS = "Payment due within 30 days."


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class InvoiceCreate(CustomerFields):
    customer_name: str
    title: str
    description: Optional[str] = ""
    customer_po_number: Optional[str] = None
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    line_items: List[LineItemInput] = []
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None  # default: +DEFAULT_PAYMENT_TERMS_DAYS
    terms: Optional[str] = DEFAULT_INVOICE_TERMS
    notes: Optional[str] = ""


class InvoiceUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    customer: Optional[CustomerRef] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    customer_po_number: Optional[str] = None
    line_items: Optional[List[LineItemInput]] = None
    due_date: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = None


class PaymentCreate(BaseModel):
    """Amount must be > 0; overpayment is accepted"""
    amount: float
    method: str
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    payment_date: Optional[str] = None
