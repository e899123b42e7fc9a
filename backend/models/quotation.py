"""
Quotation

LIFECYCLE: draft → sent → viewed → accepted | rejected | expired
Conversion to invoice is allowed once, from any status, and forces "accepted".
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel

from .common import CustomerFields, CustomerRef, LineItemInput

DEFAULT_QUOTATION_TERMS = "Payment due within 30 days. Prices are subject to change without notice."


class QuotationStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class QuotationCreate(CustomerFields):
    customer_name: str
    title: str
    description: Optional[str] = ""
    line_items: List[LineItemInput] = []
    quotation_date: Optional[str] = None
    expiry_date: Optional[str] = None  # default: +DEFAULT_QUOTATION_VALIDITY_DAYS
    terms: Optional[str] = DEFAULT_QUOTATION_TERMS
    notes: Optional[str] = ""


class QuotationUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    customer: Optional[CustomerRef] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    line_items: Optional[List[LineItemInput]] = None
    expiry_date: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = None
