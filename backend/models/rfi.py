"""
RFI (Request for Information)

LIFECYCLE: draft → sent → responded → converted | closed
"converted" is only reachable through the conversion to a quotation.
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel

from .common import CustomerFields, LineItemInput, CustomerRef


class RFIStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    RESPONDED = "responded"
    CONVERTED = "converted"
    CLOSED = "closed"


class RFIPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RFIRequirement(BaseModel):
    category: Optional[str] = ""
    question: str
    answer: Optional[str] = ""


class RFICreate(CustomerFields):
    title: str
    description: Optional[str] = ""
    requirements: List[RFIRequirement] = []
    priority: RFIPriority = RFIPriority.MEDIUM
    due_date: Optional[str] = None
    notes: Optional[str] = ""
    assigned_to: Optional[str] = None


class RFIUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    customer: Optional[CustomerRef] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    requirements: Optional[List[RFIRequirement]] = None
    priority: Optional[RFIPriority] = None
    due_date: Optional[str] = None
    response_notes: Optional[str] = None
    notes: Optional[str] = None
    assigned_to: Optional[str] = None


class RFIConvert(BaseModel):
    """Pricing and terms for the quotation created from an RFI"""
    title: Optional[str] = None
    description: Optional[str] = None
    line_items: List[LineItemInput] = []
    terms: Optional[str] = None
    notes: Optional[str] = None
    expiry_date: Optional[str] = None
