"""
Shared document models: customer reference, customer snapshot, line items,
send / status requests.
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, field_validator
import re


class TenantContext(BaseModel):
    """
    Identity resolved upstream (auth gateway). The document core never
    resolves tenants or users itself.
    """
    tenant_id: str
    user_id: str = "system"

    @field_validator('tenant_id')
    @classmethod
    def validate_tenant_id(cls, v):
        if not v or not v.strip():
            raise ValueError("tenant_id is required")
        return v.strip()


class CustomerKind(str, Enum):
    """Entity kinds a commercial document can be addressed to"""
    LEAD = "lead"
    CONTACT = "contact"
    ACCOUNT = "account"


class CustomerRef(BaseModel):
    """Tagged reference to the customer record: {kind, id}"""
    kind: CustomerKind
    id: str


def is_valid_email_format(email: str) -> bool:
    """Basic email format check"""
    if not email:
        return False
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))


class CustomerFields(BaseModel):
    """Customer snapshot copied onto every document"""
    customer: Optional[CustomerRef] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None

    @field_validator('customer_email')
    @classmethod
    def validate_customer_email(cls, v):
        if v and not is_valid_email_format(v):
            raise ValueError(f"Invalid email format: {v}")
        return v


class LineItemInput(BaseModel):
    """
    One priced line. Numeric bounds (quantity >= 1, unit_price >= 0,
    discount 0-100, tax >= 0) are enforced by the line item calculator so
    API and service callers get the same InvalidLineItem error.
    """
    product_id: Optional[str] = None
    product_name: str = ""
    description: Optional[str] = ""
    quantity: float = 1
    unit_price: float
    discount_percent: float = 0
    tax_percent: float = 0


class StatusUpdate(BaseModel):
    status: str


class SendRequest(BaseModel):
    """Recipients default to the document's customer_email"""
    recipients: Optional[List[str]] = None
    subject: Optional[str] = None
    message: Optional[str] = None

    @field_validator('recipients')
    @classmethod
    def validate_recipients(cls, v):
        if v is None:
            return v
        for email in v:
            if not is_valid_email_format(email):
                raise ValueError(f"Invalid email format: {email}")
        return v
