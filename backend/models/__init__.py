"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Commercial Documents - Models Package                                       ║
║                                                                              ║
║  Exports all input models for easy import                                    ║
║  from models import QuotationCreate, InvoiceUpdate, PaymentCreate, etc.      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Shared
from .common import (
    TenantContext,
    CustomerKind,
    CustomerRef,
    CustomerFields,
    LineItemInput,
    StatusUpdate,
    SendRequest,
    is_valid_email_format,
)

# RFI
from .rfi import (
    RFIStatus,
    RFIPriority,
    RFIRequirement,
    RFICreate,
    RFIUpdate,
    RFIConvert,
)

# Quotation
from .quotation import (
    QuotationStatus,
    QuotationCreate,
    QuotationUpdate,
    DEFAULT_QUOTATION_TERMS,
)

# Purchase Order
from .purchase_order import (
    PurchaseOrderStatus,
    PurchaseOrderCreate,
    PurchaseOrderUpdate,
)

# Invoice
from .invoice import (
    InvoiceStatus,
    InvoiceCreate,
    InvoiceUpdate,
    PaymentCreate,
    DEFAULT_INVOICE_TERMS,
)

__all__ = [
    # Shared
    "TenantContext",
    "CustomerKind",
    "CustomerRef",
    "CustomerFields",
    "LineItemInput",
    "StatusUpdate",
    "SendRequest",
    "is_valid_email_format",
    # RFI
    "RFIStatus",
    "RFIPriority",
    "RFIRequirement",
    "RFICreate",
    "RFIUpdate",
    "RFIConvert",
    # Quotation
    "QuotationStatus",
    "QuotationCreate",
    "QuotationUpdate",
    "DEFAULT_QUOTATION_TERMS",
    # Purchase Order
    "PurchaseOrderStatus",
    "PurchaseOrderCreate",
    "PurchaseOrderUpdate",
    # Invoice
    "InvoiceStatus",
    "InvoiceCreate",
    "InvoiceUpdate",
    "PaymentCreate",
    "DEFAULT_INVOICE_TERMS",
]
