"""
Routes Invoices
CRUD, status, send, payments, overdue sweep.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from models import InvoiceCreate, InvoiceUpdate, PaymentCreate, SendRequest, StatusUpdate, TenantContext
from routes.deps import get_lifecycle_service, get_tenant_context
from services.document_lifecycle import DocumentLifecycleService

router = APIRouter(prefix="/invoices", tags=["Invoices"])


# ════════════════════════════════════════════════════════════════════════
# CRUD
# ════════════════════════════════════════════════════════════════════════

@router.get("")
async def list_invoices(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    result = await service.list_invoices(ctx, status=status, search=search, page=page, limit=limit)
    return {"success": True, "invoices": result.pop("items"), **result}


@router.get("/stats")
async def invoice_stats(
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    """Counts, invoiced / paid / outstanding amounts per status"""
    return {"success": True, "stats": await service.document_stats("invoice", ctx)}


@router.post("/mark-overdue")
async def mark_overdue(
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, **await service.mark_overdue_invoices(ctx)}


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "invoice": await service.get_invoice(ctx, invoice_id)}


@router.post("")
async def create_invoice(
    data: InvoiceCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "invoice": await service.create_invoice(ctx, data)}


@router.put("/{invoice_id}")
async def update_invoice(
    invoice_id: str,
    data: InvoiceUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "invoice": await service.update_invoice(ctx, invoice_id, data)}


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    await service.delete_invoice(ctx, invoice_id)
    return {"success": True, "message": "Invoice deleted"}


# ════════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ════════════════════════════════════════════════════════════════════════

@router.put("/{invoice_id}/status")
async def update_invoice_status(
    invoice_id: str,
    data: StatusUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "invoice": await service.set_invoice_status(ctx, invoice_id, data.status)}


@router.post("/{invoice_id}/send")
async def send_invoice(
    invoice_id: str,
    data: Optional[SendRequest] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    result = await service.send_invoice(ctx, invoice_id, data)
    return {"success": True, "invoice": result["document"], "delivered": result["delivered"]}


@router.post("/{invoice_id}/payments")
async def record_payment(
    invoice_id: str,
    data: PaymentCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    invoice = await service.record_payment(ctx, invoice_id, data)
    return {"success": True, "invoice": invoice, "payment": invoice["payments"][-1]}


@router.get("/{invoice_id}/payments")
async def list_payments(
    invoice_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    invoice = await service.get_invoice(ctx, invoice_id)
    return {
        "success": True,
        "payments": invoice.get("payments", []),
        "total_paid": invoice.get("total_paid", 0),
        "balance_due": invoice.get("balance_due", 0),
    }
