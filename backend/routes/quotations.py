"""
Routes Quotations
CRUD, status, send, conversion to invoice.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from models import QuotationCreate, QuotationUpdate, SendRequest, StatusUpdate, TenantContext
from routes.deps import get_lifecycle_service, get_tenant_context
from services.document_lifecycle import DocumentLifecycleService

router = APIRouter(prefix="/quotations", tags=["Quotations"])


@router.get("")
async def list_quotations(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    result = await service.list_quotations(ctx, status=status, search=search, page=page, limit=limit)
    return {"success": True, "quotations": result.pop("items"), **result}


@router.get("/stats")
async def quotation_stats(
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "stats": await service.document_stats("quotation", ctx)}


@router.get("/{quotation_id}")
async def get_quotation(
    quotation_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "quotation": await service.get_quotation(ctx, quotation_id)}


@router.post("")
async def create_quotation(
    data: QuotationCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "quotation": await service.create_quotation(ctx, data)}


@router.put("/{quotation_id}")
async def update_quotation(
    quotation_id: str,
    data: QuotationUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "quotation": await service.update_quotation(ctx, quotation_id, data)}


@router.delete("/{quotation_id}")
async def delete_quotation(
    quotation_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    await service.delete_quotation(ctx, quotation_id)
    return {"success": True, "message": "Quotation deleted"}


@router.put("/{quotation_id}/status")
async def update_quotation_status(
    quotation_id: str,
    data: StatusUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "quotation": await service.set_quotation_status(ctx, quotation_id, data.status)}


@router.post("/{quotation_id}/send")
async def send_quotation(
    quotation_id: str,
    data: Optional[SendRequest] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    result = await service.send_quotation(ctx, quotation_id, data)
    return {"success": True, "quotation": result["document"], "delivered": result["delivered"]}


@router.post("/{quotation_id}/convert")
async def convert_quotation(
    quotation_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    """Create an invoice from the quotation (one-shot, quotation becomes accepted)"""
    invoice = await service.convert_quotation_to_invoice(ctx, quotation_id)
    return {"success": True, "invoice": invoice, "message": f"Invoice {invoice['number']} created"}
