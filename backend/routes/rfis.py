"""
Routes RFI (Request for Information)
CRUD, status, send, conversion to quotation.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from models import RFIConvert, RFICreate, RFIUpdate, SendRequest, StatusUpdate, TenantContext
from routes.deps import get_lifecycle_service, get_tenant_context
from services.document_lifecycle import DocumentLifecycleService

router = APIRouter(prefix="/rfis", tags=["RFIs"])


@router.get("")
async def list_rfis(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    result = await service.list_rfis(ctx, status=status, search=search, page=page, limit=limit)
    return {"success": True, "rfis": result.pop("items"), **result}


@router.get("/stats")
async def rfi_stats(
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "stats": await service.document_stats("rfi", ctx)}


@router.get("/{rfi_id}")
async def get_rfi(
    rfi_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "rfi": await service.get_rfi(ctx, rfi_id)}


@router.post("")
async def create_rfi(
    data: RFICreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "rfi": await service.create_rfi(ctx, data)}


@router.put("/{rfi_id}")
async def update_rfi(
    rfi_id: str,
    data: RFIUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "rfi": await service.update_rfi(ctx, rfi_id, data)}


@router.delete("/{rfi_id}")
async def delete_rfi(
    rfi_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    await service.delete_rfi(ctx, rfi_id)
    return {"success": True, "message": "RFI deleted"}


@router.put("/{rfi_id}/status")
async def update_rfi_status(
    rfi_id: str,
    data: StatusUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "rfi": await service.set_rfi_status(ctx, rfi_id, data.status)}


@router.post("/{rfi_id}/send")
async def send_rfi(
    rfi_id: str,
    data: Optional[SendRequest] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    result = await service.send_rfi(ctx, rfi_id, data)
    return {"success": True, "rfi": result["document"], "delivered": result["delivered"]}


@router.post("/{rfi_id}/convert")
async def convert_rfi(
    rfi_id: str,
    data: Optional[RFIConvert] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    """Create a quotation from the RFI (one-shot)"""
    quotation = await service.convert_rfi_to_quotation(ctx, rfi_id, data)
    return {"success": True, "quotation": quotation, "message": f"Quotation {quotation['number']} created"}
