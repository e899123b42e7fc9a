"""
Routes Purchase Orders
CRUD, approval, status, conversion to invoice.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from models import PurchaseOrderCreate, PurchaseOrderUpdate, StatusUpdate, TenantContext
from routes.deps import get_lifecycle_service, get_tenant_context
from services.document_lifecycle import DocumentLifecycleService

router = APIRouter(prefix="/purchase-orders", tags=["Purchase Orders"])


@router.get("")
async def list_purchase_orders(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    result = await service.list_purchase_orders(ctx, status=status, search=search, page=page, limit=limit)
    return {"success": True, "purchase_orders": result.pop("items"), **result}


@router.get("/stats")
async def purchase_order_stats(
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "stats": await service.document_stats("purchase_order", ctx)}


@router.get("/{purchase_order_id}")
async def get_purchase_order(
    purchase_order_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "purchase_order": await service.get_purchase_order(ctx, purchase_order_id)}


@router.post("")
async def create_purchase_order(
    data: PurchaseOrderCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "purchase_order": await service.create_purchase_order(ctx, data)}


@router.put("/{purchase_order_id}")
async def update_purchase_order(
    purchase_order_id: str,
    data: PurchaseOrderUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    purchase_order = await service.update_purchase_order(ctx, purchase_order_id, data)
    return {"success": True, "purchase_order": purchase_order}


@router.delete("/{purchase_order_id}")
async def delete_purchase_order(
    purchase_order_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    await service.delete_purchase_order(ctx, purchase_order_id)
    return {"success": True, "message": "Purchase order deleted"}


@router.put("/{purchase_order_id}/status")
async def update_purchase_order_status(
    purchase_order_id: str,
    data: StatusUpdate,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    purchase_order = await service.set_purchase_order_status(ctx, purchase_order_id, data.status)
    return {"success": True, "purchase_order": purchase_order}


@router.post("/{purchase_order_id}/approve")
async def approve_purchase_order(
    purchase_order_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    purchase_order = await service.approve_purchase_order(ctx, purchase_order_id)
    return {"success": True, "purchase_order": purchase_order}


@router.post("/{purchase_order_id}/convert")
async def convert_purchase_order(
    purchase_order_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    """Create an invoice from an approved PO (one-shot, PO becomes completed)"""
    invoice = await service.convert_purchase_order_to_invoice(ctx, purchase_order_id)
    return {"success": True, "invoice": invoice, "message": f"Invoice {invoice['number']} created"}
