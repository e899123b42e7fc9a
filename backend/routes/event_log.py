"""
Routes Event Log (document audit trail)
"""

from typing import Optional

from fastapi import APIRouter, Depends

from models import TenantContext
from routes.deps import get_lifecycle_service, get_tenant_context
from services.document_lifecycle import DocumentLifecycleService

router = APIRouter(prefix="/event-log", tags=["EventLog"])


@router.get("")
async def list_events(
    resource_id: Optional[str] = None,
    limit: int = 100,
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    """Events of the tenant, newest first, optionally for one document"""
    limit = min(max(1, limit), 500)
    events = await service.audit.list_events(ctx.tenant_id, resource_id=resource_id, limit=limit)
    return {"success": True, "events": events, "count": len(events)}


@router.get("/orphaned-conversions")
async def list_orphaned_conversions(
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
):
    """Converted sources whose target document is missing"""
    orphans = await service.find_orphaned_conversions(ctx)
    return {"success": True, "orphans": orphans, "count": len(orphans)}
