"""
Shared route dependencies: tenant context and the lifecycle service.
"""

from typing import Optional

from fastapi import Header, HTTPException

from config import SENDGRID_API_KEY, db
from models import TenantContext
from services.document_lifecycle import DocumentLifecycleService
from services.document_mailer import DocumentMailer
from services.event_logger import AuditLogger

_service: Optional[DocumentLifecycleService] = None


async def get_tenant_context(
    x_tenant_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
) -> TenantContext:
    """Identity set by the authenticating gateway."""
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Tenant-Id header")
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return TenantContext(tenant_id=x_tenant_id, user_id=x_user_id.strip())


def get_lifecycle_service() -> DocumentLifecycleService:
    global _service
    if _service is None:
        _service = DocumentLifecycleService(
            db,
            audit=AuditLogger(db),
            notifier=DocumentMailer() if SENDGRID_API_KEY else None,
        )
    return _service
