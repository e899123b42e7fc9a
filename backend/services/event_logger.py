"""
Document event logger

Audit trail for every create / update / status change / conversion /
payment / send on commercial documents. Callers must not let a failure
here block or roll back the operation that produced the event.
"""

import logging
import uuid

from config import now_iso

logger = logging.getLogger("event_logger")


class AuditLogger:
    """Writes events to the `event_log` collection"""

    def __init__(self, db):
        self.db = db

    async def log_event(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        tenant_id: str,
        user: str = "system",
        details: dict = None,
    ) -> None:
        """
        Args:
            action: e.g. quotation.created, invoice.payment_recorded, rfi.converted
            resource_type: rfi | quotation | purchase_order | invoice
            resource_id: ID of the document
            tenant_id: owning tenant
            user: ID of the user performing the action
            details: free-form dict (number, amounts, target ids...)
        """
        event = {
            "id": str(uuid.uuid4()),
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "tenant_id": tenant_id,
            "user": user,
            "details": details or {},
            "created_at": now_iso(),
        }
        await self.db.event_log.insert_one(event)
        logger.debug(f"[AUDIT] {action} {resource_type}={resource_id} tenant={tenant_id}")

    async def list_events(self, tenant_id: str, resource_id: str = None, limit: int = 100):
        query = {"tenant_id": tenant_id}
        if resource_id:
            query["resource_id"] = resource_id
        return await self.db.event_log.find(query, {"_id": 0}) \
            .sort("created_at", -1) \
            .limit(limit) \
            .to_list(limit)
