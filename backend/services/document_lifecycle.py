"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Document Lifecycle Service                                                  ║
║                                                                              ║
║  Create / update / status / send / delete / convert for the four             ║
║  commercial documents: RFI, Quotation, Purchase Order, Invoice.              ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - every query is filtered by tenant_id                                      ║
║  - totals are recomputed from line_items on every create and line edit       ║
║  - invoice total_paid / balance_due / status recomputed on every write       ║
║  - converted, paid and cancelled documents only accept `notes` edits         ║
║  - read-modify-write operations are guarded by the `revision` counter        ║
║  - a crash between a conversion claim and the target insert leaves the       ║
║    source flagged with a dangling reference; find_orphaned_conversions       ║
║    lists them                                                                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import inspect
import logging
import re
import uuid
from math import ceil
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument

from config import (
    DEFAULT_PAYMENT_TERMS_DAYS,
    DEFAULT_QUOTATION_VALIDITY_DAYS,
    current_year,
    days_from_now_iso,
    now_iso,
)
from models import (
    DEFAULT_INVOICE_TERMS,
    DEFAULT_QUOTATION_TERMS,
    InvoiceCreate,
    InvoiceStatus,
    InvoiceUpdate,
    PaymentCreate,
    PurchaseOrderCreate,
    PurchaseOrderStatus,
    PurchaseOrderUpdate,
    QuotationCreate,
    QuotationStatus,
    QuotationUpdate,
    RFIConvert,
    RFICreate,
    RFIStatus,
    RFIUpdate,
    SendRequest,
    TenantContext,
)
from services import payment_ledger
from services.conversion_gate import (
    CONVERSIONS,
    SENDABLE_STATUSES,
    check_conversion_gate,
    claim_filter,
    claim_update,
    get_conversion,
    is_converted,
    purchase_order_to_invoice,
    quotation_to_invoice,
    quotation_to_purchase_order_seed,
    release_update,
    rfi_to_quotation,
    validate_transition,
)
from services.errors import (
    ConcurrentModificationError,
    ImmutableDocumentError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from services.event_logger import AuditLogger
from services.line_items import compute_totals, totals_are_consistent
from services.sequence_allocator import SequenceAllocator

logger = logging.getLogger("document_lifecycle")

DOCUMENT_COLLECTIONS = {
    "rfi": "rfis",
    "quotation": "quotations",
    "purchase_order": "purchase_orders",
    "invoice": "invoices",
}

DOCUMENT_LABELS = {
    "rfi": "RFI",
    "quotation": "Quotation",
    "purchase_order": "Purchase order",
    "invoice": "Invoice",
}

STATUS_ENUMS = {
    "rfi": RFIStatus,
    "quotation": QuotationStatus,
    "purchase_order": PurchaseOrderStatus,
    "invoice": InvoiceStatus,
}

SEARCH_FIELDS = {
    "rfi": ["number", "customer_name", "customer_email", "title"],
    "quotation": ["number", "customer_name", "customer_email", "title"],
    "purchase_order": ["number", "customer_po_number", "customer_name", "customer_email", "title"],
    "invoice": ["number", "customer_name", "customer_email", "title"],
}

# Fields still editable once a document is locked
LOCKED_EDITABLE_FIELDS = {"notes"}

MAX_WRITE_ATTEMPTS = 5
MAX_PAGE_SIZE = 100


def _check_quotation_answerable(quotation: dict):
    if quotation.get("status") in ("rejected", "expired"):
        raise InvalidStateError(
            f"Quotation {quotation.get('number')} is {quotation.get('status')}",
            {"quotation_id": quotation.get("id"), "status": quotation.get("status")},
        )


class DocumentLifecycleService:
    """
    Orchestrates numbering, line item totals, the payment ledger and the
    conversion gate. One instance per database; stateless between calls.

    Args:
        db: Motor database
        audit: AuditLogger (defaults to the event_log collection of `db`)
        notifier: optional NotificationSender with an async
            send(recipients, document_type, document, subject, message, rendered)
        pdf_renderer: optional callable(document_type, document) -> bytes
            (may be async); its output is only handed to the notifier
        year_provider: returns the year used for numbering
    """

    def __init__(
        self,
        db,
        audit: Optional[AuditLogger] = None,
        notifier=None,
        pdf_renderer: Optional[Callable] = None,
        year_provider: Callable[[], int] = current_year,
    ):
        self.db = db
        self.audit = audit if audit is not None else AuditLogger(db)
        self.notifier = notifier
        self.pdf_renderer = pdf_renderer
        self.year_provider = year_provider
        self.allocator = SequenceAllocator(db)

    def collection(self, document_type: str):
        return self.db[DOCUMENT_COLLECTIONS[document_type]]

    async def ensure_indexes(self):
        for document_type in DOCUMENT_COLLECTIONS:
            coll = self.collection(document_type)
            await coll.create_index("id", unique=True)
            await coll.create_index([("tenant_id", 1), ("number", 1)], unique=True)
            await coll.create_index([("tenant_id", 1), ("status", 1), ("created_at", -1)])
        await self.collection("invoice").create_index([("tenant_id", 1), ("due_date", 1)])
        await self.collection("invoice").create_index([("tenant_id", 1), ("customer_email", 1)])
        await self.collection("purchase_order").create_index("customer_po_number")
        await self.db.event_log.create_index([("tenant_id", 1), ("resource_id", 1), ("created_at", -1)])
        logger.info("Document indexes ensured")

    # ════════════════════════════════════════════════════════════════════════
    # INTERNAL HELPERS
    # ════════════════════════════════════════════════════════════════════════

    @staticmethod
    def _payload(model_cls, data, partial: bool = False) -> Dict[str, Any]:
        """Validate `data` (model instance or dict) and dump it to plain JSON types"""
        if data is None:
            data = {}
        if not isinstance(data, BaseModel):
            try:
                data = model_cls.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid {model_cls.__name__} payload",
                    {"errors": e.errors(include_url=False, include_context=False, include_input=False)},
                )
        return data.model_dump(mode="json", exclude_unset=partial)

    async def _get(self, document_type: str, ctx: TenantContext, document_id: str) -> dict:
        document = await self.collection(document_type).find_one(
            {"id": document_id, "tenant_id": ctx.tenant_id}, {"_id": 0}
        )
        if not document:
            raise NotFoundError(
                f"{DOCUMENT_LABELS[document_type]} not found",
                {"document_type": document_type, "id": document_id},
            )
        return document

    def _new_document(self, ctx: TenantContext, fields: dict, document_id: Optional[str] = None) -> dict:
        now = now_iso()
        return {
            **fields,
            "id": document_id or str(uuid.uuid4()),
            "tenant_id": ctx.tenant_id,
            "status": "draft",
            "created_by": ctx.user_id,
            "last_modified_by": ctx.user_id,
            "created_at": now,
            "updated_at": now,
            "revision": 0,
        }

    async def _insert(self, document_type: str, document: dict) -> dict:
        return await self.allocator.insert_with_number(
            self.collection(document_type), document, document_type, self.year_provider()
        )

    async def _write(
        self,
        document_type: str,
        ctx: TenantContext,
        document_id: str,
        mutate: Callable[[dict], Optional[dict]],
    ) -> dict:
        """
        Optimistic read-modify-write. `mutate(current)` returns the fields to
        $set (or None for no change) and may raise to abort. Retried when a
        concurrent writer bumped `revision` in between.
        """
        coll = self.collection(document_type)
        for attempt in range(MAX_WRITE_ATTEMPTS):
            current = await self._get(document_type, ctx, document_id)
            changes = mutate(current)
            if not changes:
                return current

            changes = {**changes, "updated_at": now_iso(), "last_modified_by": ctx.user_id}
            revision = current.get("revision", 0)
            result = await coll.update_one(
                {"id": document_id, "tenant_id": ctx.tenant_id, "revision": revision},
                {"$set": changes, "$inc": {"revision": 1}},
            )
            if result.matched_count:
                return {**current, **changes, "revision": revision + 1}

            logger.info(f"[WRITE] Revision conflict on {document_type} {document_id} (attempt {attempt + 1})")

        raise ConcurrentModificationError(
            f"{DOCUMENT_LABELS[document_type]} is being modified concurrently, please retry",
            {"document_type": document_type, "id": document_id},
        )

    async def _emit(self, action: str, document_type: str, document: dict, ctx: TenantContext, details: dict = None):
        try:
            await self.audit.log_event(
                action=action,
                resource_type=document_type,
                resource_id=document.get("id"),
                tenant_id=ctx.tenant_id,
                user=ctx.user_id,
                details={"number": document.get("number"), **(details or {})},
            )
        except Exception as e:
            logger.error(f"[AUDIT] {action} on {document_type} {document.get('id')} not recorded: {str(e)}")

    @staticmethod
    def _locked_reason(document_type: str, document: dict) -> Optional[str]:
        if is_converted(document_type, document):
            return "converted"
        status = document.get("status")
        if document_type == "quotation" and status == "accepted":
            return "accepted"
        if document_type == "invoice" and status in ("paid", "cancelled"):
            return status
        return None

    def _check_editable(self, document_type: str, document: dict, changes: dict):
        reason = self._locked_reason(document_type, document)
        if not reason:
            return
        blocked = sorted(set(changes) - LOCKED_EDITABLE_FIELDS)
        if blocked:
            raise ImmutableDocumentError(
                f"{DOCUMENT_LABELS[document_type]} {document.get('number')} is {reason}; "
                f"only {', '.join(sorted(LOCKED_EDITABLE_FIELDS))} can be changed",
                {"id": document.get("id"), "reason": reason, "fields": blocked},
            )

    @staticmethod
    def _apply_ledger(document_type: str, merged: dict, changes: dict) -> dict:
        if document_type == "invoice":
            changes.update(payment_ledger.recompute({**merged, **changes}))
        return changes

    # ════════════════════════════════════════════════════════════════════════
    # FIELD BUILDERS (shared by create and convert)
    # ════════════════════════════════════════════════════════════════════════

    @staticmethod
    def _quotation_fields(payload: dict) -> dict:
        totals = compute_totals(payload.get("line_items"))
        return {
            "customer": payload.get("customer"),
            "customer_name": payload.get("customer_name"),
            "customer_email": payload.get("customer_email"),
            "customer_phone": payload.get("customer_phone"),
            "customer_address": payload.get("customer_address"),
            "title": payload.get("title"),
            "description": payload.get("description") or "",
            **totals,
            "quotation_date": payload.get("quotation_date") or now_iso(),
            "expiry_date": payload.get("expiry_date") or days_from_now_iso(DEFAULT_QUOTATION_VALIDITY_DAYS),
            "terms": payload.get("terms") or DEFAULT_QUOTATION_TERMS,
            "notes": payload.get("notes") or "",
            "rfi_id": payload.get("rfi_id"),
            "sent_at": None,
            "sent_to": [],
            "viewed_at": None,
            "converted_to_invoice": False,
            "invoice_id": None,
        }

    @staticmethod
    def _invoice_fields(payload: dict, totals: dict) -> dict:
        fields = {
            "customer": payload.get("customer"),
            "customer_name": payload.get("customer_name"),
            "customer_email": payload.get("customer_email"),
            "customer_phone": payload.get("customer_phone"),
            "customer_address": payload.get("customer_address"),
            "billing_address": payload.get("billing_address"),
            "shipping_address": payload.get("shipping_address"),
            "customer_po_number": payload.get("customer_po_number"),
            "title": payload.get("title"),
            "description": payload.get("description") or "",
            **totals,
            "invoice_date": payload.get("invoice_date") or now_iso(),
            "due_date": payload.get("due_date") or days_from_now_iso(DEFAULT_PAYMENT_TERMS_DAYS),
            "terms": payload.get("terms") or DEFAULT_INVOICE_TERMS,
            "notes": payload.get("notes") or "",
            "quotation_id": payload.get("quotation_id"),
            "purchase_order_id": payload.get("purchase_order_id"),
            "sent_at": None,
            "sent_to": [],
            "payments": [],
            "status": "draft",
        }
        fields.update(payment_ledger.recompute(fields))
        del fields["status"]
        return fields

    def _invoice_fields_from_snapshot(self, snapshot: dict) -> dict:
        """Invoice fields from a converted source; totals are copied, not recomputed"""
        if totals_are_consistent(snapshot):
            totals = {
                "line_items": snapshot["line_items"],
                "subtotal": snapshot["subtotal"],
                "total_discount": snapshot["total_discount"],
                "total_tax": snapshot["total_tax"],
                "total_amount": snapshot["total_amount"],
            }
        else:
            logger.warning(
                f"[CONVERT] Stored totals of source {snapshot.get('quotation_id') or snapshot.get('purchase_order_id')} "
                f"do not match its line items, recomputing"
            )
            totals = compute_totals(snapshot.get("line_items"))
        return self._invoice_fields(snapshot, totals)

    # ════════════════════════════════════════════════════════════════════════
    # GENERIC OPERATIONS
    # ════════════════════════════════════════════════════════════════════════

    async def get_document(self, document_type: str, ctx: TenantContext, document_id: str) -> dict:
        return await self._get(document_type, ctx, document_id)

    async def list_documents(
        self,
        document_type: str,
        ctx: TenantContext,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        """Tenant-scoped listing, newest first, with status filter and text search"""
        query: Dict[str, Any] = {"tenant_id": ctx.tenant_id}
        if status:
            allowed = [s.value for s in STATUS_ENUMS[document_type]]
            if status not in allowed:
                raise ValidationError(f"Unknown {document_type} status: {status}", {"allowed": allowed})
            query["status"] = status
        if search:
            pattern = re.escape(search.strip())
            query["$or"] = [
                {field: {"$regex": pattern, "$options": "i"}} for field in SEARCH_FIELDS[document_type]
            ]

        page = max(1, int(page))
        limit = min(max(1, int(limit)), MAX_PAGE_SIZE)

        coll = self.collection(document_type)
        items = await coll.find(query, {"_id": 0}) \
            .sort("created_at", -1) \
            .skip((page - 1) * limit) \
            .limit(limit) \
            .to_list(limit)
        total = await coll.count_documents(query)

        return {
            "items": items,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": ceil(total / limit) if total else 0,
        }

    async def document_stats(self, document_type: str, ctx: TenantContext) -> dict:
        """Per-status counts and amount sums for the tenant"""
        group = {
            "_id": "$status",
            "count": {"$sum": 1},
            "total_amount": {"$sum": "$total_amount"},
        }
        if document_type == "invoice":
            group["total_paid"] = {"$sum": "$total_paid"}
            group["balance_due"] = {"$sum": "$balance_due"}

        rows = await self.collection(document_type).aggregate([
            {"$match": {"tenant_id": ctx.tenant_id}},
            {"$group": group},
        ]).to_list(100)

        amount_fields = [key for key in group if key not in ("_id", "count")]
        by_status = {
            s.value: {"count": 0, **{key: 0.0 for key in amount_fields}}
            for s in STATUS_ENUMS[document_type]
        }
        overall = {"count": 0, **{key: 0.0 for key in amount_fields}}

        for row in rows:
            entry = by_status.setdefault(row["_id"], {"count": 0, **{key: 0.0 for key in amount_fields}})
            entry["count"] = row["count"]
            overall["count"] += row["count"]
            for key in amount_fields:
                entry[key] = round(row.get(key) or 0, 2)
                overall[key] += row.get(key) or 0

        for key in amount_fields:
            overall[key] = round(overall[key], 2)

        return {"by_status": by_status, "overall": overall}

    async def _update(self, document_type: str, ctx: TenantContext, document_id: str, changes: dict) -> dict:
        def mutate(current: dict) -> Optional[dict]:
            if not changes:
                return None
            self._check_editable(document_type, current, changes)
            update = dict(changes)
            if "line_items" in update:
                update.update(compute_totals(update["line_items"]))
            return self._apply_ledger(document_type, current, update)

        document = await self._write(document_type, ctx, document_id, mutate)
        await self._emit(f"{document_type}.updated", document_type, document, ctx, {"fields": sorted(changes)})
        return document

    async def _set_status(self, document_type: str, ctx: TenantContext, document_id: str, status: str,
                          extra: Optional[Callable[[dict], dict]] = None) -> dict:
        previous = {}

        def mutate(current: dict) -> Optional[dict]:
            validate_transition(document_type, document_id, current.get("status"), status)
            previous["status"] = current.get("status")
            if current.get("status") == status:
                return None
            update = {"status": status}
            if extra:
                update.update(extra(current))
            return self._apply_ledger(document_type, current, update)

        document = await self._write(document_type, ctx, document_id, mutate)
        if previous.get("status") != status:
            await self._emit(f"{document_type}.status_updated", document_type, document, ctx, {
                "from": previous.get("status"),
                "to": status,
                "effective": document.get("status"),
            })
        return document

    async def _delete(self, document_type: str, ctx: TenantContext, document_id: str, guard: dict, reason: str):
        """Physical delete, only if `guard` still matches (no payments / no conversion)"""
        result = await self.collection(document_type).delete_one(
            {"id": document_id, "tenant_id": ctx.tenant_id, **guard}
        )
        if result.deleted_count:
            await self._emit(f"{document_type}.deleted", document_type, {"id": document_id}, ctx)
            logger.info(f"[DELETE] {document_type} {document_id} tenant={ctx.tenant_id}")
            return {"id": document_id, "deleted": True}

        document = await self._get(document_type, ctx, document_id)
        raise ImmutableDocumentError(
            f"Cannot delete {DOCUMENT_LABELS[document_type].lower()} {document.get('number')}: {reason}",
            {"id": document_id, "status": document.get("status")},
        )

    async def send_document(self, document_type: str, ctx: TenantContext, document_id: str, data=None) -> dict:
        """
        Mark a document as sent (draft → sent, later statuses keep theirs)
        and hand it to the notifier. Delivery failures never undo the send.
        """
        if document_type not in SENDABLE_STATUSES:
            raise InvalidStateError(
                f"{DOCUMENT_LABELS.get(document_type, document_type)} documents cannot be sent",
                {"document_type": document_type, "id": document_id},
            )
        request = self._payload(SendRequest, data)
        sendable = SENDABLE_STATUSES[document_type]

        def mutate(current: dict) -> dict:
            if current.get("status") not in sendable:
                raise InvalidStateError(
                    f"{DOCUMENT_LABELS[document_type]} {current.get('number')} cannot be sent "
                    f"from status '{current.get('status')}'",
                    {"id": document_id, "status": current.get("status"), "allowed": sendable},
                )
            recipients = request.get("recipients") or [e for e in [current.get("customer_email")] if e]
            if not recipients:
                raise ValidationError("No recipients: provide recipients or set customer_email", {"id": document_id})
            update = {"sent_at": now_iso(), "sent_to": recipients}
            if current.get("status") == "draft":
                update["status"] = "sent"
            return self._apply_ledger(document_type, current, update)

        document = await self._write(document_type, ctx, document_id, mutate)
        await self._emit(f"{document_type}.sent", document_type, document, ctx, {"recipients": document["sent_to"]})

        delivered = None
        if self.notifier is not None:
            delivered = await self._notify(document_type, document, request)
        return {"document": document, "delivered": delivered}

    async def _notify(self, document_type: str, document: dict, request: dict) -> bool:
        rendered = None
        if self.pdf_renderer is not None:
            try:
                rendered = self.pdf_renderer(document_type, document)
                if inspect.isawaitable(rendered):
                    rendered = await rendered
            except Exception as e:
                logger.error(f"[SEND] PDF rendering failed for {document.get('number')}: {str(e)}")
                rendered = None

        try:
            delivered = await self.notifier.send(
                recipients=document["sent_to"],
                document_type=document_type,
                document=document,
                subject=request.get("subject"),
                message=request.get("message"),
                rendered=rendered,
            )
        except Exception as e:
            logger.error(f"[SEND] Delivery of {document.get('number')} failed: {str(e)}")
            return False

        if not delivered:
            logger.warning(f"[SEND] {document.get('number')} marked sent but delivery was not confirmed")
        return bool(delivered)

    async def _convert(
        self,
        source_type: str,
        target_type: str,
        ctx: TenantContext,
        source_id: str,
        build_target: Callable[[dict], dict],
    ) -> dict:
        """
        One-shot conversion.

        1. load the source and check the gate
        2. build the target fields from the snapshot (explicit mapper)
        3. claim the source: flip its flag false -> true only if still open
           and unchanged since the snapshot
        4. allocate the target number and insert it
        5. on insert failure, release the claim and re-raise
        """
        conversion = get_conversion(source_type, target_type)
        target_id = str(uuid.uuid4())
        coll = self.collection(source_type)

        claimed = None
        for attempt in range(MAX_WRITE_ATTEMPTS):
            source = await self._get(source_type, ctx, source_id)
            check_conversion_gate(conversion, source)
            fields = build_target(source)

            claimed = await coll.find_one_and_update(
                claim_filter(conversion, ctx.tenant_id, source_id, source.get("revision", 0)),
                claim_update(conversion, target_id, ctx.user_id, now_iso()),
                return_document=ReturnDocument.AFTER,
            )
            if claimed:
                # no projection on the claim: _id is stripped here
                claimed.pop("_id", None)
                break
            logger.info(f"[CONVERT] Claim on {source_type} {source_id} lost (attempt {attempt + 1}), re-checking gate")

        if not claimed:
            raise ConcurrentModificationError(
                f"{DOCUMENT_LABELS[source_type]} is being modified concurrently, please retry",
                {"id": source_id},
            )

        try:
            target = await self._insert(target_type, self._new_document(ctx, fields, target_id))
        except Exception:
            await coll.update_one(
                {"id": source_id, "tenant_id": ctx.tenant_id, conversion.ref_field: target_id},
                release_update(conversion, source.get("status")),
            )
            logger.error(f"[CONVERT] {source_type} {source_id} -> {target_type} failed, claim released")
            raise

        logger.info(
            f"[CONVERT] {source_type} {claimed.get('number')} -> {target_type} {target['number']} "
            f"tenant={ctx.tenant_id}"
        )
        await self._emit(f"{source_type}.converted", source_type, claimed, ctx, {
            "target_type": target_type,
            "target_id": target["id"],
            "target_number": target["number"],
        })
        await self._emit(f"{target_type}.created", target_type, target, ctx, {
            "source_type": source_type,
            "source_id": source_id,
            "total_amount": target.get("total_amount"),
        })
        return target

    async def find_orphaned_conversions(self, ctx: TenantContext) -> list:
        """
        Sources whose conversion flag is set but whose target document does
        not exist. Left behind when the process dies between the claim and
        the target insert, or when the target was deleted afterwards; the
        gate stays closed until an operator acts. A conversion still in
        flight shows up here for a moment too.
        """
        orphans = []
        for conversion in CONVERSIONS.values():
            sources = await self.collection(conversion.source_type).find(
                {"tenant_id": ctx.tenant_id, conversion.flag_field: True},
                {"_id": 0, "id": 1, "number": 1, "converted_at": 1, conversion.ref_field: 1},
            ).to_list(1000)

            for source in sources:
                target_id = source.get(conversion.ref_field)
                target = None
                if target_id:
                    target = await self.collection(conversion.target_type).find_one(
                        {"id": target_id, "tenant_id": ctx.tenant_id}, {"_id": 0, "id": 1}
                    )
                if target is None:
                    orphans.append({
                        "source_type": conversion.source_type,
                        "source_id": source["id"],
                        "source_number": source.get("number"),
                        "target_type": conversion.target_type,
                        "target_id": target_id,
                        "converted_at": source.get("converted_at"),
                    })

        if orphans:
            logger.warning(f"[CONVERT] {len(orphans)} orphaned conversion(s) tenant={ctx.tenant_id}")
        return orphans

    # ════════════════════════════════════════════════════════════════════════
    # RFI
    # ════════════════════════════════════════════════════════════════════════

    async def create_rfi(self, ctx: TenantContext, data) -> dict:
        payload = self._payload(RFICreate, data)
        document = self._new_document(ctx, {
            **payload,
            "response_date": None,
            "response_notes": "",
            "sent_at": None,
            "sent_to": [],
            "converted_to_quotation": False,
            "quotation_id": None,
        })
        rfi = await self._insert("rfi", document)
        logger.info(f"[CREATE] RFI {rfi['number']} tenant={ctx.tenant_id}")
        await self._emit("rfi.created", "rfi", rfi, ctx, {"customer_name": rfi.get("customer_name")})
        return rfi

    async def get_rfi(self, ctx: TenantContext, rfi_id: str) -> dict:
        return await self._get("rfi", ctx, rfi_id)

    async def list_rfis(self, ctx: TenantContext, **filters) -> dict:
        return await self.list_documents("rfi", ctx, **filters)

    async def update_rfi(self, ctx: TenantContext, rfi_id: str, data) -> dict:
        return await self._update("rfi", ctx, rfi_id, self._payload(RFIUpdate, data, partial=True))

    async def delete_rfi(self, ctx: TenantContext, rfi_id: str) -> dict:
        return await self._delete(
            "rfi", ctx, rfi_id, {"converted_to_quotation": {"$ne": True}},
            "it has been converted to a quotation",
        )

    async def set_rfi_status(self, ctx: TenantContext, rfi_id: str, status: str) -> dict:
        def stamps(current: dict) -> dict:
            if status == "responded" and not current.get("response_date"):
                return {"response_date": now_iso()}
            return {}
        return await self._set_status("rfi", ctx, rfi_id, status, stamps)

    async def send_rfi(self, ctx: TenantContext, rfi_id: str, data=None) -> dict:
        return await self.send_document("rfi", ctx, rfi_id, data)

    async def convert_rfi_to_quotation(self, ctx: TenantContext, rfi_id: str, data=None) -> dict:
        request = self._payload(RFIConvert, data)
        return await self._convert(
            "rfi", "quotation", ctx, rfi_id,
            lambda rfi: self._quotation_fields(rfi_to_quotation(rfi, request)),
        )

    # ════════════════════════════════════════════════════════════════════════
    # QUOTATION
    # ════════════════════════════════════════════════════════════════════════

    async def create_quotation(self, ctx: TenantContext, data) -> dict:
        payload = self._payload(QuotationCreate, data)
        quotation = await self._insert("quotation", self._new_document(ctx, self._quotation_fields(payload)))
        logger.info(f"[CREATE] Quotation {quotation['number']} total={quotation['total_amount']} tenant={ctx.tenant_id}")
        await self._emit("quotation.created", "quotation", quotation, ctx, {
            "customer_name": quotation.get("customer_name"),
            "total_amount": quotation["total_amount"],
        })
        return quotation

    async def get_quotation(self, ctx: TenantContext, quotation_id: str) -> dict:
        return await self._get("quotation", ctx, quotation_id)

    async def list_quotations(self, ctx: TenantContext, **filters) -> dict:
        return await self.list_documents("quotation", ctx, **filters)

    async def update_quotation(self, ctx: TenantContext, quotation_id: str, data) -> dict:
        return await self._update("quotation", ctx, quotation_id, self._payload(QuotationUpdate, data, partial=True))

    async def delete_quotation(self, ctx: TenantContext, quotation_id: str) -> dict:
        return await self._delete(
            "quotation", ctx, quotation_id, {"converted_to_invoice": {"$ne": True}},
            "it has been converted to an invoice",
        )

    async def set_quotation_status(self, ctx: TenantContext, quotation_id: str, status: str) -> dict:
        def stamps(current: dict) -> dict:
            if status == "viewed" and not current.get("viewed_at"):
                return {"viewed_at": now_iso()}
            return {}
        return await self._set_status("quotation", ctx, quotation_id, status, stamps)

    async def send_quotation(self, ctx: TenantContext, quotation_id: str, data=None) -> dict:
        return await self.send_document("quotation", ctx, quotation_id, data)

    async def convert_quotation_to_invoice(self, ctx: TenantContext, quotation_id: str) -> dict:
        return await self._convert(
            "quotation", "invoice", ctx, quotation_id,
            lambda quotation: self._invoice_fields_from_snapshot(quotation_to_invoice(quotation)),
        )

    # ════════════════════════════════════════════════════════════════════════
    # PURCHASE ORDER
    # ════════════════════════════════════════════════════════════════════════

    async def create_purchase_order(self, ctx: TenantContext, data) -> dict:
        """
        Create a PO, optionally answering a quotation: the quotation must
        belong to the tenant and not be rejected/expired; its line items are
        copied when the request has none, and it is marked accepted.

        The quotation is accepted (revision-pinned) before the PO is
        inserted, so a quotation rejected in between leaves no PO behind.
        """
        payload = self._payload(PurchaseOrderCreate, data)
        quotation_id = payload.get("quotation_id")

        seed = {}
        if quotation_id:
            quotation = await self._get("quotation", ctx, quotation_id)
            _check_quotation_answerable(quotation)
            seed = quotation_to_purchase_order_seed(quotation)

        fields = dict(payload)
        for key, value in seed.items():
            if fields.get(key) in (None, ""):
                fields[key] = value
        if fields.get("line_items") is None:
            fields["line_items"] = []

        if not fields.get("title"):
            raise ValidationError("title is required (or a quotation_id to copy it from)", {"field": "title"})

        totals = compute_totals(fields.pop("line_items"))
        document = self._new_document(ctx, {
            **fields,
            **totals,
            "quotation_id": quotation_id,
            "po_date": payload.get("po_date") or now_iso(),
            "approved_by": None,
            "approved_at": None,
            "converted_to_invoice": False,
            "invoice_id": None,
        })

        if quotation_id:
            await self._accept_quotation(ctx, quotation_id)

        purchase_order = await self._insert("purchase_order", document)

        logger.info(
            f"[CREATE] PO {purchase_order['number']} (customer PO {purchase_order['customer_po_number']}) "
            f"tenant={ctx.tenant_id}"
        )
        await self._emit("purchase_order.created", "purchase_order", purchase_order, ctx, {
            "customer_po_number": purchase_order["customer_po_number"],
            "quotation_id": quotation_id,
            "total_amount": purchase_order["total_amount"],
        })
        return purchase_order

    async def _accept_quotation(self, ctx: TenantContext, quotation_id: str):
        def mutate(current: dict) -> Optional[dict]:
            _check_quotation_answerable(current)
            if current.get("status") == "accepted":
                return None
            validate_transition("quotation", quotation_id, current.get("status"), "accepted")
            return {"status": "accepted"}

        quotation = await self._write("quotation", ctx, quotation_id, mutate)
        await self._emit("quotation.status_updated", "quotation", quotation, ctx, {
            "to": "accepted", "reason": "purchase_order_received",
        })

    async def get_purchase_order(self, ctx: TenantContext, purchase_order_id: str) -> dict:
        return await self._get("purchase_order", ctx, purchase_order_id)

    async def list_purchase_orders(self, ctx: TenantContext, **filters) -> dict:
        return await self.list_documents("purchase_order", ctx, **filters)

    async def update_purchase_order(self, ctx: TenantContext, purchase_order_id: str, data) -> dict:
        return await self._update(
            "purchase_order", ctx, purchase_order_id, self._payload(PurchaseOrderUpdate, data, partial=True)
        )

    async def delete_purchase_order(self, ctx: TenantContext, purchase_order_id: str) -> dict:
        return await self._delete(
            "purchase_order", ctx, purchase_order_id, {"converted_to_invoice": {"$ne": True}},
            "it has been converted to an invoice",
        )

    async def set_purchase_order_status(self, ctx: TenantContext, purchase_order_id: str, status: str) -> dict:
        def stamps(current: dict) -> dict:
            if status == "approved":
                return {"approved_by": ctx.user_id, "approved_at": now_iso()}
            return {}
        return await self._set_status("purchase_order", ctx, purchase_order_id, status, stamps)

    async def approve_purchase_order(self, ctx: TenantContext, purchase_order_id: str) -> dict:
        return await self.set_purchase_order_status(ctx, purchase_order_id, "approved")

    async def convert_purchase_order_to_invoice(self, ctx: TenantContext, purchase_order_id: str) -> dict:
        return await self._convert(
            "purchase_order", "invoice", ctx, purchase_order_id,
            lambda po: self._invoice_fields_from_snapshot(purchase_order_to_invoice(po)),
        )

    # ════════════════════════════════════════════════════════════════════════
    # INVOICE
    # ════════════════════════════════════════════════════════════════════════

    async def create_invoice(self, ctx: TenantContext, data) -> dict:
        payload = self._payload(InvoiceCreate, data)
        totals = compute_totals(payload.get("line_items"))
        fields = self._invoice_fields({**payload, "quotation_id": None, "purchase_order_id": None}, totals)
        invoice = await self._insert("invoice", self._new_document(ctx, fields))
        logger.info(f"[CREATE] Invoice {invoice['number']} total={invoice['total_amount']} tenant={ctx.tenant_id}")
        await self._emit("invoice.created", "invoice", invoice, ctx, {
            "customer_name": invoice.get("customer_name"),
            "total_amount": invoice["total_amount"],
        })
        return invoice

    async def get_invoice(self, ctx: TenantContext, invoice_id: str) -> dict:
        return await self._get("invoice", ctx, invoice_id)

    async def list_invoices(self, ctx: TenantContext, **filters) -> dict:
        return await self.list_documents("invoice", ctx, **filters)

    async def update_invoice(self, ctx: TenantContext, invoice_id: str, data) -> dict:
        return await self._update("invoice", ctx, invoice_id, self._payload(InvoiceUpdate, data, partial=True))

    async def delete_invoice(self, ctx: TenantContext, invoice_id: str) -> dict:
        return await self._delete(
            "invoice", ctx, invoice_id, {"payments": {"$size": 0}, "status": {"$ne": "paid"}},
            "it has recorded payments",
        )

    async def set_invoice_status(self, ctx: TenantContext, invoice_id: str, status: str) -> dict:
        def stamps(current: dict) -> dict:
            if status == "sent" and not current.get("sent_at"):
                return {"sent_at": now_iso()}
            return {}
        return await self._set_status("invoice", ctx, invoice_id, status, stamps)

    async def send_invoice(self, ctx: TenantContext, invoice_id: str, data=None) -> dict:
        return await self.send_document("invoice", ctx, invoice_id, data)

    async def record_payment(self, ctx: TenantContext, invoice_id: str, data) -> dict:
        """Append a payment and recompute total_paid / balance_due / status"""
        payload = self._payload(PaymentCreate, data)
        recorded = {}

        def mutate(current: dict) -> dict:
            updated = payment_ledger.record_payment(
                current,
                amount=payload["amount"],
                method=payload["method"],
                recorded_by=ctx.user_id,
                reference_number=payload.get("reference_number"),
                notes=payload.get("notes"),
                payment_date=payload.get("payment_date"),
            )
            recorded["payment"] = updated["payments"][-1]
            recorded["previous_status"] = current.get("status")
            return {
                "payments": updated["payments"],
                "total_paid": updated["total_paid"],
                "balance_due": updated["balance_due"],
                "status": updated["status"],
                "paid_at": updated["paid_at"],
            }

        invoice = await self._write("invoice", ctx, invoice_id, mutate)
        logger.info(
            f"[PAYMENT] {invoice['number']} +{recorded['payment']['amount']} ({recorded['payment']['method']}) "
            f"paid={invoice['total_paid']} due={invoice['balance_due']} status={invoice['status']}"
        )
        if invoice["balance_due"] < 0:
            logger.warning(f"[PAYMENT] {invoice['number']} overpaid by {-invoice['balance_due']}")
        await self._emit("invoice.payment_recorded", "invoice", invoice, ctx, {
            "payment_id": recorded["payment"]["id"],
            "amount": recorded["payment"]["amount"],
            "method": recorded["payment"]["method"],
            "total_paid": invoice["total_paid"],
            "balance_due": invoice["balance_due"],
            "from": recorded["previous_status"],
            "to": invoice["status"],
        })
        return invoice

    async def mark_overdue_invoices(self, ctx: TenantContext) -> dict:
        """Explicit sweep: sent invoices past their due date become overdue"""
        now = now_iso()
        coll = self.collection("invoice")
        candidates = await coll.find(
            {"tenant_id": ctx.tenant_id, "status": "sent", "due_date": {"$lt": now}},
            {"_id": 0, "id": 1, "number": 1},
        ).to_list(1000)

        marked = []
        for invoice in candidates:
            result = await coll.update_one(
                {"id": invoice["id"], "tenant_id": ctx.tenant_id, "status": "sent"},
                {"$set": {"status": "overdue", "updated_at": now, "last_modified_by": ctx.user_id},
                 "$inc": {"revision": 1}},
            )
            if result.modified_count:
                marked.append(invoice["number"])
                await self._emit("invoice.status_updated", "invoice", invoice, ctx, {
                    "from": "sent", "to": "overdue", "reason": "past_due_date",
                })

        if marked:
            logger.info(f"[OVERDUE] {len(marked)} invoice(s) marked overdue tenant={ctx.tenant_id}")
        return {"marked": len(marked), "numbers": marked}
