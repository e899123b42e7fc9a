"""
Document number allocation

Numbers look like INV-2026-00007: {PREFIX}-{year}-{sequence:05d}, scoped by
(tenant, document type, year). Each key owns one row in `document_counters`
and is advanced with a single atomic $inc, so concurrent writers are
serialized by MongoDB and never read-count-write.

Documents are inserted under a unique (tenant_id, number) index. A duplicate
at insert time (counter reset, restored backup, manual import...) triggers a
fresh allocation; after MAX_ALLOCATION_ATTEMPTS the caller gets
NumberAllocationFailed. An existing document is never overwritten.
"""

import logging
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from config import now_iso
from services.errors import NumberAllocationFailed

logger = logging.getLogger("sequence_allocator")

DOCUMENT_PREFIXES = {
    "rfi": "RFI",
    "quotation": "QT",
    "purchase_order": "PO",
    "invoice": "INV",
}

MAX_ALLOCATION_ATTEMPTS = 3
SEQUENCE_WIDTH = 5

COUNTERS_COLLECTION = "document_counters"


def format_number(document_type: str, year: int, sequence: int) -> str:
    prefix = DOCUMENT_PREFIXES[document_type]
    return f"{prefix}-{year}-{sequence:0{SEQUENCE_WIDTH}d}"


def counter_key(tenant_id: str, document_type: str, year: int) -> str:
    return f"{tenant_id}:{document_type}:{year}"


class SequenceAllocator:
    """Keyed atomic counter per (tenant, document type, year)"""

    def __init__(self, db):
        self.db = db
        self.counters = db[COUNTERS_COLLECTION]

    async def next_sequence(self, tenant_id: str, document_type: str, year: int) -> int:
        if document_type not in DOCUMENT_PREFIXES:
            raise ValueError(f"Unknown document type: {document_type}")

        key = counter_key(tenant_id, document_type, year)
        update = {
            "$inc": {"seq": 1},
            "$set": {"updated_at": now_iso()},
            "$setOnInsert": {
                "tenant_id": tenant_id,
                "document_type": document_type,
                "year": year,
            },
        }

        # Two writers upserting a brand-new key can collide on _id once;
        # the row exists afterwards, so the second attempt is a plain $inc.
        for attempt in range(2):
            try:
                counter = await self.counters.find_one_and_update(
                    {"_id": key},
                    update,
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
                return counter["seq"]
            except DuplicateKeyError:
                if attempt == 1:
                    raise
                logger.info(f"[SEQUENCE] Upsert race on {key}, retrying")

    async def allocate(self, tenant_id: str, document_type: str, year: int) -> str:
        """Return the next unique number for (tenant, type, year)"""
        sequence = await self.next_sequence(tenant_id, document_type, year)
        return format_number(document_type, year, sequence)

    async def insert_with_number(
        self,
        collection,
        document: dict,
        document_type: str,
        year: int,
        max_attempts: int = MAX_ALLOCATION_ATTEMPTS,
    ) -> dict:
        """
        Allocate a number, stamp it on `document` and insert it.

        Retries allocation on a duplicate number, up to `max_attempts`.
        Returns the inserted document (without Mongo's _id).
        """
        tenant_id = document["tenant_id"]
        last_number: Optional[str] = None

        for attempt in range(1, max_attempts + 1):
            number = await self.allocate(tenant_id, document_type, year)
            candidate = {**document, "number": number}
            try:
                await collection.insert_one(candidate)
            except DuplicateKeyError:
                last_number = number
                logger.warning(
                    f"[SEQUENCE] Collision on {number} for tenant={tenant_id} "
                    f"(attempt {attempt}/{max_attempts})"
                )
                continue
            candidate.pop("_id", None)
            return candidate

        raise NumberAllocationFailed(
            f"Could not allocate a unique {DOCUMENT_PREFIXES[document_type]} number "
            f"after {max_attempts} attempts",
            {"tenant_id": tenant_id, "document_type": document_type,
             "year": year, "last_number": last_number},
        )
