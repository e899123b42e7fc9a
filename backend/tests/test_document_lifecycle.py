"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Document lifecycle - service tests against an in-memory MongoDB             ║
║                                                                              ║
║  1. Create / update with totals recomputed                                   ║
║  2. Locked documents (converted, accepted, paid, cancelled)                  ║
║  3. One-shot conversions, including concurrent attempts                      ║
║  4. Payments, overdue sweep, delete rules                                    ║
║  5. Tenant isolation, listing, stats, audit trail                            ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio

import pytest

from services.document_lifecycle import DocumentLifecycleService, MAX_WRITE_ATTEMPTS
from services.errors import (
    AlreadyConvertedError,
    ConcurrentModificationError,
    ImmutableDocumentError,
    InvalidLineItem,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)


async def _quotation(service, ctx, line_items, **extra):
    return await service.create_quotation(ctx, {
        "customer_name": "ACME",
        "customer_email": "buyer@acme.test",
        "title": "Office fit-out",
        "line_items": line_items,
        **extra,
    })


async def _approved_po(service, ctx, line_items):
    po = await service.create_purchase_order(ctx, {
        "customer_name": "ACME",
        "customer_po_number": "CUST-PO-1",
        "title": "Desks",
        "line_items": line_items,
    })
    return await service.approve_purchase_order(ctx, po["id"])


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_quotation_to_paid_invoice(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        assert quotation["number"] == "QT-2026-00001"
        assert (quotation["subtotal"], quotation["total_discount"], quotation["total_tax"],
                quotation["total_amount"]) == (200.0, 20.0, 32.4, 212.4)
        assert quotation["status"] == "draft"

        invoice = await service.convert_quotation_to_invoice(ctx, quotation["id"])
        assert invoice["number"] == "INV-2026-00001"
        assert invoice["status"] == "draft"
        assert invoice["quotation_id"] == quotation["id"]
        for field in ("subtotal", "total_discount", "total_tax", "total_amount"):
            assert invoice[field] == quotation[field]
        assert invoice["balance_due"] == 212.4
        assert invoice["payments"] == []

        source = await service.get_quotation(ctx, quotation["id"])
        assert source["converted_to_invoice"] is True
        assert source["invoice_id"] == invoice["id"]
        assert source["status"] == "accepted"

        paid = await service.record_payment(ctx, invoice["id"], {"amount": 212.4, "method": "bank_transfer"})
        assert paid["status"] == "paid"
        assert paid["balance_due"] == 0.0
        assert paid["total_paid"] == 212.4
        assert paid["paid_at"]

        with pytest.raises(AlreadyConvertedError):
            await service.convert_quotation_to_invoice(ctx, quotation["id"])
        assert await service.db.invoices.count_documents({"tenant_id": ctx.tenant_id}) == 1

    @pytest.mark.asyncio
    async def test_rfi_to_quotation(self, service, ctx):
        rfi = await service.create_rfi(ctx, {
            "customer": {"kind": "lead", "id": "lead-42"},
            "customer_name": "Jane Buyer",
            "customer_email": "jane@buyer.test",
            "title": "Solar panels for warehouse",
            "description": "Roof is 800 m2",
            "requirements": [{"category": "technical", "question": "Panel wattage?"}],
        })
        assert rfi["number"] == "RFI-2026-00001"
        assert rfi["priority"] == "medium"

        sent = await service.send_rfi(ctx, rfi["id"])
        assert sent["document"]["status"] == "sent"
        assert sent["document"]["sent_to"] == ["jane@buyer.test"]
        assert sent["delivered"] is None

        responded = await service.set_rfi_status(ctx, rfi["id"], "responded")
        assert responded["response_date"]

        quotation = await service.convert_rfi_to_quotation(ctx, rfi["id"], {
            "line_items": [{"product_name": "Panel", "quantity": 10, "unit_price": 250, "tax_percent": 20}],
            "notes": "Installation included",
        })
        assert quotation["number"] == "QT-2026-00001"
        assert quotation["rfi_id"] == rfi["id"]
        assert quotation["customer"] == {"kind": "lead", "id": "lead-42"}
        assert quotation["title"] == "Solar panels for warehouse"
        assert quotation["total_amount"] == 3000.0
        assert quotation["status"] == "draft"
        assert quotation["expiry_date"]

        source = await service.get_rfi(ctx, rfi["id"])
        assert source["status"] == "converted"
        assert source["converted_to_quotation"] is True
        assert source["quotation_id"] == quotation["id"]

    @pytest.mark.asyncio
    async def test_quotation_to_purchase_order_to_invoice(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        po = await service.create_purchase_order(ctx, {
            "customer_po_number": "CUST-PO-778",
            "quotation_id": quotation["id"],
        })
        assert po["number"] == "PO-2026-00001"
        assert po["title"] == quotation["title"]
        assert po["customer_name"] == "ACME"
        assert po["total_amount"] == 212.4
        assert (await service.get_quotation(ctx, quotation["id"]))["status"] == "accepted"

        with pytest.raises(InvalidStateError):
            await service.convert_purchase_order_to_invoice(ctx, po["id"])

        approved = await service.approve_purchase_order(ctx, po["id"])
        assert approved["approved_by"] == ctx.user_id
        assert approved["approved_at"]

        invoice = await service.convert_purchase_order_to_invoice(ctx, po["id"])
        assert invoice["purchase_order_id"] == po["id"]
        assert invoice["quotation_id"] == quotation["id"]
        assert invoice["customer_po_number"] == "CUST-PO-778"
        assert invoice["total_amount"] == 212.4

        source = await service.get_purchase_order(ctx, po["id"])
        assert source["status"] == "completed"
        assert source["converted_to_invoice"] is True


class TestCreateAndUpdate:

    @pytest.mark.asyncio
    async def test_defaults(self, service, ctx):
        invoice = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Empty"})
        assert invoice["status"] == "draft"
        assert invoice["total_amount"] == 0.0
        assert invoice["balance_due"] == 0.0
        assert invoice["due_date"] > invoice["invoice_date"]
        assert invoice["terms"] == "Payment due within 30 days."
        assert invoice["revision"] == 0
        assert invoice["created_by"] == ctx.user_id
        assert "_id" not in invoice

    @pytest.mark.asyncio
    async def test_invalid_payload(self, service, ctx):
        with pytest.raises(ValidationError) as exc:
            await service.create_quotation(ctx, {"title": "No customer"})
        assert exc.value.details["errors"]

    @pytest.mark.asyncio
    async def test_invalid_line_item(self, service, ctx):
        with pytest.raises(InvalidLineItem):
            await _quotation(service, ctx, [{"product_name": "x", "quantity": 0, "unit_price": 5}])
        assert await service.db.quotations.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_line_edit_recomputes_totals(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        updated = await service.update_quotation(ctx, quotation["id"], {
            "line_items": [scenario_line, {"product_name": "Travel", "unit_price": 50}],
        })
        assert updated["subtotal"] == 250.0
        assert updated["total_amount"] == 262.4
        assert updated["revision"] == 1

        stored = await service.get_quotation(ctx, quotation["id"])
        assert stored["total_amount"] == 262.4
        assert stored["title"] == "Office fit-out"

    @pytest.mark.asyncio
    async def test_invoice_line_edit_recomputes_balance(self, service, ctx, scenario_line):
        invoice = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Work",
                                                     "line_items": [scenario_line]})
        await service.record_payment(ctx, invoice["id"], {"amount": 100, "method": "cash"})
        updated = await service.update_invoice(ctx, invoice["id"], {
            "line_items": [{"product_name": "Discounted", "unit_price": 100}],
        })
        assert updated["balance_due"] == 0.0
        assert updated["status"] == "paid"

    @pytest.mark.asyncio
    async def test_purchase_order_requires_title(self, service, ctx):
        with pytest.raises(ValidationError):
            await service.create_purchase_order(ctx, {"customer_po_number": "X-1"})

    @pytest.mark.asyncio
    async def test_purchase_order_from_rejected_quotation(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        await service.set_quotation_status(ctx, quotation["id"], "rejected")
        with pytest.raises(InvalidStateError):
            await service.create_purchase_order(ctx, {"customer_po_number": "X-1", "quotation_id": quotation["id"]})

    @pytest.mark.asyncio
    async def test_quotation_rejected_mid_creation_leaves_no_purchase_order(
        self, service, ctx, scenario_line, monkeypatch,
    ):
        quotation = await _quotation(service, ctx, [scenario_line])
        original_get = service._get

        async def get_then_reject(document_type, ctx_, document_id):
            document = await original_get(document_type, ctx_, document_id)
            if document_type == "quotation" and document["status"] != "rejected":
                # another user rejects the quotation right after this read
                await service.db.quotations.update_one(
                    {"id": document_id}, {"$set": {"status": "rejected"}, "$inc": {"revision": 1}},
                )
            return document

        monkeypatch.setattr(service, "_get", get_then_reject)
        with pytest.raises(InvalidStateError):
            await service.create_purchase_order(ctx, {"customer_po_number": "X-3", "quotation_id": quotation["id"]})

        assert await service.db.purchase_orders.count_documents({"tenant_id": ctx.tenant_id}) == 0
        stored = await service.db.quotations.find_one({"id": quotation["id"]})
        assert stored["status"] == "rejected"

    @pytest.mark.asyncio
    async def test_purchase_order_own_lines_override_quotation(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        po = await service.create_purchase_order(ctx, {
            "customer_po_number": "X-2",
            "quotation_id": quotation["id"],
            "line_items": [{"product_name": "Half order", "quantity": 1, "unit_price": 100}],
        })
        assert po["total_amount"] == 100.0


class TestLockedDocuments:

    @pytest.mark.asyncio
    async def test_converted_quotation_lines_are_immutable(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        await service.convert_quotation_to_invoice(ctx, quotation["id"])

        with pytest.raises(ImmutableDocumentError) as exc:
            await service.update_quotation(ctx, quotation["id"], {"line_items": []})
        assert exc.value.details["fields"] == ["line_items"]

        updated = await service.update_quotation(ctx, quotation["id"], {"notes": "Signed copy filed"})
        assert updated["notes"] == "Signed copy filed"
        assert updated["total_amount"] == 212.4

    @pytest.mark.asyncio
    async def test_accepted_quotation_is_locked(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        await service.set_quotation_status(ctx, quotation["id"], "accepted")
        with pytest.raises(ImmutableDocumentError):
            await service.update_quotation(ctx, quotation["id"], {"title": "Changed"})

    @pytest.mark.asyncio
    async def test_converted_rfi_is_locked(self, service, ctx):
        rfi = await service.create_rfi(ctx, {"title": "Pricing"})
        await service.convert_rfi_to_quotation(ctx, rfi["id"])
        with pytest.raises(ImmutableDocumentError):
            await service.update_rfi(ctx, rfi["id"], {"title": "Other"})
        with pytest.raises(ImmutableDocumentError):
            await service.delete_rfi(ctx, rfi["id"])

    @pytest.mark.asyncio
    async def test_paid_and_cancelled_invoices_are_locked(self, service, ctx, scenario_line):
        invoice = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Work",
                                                     "line_items": [scenario_line]})
        await service.record_payment(ctx, invoice["id"], {"amount": 212.4, "method": "card"})
        with pytest.raises(ImmutableDocumentError):
            await service.update_invoice(ctx, invoice["id"], {"due_date": "2030-01-01T00:00:00+00:00"})

        other = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Void"})
        await service.set_invoice_status(ctx, other["id"], "cancelled")
        with pytest.raises(ImmutableDocumentError):
            await service.update_invoice(ctx, other["id"], {"line_items": [scenario_line]})
        with pytest.raises(InvalidStateError):
            await service.record_payment(ctx, other["id"], {"amount": 10, "method": "cash"})


class TestConversions:

    @pytest.mark.asyncio
    async def test_concurrent_conversion_creates_one_invoice(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        results = await asyncio.gather(
            *[service.convert_quotation_to_invoice(ctx, quotation["id"]) for _ in range(5)],
            return_exceptions=True,
        )
        invoices = [r for r in results if isinstance(r, dict)]
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(invoices) == 1
        assert all(isinstance(e, (AlreadyConvertedError, ConcurrentModificationError)) for e in errors)
        assert await service.db.invoices.count_documents({"tenant_id": ctx.tenant_id}) == 1

        source = await service.get_quotation(ctx, quotation["id"])
        assert source["invoice_id"] == invoices[0]["id"]

    @pytest.mark.asyncio
    async def test_closed_rfi_still_converts(self, service, ctx):
        rfi = await service.create_rfi(ctx, {"title": "Pricing"})
        await service.set_rfi_status(ctx, rfi["id"], "closed")
        quotation = await service.convert_rfi_to_quotation(ctx, rfi["id"])

        source = await service.get_rfi(ctx, rfi["id"])
        assert source["status"] == "converted"
        assert source["converted_to_quotation"] is True
        assert source["quotation_id"] == quotation["id"]
        with pytest.raises(AlreadyConvertedError):
            await service.convert_rfi_to_quotation(ctx, rfi["id"])

    @pytest.mark.asyncio
    async def test_first_conversion_claims_and_returns_clean_documents(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        invoice = await service.convert_quotation_to_invoice(ctx, quotation["id"])

        assert "_id" not in invoice
        assert invoice["number"] == "INV-2026-00001"
        source = await service.get_quotation(ctx, quotation["id"])
        assert source["converted_to_invoice"] is True
        assert source["invoice_id"] == invoice["id"]
        assert source["status"] == "accepted"

    @pytest.mark.asyncio
    async def test_orphaned_conversion_is_reported(self, service, ctx, other_ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        rfi = await service.create_rfi(ctx, {"title": "Pricing"})
        invoice = await service.convert_quotation_to_invoice(ctx, quotation["id"])
        await service.convert_rfi_to_quotation(ctx, rfi["id"])
        assert await service.find_orphaned_conversions(ctx) == []

        # target lost after the claim, as after a crash before the insert
        await service.db.invoices.delete_one({"id": invoice["id"]})

        orphans = await service.find_orphaned_conversions(ctx)
        assert len(orphans) == 1
        assert orphans[0]["source_type"] == "quotation"
        assert orphans[0]["source_id"] == quotation["id"]
        assert orphans[0]["target_id"] == invoice["id"]
        assert await service.find_orphaned_conversions(other_ctx) == []

    @pytest.mark.asyncio
    async def test_purchase_order_converts_once(self, service, ctx, scenario_line):
        po = await _approved_po(service, ctx, [scenario_line])
        await service.convert_purchase_order_to_invoice(ctx, po["id"])
        with pytest.raises(AlreadyConvertedError):
            await service.convert_purchase_order_to_invoice(ctx, po["id"])

    @pytest.mark.asyncio
    async def test_failed_target_insert_releases_claim(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])

        async def broken_insert(document_type, document):
            raise RuntimeError("disk full")

        original_insert = service._insert
        service._insert = broken_insert
        with pytest.raises(RuntimeError):
            await service.convert_quotation_to_invoice(ctx, quotation["id"])

        source = await service.get_quotation(ctx, quotation["id"])
        assert source["converted_to_invoice"] is False
        assert source["invoice_id"] is None
        assert source["status"] == "draft"

        service._insert = original_insert
        invoice = await service.convert_quotation_to_invoice(ctx, quotation["id"])
        assert (await service.get_quotation(ctx, quotation["id"]))["invoice_id"] == invoice["id"]

    @pytest.mark.asyncio
    async def test_inconsistent_source_totals_are_recomputed(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        await service.db.quotations.update_one({"id": quotation["id"]}, {"$set": {"total_amount": 1.0}})
        invoice = await service.convert_quotation_to_invoice(ctx, quotation["id"])
        assert invoice["total_amount"] == 212.4


class TestStatusAndPayments:

    @pytest.mark.asyncio
    async def test_partial_then_full(self, service, ctx, scenario_line):
        invoice = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Work",
                                                     "line_items": [scenario_line]})
        invoice = await service.set_invoice_status(ctx, invoice["id"], "sent")
        assert invoice["sent_at"]

        partial = await service.record_payment(ctx, invoice["id"], {"amount": 100, "method": "upi",
                                                                    "reference_number": "UPI-1"})
        assert partial["status"] == "partially_paid"
        assert partial["balance_due"] == 112.4

        paid = await service.record_payment(ctx, invoice["id"], {"amount": 112.4, "method": "cheque"})
        assert paid["status"] == "paid"
        assert [p["method"] for p in paid["payments"]] == ["upi", "cheque"]

    @pytest.mark.asyncio
    async def test_concurrent_payments_all_recorded(self, service, ctx):
        invoice = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Work",
                                                     "line_items": [{"unit_price": 300}]})
        await asyncio.gather(*[
            service.record_payment(ctx, invoice["id"], {"amount": 100, "method": "cash"}) for _ in range(3)
        ])
        stored = await service.get_invoice(ctx, invoice["id"])
        assert len(stored["payments"]) == 3
        assert stored["total_paid"] == 300.0
        assert stored["status"] == "paid"

    @pytest.mark.asyncio
    async def test_derived_status_cannot_be_set(self, service, ctx):
        invoice = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Work"})
        with pytest.raises(InvalidStateError):
            await service.set_invoice_status(ctx, invoice["id"], "paid")

    @pytest.mark.asyncio
    async def test_invalid_transition(self, service, ctx):
        po = await service.create_purchase_order(ctx, {"customer_po_number": "X", "title": "Chairs"})
        await service.set_purchase_order_status(ctx, po["id"], "cancelled")
        with pytest.raises(InvalidStateError):
            await service.approve_purchase_order(ctx, po["id"])

    @pytest.mark.asyncio
    async def test_overdue_sweep(self, service, ctx):
        late = await service.create_invoice(ctx, {"customer_name": "ACME", "customer_email": "ap@acme.test",
                                                  "title": "Late", "line_items": [{"unit_price": 10}],
                                                  "due_date": "2020-01-01T00:00:00+00:00"})
        await service.send_invoice(ctx, late["id"])
        on_time = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Fine",
                                                     "line_items": [{"unit_price": 10}]})
        await service.set_invoice_status(ctx, on_time["id"], "sent")
        draft = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Draft",
                                                   "due_date": "2020-01-01T00:00:00+00:00"})

        result = await service.mark_overdue_invoices(ctx)
        assert result == {"marked": 1, "numbers": [late["number"]]}
        assert (await service.get_invoice(ctx, late["id"]))["status"] == "overdue"
        assert (await service.get_invoice(ctx, on_time["id"]))["status"] == "sent"
        assert (await service.get_invoice(ctx, draft["id"]))["status"] == "draft"

        # payment on an overdue invoice still derives partially_paid / paid
        paid = await service.record_payment(ctx, late["id"], {"amount": 10, "method": "cash"})
        assert paid["status"] == "paid"

    @pytest.mark.asyncio
    async def test_write_conflicts_exhaust(self, service, ctx):
        invoice = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Work"})
        real_get = service._get
        calls = []

        async def stale_get(document_type, context, document_id):
            calls.append(document_id)
            document = await real_get(document_type, context, document_id)
            return {**document, "revision": document["revision"] - 1}

        service._get = stale_get
        with pytest.raises(ConcurrentModificationError) as exc:
            await service.update_invoice(ctx, invoice["id"], {"notes": "never lands"})
        assert exc.value.retryable
        assert len(calls) == MAX_WRITE_ATTEMPTS


class TestSend:

    @pytest.mark.asyncio
    async def test_send_with_notifier_and_renderer(self, db, ctx, scenario_line):
        sent = []

        class FakeNotifier:
            async def send(self, recipients, document_type, document, subject=None, message=None, rendered=None):
                sent.append((recipients, document_type, document["number"], subject, rendered))
                return True

        service = DocumentLifecycleService(
            db, notifier=FakeNotifier(), pdf_renderer=lambda t, d: b"%PDF-1.4", year_provider=lambda: 2026,
        )
        quotation = await _quotation(service, ctx, [scenario_line])
        result = await service.send_quotation(ctx, quotation["id"], {
            "recipients": ["cfo@acme.test"], "subject": "Your quote",
        })
        assert result["delivered"] is True
        assert result["document"]["status"] == "sent"
        assert sent == [(["cfo@acme.test"], "quotation", "QT-2026-00001", "Your quote", b"%PDF-1.4")]

        # re-sending a viewed quotation keeps its status
        await service.set_quotation_status(ctx, quotation["id"], "viewed")
        again = await service.send_quotation(ctx, quotation["id"])
        assert again["document"]["status"] == "viewed"
        assert again["document"]["sent_to"] == ["buyer@acme.test"]

    @pytest.mark.asyncio
    async def test_delivery_failure_does_not_undo_send(self, db, ctx):
        class BrokenNotifier:
            async def send(self, **kwargs):
                raise ConnectionError("smtp down")

        def broken_renderer(document_type, document):
            raise RuntimeError("template missing")

        service = DocumentLifecycleService(db, notifier=BrokenNotifier(), pdf_renderer=broken_renderer)
        invoice = await service.create_invoice(ctx, {"customer_name": "ACME", "customer_email": "ap@acme.test",
                                                     "title": "Work"})
        result = await service.send_invoice(ctx, invoice["id"])
        assert result["delivered"] is False
        assert (await service.get_invoice(ctx, invoice["id"]))["status"] == "sent"

    @pytest.mark.asyncio
    async def test_send_requires_recipient(self, service, ctx):
        invoice = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Work"})
        with pytest.raises(ValidationError):
            await service.send_invoice(ctx, invoice["id"])

    @pytest.mark.asyncio
    async def test_send_from_terminal_status(self, service, ctx):
        rfi = await service.create_rfi(ctx, {"title": "Pricing", "customer_email": "a@b.test"})
        await service.set_rfi_status(ctx, rfi["id"], "closed")
        with pytest.raises(InvalidStateError):
            await service.send_rfi(ctx, rfi["id"])


    @pytest.mark.asyncio
    async def test_purchase_order_cannot_be_sent(self, service, ctx, scenario_line):
        po = await _approved_po(service, ctx, [scenario_line])
        with pytest.raises(InvalidStateError) as exc:
            await service.send_document("purchase_order", ctx, po["id"], {"recipients": ["a@b.test"]})
        assert exc.value.details["document_type"] == "purchase_order"


class TestDelete:

    @pytest.mark.asyncio
    async def test_invoice_with_payments_cannot_be_deleted(self, service, ctx):
        invoice = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Work",
                                                     "line_items": [{"unit_price": 100}]})
        await service.record_payment(ctx, invoice["id"], {"amount": 10, "method": "cash"})
        with pytest.raises(ImmutableDocumentError):
            await service.delete_invoice(ctx, invoice["id"])

    @pytest.mark.asyncio
    async def test_delete_then_not_found(self, service, ctx):
        invoice = await service.create_invoice(ctx, {"customer_name": "ACME", "title": "Work"})
        assert await service.delete_invoice(ctx, invoice["id"]) == {"id": invoice["id"], "deleted": True}
        with pytest.raises(NotFoundError):
            await service.get_invoice(ctx, invoice["id"])
        with pytest.raises(NotFoundError):
            await service.delete_invoice(ctx, invoice["id"])

    @pytest.mark.asyncio
    async def test_converted_sources_cannot_be_deleted(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        await service.convert_quotation_to_invoice(ctx, quotation["id"])
        with pytest.raises(ImmutableDocumentError):
            await service.delete_quotation(ctx, quotation["id"])

        po = await _approved_po(service, ctx, [scenario_line])
        await service.convert_purchase_order_to_invoice(ctx, po["id"])
        with pytest.raises(ImmutableDocumentError):
            await service.delete_purchase_order(ctx, po["id"])


class TestTenantIsolation:

    @pytest.mark.asyncio
    async def test_other_tenant_sees_nothing(self, service, ctx, other_ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        with pytest.raises(NotFoundError):
            await service.get_quotation(other_ctx, quotation["id"])
        with pytest.raises(NotFoundError):
            await service.update_quotation(other_ctx, quotation["id"], {"notes": "x"})
        with pytest.raises(NotFoundError):
            await service.convert_quotation_to_invoice(other_ctx, quotation["id"])
        with pytest.raises(NotFoundError):
            await service.create_purchase_order(other_ctx, {"customer_po_number": "X",
                                                            "quotation_id": quotation["id"]})
        assert (await service.list_quotations(other_ctx))["total"] == 0


class TestListingAndStats:

    @pytest.mark.asyncio
    async def test_list_filter_search_paginate(self, service, ctx, other_ctx):
        for i in range(5):
            await service.create_invoice(ctx, {"customer_name": f"Client {i}", "title": "Work"})
        await service.create_invoice(ctx, {"customer_name": "Special (Corp)", "title": "Work"})
        await service.create_invoice(other_ctx, {"customer_name": "Special (Corp)", "title": "Work"})

        page = await service.list_invoices(ctx, page=2, limit=4)
        assert page["total"] == 6
        assert page["total_pages"] == 2
        assert len(page["items"]) == 2

        found = await service.list_invoices(ctx, search="special (")
        assert [i["customer_name"] for i in found["items"]] == ["Special (Corp)"]

        by_number = await service.list_invoices(ctx, search="INV-2026-00003")
        assert by_number["total"] == 1

        assert (await service.list_invoices(ctx, status="paid"))["total"] == 0
        with pytest.raises(ValidationError):
            await service.list_invoices(ctx, status="bogus")

    @pytest.mark.asyncio
    async def test_invoice_stats(self, service, ctx, scenario_line):
        first = await service.create_invoice(ctx, {"customer_name": "A", "title": "W", "line_items": [scenario_line]})
        second = await service.create_invoice(ctx, {"customer_name": "B", "title": "W", "line_items": [scenario_line]})
        await service.create_invoice(ctx, {"customer_name": "C", "title": "W", "line_items": [{"unit_price": 50}]})
        await service.record_payment(ctx, first["id"], {"amount": 212.4, "method": "cash"})
        await service.record_payment(ctx, second["id"], {"amount": 12.4, "method": "cash"})

        stats = await service.document_stats("invoice", ctx)
        assert stats["by_status"]["paid"]["count"] == 1
        assert stats["by_status"]["partially_paid"]["balance_due"] == 200.0
        assert stats["by_status"]["draft"]["total_amount"] == 50.0
        assert stats["by_status"]["cancelled"]["count"] == 0
        assert stats["overall"]["count"] == 3
        assert stats["overall"]["total_amount"] == 474.8
        assert stats["overall"]["total_paid"] == 224.8


class TestAuditTrail:

    @pytest.mark.asyncio
    async def test_events_recorded(self, service, ctx, scenario_line):
        quotation = await _quotation(service, ctx, [scenario_line])
        invoice = await service.convert_quotation_to_invoice(ctx, quotation["id"])
        await service.record_payment(ctx, invoice["id"], {"amount": 1, "method": "cash"})

        actions = [e["action"] for e in await service.audit.list_events(ctx.tenant_id)]
        for action in ("quotation.created", "quotation.converted", "invoice.created", "invoice.payment_recorded"):
            assert action in actions

        quotation_events = await service.audit.list_events(ctx.tenant_id, resource_id=quotation["id"])
        assert {e["resource_type"] for e in quotation_events} == {"quotation"}
        assert all(e["user"] == ctx.user_id for e in quotation_events)

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_block(self, db, ctx, scenario_line):
        class BrokenAudit:
            async def log_event(self, **kwargs):
                raise RuntimeError("event_log unavailable")

        service = DocumentLifecycleService(db, audit=BrokenAudit())
        quotation = await _quotation(service, ctx, [scenario_line])
        invoice = await service.convert_quotation_to_invoice(ctx, quotation["id"])
        assert invoice["total_amount"] == 212.4
