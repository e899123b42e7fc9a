"""
SendGrid document mailer (no network: the API client is replaced)
"""

import pytest

from services import document_mailer
from services.document_mailer import DocumentMailer, build_document_html

INVOICE = {
    "number": "INV-2026-00001",
    "customer_name": "ACME",
    "line_items": [{"product_name": "Consulting day", "quantity": 2.0, "unit_price": 100.0, "line_total": 212.4}],
    "subtotal": 200.0,
    "total_discount": 20.0,
    "total_tax": 32.4,
    "total_amount": 212.4,
    "total_paid": 12.4,
    "balance_due": 200.0,
    "terms": "Payment due within 30 days.",
}


class TestHtml:

    def test_invoice_summary(self):
        html = build_document_html("invoice", INVOICE)
        assert "Invoice INV-2026-00001" in html
        assert "Consulting day" in html
        assert "212.40" in html
        assert "Balance due:</strong> 200.00" in html

    def test_rfi_has_no_totals(self):
        html = build_document_html("rfi", {"number": "RFI-2026-00001", "title": "Pricing"}, message="Please answer")
        assert "Please answer" in html
        assert "Total:" not in html

    def test_customer_text_is_escaped(self):
        document = {
            **INVOICE,
            "customer_name": "<script>alert(1)</script>",
            "line_items": [{"product_name": "<b>Bold</b>", "quantity": 1.0, "unit_price": 1.0, "line_total": 1.0}],
            "terms": "Net 30 & <i>no</i> exceptions",
        }
        html = build_document_html("invoice", document, message="<img src=x onerror=alert(1)>")
        assert "<script>" not in html
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
        assert "&lt;b&gt;Bold&lt;/b&gt;" in html
        assert "&lt;img src=x onerror=alert(1)&gt;" in html
        assert "Net 30 &amp; &lt;i&gt;no&lt;/i&gt; exceptions" in html


class TestSend:

    @pytest.mark.asyncio
    async def test_without_api_key(self):
        mailer = DocumentMailer(api_key="")
        assert await mailer.send(["ap@acme.test"], "invoice", INVOICE) is False

    @pytest.mark.asyncio
    async def test_sends_to_every_recipient(self, monkeypatch):
        sent = []

        class FakeResponse:
            status_code = 202

        class FakeClient:
            def __init__(self, api_key):
                self.api_key = api_key

            def send(self, message):
                sent.append(message.get())
                return FakeResponse()

        monkeypatch.setattr(document_mailer, "SendGridAPIClient", FakeClient)
        mailer = DocumentMailer(api_key="SG.test", sender="billing@example.org", sender_name="Billing")
        delivered = await mailer.send(["a@acme.test", "b@acme.test"], "invoice", INVOICE, rendered=b"%PDF-1.4")

        assert delivered is True
        assert len(sent) == 2
        assert sent[0]["subject"] == "Invoice INV-2026-00001"
        assert sent[0]["attachments"][0]["filename"] == "INV-2026-00001.pdf"
