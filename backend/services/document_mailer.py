"""
SendGrid mailer for commercial documents
- Sends a quotation / RFI / invoice summary to the customer
- Attaches the rendered PDF when a renderer produced one

Delivery is best effort: the document's transition to "sent" never depends
on it.
"""

import asyncio
import base64
import logging
from html import escape
from typing import List, Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import (
    Attachment, Content, Disposition, Email, FileContent, FileName, FileType, Mail, To,
)

from config import SENDER_EMAIL, SENDER_NAME, SENDGRID_API_KEY

logger = logging.getLogger("document_mailer")

DOCUMENT_LABELS = {
    "rfi": "Request for Information",
    "quotation": "Quotation",
    "purchase_order": "Purchase Order",
    "invoice": "Invoice",
}


def _money(value) -> str:
    return f"{float(value or 0):,.2f}"


def _text(value) -> str:
    # customer-supplied text is HTML-escaped before interpolation
    return escape(str(value or ""))


def build_document_html(document_type: str, document: dict, message: Optional[str] = None) -> str:
    label = DOCUMENT_LABELS.get(document_type, document_type)
    number = _text(document.get("number"))
    rows = ""
    for item in document.get("line_items") or []:
        rows += (
            f"<tr><td>{_text(item.get('product_name'))}</td>"
            f"<td style='text-align:right'>{item.get('quantity', 0):g}</td>"
            f"<td style='text-align:right'>{_money(item.get('unit_price'))}</td>"
            f"<td style='text-align:right'>{_money(item.get('line_total'))}</td></tr>"
        )

    totals = ""
    if document_type != "rfi":
        totals = f"""
            <p><strong>Subtotal:</strong> {_money(document.get('subtotal'))}<br>
            <strong>Discount:</strong> {_money(document.get('total_discount'))}<br>
            <strong>Tax:</strong> {_money(document.get('total_tax'))}<br>
            <strong>Total:</strong> {_money(document.get('total_amount'))}</p>
        """
    if document_type == "invoice":
        totals += f"""
            <p><strong>Paid:</strong> {_money(document.get('total_paid'))}<br>
            <strong>Balance due:</strong> {_money(document.get('balance_due'))}</p>
        """

    return f"""
    <!DOCTYPE html>
    <html>
    <body style="font-family: Arial, sans-serif;">
        <h2>{label} {number}</h2>
        <p>Dear {_text(document.get('customer_name') or 'customer')},</p>
        <p>{_text(message) if message else f'Please find the details of {label.lower()} {number} below.'}</p>
        {f'<table border="1" cellpadding="6" cellspacing="0"><tr><th>Item</th><th>Qty</th><th>Unit price</th><th>Total</th></tr>{rows}</table>' if rows else ''}
        {totals}
        {f"<p>{_text(document.get('terms'))}</p>" if document.get('terms') else ''}
    </body>
    </html>
    """


class DocumentMailer:
    """NotificationSender backed by SendGrid"""

    def __init__(self, api_key: str = SENDGRID_API_KEY, sender: str = SENDER_EMAIL, sender_name: str = SENDER_NAME):
        self.api_key = api_key
        self.sender = sender
        self.sender_name = sender_name

    def _send_email(self, to_email: str, subject: str, html_content: str,
                    attachment: Optional[bytes] = None, attachment_name: str = "document.pdf") -> bool:
        if not self.api_key:
            logger.error("SENDGRID_API_KEY not configured")
            return False

        try:
            message = Mail(
                from_email=Email(self.sender, self.sender_name),
                to_emails=To(to_email),
                subject=subject,
                html_content=Content("text/html", html_content)
            )
            if attachment:
                message.attachment = Attachment(
                    FileContent(base64.b64encode(attachment).decode()),
                    FileName(attachment_name),
                    FileType("application/pdf"),
                    Disposition("attachment"),
                )

            sg = SendGridAPIClient(self.api_key)
            response = sg.send(message)

            if response.status_code in [200, 202]:
                logger.info(f"Email sent to {to_email}: {subject}")
                return True
            logger.error(f"Email send failed: {response.status_code}")
            return False

        except Exception as e:
            logger.error(f"Email send exception: {str(e)}")
            return False

    async def send(
        self,
        recipients: List[str],
        document_type: str,
        document: dict,
        subject: Optional[str] = None,
        message: Optional[str] = None,
        rendered: Optional[bytes] = None,
    ) -> bool:
        """Send the document to every recipient. True only if all succeeded."""
        label = DOCUMENT_LABELS.get(document_type, document_type)
        subject = subject or f"{label} {document.get('number', '')}"
        html = build_document_html(document_type, document, message)
        attachment_name = f"{document.get('number', document_type)}.pdf"

        results = []
        for email in recipients:
            results.append(await asyncio.to_thread(
                self._send_email, email, subject, html, rendered, attachment_name
            ))
        return all(results)
