"""
PDF rendering for quotes and invoices with reportlab.

Draws directly on a canvas: header, parties, the item table (paginated),
totals, and, when any included item is reverse charged, the VAT
reverse-charge notice with both VAT numbers. Unselected optional quote
items are left out.
"""

import logging
from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from core.models import BillingDocument, Client, Contact, LineItem, Organization
from core.money import format_money

logger = logging.getLogger(__name__)

_MARGIN = 20 * mm
_LINE = 14
_BOTTOM = 30 * mm
_DESCRIPTION_CHARS = 55

# Column x offsets as fractions of the usable width
_COLUMNS = {
    "description": 0.0,
    "unit_price": 0.62,
    "tax": 0.78,
    "total": 1.0,
}


def _wrap(text: str, width: int) -> list[str]:
    """Split text into lines of at most `width` characters, breaking on spaces."""
    lines, current = [], ""
    for word in text.split():
        candidate = f"{current} {word}".strip()
        if len(candidate) > width and current:
            lines.append(current)
            current = word
        else:
            current = candidate
    return lines + [current] if current else lines or [""]


class BillingPdfRenderer:
    """Renders a billing document to PDF bytes."""

    def __init__(self, pagesize=A4):
        self.pagesize = pagesize
        width, self._height = pagesize
        self._right = width - _MARGIN
        self._usable = width - 2 * _MARGIN

    def filename(self, document: BillingDocument) -> str:
        return f"{document.number}.pdf"

    def render(
        self,
        document: BillingDocument,
        items: list[LineItem],
        client: Client,
        organization: Organization,
        contact: Contact | None = None,
    ) -> bytes:
        """
        Render the document.

        Args:
            document: Quote or invoice
            items: All items of the document, in sort order
            client: Billed client
            organization: Issuing organization
            contact: Addressee at the client, if any

        Returns:
            PDF file content
        """
        buffer = BytesIO()
        c = canvas.Canvas(buffer, pagesize=self.pagesize)
        c.setTitle(f"{document.kind.value.title()} {document.number}")

        y = self._draw_header(c, document, organization)
        y = self._draw_parties(c, y, document, client, organization, contact)
        if document.introduction:
            y = self._draw_paragraph(c, y, document.introduction)

        included = document.included_items(items)
        y = self._draw_items(c, y, included, document.currency)
        y = self._draw_totals(c, y, document)

        if document.has_reverse_charge(included):
            y = self._draw_reverse_charge(c, y, client, organization)
        for text in (document.payment_terms, document.terms, document.notes):
            if text:
                y = self._draw_paragraph(c, y, text)

        c.showPage()
        c.save()
        logger.info(f"Rendered PDF for {document.number} ({len(included)} items)")
        return buffer.getvalue()

    def _x(self, column: str) -> float:
        return _MARGIN + self._usable * _COLUMNS[column]

    def _ensure_space(self, c: canvas.Canvas, y: float, needed: float = _LINE) -> float:
        if y - needed >= _BOTTOM:
            return y
        c.showPage()
        c.setFont("Helvetica", 9)
        return self._height - _MARGIN

    def _draw_header(self, c: canvas.Canvas, document: BillingDocument, organization: Organization) -> float:
        y = self._height - _MARGIN

        c.setFont("Helvetica-Bold", 16)
        c.drawString(_MARGIN, y, organization.name)
        c.setFont("Helvetica-Bold", 18)
        c.drawRightString(self._right, y, document.kind.value)

        c.setFont("Helvetica", 10)
        y -= _LINE + 4
        c.drawRightString(self._right, y, f"No: {document.number}")
        if document.title:
            c.drawString(_MARGIN, y, document.title)

        return y - 2 * _LINE

    def _draw_parties(
        self,
        c: canvas.Canvas,
        y: float,
        document: BillingDocument,
        client: Client,
        organization: Organization,
        contact: Contact | None,
    ) -> float:
        middle = _MARGIN + self._usable / 2

        c.setFont("Helvetica-Bold", 11)
        c.drawString(_MARGIN, y, "Bill to:")
        c.drawString(middle, y, "Details:")
        c.setFont("Helvetica", 10)

        left = [client.display_name]
        if contact is not None and contact.full_name:
            left.append(f"Attn: {contact.full_name}")
        left += [v for v in (client.address_line1, " ".join(filter(None, [client.postal_code, client.city])), client.country) if v]
        if client.vat_number:
            left.append(f"VAT: {client.vat_number}")

        right = []
        if document.issue_date:
            right.append(f"Issue date: {document.issue_date.isoformat()}")
        if document.is_invoice and document.due_date:
            right.append(f"Due date: {document.due_date.isoformat()}")
        if document.is_quote and document.valid_until:
            right.append(f"Valid until: {document.valid_until.isoformat()}")
        if organization.vat_number:
            right.append(f"Our VAT: {organization.vat_number}")
        if document.is_invoice and organization.iban:
            right.append(f"IBAN: {organization.iban}")

        for i in range(max(len(left), len(right))):
            y -= _LINE
            if i < len(left):
                c.drawString(_MARGIN, y, left[i])
            if i < len(right):
                c.drawString(middle, y, right[i])

        return y - 2 * _LINE

    def _draw_table_header(self, c: canvas.Canvas, y: float) -> float:
        c.setFont("Helvetica-Bold", 10)
        c.drawString(self._x("description"), y, "Description")
        c.drawRightString(self._x("unit_price") - 6, y, "Qty")
        c.drawRightString(self._x("tax") - 6, y, "Unit price")
        c.drawRightString(self._x("total") - 60, y, "VAT")
        c.drawRightString(self._x("total"), y, "Total")
        y -= 4
        c.line(_MARGIN, y, self._right, y)
        c.setFont("Helvetica", 9)
        return y - _LINE

    def _draw_items(self, c: canvas.Canvas, y: float, items: list[LineItem], currency: str) -> float:
        y = self._draw_table_header(c, y)

        if not items:
            c.drawString(_MARGIN, y, "No items.")
            return y - 2 * _LINE

        for item in items:
            lines = _wrap(item.description, _DESCRIPTION_CHARS)
            if self._ensure_space(c, y, _LINE * len(lines)) != y:
                y = self._draw_table_header(c, self._height - _MARGIN)

            c.drawRightString(self._x("unit_price") - 6, y, f"{item.quantity.normalize():f}")
            c.drawRightString(self._x("tax") - 6, y, format_money(item.unit_price, currency))
            c.drawRightString(self._x("total") - 60, y, f"{item.tax_rate.normalize():f}%")
            c.drawRightString(self._x("total"), y, format_money(item.total, currency))
            for line in lines:
                c.drawString(self._x("description"), y, line)
                y -= _LINE

        c.line(_MARGIN, y + _LINE - 4, self._right, y + _LINE - 4)
        return y - _LINE

    def _draw_totals(self, c: canvas.Canvas, y: float, document: BillingDocument) -> float:
        rows = [
            ("Subtotal", document.subtotal),
            ("VAT", document.tax_amount),
            ("Total", document.total),
        ]
        if document.is_invoice and document.paid_amount > 0:
            rows += [("Paid", document.paid_amount), ("Balance due", document.balance_due)]

        y = self._ensure_space(c, y, _LINE * len(rows))
        for label, amount in rows:
            c.setFont("Helvetica-Bold" if label in ("Total", "Balance due") else "Helvetica", 10)
            c.drawRightString(self._x("total") - 90, y, label)
            c.drawRightString(self._x("total"), y, format_money(amount, document.currency))
            y -= _LINE

        return y - _LINE

    def _draw_reverse_charge(
        self, c: canvas.Canvas, y: float, client: Client, organization: Organization
    ) -> float:
        y = self._ensure_space(c, y, 3 * _LINE)
        c.setFont("Helvetica-Bold", 10)
        c.drawString(_MARGIN, y, "VAT reverse charged")
        c.setFont("Helvetica", 9)
        y -= _LINE
        c.drawString(_MARGIN, y, f"Supplier VAT number: {organization.vat_number or '-'}")
        y -= _LINE
        c.drawString(_MARGIN, y, f"Customer VAT number: {client.vat_number or '-'}")
        return y - 2 * _LINE

    def _draw_paragraph(self, c: canvas.Canvas, y: float, text: str) -> float:
        c.setFont("Helvetica", 9)
        for paragraph in text.splitlines() or [""]:
            for line in _wrap(paragraph, 100):
                y = self._ensure_space(c, y)
                c.drawString(_MARGIN, y, line)
                y -= _LINE
        return y - _LINE
