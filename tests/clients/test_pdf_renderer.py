"""Tests for BillingPdfRenderer.

Page streams are compressed, so drawn text is captured by wrapping the
reportlab canvas drawing calls.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from reportlab.pdfgen import canvas

from clients.pdf_renderer import BillingPdfRenderer, _wrap
from core.models import (
    BillingDocument, Client, Contact, DocumentKind, LineItem, Organization, TaxType,
)
from utils.timezone import now_utc


@pytest.fixture
def drawn(monkeypatch):
    """Text passed to drawString/drawRightString, plus a count of finished pages."""
    record = {"text": [], "pages": 0}
    draw_string = canvas.Canvas.drawString
    draw_right = canvas.Canvas.drawRightString
    show_page = canvas.Canvas.showPage

    def capture(original):
        def wrapper(self, x, y, text, *args, **kwargs):
            record["text"].append(text)
            return original(self, x, y, text, *args, **kwargs)
        return wrapper

    def count_page(self):
        record["pages"] += 1
        return show_page(self)

    monkeypatch.setattr(canvas.Canvas, "drawString", capture(draw_string))
    monkeypatch.setattr(canvas.Canvas, "drawRightString", capture(draw_right))
    monkeypatch.setattr(canvas.Canvas, "showPage", count_page)
    return record


@pytest.fixture
def organization():
    return Organization(
        id=uuid4(), name="Acme Studio", vat_number="NL001234567B01", iban="NL91ABNA0417164300",
    )


@pytest.fixture
def client(organization):
    return Client(
        id=uuid4(), organization_id=organization.id, name="Jane",
        company_name="Client BV", vat_number="BE0123456789", city="Antwerp", postal_code="2000",
    )


def _document(kind, organization, client, **fields):
    now = now_utc()
    return BillingDocument(
        id=uuid4(), organization_id=organization.id, client_id=client.id,
        kind=kind, number=f"{kind.prefix}-2025-0001",
        status=fields.pop("status", "DRAFT"), currency="EUR",
        issue_date=date(2025, 3, 1), created_at=now, updated_at=now, **fields,
    )


def _item(document, description, unit_price, tax_type=TaxType.STANDARD, rate="21", sort_order=0, **fields):
    now = now_utc()
    price = Decimal(unit_price)
    tax = price * Decimal(rate) / 100
    return LineItem(
        id=uuid4(), document_id=document.id, description=description,
        quantity=Decimal("1"), unit_price=price, tax_type=tax_type, tax_rate=Decimal(rate),
        subtotal=price, tax_amount=tax, total=price + tax, sort_order=sort_order,
        created_at=now, updated_at=now, **fields,
    )


class TestRender:

    def test_returns_pdf_bytes(self, organization, client):
        invoice = _document(DocumentKind.INVOICE, organization, client, total=Decimal("121"))

        pdf = BillingPdfRenderer().render(invoice, [_item(invoice, "Design", "100")], client, organization)

        assert pdf.startswith(b"%PDF")

    def test_filename_is_document_number(self, organization, client):
        invoice = _document(DocumentKind.INVOICE, organization, client)

        assert BillingPdfRenderer().filename(invoice) == "INV-2025-0001.pdf"

    def test_draws_header_parties_and_totals(self, drawn, organization, client):
        invoice = _document(
            DocumentKind.INVOICE, organization, client,
            due_date=date(2025, 3, 31),
            subtotal=Decimal("100"), tax_amount=Decimal("21"), total=Decimal("121"),
        )
        contact = Contact(id=uuid4(), client_id=client.id, first_name="Piet", last_name="Contact")

        BillingPdfRenderer().render(invoice, [_item(invoice, "Design", "100")], client, organization, contact)

        text = drawn["text"]
        assert "INVOICE" in text
        assert "No: INV-2025-0001" in text
        assert "Client BV" in text
        assert "Attn: Piet Contact" in text
        assert "2000 Antwerp" in text
        assert "Due date: 2025-03-31" in text
        assert "IBAN: NL91ABNA0417164300" in text
        assert "Design" in text
        assert "EUR 121.00" in text

    def test_unselected_optional_items_are_left_out(self, drawn, organization, client):
        quote = _document(DocumentKind.QUOTE, organization, client, valid_until=date(2025, 4, 1))
        items = [
            _item(quote, "Website", "100"),
            _item(quote, "Logo refresh", "50", sort_order=1, is_optional=True, is_selected=False),
        ]

        BillingPdfRenderer().render(quote, items, client, organization)

        assert "Website" in drawn["text"]
        assert "Logo refresh" not in drawn["text"]
        assert "Valid until: 2025-04-01" in drawn["text"]
        assert not any(t.startswith("IBAN") for t in drawn["text"])

    def test_reverse_charge_notice(self, drawn, organization, client):
        invoice = _document(DocumentKind.INVOICE, organization, client)
        items = [_item(invoice, "Consulting", "100", TaxType.REVERSE_CHARGE, rate="0")]

        BillingPdfRenderer().render(invoice, items, client, organization)

        assert "VAT reverse charged" in drawn["text"]
        assert "Supplier VAT number: NL001234567B01" in drawn["text"]
        assert "Customer VAT number: BE0123456789" in drawn["text"]

    def test_no_reverse_charge_notice_for_standard_items(self, drawn, organization, client):
        invoice = _document(DocumentKind.INVOICE, organization, client)

        BillingPdfRenderer().render(invoice, [_item(invoice, "Design", "100")], client, organization)

        assert "VAT reverse charged" not in drawn["text"]

    def test_partially_paid_invoice_shows_balance(self, drawn, organization, client):
        invoice = _document(
            DocumentKind.INVOICE, organization, client, status="PARTIALLY_PAID",
            total=Decimal("100"), paid_amount=Decimal("60"),
        )

        BillingPdfRenderer().render(invoice, [], client, organization)

        assert "Balance due" in drawn["text"]
        assert "EUR 40.00" in drawn["text"]

    def test_long_item_lists_paginate(self, drawn, organization, client):
        invoice = _document(DocumentKind.INVOICE, organization, client)
        items = [_item(invoice, f"Task {n}", "10", sort_order=n) for n in range(80)]

        BillingPdfRenderer().render(invoice, items, client, organization)

        assert drawn["pages"] >= 2
        assert "Task 79" in drawn["text"]

    def test_notes_and_terms_are_drawn(self, drawn, organization, client):
        quote = _document(DocumentKind.QUOTE, organization, client, terms="50% upfront", notes="Thanks!")

        BillingPdfRenderer().render(quote, [], client, organization)

        assert "50% upfront" in drawn["text"]
        assert "Thanks!" in drawn["text"]


class TestWrap:

    def test_short_text_is_one_line(self):
        assert _wrap("Design work", 55) == ["Design work"]

    def test_breaks_on_spaces(self):
        assert _wrap("aaa bbb ccc", 7) == ["aaa bbb", "ccc"]

    def test_empty_text(self):
        assert _wrap("", 10) == [""]
