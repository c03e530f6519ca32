"""Tests for domain event models."""

from dataclasses import FrozenInstanceError
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from core.events import (
    BillingEvent, DocumentEvent,
    InvoiceEvent, InvoiceFinalized, InvoicePaid, InvoiceSent, PaymentRecorded,
    QuoteEvent, QuoteAccepted, QuoteRejected, QuoteSent,
)
from core.models import BillingDocument, DocumentKind, InvoiceStatus
from utils.timezone import now_utc


@pytest.fixture
def _invoice():
    now = now_utc()
    return BillingDocument(
        id=uuid4(), organization_id=uuid4(), client_id=uuid4(),
        kind=DocumentKind.INVOICE, number="INV-2025-0003",
        status=InvoiceStatus.PARTIALLY_PAID, currency="EUR",
        total=Decimal("100"), paid_amount=Decimal("60"),
        created_at=now, updated_at=now,
    )


class TestBaseFields:

    def test_event_id_is_a_fresh_uuid_string(self, _invoice):
        event = InvoiceSent.create(_invoice)

        assert UUID(event.event_id)
        assert InvoiceSent.create(_invoice).event_id != event.event_id

    def test_occurred_at_is_timezone_aware(self, _invoice):
        event = InvoiceSent.create(_invoice)

        assert isinstance(event.occurred_at, datetime)
        assert event.occurred_at.tzinfo is not None

    def test_events_are_immutable(self, _invoice):
        event = InvoiceSent.create(_invoice)

        with pytest.raises(FrozenInstanceError):
            event.document = None


class TestHierarchy:

    @pytest.mark.parametrize("event_class", [InvoiceFinalized, InvoiceSent, PaymentRecorded, InvoicePaid])
    def test_invoice_events(self, event_class):
        assert issubclass(event_class, InvoiceEvent)
        assert issubclass(event_class, DocumentEvent)
        assert issubclass(event_class, BillingEvent)

    @pytest.mark.parametrize("event_class", [QuoteSent, QuoteAccepted, QuoteRejected])
    def test_quote_events(self, event_class):
        assert issubclass(event_class, QuoteEvent)
        assert not issubclass(event_class, InvoiceEvent)


class TestPayloads:

    def test_create_carries_document(self, _invoice):
        event = InvoicePaid.create(_invoice)

        assert event.document is _invoice

    def test_payment_recorded_carries_amount(self, _invoice):
        event = PaymentRecorded.create(_invoice, amount=Decimal("60"))

        assert event.amount == Decimal("60")
        assert event.document.balance_due == Decimal("40")

    def test_payment_recorded_amount_defaults_to_zero(self, _invoice):
        assert PaymentRecorded.create(_invoice).amount == 0
