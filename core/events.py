"""
Domain events for billing documents.

Immutable event objects describing committed state changes. Services
publish what happened. Handlers (notifications, receipts) react without
the publisher knowing who is listening.

Event Categories:
- InvoiceEvent: Invoice lifecycle (finalize, send, payment, paid)
- QuoteEvent: Quote lifecycle (send, accept, reject)

Events carry the full document so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class DocumentEvent(BillingEvent):
    """An event about one billing document."""
    document: Any = None  # BillingDocument, Any to avoid circular import

    @classmethod
    def create(cls, document: Any) -> "DocumentEvent":
        return cls(document=document)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(DocumentEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoiceFinalized(InvoiceEvent):
    """Invoice was locked against edits."""
    pass


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice was sent (or re-sent) to the client."""
    pass


@dataclass(frozen=True)
class PaymentRecorded(InvoiceEvent):
    """A payment or correction changed the invoice's paid amount."""
    amount: Decimal = Decimal("0")

    @classmethod
    def create(cls, document: Any, amount: Decimal = Decimal("0")) -> "PaymentRecorded":
        return cls(document=document, amount=amount)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice crossed the paid-in-full threshold."""
    pass


# =============================================================================
# QUOTE EVENTS
# =============================================================================


@dataclass(frozen=True)
class QuoteEvent(DocumentEvent):
    """Events related to quote lifecycle."""
    pass


@dataclass(frozen=True)
class QuoteSent(QuoteEvent):
    """Quote was sent to the client."""
    pass


@dataclass(frozen=True)
class QuoteAccepted(QuoteEvent):
    """Client accepted the quote."""
    pass


@dataclass(frozen=True)
class QuoteRejected(QuoteEvent):
    """Client rejected the quote."""
    pass
