"""Billing document domain models.

Quotes and invoices share one shape. `kind` selects the status enum,
the number prefix and the transition table (see core/state_machine.py).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from core.models.line_item import LineItem, TaxType


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "DRAFT"
    FINALIZED = "FINALIZED"
    SENT = "SENT"
    VIEWED = "VIEWED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class QuoteStatus(str, Enum):
    """Quote lifecycle status."""

    DRAFT = "DRAFT"
    FINALIZED = "FINALIZED"
    SENT = "SENT"
    VIEWED = "VIEWED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class DocumentKind(str, Enum):
    """Which kind of billing document."""

    QUOTE = "QUOTE"
    INVOICE = "INVOICE"

    @property
    def prefix(self) -> str:
        """Number prefix: Q-2025-0001, INV-2025-0001."""
        return "Q" if self is DocumentKind.QUOTE else "INV"

    @property
    def status_enum(self) -> type[InvoiceStatus] | type[QuoteStatus]:
        return QuoteStatus if self is DocumentKind.QUOTE else InvoiceStatus

    @property
    def entity_type(self) -> str:
        """Name used for audit entries."""
        return self.value.lower()


class DocumentCreate(BaseModel):
    """Header data for a new document. Totals and number are derived."""

    client_id: UUID
    contact_id: UUID | None = None
    title: str | None = Field(None, max_length=255)
    introduction: str | None = Field(None, max_length=5000)
    terms: str | None = Field(None, max_length=5000)
    notes: str | None = Field(None, max_length=5000)
    payment_terms: str | None = Field(None, max_length=255)
    issue_date: date | None = None
    due_date: date | None = None      # Invoice only
    valid_until: date | None = None   # Quote only


class DocumentUpdate(BaseModel):
    """Header fields that can be edited. All fields optional."""

    contact_id: UUID | None = None
    title: str | None = Field(None, max_length=255)
    introduction: str | None = Field(None, max_length=5000)
    terms: str | None = Field(None, max_length=5000)
    notes: str | None = Field(None, max_length=5000)
    payment_terms: str | None = Field(None, max_length=255)
    issue_date: date | None = None
    due_date: date | None = None
    valid_until: date | None = None


class BillingDocument(BaseModel):
    """Full quote or invoice entity as stored."""

    id: UUID
    organization_id: UUID
    client_id: UUID
    contact_id: UUID | None = None
    kind: DocumentKind
    number: str
    status: InvoiceStatus | QuoteStatus
    currency: str
    subtotal: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    title: str | None = None
    introduction: str | None = None
    terms: str | None = None
    notes: str | None = None
    payment_terms: str | None = None
    issue_date: date | None = None
    due_date: date | None = None
    valid_until: date | None = None
    sent_at: datetime | None = None
    viewed_at: datetime | None = None
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None
    paid_at: datetime | None = None
    portal_visible: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @model_validator(mode="before")
    @classmethod
    def coerce_status_for_kind(cls, data: Any) -> Any:
        """Parse status with the enum belonging to the document kind."""
        if isinstance(data, dict) and "kind" in data and "status" in data:
            kind = DocumentKind(data["kind"])
            data = {**data, "status": kind.status_enum(data["status"])}
        return data

    @property
    def is_invoice(self) -> bool:
        return self.kind is DocumentKind.INVOICE

    @property
    def is_quote(self) -> bool:
        return self.kind is DocumentKind.QUOTE

    @property
    def balance_due(self) -> Decimal:
        """Amount still owed on an invoice."""
        return self.total - self.paid_amount

    def included_items(self, items: Iterable[LineItem]) -> list[LineItem]:
        """
        Items that count toward totals.

        Every invoice item counts. Quote items count unless they are
        optional and not selected.
        """
        if self.is_invoice:
            return list(items)
        return [item for item in items if item.is_included]

    def has_reverse_charge(self, items: Iterable[LineItem]) -> bool:
        """Whether a reverse-charge VAT notice must be shown on this document."""
        return any(
            item.tax_type == TaxType.REVERSE_CHARGE
            for item in self.included_items(items)
        )
