"""Core billing domain models."""

from core.models.line_item import LineItem, LineItemCreate, LineItemUpdate, TaxType
from core.models.document import (
    BillingDocument, DocumentCreate, DocumentUpdate,
    DocumentKind, InvoiceStatus, QuoteStatus,
)
from core.models.client import Client, ClientStatus, Contact, Organization
from core.models.time_entry import TimeEntry, TimeEntryInvoiceRequest, GroupBy, UnbilledSummary
from core.models.payment import PaymentCreate, PaymentCorrection

__all__ = [
    # LineItem
    "LineItem", "LineItemCreate", "LineItemUpdate", "TaxType",
    # Document
    "BillingDocument", "DocumentCreate", "DocumentUpdate",
    "DocumentKind", "InvoiceStatus", "QuoteStatus",
    # Client
    "Client", "ClientStatus", "Contact", "Organization",
    # TimeEntry
    "TimeEntry", "TimeEntryInvoiceRequest", "GroupBy", "UnbilledSummary",
    # Payment
    "PaymentCreate", "PaymentCorrection",
]
