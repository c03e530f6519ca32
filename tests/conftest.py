"""Shared test fixtures for the billing test suite."""

import threading
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
from unittest.mock import Mock
from uuid import UUID, uuid4

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.exceptions import ConflictError
from core.models import (
    Client, ClientStatus, Contact, DocumentKind, Organization, TaxType, TimeEntry,
)
from core.services.document_service import DocumentService
from core.services.line_item_service import LineItemService
from core.services.numbering_service import NumberingService
from core.services.payment_service import PaymentService
from core.services.time_entry_service import TimeEntryService
from utils.organization_context import organization_context, clear_current_organization_id
from utils.timezone import now_utc


# =============================================================================
# TEST ORGANIZATION CONSTANTS
# =============================================================================

# Primary test organization - use for single-tenant tests
ORG_ID = UUID("00000000-0000-0000-0000-00000000000a")

# Secondary test organization - use for isolation tests
ORG_B_ID = UUID("00000000-0000-0000-0000-00000000000b")

EVENT_NAMES = [
    "InvoiceFinalized", "InvoiceSent", "PaymentRecorded", "InvoicePaid",
    "QuoteSent", "QuoteAccepted", "QuoteRejected",
]


# =============================================================================
# IN-MEMORY REPOSITORY
# =============================================================================


class InMemoryBillingRepository:
    """
    BillingRepository over dicts.

    transaction() holds a re-entrant lock for its whole duration, so
    concurrent transactions run one at a time, and restores a snapshot of
    every table when the block raises. Nested transactions snapshot too and
    roll back only their own work. save_document enforces the unique
    (organization_id, number) constraint.
    """

    _TABLES = ("organizations", "clients", "contacts", "documents", "line_items", "time_entries")

    def __init__(self):
        self._lock = threading.RLock()
        self._snapshots: list[dict] = []
        self.organizations: dict = {}
        self.clients: dict = {}
        self.contacts: dict = {}
        self.documents: dict = {}
        self.line_items: dict = {}
        self.time_entries: dict = {}
        self.locked_sequences: list[tuple] = []

    @contextmanager
    def transaction(self):
        with self._lock:
            self._snapshots.append({name: dict(getattr(self, name)) for name in self._TABLES})
            try:
                yield
            except Exception:
                for name, rows in self._snapshots.pop().items():
                    setattr(self, name, rows)
                raise
            else:
                self._snapshots.pop()

    @property
    def in_transaction(self) -> bool:
        return bool(self._snapshots)

    # Documents

    def find_document(self, document_id, organization_id, for_update=False):
        document = self.documents.get(document_id)
        if document is None or document.organization_id != organization_id:
            return None
        return document

    def find_documents_by_status(self, organization_id, kind, statuses):
        statuses = set(statuses)
        return sorted(
            (d for d in self.documents.values()
             if d.organization_id == organization_id and d.kind is kind and d.status in statuses),
            key=lambda d: d.created_at,
        )

    def find_documents_for_client(self, client_id, organization_id, kind=None):
        return sorted(
            (d for d in self.documents.values()
             if d.client_id == client_id and d.organization_id == organization_id
             and (kind is None or d.kind is kind)),
            key=lambda d: d.created_at,
            reverse=True,
        )

    def save_document(self, document):
        with self._lock:
            for other in self.documents.values():
                if (other.id != document.id and other.organization_id == document.organization_id
                        and other.number == document.number):
                    raise ConflictError(f"Document number {document.number} already exists")
            self.documents[document.id] = document
        return document

    def delete_document(self, document_id):
        self.documents.pop(document_id, None)
        self.line_items = {k: v for k, v in self.line_items.items() if v.document_id != document_id}

    # Numbering

    def lock_number_sequence(self, organization_id, prefix, year):
        self.locked_sequences.append((organization_id, prefix, year))

    def find_latest_number(self, organization_id, prefix, year):
        numbers = [
            d.number for d in self.documents.values()
            if d.organization_id == organization_id and d.number.startswith(f"{prefix}-{year}-")
        ]
        return max(numbers, key=lambda n: (len(n), n), default=None)

    # Line items

    def find_line_items(self, document_id):
        return sorted(
            (i for i in self.line_items.values() if i.document_id == document_id),
            key=lambda i: i.sort_order,
        )

    def find_line_item(self, item_id):
        return self.line_items.get(item_id)

    def save_line_item(self, item):
        self.line_items[item.id] = item
        return item

    def delete_line_item(self, item_id):
        self.line_items.pop(item_id, None)

    # Clients

    def find_organization(self, organization_id):
        return self.organizations.get(organization_id)

    def find_client(self, client_id, organization_id):
        client = self.clients.get(client_id)
        if client is None or client.organization_id != organization_id:
            return None
        return client

    def find_contact(self, contact_id, client_id):
        contact = self.contacts.get(contact_id)
        if contact is None or contact.client_id != client_id:
            return None
        return contact

    def update_client_status(self, client_id, status):
        self.clients[client_id] = self.clients[client_id].model_copy(update={"status": status})

    # Time entries

    def find_unbilled_time_entries(self, client_id, organization_id):
        return sorted(
            (e for e in self.time_entries.values()
             if e.client_id == client_id and e.organization_id == organization_id
             and e.billable and not e.billed),
            key=lambda e: (e.work_date, e.created_at or now_utc()),
        )

    def mark_time_entries_billed(self, entry_ids, invoice_id):
        for entry_id in entry_ids:
            self.time_entries[entry_id] = self.time_entries[entry_id].model_copy(
                update={"billed": True, "invoice_id": invoice_id}
            )

    # Seeding helpers

    def add_organization(self, organization_id, **fields) -> Organization:
        organization = Organization(id=organization_id, name=fields.pop("name", "Acme Studio"), **fields)
        self.organizations[organization.id] = organization
        return organization

    def add_client(self, organization_id, **fields) -> Client:
        client = Client(
            id=fields.pop("id", uuid4()),
            organization_id=organization_id,
            name=fields.pop("name", "Jane Client"),
            **fields,
        )
        self.clients[client.id] = client
        return client

    def add_contact(self, client_id, **fields) -> Contact:
        contact = Contact(id=fields.pop("id", uuid4()), client_id=client_id, **fields)
        self.contacts[contact.id] = contact
        return contact

    def add_time_entry(self, organization_id, client_id, **fields) -> TimeEntry:
        entry = TimeEntry(
            id=fields.pop("id", uuid4()),
            organization_id=organization_id,
            client_id=client_id,
            work_date=fields.pop("work_date", date(2025, 3, 3)),
            duration_minutes=fields.pop("duration_minutes", 60),
            created_at=fields.pop("created_at", now_utc()),
            **fields,
        )
        self.time_entries[entry.id] = entry
        return entry


# =============================================================================
# ORGANIZATION CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_organization_context():
    """Ensure clean organization context before and after each test."""
    clear_current_organization_id()
    yield
    clear_current_organization_id()


@pytest.fixture
def organization_id() -> UUID:
    """The primary test organization's ID."""
    return ORG_ID


@pytest.fixture
def organization_b_id() -> UUID:
    """The secondary test organization's ID (for isolation tests)."""
    return ORG_B_ID


@pytest.fixture
def as_org(organization_id):
    """Act as the primary test organization."""
    with organization_context(organization_id):
        yield organization_id


# =============================================================================
# REPOSITORY & INFRASTRUCTURE FIXTURES
# =============================================================================


@pytest.fixture
def repository(organization_id, organization_b_id):
    """In-memory repository seeded with both test organizations."""
    repo = InMemoryBillingRepository()
    repo.add_organization(
        organization_id,
        name="Acme Studio",
        vat_number="NL001234567B01",
        email="billing@acme.test",
        iban="NL91ABNA0417164300",
    )
    repo.add_organization(organization_b_id, name="Other Org", default_currency="USD")
    return repo


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def published(event_bus):
    """List collecting every billing event published during the test."""
    events = []
    event_bus.subscribe_many(EVENT_NAMES, events.append)
    return events


@pytest.fixture
def config():
    return BillingConfig()


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def numbering_service(repository, config):
    return NumberingService(repository, config)


@pytest.fixture
def line_item_service(repository, audit):
    return LineItemService(repository, audit)


@pytest.fixture
def document_service(repository, audit, event_bus, numbering_service, line_item_service, config):
    return DocumentService(repository, audit, event_bus, numbering_service, line_item_service, config)


@pytest.fixture
def payment_service(repository, audit, event_bus):
    return PaymentService(repository, audit, event_bus)


@pytest.fixture
def time_entry_service(repository, audit, document_service, line_item_service, config):
    return TimeEntryService(repository, audit, document_service, line_item_service, config)


# =============================================================================
# DATA FIXTURES
# =============================================================================


@pytest.fixture
def client_record(repository, organization_id):
    """A LEAD client of the primary organization with an email address."""
    return repository.add_client(
        organization_id,
        name="Jane Client",
        company_name="Client BV",
        email="jane@client.test",
        vat_number="BE0123456789",
        status=ClientStatus.LEAD,
    )


@pytest.fixture
def contact(repository, client_record):
    return repository.add_contact(
        client_record.id, first_name="Piet", last_name="Contact", email="piet@client.test"
    )


@pytest.fixture
def make_document(document_service, line_item_service, client_record):
    """
    Factory: create a document of `kind` with the given items.

    Items are (quantity, unit_price) tuples or LineItemCreate kwargs dicts.
    """
    from core.models import DocumentCreate, LineItemCreate

    def _make(kind=DocumentKind.INVOICE, items=(), **header):
        document = document_service.create(kind, DocumentCreate(client_id=client_record.id, **header))
        for item in items:
            if isinstance(item, tuple):
                quantity, unit_price = item
                item = {"description": "Work", "quantity": Decimal(str(quantity)),
                        "unit_price": Decimal(str(unit_price)), "tax_type": TaxType.STANDARD}
            line_item_service.add_item(document.id, LineItemCreate(**item))
        return document_service.get(document.id)

    return _make


@pytest.fixture
def sent_invoice(make_document, document_service):
    """Invoice with total 100.00 (no tax), finalized and sent."""
    invoice = make_document(
        DocumentKind.INVOICE,
        items=[{"description": "Consulting", "quantity": Decimal("1"),
                "unit_price": Decimal("100"), "tax_type": TaxType.ZERO}],
    )
    document_service.finalize(invoice.id)
    return document_service.send(invoice.id)
