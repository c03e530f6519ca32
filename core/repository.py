"""
Storage boundary for the billing core.

Services depend on this protocol only. PostgresBillingRepository is the
production implementation. Tests use an in-memory one.

Transactions nest: an inner transaction() joins the outer one and rolls
back only its own work on error (a savepoint in PostgreSQL).
"""

from typing import ContextManager, Iterable, Protocol
from uuid import UUID

from core.models import (
    BillingDocument, Client, ClientStatus, Contact, DocumentKind,
    LineItem, Organization, TimeEntry,
)


class BillingRepository(Protocol):
    """Persistence operations the billing core needs."""

    def transaction(self) -> ContextManager[None]:
        """Run the enclosed calls atomically."""
        ...

    # Documents

    def find_document(
        self, document_id: UUID, organization_id: UUID, for_update: bool = False
    ) -> BillingDocument | None:
        """Document scoped to the organization. `for_update` locks it until commit."""
        ...

    def find_documents_by_status(
        self, organization_id: UUID, kind: DocumentKind, statuses: Iterable
    ) -> list[BillingDocument]:
        ...

    def find_documents_for_client(
        self, client_id: UUID, organization_id: UUID, kind: DocumentKind | None = None
    ) -> list[BillingDocument]:
        ...

    def save_document(self, document: BillingDocument) -> BillingDocument:
        """
        Insert or update a document.

        Raises:
            ConflictError: If the number is already used in the organization
        """
        ...

    def delete_document(self, document_id: UUID) -> None:
        """Delete a document and its line items."""
        ...

    # Numbering

    def lock_number_sequence(self, organization_id: UUID, prefix: str, year: int) -> None:
        """Serialize number allocation for the key until the transaction ends."""
        ...

    def find_latest_number(self, organization_id: UUID, prefix: str, year: int) -> str | None:
        """Highest existing number starting with '<prefix>-<year>-'."""
        ...

    # Line items

    def find_line_items(self, document_id: UUID) -> list[LineItem]:
        """Items of a document ordered by sort_order."""
        ...

    def find_line_item(self, item_id: UUID) -> LineItem | None:
        ...

    def save_line_item(self, item: LineItem) -> LineItem:
        ...

    def delete_line_item(self, item_id: UUID) -> None:
        ...

    # Clients

    def find_organization(self, organization_id: UUID) -> Organization | None:
        ...

    def find_client(self, client_id: UUID, organization_id: UUID) -> Client | None:
        ...

    def find_contact(self, contact_id: UUID, client_id: UUID) -> Contact | None:
        ...

    def update_client_status(self, client_id: UUID, status: ClientStatus) -> None:
        ...

    # Time entries

    def find_unbilled_time_entries(self, client_id: UUID, organization_id: UUID) -> list[TimeEntry]:
        """Billable, not yet billed entries for the client, oldest first."""
        ...

    def mark_time_entries_billed(self, entry_ids: list[UUID], invoice_id: UUID) -> None:
        ...
