"""
PostgreSQL implementation of BillingRepository.

Tables are defined in schema.sql. Row level security scopes every table to
app.current_organization_id. Queries also filter on organization_id
explicitly so a missing policy never leaks another tenant's rows.
"""

import logging
from contextlib import contextmanager
from typing import Iterable
from uuid import UUID

from clients.postgres_client import PostgresClient, UniqueViolation
from core.exceptions import ConflictError
from core.models import (
    BillingDocument, Client, ClientStatus, Contact, DocumentKind,
    LineItem, Organization, TimeEntry,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_DOCUMENT_COLUMNS = [
    "id", "organization_id", "client_id", "contact_id", "kind", "number", "status",
    "currency", "subtotal", "tax_amount", "total", "paid_amount",
    "title", "introduction", "terms", "notes", "payment_terms",
    "issue_date", "due_date", "valid_until",
    "sent_at", "viewed_at", "accepted_at", "rejected_at", "paid_at",
    "portal_visible", "created_at", "updated_at",
]

_LINE_ITEM_COLUMNS = [
    "id", "document_id", "service_id", "description",
    "quantity", "unit_price", "tax_type", "tax_rate",
    "subtotal", "tax_amount", "total", "sort_order",
    "is_optional", "is_selected", "created_at", "updated_at",
]


def _upsert_sql(table: str, columns: list[str]) -> str:
    """INSERT ... ON CONFLICT (id) DO UPDATE for every non-key column."""
    assignments = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns if c not in ("id", "created_at"))
    return f"""
        INSERT INTO {table} ({', '.join(columns)})
        VALUES ({', '.join(['%s'] * len(columns))})
        ON CONFLICT (id) DO UPDATE SET {assignments}
        RETURNING *
    """


def _values(model, columns: list[str]) -> tuple:
    data = model.model_dump()
    return tuple(
        data[c].value if hasattr(data[c], "value") else data[c]
        for c in columns
    )


class PostgresBillingRepository:
    """BillingRepository backed by PostgreSQL."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    @contextmanager
    def transaction(self):
        with self.postgres.transaction():
            yield

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    def find_document(
        self, document_id: UUID, organization_id: UUID, for_update: bool = False
    ) -> BillingDocument | None:
        row = self.postgres.execute_single(
            f"""
            SELECT * FROM billing_documents
            WHERE id = %s AND organization_id = %s
            {'FOR UPDATE' if for_update else ''}
            """,
            (document_id, organization_id)
        )
        return BillingDocument.model_validate(row) if row else None

    def find_documents_by_status(
        self, organization_id: UUID, kind: DocumentKind, statuses: Iterable
    ) -> list[BillingDocument]:
        rows = self.postgres.execute(
            """
            SELECT * FROM billing_documents
            WHERE organization_id = %s AND kind = %s AND status = ANY(%s)
            ORDER BY created_at ASC
            """,
            (organization_id, kind.value, [s.value for s in statuses])
        )
        return [BillingDocument.model_validate(row) for row in rows]

    def find_documents_for_client(
        self, client_id: UUID, organization_id: UUID, kind: DocumentKind | None = None
    ) -> list[BillingDocument]:
        rows = self.postgres.execute(
            """
            SELECT * FROM billing_documents
            WHERE client_id = %s AND organization_id = %s
              AND (%s::text IS NULL OR kind = %s)
            ORDER BY created_at DESC
            """,
            (client_id, organization_id, kind.value if kind else None, kind.value if kind else None)
        )
        return [BillingDocument.model_validate(row) for row in rows]

    def save_document(self, document: BillingDocument) -> BillingDocument:
        try:
            row = self.postgres.execute_returning(
                _upsert_sql("billing_documents", _DOCUMENT_COLUMNS),
                _values(document, _DOCUMENT_COLUMNS)
            )[0]
        except UniqueViolation as e:
            raise ConflictError(f"Document number {document.number} already exists") from e
        return BillingDocument.model_validate(row)

    def delete_document(self, document_id: UUID) -> None:
        # billing_line_items.document_id is ON DELETE CASCADE
        self.postgres.execute(
            "DELETE FROM billing_documents WHERE id = %s",
            (document_id,)
        )

    # =========================================================================
    # NUMBERING
    # =========================================================================

    def lock_number_sequence(self, organization_id: UUID, prefix: str, year: int) -> None:
        # Transaction-scoped advisory lock, released at commit/rollback
        self.postgres.execute(
            "SELECT pg_advisory_xact_lock(hashtext(%s))",
            (f"{organization_id}:{prefix}:{year}",)
        )

    def find_latest_number(self, organization_id: UUID, prefix: str, year: int) -> str | None:
        return self.postgres.execute_scalar(
            """
            SELECT number FROM billing_documents
            WHERE organization_id = %s AND number LIKE %s
            ORDER BY LENGTH(number) DESC, number DESC
            LIMIT 1
            """,
            (organization_id, f"{prefix}-{year}-%")
        )

    # =========================================================================
    # LINE ITEMS
    # =========================================================================

    def find_line_items(self, document_id: UUID) -> list[LineItem]:
        rows = self.postgres.execute(
            """
            SELECT * FROM billing_line_items
            WHERE document_id = %s
            ORDER BY sort_order ASC
            """,
            (document_id,)
        )
        return [LineItem.model_validate(row) for row in rows]

    def find_line_item(self, item_id: UUID) -> LineItem | None:
        row = self.postgres.execute_single(
            "SELECT * FROM billing_line_items WHERE id = %s",
            (item_id,)
        )
        return LineItem.model_validate(row) if row else None

    def save_line_item(self, item: LineItem) -> LineItem:
        row = self.postgres.execute_returning(
            _upsert_sql("billing_line_items", _LINE_ITEM_COLUMNS),
            _values(item, _LINE_ITEM_COLUMNS)
        )[0]
        return LineItem.model_validate(row)

    def delete_line_item(self, item_id: UUID) -> None:
        self.postgres.execute(
            "DELETE FROM billing_line_items WHERE id = %s",
            (item_id,)
        )

    # =========================================================================
    # CLIENTS
    # =========================================================================

    def find_organization(self, organization_id: UUID) -> Organization | None:
        row = self.postgres.execute_single(
            "SELECT * FROM organizations WHERE id = %s",
            (organization_id,)
        )
        return Organization.model_validate(row) if row else None

    def find_client(self, client_id: UUID, organization_id: UUID) -> Client | None:
        row = self.postgres.execute_single(
            "SELECT * FROM clients WHERE id = %s AND organization_id = %s",
            (client_id, organization_id)
        )
        return Client.model_validate(row) if row else None

    def find_contact(self, contact_id: UUID, client_id: UUID) -> Contact | None:
        row = self.postgres.execute_single(
            "SELECT * FROM contacts WHERE id = %s AND client_id = %s",
            (contact_id, client_id)
        )
        return Contact.model_validate(row) if row else None

    def update_client_status(self, client_id: UUID, status: ClientStatus) -> None:
        self.postgres.execute(
            "UPDATE clients SET status = %s, updated_at = %s WHERE id = %s",
            (status.value, now_utc(), client_id)
        )

    # =========================================================================
    # TIME ENTRIES
    # =========================================================================

    def find_unbilled_time_entries(self, client_id: UUID, organization_id: UUID) -> list[TimeEntry]:
        rows = self.postgres.execute(
            """
            SELECT t.*, p.name AS project_name
            FROM time_entries t
            LEFT JOIN projects p ON p.id = t.project_id
            WHERE t.client_id = %s AND t.organization_id = %s
              AND t.billable = TRUE AND t.billed = FALSE
            ORDER BY t.work_date ASC, t.created_at ASC
            """,
            (client_id, organization_id)
        )
        return [TimeEntry.model_validate(row) for row in rows]

    def mark_time_entries_billed(self, entry_ids: list[UUID], invoice_id: UUID) -> None:
        self.postgres.execute(
            """
            UPDATE time_entries
            SET billed = TRUE, invoice_id = %s, updated_at = %s
            WHERE id = ANY(%s::uuid[])
            """,
            (invoice_id, now_utc(), list(entry_ids))
        )
