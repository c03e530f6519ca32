"""Tests for PostgresBillingRepository SQL mapping against a mocked PostgresClient."""

from decimal import Decimal
from unittest.mock import MagicMock, Mock
from uuid import uuid4

import pytest

from clients.postgres_client import PostgresClient, UniqueViolation
from core.exceptions import ConflictError
from core.models import BillingDocument, ClientStatus, DocumentKind, InvoiceStatus
from core.postgres_repository import PostgresBillingRepository
from utils.timezone import now_utc


@pytest.fixture
def postgres():
    return Mock(spec=PostgresClient)


@pytest.fixture
def repository(postgres):
    return PostgresBillingRepository(postgres)


@pytest.fixture
def document():
    now = now_utc()
    return BillingDocument(
        id=uuid4(), organization_id=uuid4(), client_id=uuid4(),
        kind=DocumentKind.INVOICE, number="INV-2025-0001", status=InvoiceStatus.DRAFT,
        currency="EUR", total=Decimal("121"), created_at=now, updated_at=now,
    )


def _sql(mock_method):
    return " ".join(mock_method.call_args.args[0].split())


class TestDocuments:

    def test_find_document_plain(self, repository, postgres, document):
        postgres.execute_single.return_value = document.model_dump()

        found = repository.find_document(document.id, document.organization_id)

        assert found == document
        assert "FOR UPDATE" not in _sql(postgres.execute_single)
        assert postgres.execute_single.call_args.args[1] == (document.id, document.organization_id)

    def test_find_document_for_update_locks_row(self, repository, postgres, document):
        postgres.execute_single.return_value = None

        assert repository.find_document(document.id, document.organization_id, for_update=True) is None
        assert "FOR UPDATE" in _sql(postgres.execute_single)

    def test_save_document_upserts_enum_values(self, repository, postgres, document):
        postgres.execute_returning.return_value = [document.model_dump()]

        saved = repository.save_document(document)

        sql = _sql(postgres.execute_returning)
        params = postgres.execute_returning.call_args.args[1]
        assert sql.startswith("INSERT INTO billing_documents")
        assert "ON CONFLICT (id) DO UPDATE" in sql
        assert "created_at = EXCLUDED.created_at" not in sql
        assert "INVOICE" in params and "DRAFT" in params
        assert saved.number == "INV-2025-0001"

    def test_duplicate_number_is_conflict(self, repository, postgres, document):
        postgres.execute_returning.side_effect = UniqueViolation()

        with pytest.raises(ConflictError, match="INV-2025-0001"):
            repository.save_document(document)

    def test_find_documents_by_status_passes_values(self, repository, postgres):
        postgres.execute.return_value = []
        org = uuid4()

        repository.find_documents_by_status(org, DocumentKind.INVOICE, [InvoiceStatus.SENT, InvoiceStatus.VIEWED])

        assert postgres.execute.call_args.args[1] == (org, "INVOICE", ["SENT", "VIEWED"])


class TestNumbering:

    def test_lock_takes_transaction_advisory_lock(self, repository, postgres):
        org = uuid4()

        repository.lock_number_sequence(org, "INV", 2025)

        assert "pg_advisory_xact_lock" in _sql(postgres.execute)
        assert postgres.execute.call_args.args[1] == (f"{org}:INV:2025",)

    def test_latest_number_orders_by_length_then_text(self, repository, postgres):
        postgres.execute_scalar.return_value = "INV-2025-10000"
        org = uuid4()

        assert repository.find_latest_number(org, "INV", 2025) == "INV-2025-10000"
        assert "ORDER BY LENGTH(number) DESC, number DESC" in _sql(postgres.execute_scalar)
        assert postgres.execute_scalar.call_args.args[1] == (org, "INV-2025-%")


class TestClientsAndTimeEntries:

    def test_update_client_status(self, repository, postgres):
        client_id = uuid4()

        repository.update_client_status(client_id, ClientStatus.CLIENT)

        params = postgres.execute.call_args.args[1]
        assert params[0] == "CLIENT"
        assert params[2] == client_id

    def test_unbilled_entries_filter_billable_unbilled(self, repository, postgres):
        postgres.execute.return_value = []

        repository.find_unbilled_time_entries(uuid4(), uuid4())

        sql = _sql(postgres.execute)
        assert "t.billable = TRUE AND t.billed = FALSE" in sql

    def test_mark_billed(self, repository, postgres):
        ids, invoice_id = [uuid4(), uuid4()], uuid4()

        repository.mark_time_entries_billed(ids, invoice_id)

        params = postgres.execute.call_args.args[1]
        assert params[0] == invoice_id
        assert params[2] == ids

    def test_transaction_delegates_to_client(self, repository, postgres):
        postgres.transaction.return_value = MagicMock()

        with repository.transaction():
            pass

        postgres.transaction.assert_called_once()
