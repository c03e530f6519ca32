"""Tests for PostgresClient - pooling, transactions and RLS context.

The psycopg2 pool is replaced with mocks; statements are inspected rather
than run against a live database.
"""

from unittest.mock import MagicMock, call

import psycopg2.extras
import psycopg2.pool
import pytest
from uuid import UUID

from clients.postgres_client import PostgresClient
from utils.organization_context import organization_context

ORG_ID = UUID("00000000-0000-0000-0000-00000000000a")


@pytest.fixture
def connection():
    conn = MagicMock()
    cursor = conn.cursor.return_value.__enter__.return_value
    cursor.fetchall.return_value = []
    return conn


@pytest.fixture
def cursor(connection):
    return connection.cursor.return_value.__enter__.return_value


@pytest.fixture
def pool(monkeypatch, connection):
    pool = MagicMock()
    pool.getconn.return_value = connection
    monkeypatch.setattr(psycopg2.pool, "ThreadedConnectionPool", MagicMock(return_value=pool))
    monkeypatch.setattr(psycopg2.extras, "register_default_jsonb", MagicMock())
    yield pool
    PostgresClient.close_all_pools()


@pytest.fixture
def db(pool):
    return PostgresClient("postgresql://test/billing")


def _statements(cursor):
    return [c.args[0] for c in cursor.execute.call_args_list]


class TestPostgresClientInit:
    """Connection pool initialization."""

    def test_pool_is_shared_per_url(self, pool):
        PostgresClient("postgresql://test/billing")
        PostgresClient("postgresql://test/billing")

        assert psycopg2.pool.ThreadedConnectionPool.call_count == 1

    def test_close_removes_pool(self, db, pool):
        db.close()

        pool.closeall.assert_called_once()
        assert "postgresql://test/billing" not in PostgresClient._connection_pools


class TestRLSContext:
    """Row Level Security context management."""

    def test_sets_organization_from_contextvar(self, db, cursor):
        with organization_context(ORG_ID):
            db.execute("SELECT 1")

        assert cursor.execute.call_args_list[0] == call(
            "SET app.current_organization_id = %s", (str(ORG_ID),)
        )

    def test_clears_setting_without_organization(self, db, cursor):
        db.execute("SELECT 1")

        assert cursor.execute.call_args_list[0] == call("SET app.current_organization_id = ''")

    def test_connection_returned_to_pool(self, db, pool, connection):
        db.execute("SELECT 1")

        pool.putconn.assert_called_once_with(connection)


class TestExecuteMethods:
    """Query execution methods."""

    def test_execute_returns_list_of_dicts(self, db, cursor):
        cursor.fetchall.return_value = [{"num": 1, "word": "hello"}]

        assert db.execute("SELECT 1 as num, 'hello' as word") == [{"num": 1, "word": "hello"}]

    def test_execute_without_result_set_returns_empty_list(self, db, cursor):
        cursor.description = None

        assert db.execute("UPDATE clients SET status = 'CLIENT'") == []

    def test_execute_single_and_scalar(self, db, cursor):
        cursor.fetchall.return_value = [{"answer": 42}]

        assert db.execute_single("SELECT 42 as answer") == {"answer": 42}
        assert db.execute_scalar("SELECT 42 as answer") == 42

    def test_no_rows(self, db):
        assert db.execute_single("SELECT 1 WHERE false") is None
        assert db.execute_scalar("SELECT 1 WHERE false") is None

    def test_uuids_converted_to_strings(self, db, cursor):
        db.execute("SELECT %s, %s", (ORG_ID, [ORG_ID]))

        assert cursor.execute.call_args_list[-1] == call("SELECT %s, %s", (str(ORG_ID), [str(ORG_ID)]))

    def test_statement_outside_transaction_commits(self, db, connection):
        db.execute("SELECT 1")

        connection.commit.assert_called_once()


class TestTransaction:
    """Atomic blocks and savepoints."""

    def test_statements_share_connection_and_commit_once(self, db, pool, connection):
        with db.transaction():
            assert db.in_transaction
            db.execute("SELECT 1")
            db.execute("SELECT 2")

        assert pool.getconn.call_count == 1
        connection.commit.assert_called_once()
        assert not db.in_transaction

    def test_exception_rolls_back_and_propagates(self, db, connection):
        with pytest.raises(ValueError):
            with db.transaction():
                db.execute("SELECT 1")
                raise ValueError("boom")

        connection.rollback.assert_called_once()
        connection.commit.assert_not_called()
        assert not db.in_transaction

    def test_nested_transaction_uses_savepoint(self, db, cursor, connection):
        with db.transaction():
            with pytest.raises(ValueError):
                with db.transaction():
                    raise ValueError("inner")

        statements = _statements(cursor)
        assert any(s.startswith("SAVEPOINT sp_") for s in statements)
        assert any(s.startswith("ROLLBACK TO SAVEPOINT sp_") for s in statements)
        connection.commit.assert_called_once()

    def test_nested_success_releases_savepoint(self, db, cursor):
        with db.transaction():
            with db.transaction():
                db.execute("SELECT 1")

        assert any(s.startswith("RELEASE SAVEPOINT sp_") for s in _statements(cursor))
