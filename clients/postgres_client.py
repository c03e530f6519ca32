"""
PostgreSQL client with connection pooling, transactions and RLS tenant isolation.

Uses psycopg2 with ThreadedConnectionPool. Tenant isolation is enforced via
PostgreSQL Row Level Security: the organization ID is read from the
contextvar and set as app.current_organization_id on each connection.

Outside a transaction every statement commits on its own. Inside
`transaction()` all statements share one connection and commit together.
Nested transactions become savepoints.

Security: No organization context = see nothing (RLS blocks all rows).
"""

import logging
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, List, Tuple
from uuid import UUID, uuid4

import psycopg2
import psycopg2.errors
import psycopg2.extras
import psycopg2.pool

from utils.organization_context import _current_organization_id

logger = logging.getLogger(__name__)

# Connection of the transaction open in the current context, if any
_transaction_connection: ContextVar[Any] = ContextVar("transaction_connection", default=None)

UniqueViolation = psycopg2.errors.UniqueViolation


class PostgresClient:
    """
    PostgreSQL client with automatic RLS context from contextvar.

    Usage:
        db = PostgresClient(database_url)

        with organization_context(org_id):
            invoices = db.execute("SELECT * FROM billing_documents")  # Org's rows only

            with db.transaction():
                db.execute("UPDATE billing_documents SET ...")
                db.execute("INSERT INTO audit_log ...")  # Both or neither
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, minconn: int = 2, maxconn: int = 20):
        self._database_url = database_url
        self._minconn = minconn
        self._maxconn = maxconn
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                self._connection_pools[self._database_url] = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._minconn,
                    maxconn=self._maxconn,
                    dsn=self._database_url,
                    connect_timeout=30,
                )
                psycopg2.extras.register_default_jsonb(globally=True)
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Check out a pooled connection with RLS context from contextvar."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise RuntimeError("Could not get connection from pool")

            organization_id = _current_organization_id.get()

            with conn.cursor() as cur:
                if organization_id is not None:
                    cur.execute("SET app.current_organization_id = %s", (str(organization_id),))
                else:
                    # Policies treat an empty setting as NULL: no rows visible
                    cur.execute("SET app.current_organization_id = ''")

            yield conn

        finally:
            if conn:
                pool.putconn(conn)

    @contextmanager
    def transaction(self):
        """
        Run the enclosed statements atomically.

        Commits on normal exit and rolls back on any exception, which is
        re-raised. Inside an open transaction this opens a savepoint instead.
        """
        active = _transaction_connection.get()
        if active is not None:
            savepoint = f"sp_{uuid4().hex}"
            with active.cursor() as cur:
                cur.execute(f"SAVEPOINT {savepoint}")
            try:
                yield active
            except Exception:
                with active.cursor() as cur:
                    cur.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                raise
            with active.cursor() as cur:
                cur.execute(f"RELEASE SAVEPOINT {savepoint}")
            return

        with self.get_connection() as conn:
            token = _transaction_connection.set(conn)
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                _transaction_connection.reset(token)

    @property
    def in_transaction(self) -> bool:
        return _transaction_connection.get() is not None

    @contextmanager
    def _connection(self):
        """Connection for one statement: the open transaction's, or a fresh autocommitted one."""
        active = _transaction_connection.get()
        if active is not None:
            yield active, False
            return

        with self.get_connection() as conn:
            try:
                yield conn, True
            except Exception:
                conn.rollback()
                raise

    def _convert_params(self, params: Tuple | Dict | None) -> Tuple | Dict | None:
        """Convert UUID objects to strings."""
        if params is None:
            return None

        def convert(value: Any) -> Any:
            if isinstance(value, UUID):
                return str(value)
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(params)

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        params = self._convert_params(params)
        with self._connection() as (conn, autocommit):
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                rows = [dict(row) for row in cur.fetchall()] if cur.description else []
            if autocommit:
                conn.commit()
            return rows

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        row = self.execute_single(query, params)
        return next(iter(row.values())) if row else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE with RETURNING, return results."""
        return self.execute(query, params)

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
