"""
Audit trail for billing document changes.

Every mutation to a document, line item, payment or time entry billing is
logged here. The audit log is:
- Append-only (entries never modified or deleted)
- Organization-attributed (which tenant made the change)
- Detailed (captures old and new values)

Entries are written through the same PostgresClient as the change itself, so
inside a transaction the audit row commits or rolls back with it.
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.organization_context import get_current_organization_id
from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def _same_value(old: Any, new: Any) -> bool:
    """Equal, or both amounts that are numerically equal ('121' and '121.00')."""
    if old == new:
        return True
    if isinstance(old, str) and isinstance(new, str):
        try:
            return Decimal(old) == Decimal(new)
        except InvalidOperation:
            return False
    return False


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Serialized amounts that differ only in scale are not changes.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    for key in set(old.keys()) | set(new.keys()):
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if not _same_value(old_val, new_val):
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Audit trail for billing entity changes.

    Always pass model_dump(mode="json") output so Decimals, UUIDs and dates
    are serialized to JSON-compatible values.

    Usage:
        audit = AuditLogger(postgres)

        audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": invoice.model_dump(mode="json")}
        )

        changes = compute_changes(
            old.model_dump(mode="json"),
            new.model_dump(mode="json")
        )
        audit.log_change("invoice", invoice.id, AuditAction.UPDATE, changes)

        history = audit.get_entity_history("invoice", invoice.id)
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        organization_id: UUID | None = None
    ) -> None:
        """
        Log an entity change.

        Args:
            entity_type: Type of entity ("invoice", "quote", "line_item", ...)
            entity_id: ID of the entity
            action: The action performed (CREATE, UPDATE, DELETE)
            changes: The changes made (format depends on action)
            organization_id: Tenant that made the change (defaults to current context)

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        - DELETE: {"deleted": {full entity data at deletion}}
        """
        if organization_id is None:
            organization_id = get_current_organization_id()

        self.postgres.execute(
            """
            INSERT INTO audit_log (id, organization_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                organization_id,
                entity_type,
                entity_id,
                action.value,
                Json(changes),
                now_utc()
            )
        )

    def get_entity_history(
        self,
        entity_type: str,
        entity_id: UUID
    ) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity, newest first.
        """
        return self.postgres.execute(
            """
            SELECT id, organization_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )

    def get_organization_activity(
        self,
        organization_id: UUID | None = None,
        limit: int = 100
    ) -> list[dict[str, Any]]:
        """Recent changes made by an organization (defaults to current context), newest first."""
        if organization_id is None:
            organization_id = get_current_organization_id()

        return self.postgres.execute(
            """
            SELECT id, organization_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE organization_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (organization_id, limit)
        )
