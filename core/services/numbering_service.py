"""
Document number allocation.

Numbers look like INV-2025-0001 / Q-2025-0001: prefix, calendar year and a
zero-padded sequence that restarts every year in every organization.

Allocation is serialized per (organization, prefix, year) by a lock held
until the creating transaction ends. The unique (organization_id, number)
constraint is the backstop: a collision raises ConflictError and the
allocation is retried with a fresh read.
"""

import logging
from typing import Callable
from uuid import UUID

from core.config import BillingConfig
from core.exceptions import ConflictError
from core.models import BillingDocument, DocumentKind
from core.repository import BillingRepository
from utils.timezone import today_utc

logger = logging.getLogger(__name__)


def format_number(prefix: str, year: int, sequence: int) -> str:
    """INV, 2025, 7 -> 'INV-2025-0007'."""
    return f"{prefix}-{year}-{sequence:04d}"


def parse_sequence(number: str) -> int | None:
    """Trailing sequence of a document number, None if it doesn't parse."""
    try:
        return int(number.rsplit("-", 1)[-1])
    except (ValueError, IndexError):
        return None


class NumberingService:
    """Allocates year-scoped sequential document numbers."""

    def __init__(self, repository: BillingRepository, config: BillingConfig | None = None):
        self.repository = repository
        self.config = config or BillingConfig()

    def next_number(self, prefix: str, organization_id: UUID, year: int | None = None) -> str:
        """
        Next free number for the organization.

        Must run inside repository.transaction() so the sequence lock is held
        until the document using the number is saved.

        Args:
            prefix: "INV" or "Q"
            organization_id: Owning organization
            year: Defaults to the current UTC year

        Returns:
            Formatted number, starting at <prefix>-<year>-0001
        """
        year = year or today_utc().year

        self.repository.lock_number_sequence(organization_id, prefix, year)
        latest = self.repository.find_latest_number(organization_id, prefix, year)

        if latest is None:
            return format_number(prefix, year, 1)

        sequence = parse_sequence(latest)
        if sequence is None:
            logger.warning(f"Unparseable document number {latest}, restarting sequence")
            return format_number(prefix, year, 1)

        return format_number(prefix, year, sequence + 1)

    def allocate(
        self,
        kind: DocumentKind,
        organization_id: UUID,
        save: Callable[[str], BillingDocument],
    ) -> BillingDocument:
        """
        Allocate a number and save the document carrying it.

        Each attempt runs in its own (nested) transaction so a collision only
        rolls back that attempt.

        Args:
            kind: Selects the prefix
            organization_id: Owning organization
            save: Persists the document with the given number

        Returns:
            The saved document

        Raises:
            ConflictError: If every attempt collided
        """
        attempts = self.config.number_retry_attempts

        for attempt in range(1, attempts + 1):
            try:
                with self.repository.transaction():
                    number = self.next_number(kind.prefix, organization_id)
                    return save(number)
            except ConflictError:
                logger.warning(
                    f"{kind.prefix} number collision for organization {organization_id} "
                    f"(attempt {attempt}/{attempts})"
                )

        raise ConflictError(
            f"Could not allocate a {kind.value.lower()} number after {attempts} attempts"
        )
