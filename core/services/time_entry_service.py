"""
Turns unbilled time entries into a draft invoice.

Selected entries are grouped (per entry, per project or per calendar day),
each group becomes one line item priced at the hourly rate, and the entries
are marked billed against the new invoice, all in one transaction.
"""

import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from uuid import UUID

from core.audit import AuditLogger, AuditAction
from core.config import BillingConfig
from core.exceptions import InvalidArgumentError, NotFoundError
from core.models import (
    BillingDocument, DocumentCreate, DocumentKind, GroupBy, LineItemCreate,
    TimeEntry, TimeEntryInvoiceRequest, UnbilledSummary,
)
from core.repository import BillingRepository
from core.services.document_service import DocumentService
from core.services.line_item_service import LineItemService
from utils.organization_context import get_current_organization_id

logger = logging.getLogger(__name__)

_MINUTES_PER_HOUR = Decimal(60)
_HUNDREDTH = Decimal("0.01")


def minutes_to_hours(minutes: int) -> Decimal:
    """Minutes as hours rounded half-up to two decimals: 100 -> 1.67."""
    return (Decimal(minutes) / _MINUTES_PER_HOUR).quantize(_HUNDREDTH, rounding=ROUND_HALF_UP)


def _format_date(day: date) -> str:
    return f"{day.day} {day.strftime('%b %Y')}"


def _with_details(label: str, entries: list[TimeEntry], limit: int) -> str:
    """'Label: first, second...' from the distinct entry descriptions."""
    descriptions = list(dict.fromkeys(e.description for e in entries if e.description))
    if not descriptions:
        return label
    suffix = "..." if len(descriptions) > limit else ""
    return f"{label}: {', '.join(descriptions[:limit])}{suffix}"


def group_entries(entries: list[TimeEntry], group_by: GroupBy) -> list[tuple[str, int]]:
    """
    Collapse entries into (description, minutes) lines.

    Groups appear in order of their first entry.

    Args:
        entries: Entries to bill, oldest first
        group_by: NONE (one line per entry), PROJECT or DATE

    Returns:
        List of (line description, summed minutes)
    """
    if group_by is GroupBy.NONE:
        return [
            (e.description or f"Work on {_format_date(e.work_date)}", e.duration_minutes)
            for e in entries
        ]

    groups: dict = {}
    for entry in entries:
        key = entry.project_id if group_by is GroupBy.PROJECT else entry.work_date
        groups.setdefault(key, []).append(entry)

    lines = []
    for key, members in groups.items():
        if group_by is GroupBy.PROJECT:
            description = _with_details(members[0].project_name or "General", members, limit=3)
        else:
            description = _with_details(f"Work on {_format_date(key)}", members, limit=2)
        lines.append((description, sum(e.duration_minutes for e in members)))

    return lines


class TimeEntryService:
    """Service for billing tracked time."""

    def __init__(
        self,
        repository: BillingRepository,
        audit: AuditLogger,
        documents: DocumentService,
        line_items: LineItemService,
        config: BillingConfig | None = None,
    ):
        self.repository = repository
        self.audit = audit
        self.documents = documents
        self.line_items = line_items
        self.config = config or BillingConfig()

    def _hourly_rate(self, request: TimeEntryInvoiceRequest, entries: list[TimeEntry]) -> Decimal:
        """Requested rate, else the first entry's own rate, else the configured default."""
        if request.hourly_rate:
            return request.hourly_rate
        if entries[0].hourly_rate:
            return entries[0].hourly_rate
        return self.config.default_hourly_rate

    def build_invoice_from_time_entries(self, request: TimeEntryInvoiceRequest) -> BillingDocument:
        """
        Create a DRAFT invoice from selected unbilled time entries.

        Args:
            request: Client, entry selection, grouping, hourly rate and notes

        Returns:
            The new invoice with totals computed from its items

        Raises:
            InvalidArgumentError: If the selection is empty, or an entry is not
                an unbilled billable entry of the client
            NotFoundError: If the client is not found
        """
        if not request.time_entry_ids:
            raise InvalidArgumentError("No time entries selected")

        organization_id = get_current_organization_id()
        requested = set(request.time_entry_ids)

        with self.repository.transaction():
            unbilled = self.repository.find_unbilled_time_entries(request.client_id, organization_id)
            entries = [e for e in unbilled if e.id in requested]

            missing = requested - {e.id for e in entries}
            if missing:
                raise InvalidArgumentError(
                    f"Time entries are not unbilled billable entries of client "
                    f"{request.client_id}: {', '.join(sorted(str(m) for m in missing))}"
                )

            organization = self.repository.find_organization(organization_id)
            if organization is None:
                raise NotFoundError(f"Organization {organization_id} not found")

            rate = self._hourly_rate(request, entries)
            items = [
                LineItemCreate(
                    description=description,
                    quantity=minutes_to_hours(minutes),
                    unit_price=rate,
                    tax_type=organization.default_tax_type,
                )
                for description, minutes in group_entries(entries, request.group_by)
            ]

            invoice = self.documents.create(
                DocumentKind.INVOICE,
                DocumentCreate(client_id=request.client_id, notes=request.notes)
            )
            self.line_items.add_items(invoice.id, items)

            entry_ids = [e.id for e in entries]
            self.repository.mark_time_entries_billed(entry_ids, invoice.id)
            for entry_id in entry_ids:
                self.audit.log_change(
                    entity_type="time_entry",
                    entity_id=entry_id,
                    action=AuditAction.UPDATE,
                    changes={
                        "billed": {"old": False, "new": True},
                        "invoice_id": {"old": None, "new": str(invoice.id)},
                    }
                )

            invoice = self.documents.get(invoice.id)

        logger.info(
            f"Billed {len(entry_ids)} time entries on invoice {invoice.number} "
            f"({len(items)} lines at {rate}/h)"
        )
        return invoice

    def unbilled_summary(self, client_id: UUID) -> UnbilledSummary:
        """Total unbilled billable minutes and entry count for a client."""
        entries = self.repository.find_unbilled_time_entries(client_id, get_current_organization_id())
        return UnbilledSummary(
            client_id=client_id,
            total_minutes=sum(e.duration_minutes for e in entries),
            entry_count=len(entries),
        )
