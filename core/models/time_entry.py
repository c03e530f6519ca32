"""Time entry models used when billing tracked hours."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class GroupBy(str, Enum):
    """How selected time entries collapse into invoice lines."""

    NONE = "none"        # One line per entry
    PROJECT = "project"  # One line per project
    DATE = "date"        # One line per calendar date


class TimeEntry(BaseModel):
    """Tracked work, as stored by the time tracking module."""

    id: UUID
    organization_id: UUID
    client_id: UUID | None = None
    project_id: UUID | None = None
    project_name: str | None = None
    service_id: UUID | None = None
    description: str | None = None
    work_date: date
    duration_minutes: int = Field(..., ge=0)
    billable: bool = True
    billed: bool = False
    hourly_rate: Decimal | None = None
    invoice_id: UUID | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class TimeEntryInvoiceRequest(BaseModel):
    """Parameters for turning unbilled time into a draft invoice."""

    client_id: UUID
    time_entry_ids: list[UUID]
    group_by: GroupBy = GroupBy.NONE
    hourly_rate: Decimal | None = Field(None, ge=0)
    notes: str | None = Field(None, max_length=5000)


class UnbilledSummary(BaseModel):
    """Unbilled billable time for a client."""

    client_id: UUID
    total_minutes: int
    entry_count: int

    @property
    def total_hours(self) -> Decimal:
        return Decimal(self.total_minutes) / Decimal(60)
