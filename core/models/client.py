"""Client, contact and organization models.

These are owned by the surrounding CRUD layer. The billing core only reads
them and promotes client status.
"""

from datetime import datetime
from uuid import UUID
from enum import Enum

from pydantic import BaseModel, Field

from core.models.line_item import TaxType


class ClientStatus(str, Enum):
    """Client relationship stage."""

    LEAD = "LEAD"
    PROSPECT = "PROSPECT"
    CLIENT = "CLIENT"
    ARCHIVED = "ARCHIVED"


class Client(BaseModel):
    """Billable client of an organization."""

    id: UUID
    organization_id: UUID
    name: str
    company_name: str | None = None
    email: str | None = None
    vat_number: str | None = None
    address_line1: str | None = None
    postal_code: str | None = None
    city: str | None = None
    country: str | None = None
    status: ClientStatus = ClientStatus.LEAD

    model_config = {"from_attributes": True}

    @property
    def display_name(self) -> str:
        return self.company_name or self.name


class Contact(BaseModel):
    """Person at a client who receives documents."""

    id: UUID
    client_id: UUID
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None

    model_config = {"from_attributes": True}

    @property
    def full_name(self) -> str | None:
        parts = [p for p in [self.first_name, self.last_name] if p]
        return " ".join(parts) if parts else None


class Organization(BaseModel):
    """Tenant settings the billing core depends on."""

    id: UUID
    name: str
    default_currency: str = Field("EUR", min_length=3, max_length=3)
    default_tax_type: TaxType = TaxType.STANDARD
    default_payment_term_days: int | None = Field(None, ge=0)  # Falls back to BillingConfig
    vat_number: str | None = None
    email: str | None = None
    iban: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
