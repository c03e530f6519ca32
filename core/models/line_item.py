"""Line item domain models.

Money is stored as exact decimals (NUMERIC columns) and never rounded
internally. Rounding happens only when a value is formatted for display.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class TaxType(str, Enum):
    """VAT treatment of a line item."""

    STANDARD = "STANDARD"
    REDUCED = "REDUCED"
    ZERO = "ZERO"
    REVERSE_CHARGE = "REVERSE_CHARGE"  # Buyer accounts for the VAT
    EXEMPT = "EXEMPT"


class LineItemCreate(BaseModel):
    """Data required to add a line item to a document."""

    description: str = Field(..., min_length=1, max_length=1000)
    quantity: Decimal
    unit_price: Decimal
    tax_type: TaxType | None = None
    tax_rate: Decimal | None = Field(None, ge=0)  # Overrides the tax type's rate
    is_optional: bool = False
    is_selected: bool | None = None
    service_id: UUID | None = None


class LineItemUpdate(BaseModel):
    """Data that can be updated on a line item. All fields optional."""

    description: str | None = Field(None, min_length=1, max_length=1000)
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    tax_type: TaxType | None = None
    tax_rate: Decimal | None = Field(None, ge=0)
    is_optional: bool | None = None
    is_selected: bool | None = None


class LineItem(BaseModel):
    """Full line item entity as stored."""

    id: UUID
    document_id: UUID
    service_id: UUID | None = None
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_type: TaxType
    tax_rate: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    sort_order: int
    is_optional: bool = False
    is_selected: bool = True
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_included(self) -> bool:
        """Whether this item counts toward document totals."""
        return not self.is_optional or self.is_selected
