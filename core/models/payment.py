"""Payment models. Payments are events applied to an invoice, not rows of their own."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class PaymentCreate(BaseModel):
    """A payment received against an invoice."""

    invoice_id: UUID
    amount: Decimal
    paid_at: datetime | None = None


class PaymentCorrection(BaseModel):
    """
    A signed adjustment to an invoice's paid amount.

    Negative amounts reverse previously recorded payments.
    """

    invoice_id: UUID
    amount: Decimal
    reason: str | None = None
