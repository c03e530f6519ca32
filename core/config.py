"""Billing configuration."""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Billing engine configuration.

    Organization settings (currency, default tax type, payment term) take
    precedence where an organization defines them. These values are the
    service-wide fallbacks.
    """

    # Documents
    default_payment_term_days: int = Field(
        default=30,
        description="Days until an invoice is due when the organization sets no term",
        ge=0,
        le=365,
    )
    quote_validity_days: int = Field(
        default=30,
        description="Days a new or duplicated quote stays valid",
        ge=1,
        le=365,
    )

    # Time billing
    default_hourly_rate: Decimal = Field(
        default=Decimal("75"),
        description="Rate used when neither the request nor the time entries carry one",
        ge=0,
    )

    # Numbering
    number_retry_attempts: int = Field(
        default=3,
        description="How often to retry a document number after a uniqueness collision",
        ge=1,
        le=10,
    )

    # Notifications
    notification_sender: Literal["billing", "system"] = Field(
        default="billing",
        description="Email gateway sender identity for document and receipt emails",
    )
    app_name: str = Field(
        default="Billing",
        description="Application name for emails",
    )
