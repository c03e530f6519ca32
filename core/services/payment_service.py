"""
Payment ledger for invoices.

Payments accumulate into the invoice's paid_amount. Status follows from
comparing paid_amount with total: PAID once it reaches the total,
PARTIALLY_PAID below it. paid_at marks the moment the invoice was first
paid in full.

record_payment only ever adds. correct_payment applies a signed adjustment
and recomputes status and paid_at from scratch, so a reversal can move a
PAID invoice back to PARTIALLY_PAID or unpaid.

Both run as a read-modify-write on the locked invoice row.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from core.audit import AuditLogger, AuditAction, compute_changes
from core.event_bus import EventBus
from core.events import InvoicePaid, PaymentRecorded
from core.exceptions import InvalidArgumentError, InvalidStateError, NotFoundError
from core.models import BillingDocument, DocumentKind, InvoiceStatus, PaymentCorrection, PaymentCreate
from core.money import to_decimal
from core.repository import BillingRepository
from core.state_machine import CORRECTABLE_STATUSES, PAYABLE_STATUSES
from utils.organization_context import get_current_organization_id
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)


def status_after_payment(current: InvoiceStatus, paid_amount: Decimal, total: Decimal) -> InvoiceStatus:
    """PAID at or above the total, PARTIALLY_PAID between zero and the total, else unchanged."""
    if paid_amount >= total:
        return InvoiceStatus.PAID
    if paid_amount > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return current


def unpaid_status(invoice: BillingDocument, today: date) -> InvoiceStatus:
    """Status of an invoice with nothing paid, derived from its dates and timestamps."""
    if invoice.sent_at is None:
        return InvoiceStatus.FINALIZED
    if invoice.due_date is not None and invoice.due_date < today:
        return InvoiceStatus.OVERDUE
    if invoice.viewed_at is not None:
        return InvoiceStatus.VIEWED
    return InvoiceStatus.SENT


class PaymentService:
    """Service for recording and correcting invoice payments."""

    def __init__(self, repository: BillingRepository, audit: AuditLogger, event_bus: EventBus):
        self.repository = repository
        self.audit = audit
        self.event_bus = event_bus

    def _get_invoice(self, invoice_id: UUID) -> BillingDocument:
        invoice = self.repository.find_document(
            invoice_id, get_current_organization_id(), for_update=True
        )
        if invoice is None or invoice.kind is not DocumentKind.INVOICE:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    def _save(
        self,
        current: BillingDocument,
        paid_amount: Decimal,
        status: InvoiceStatus,
        paid_at: datetime | None,
        amount: Decimal,
    ) -> BillingDocument:
        updated = self.repository.save_document(current.model_copy(update={
            "paid_amount": paid_amount,
            "status": status,
            "paid_at": paid_at,
            "updated_at": now_utc(),
        }))

        changes = compute_changes(
            current.model_dump(mode="json"),
            updated.model_dump(mode="json")
        )
        self.audit.log_change(
            entity_type="invoice",
            entity_id=current.id,
            action=AuditAction.UPDATE,
            changes={**changes, "payment_recorded": str(amount)}
        )
        return updated

    def _publish(self, current: BillingDocument, updated: BillingDocument, amount: Decimal) -> None:
        self.event_bus.publish(PaymentRecorded.create(updated, amount=amount))
        if updated.status == InvoiceStatus.PAID and current.status != InvoiceStatus.PAID:
            self.event_bus.publish(InvoicePaid.create(updated))

    def record_payment(self, data: PaymentCreate) -> BillingDocument:
        """
        Record a payment on an invoice.

        Args:
            data: Invoice, amount (> 0) and optional payment date. The date
                becomes paid_at if this payment completes the invoice.

        Returns:
            Updated invoice (PARTIALLY_PAID or PAID)

        Raises:
            InvalidArgumentError: If amount <= 0
            NotFoundError: If invoice not found
            InvalidStateError: If the invoice is a draft, paid, cancelled or refunded
        """
        amount = to_decimal(data.amount)
        if amount <= 0:
            raise InvalidArgumentError(f"Payment amount must be greater than 0, got {amount}")

        with self.repository.transaction():
            current = self._get_invoice(data.invoice_id)
            if current.status not in PAYABLE_STATUSES:
                raise InvalidStateError(
                    f"Cannot record payment on invoice {current.number} in status {current.status.value}"
                )

            paid_amount = current.paid_amount + amount
            status = status_after_payment(current.status, paid_amount, current.total)

            paid_at = current.paid_at
            if status == InvoiceStatus.PAID and paid_at is None:
                paid_at = data.paid_at or now_utc()

            updated = self._save(current, paid_amount, status, paid_at, amount)

        logger.info(f"Recorded payment of {amount} on invoice {updated.number} ({updated.status.value})")
        self._publish(current, updated, amount)
        return updated

    def correct_payment(self, data: PaymentCorrection) -> BillingDocument:
        """
        Apply a signed correction to an invoice's paid amount.

        Status and paid_at are recomputed: a correction below the total
        clears paid_at, and one back to zero restores the unpaid status
        (FINALIZED, SENT, VIEWED or OVERDUE).

        Raises:
            InvalidArgumentError: If amount is 0 or would make paid_amount negative
            NotFoundError: If invoice not found
            InvalidStateError: If the invoice is a draft, cancelled or refunded
        """
        amount = to_decimal(data.amount)
        if amount == 0:
            raise InvalidArgumentError("Payment correction must not be 0")

        with self.repository.transaction():
            current = self._get_invoice(data.invoice_id)
            if current.status not in CORRECTABLE_STATUSES:
                raise InvalidStateError(
                    f"Cannot correct payments on invoice {current.number} in status {current.status.value}"
                )

            paid_amount = current.paid_amount + amount
            if paid_amount < 0:
                raise InvalidArgumentError(
                    f"Correction of {amount} exceeds the {current.paid_amount} paid on invoice {current.number}"
                )

            if paid_amount > 0:
                status = status_after_payment(current.status, paid_amount, current.total)
            else:
                status = unpaid_status(current, today_utc())

            if status == InvoiceStatus.PAID:
                paid_at = current.paid_at or now_utc()
            else:
                paid_at = None

            updated = self._save(current, paid_amount, status, paid_at, amount)

            if data.reason:
                logger.info(f"Payment correction on invoice {current.number}: {data.reason}")

        self._publish(current, updated, amount)
        return updated
