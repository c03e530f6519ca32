"""
Handler for InvoicePaid events.

On full payment, emails a short receipt to the client.
"""

import logging
from typing import Callable

from clients.email_client import EmailGatewayClient, EmailGatewayError
from core.config import BillingConfig
from core.events import InvoicePaid
from core.handlers.document_notification_handler import resolve_recipient
from core.money import format_money
from core.repository import BillingRepository
from utils.organization_context import organization_context

logger = logging.getLogger(__name__)


def handle_invoice_paid(
    repository: BillingRepository,
    email_client: EmailGatewayClient,
    config: BillingConfig | None = None,
) -> Callable:
    """
    Factory that returns an InvoicePaid handler.

    Args:
        repository: Billing repository for recipient lookup
        email_client: EmailGatewayClient instance
        config: Billing configuration (sender identity)

    Returns:
        Handler callable that sends a payment receipt
    """
    config = config or BillingConfig()

    def handler(event: InvoicePaid):
        invoice = event.document

        with organization_context(invoice.organization_id):
            recipient = resolve_recipient(repository, invoice)

        if recipient is None:
            logger.warning(f"No email for client {invoice.client_id}: receipt for {invoice.number} skipped")
            return

        try:
            email_client.send_email(
                to=recipient,
                subject="Payment received",
                body=(
                    f"Thank you! We received {format_money(invoice.paid_amount, invoice.currency)} "
                    f"for invoice {invoice.number}."
                ),
                sender=config.notification_sender,
            )
        except EmailGatewayError as e:
            logger.error(f"Failed to send receipt for invoice {invoice.number}: {e}")

    return handler
