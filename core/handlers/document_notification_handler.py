"""
Handler for QuoteSent and InvoiceSent events.

Renders the document to PDF and emails it to the client. Notification is
best-effort: the send transition has already committed, so a missing
recipient or a gateway failure is logged and never raised.
"""

import logging
from typing import Callable

from clients.email_client import EmailAttachment, EmailGatewayClient, EmailGatewayError
from clients.pdf_renderer import BillingPdfRenderer
from core.config import BillingConfig
from core.events import DocumentEvent
from core.models import BillingDocument
from core.money import format_money
from core.repository import BillingRepository
from utils.organization_context import organization_context

logger = logging.getLogger(__name__)


def resolve_recipient(repository: BillingRepository, document: BillingDocument) -> str | None:
    """Contact email, else client email, else None."""
    if document.contact_id is not None:
        contact = repository.find_contact(document.contact_id, document.client_id)
        if contact is not None and contact.email:
            return contact.email

    client = repository.find_client(document.client_id, document.organization_id)
    if client is not None and client.email:
        return client.email

    return None


def _body(document: BillingDocument, organization_name: str) -> str:
    label = document.kind.value.lower()
    lines = [
        "Hello,",
        "",
        f"Please find attached {label} {document.number} for {format_money(document.total, document.currency)}.",
    ]
    if document.is_invoice and document.due_date:
        lines.append(f"Payment is due by {document.due_date.isoformat()}.")
    if document.is_quote and document.valid_until:
        lines.append(f"This quote is valid until {document.valid_until.isoformat()}.")
    lines += ["", "Kind regards,", organization_name]
    return "\n".join(lines)


def handle_document_sent(
    repository: BillingRepository,
    email_client: EmailGatewayClient,
    renderer: BillingPdfRenderer,
    config: BillingConfig | None = None,
) -> Callable:
    """
    Factory that returns a QuoteSent/InvoiceSent handler.

    Dependencies are captured at wiring time via closure.

    Args:
        repository: Billing repository for client, contact and item lookups
        email_client: EmailGatewayClient instance
        renderer: BillingPdfRenderer instance
        config: Billing configuration (application name, sender identity)

    Returns:
        Handler callable that emails the document PDF
    """
    config = config or BillingConfig()

    def handler(event: DocumentEvent):
        document = event.document

        with organization_context(document.organization_id):
            recipient = resolve_recipient(repository, document)
            if recipient is None:
                logger.warning(
                    f"No email for client {document.client_id}: "
                    f"{document.kind.entity_type} {document.number} sent without notification"
                )
                return

            organization = repository.find_organization(document.organization_id)
            client = repository.find_client(document.client_id, document.organization_id)
            contact = (
                repository.find_contact(document.contact_id, document.client_id)
                if document.contact_id else None
            )
            items = repository.find_line_items(document.id)

        organization_name = organization.name if organization else config.app_name
        pdf = renderer.render(document, items, client, organization, contact)

        try:
            email_client.send_email(
                to=recipient,
                subject=f"{document.kind.value.title()} {document.number} from {organization_name}",
                body=_body(document, organization_name),
                sender=config.notification_sender,
                attachments=[EmailAttachment(renderer.filename(document), pdf)],
                reply_to=organization.email if organization else None,
            )
        except EmailGatewayError as e:
            logger.error(f"Failed to email {document.kind.entity_type} {document.number} to {recipient}: {e}")

    return handler
