"""Application wiring: services, event handlers and the FastAPI app."""

import logging

from fastapi import FastAPI

from api.actions import create_actions_router
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import OrganizationMiddleware, RequestIDMiddleware
from clients.email_client import EmailGatewayClient
from clients.pdf_renderer import BillingPdfRenderer
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.handlers.document_notification_handler import handle_document_sent
from core.handlers.invoice_payment_handler import handle_invoice_paid
from core.repository import BillingRepository
from core.services.document_service import DocumentService
from core.services.line_item_service import LineItemService
from core.services.numbering_service import NumberingService
from core.services.payment_service import PaymentService
from core.services.time_entry_service import TimeEntryService

logger = logging.getLogger(__name__)


def create_services(
    repository: BillingRepository,
    audit: AuditLogger,
    event_bus: EventBus,
    config: BillingConfig | None = None,
) -> dict:
    """Build the billing services around one repository and event bus."""
    config = config or BillingConfig()

    numbering = NumberingService(repository, config)
    line_items = LineItemService(repository, audit)
    documents = DocumentService(repository, audit, event_bus, numbering, line_items, config)

    return {
        "numbering": numbering,
        "line_item": line_items,
        "document": documents,
        "payment": PaymentService(repository, audit, event_bus),
        "time_entry": TimeEntryService(repository, audit, documents, line_items, config),
    }


def register_event_handlers(
    event_bus: EventBus,
    repository: BillingRepository,
    email_client: EmailGatewayClient,
    renderer: BillingPdfRenderer | None = None,
    config: BillingConfig | None = None,
) -> None:
    """Subscribe notification handlers to billing events."""
    event_bus.subscribe_many(
        ["QuoteSent", "InvoiceSent"],
        handle_document_sent(repository, email_client, renderer or BillingPdfRenderer(), config),
    )
    event_bus.subscribe("InvoicePaid", handle_invoice_paid(repository, email_client, config))


def create_app(services: dict) -> FastAPI:
    """FastAPI app with organization scoping, error handlers, and data/actions routes."""
    app = FastAPI(title="Billing")

    # Last added runs first: request IDs exist before organization checks
    app.add_middleware(OrganizationMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


def create_production_app() -> FastAPI:
    """
    Build the app against PostgreSQL with secrets from Vault.

    Fails fast if Vault or the database is unreachable.
    """
    from clients.postgres_client import PostgresClient
    from clients.vault_client import get_database_url, get_email_config
    from core.postgres_repository import PostgresBillingRepository

    config = BillingConfig()
    postgres = PostgresClient(get_database_url())
    repository = PostgresBillingRepository(postgres)
    event_bus = EventBus()

    register_event_handlers(event_bus, repository, EmailGatewayClient(**get_email_config()), config=config)
    services = create_services(repository, AuditLogger(postgres), event_bus, config)

    logger.info("Billing app initialized")
    return create_app(services)
