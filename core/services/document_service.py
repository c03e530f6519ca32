"""
Document service for quotes and invoices.

One service drives both kinds. Status changes go through the transition
tables in core/state_machine.py: this service loads and locks the document,
applies the transition, persists it, promotes the client when the
transition says so, and publishes the transition's event after commit.
"""

import logging
from uuid import UUID, uuid4

from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.exceptions import InvalidArgumentError, NotFoundError
from core.models import (
    BillingDocument, DocumentCreate, DocumentKind, DocumentUpdate,
    LineItem, LineItemCreate, Organization,
)
from core.repository import BillingRepository
from core.services.line_item_service import LineItemService
from core.services.numbering_service import NumberingService
from core.state_machine import (
    ClientPromotion, apply_transition, get_transition, require_editable,
)
from utils.organization_context import get_current_organization_id
from utils.timezone import days_from_today, now_utc, today_utc

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {
    "contact_id", "title", "introduction", "terms", "notes",
    "payment_terms", "issue_date", "due_date", "valid_until",
}

# Header fields that belong to one kind only
_KIND_ONLY_FIELDS = {
    DocumentKind.INVOICE: {"valid_until"},
    DocumentKind.QUOTE: {"due_date"},
}


def _copy_item(item: LineItem, **overrides) -> LineItemCreate:
    """Creation data reproducing an existing item, including its exact tax rate."""
    data = {
        "description": item.description,
        "quantity": item.quantity,
        "unit_price": item.unit_price,
        "tax_type": item.tax_type,
        "tax_rate": item.tax_rate,
        "is_optional": item.is_optional,
        "is_selected": item.is_selected,
        "service_id": item.service_id,
    }
    data.update(overrides)
    return LineItemCreate(**data)


class DocumentService:
    """Service for quote and invoice lifecycle operations."""

    def __init__(
        self,
        repository: BillingRepository,
        audit: AuditLogger,
        event_bus: EventBus,
        numbering: NumberingService,
        line_items: LineItemService,
        config: BillingConfig | None = None,
    ):
        self.repository = repository
        self.audit = audit
        self.event_bus = event_bus
        self.numbering = numbering
        self.line_items = line_items
        self.config = config or BillingConfig()

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def _get_document(
        self, document_id: UUID, kind: DocumentKind | None = None, for_update: bool = False
    ) -> BillingDocument:
        document = self.repository.find_document(
            document_id, get_current_organization_id(), for_update=for_update
        )
        if document is None or (kind is not None and document.kind is not kind):
            label = kind.value.title() if kind else "Document"
            raise NotFoundError(f"{label} {document_id} not found")
        return document

    def _get_organization(self, organization_id: UUID) -> Organization:
        organization = self.repository.find_organization(organization_id)
        if organization is None:
            raise NotFoundError(f"Organization {organization_id} not found")
        return organization

    def _check_client(self, client_id: UUID, contact_id: UUID | None, organization_id: UUID) -> None:
        if self.repository.find_client(client_id, organization_id) is None:
            raise NotFoundError(f"Client {client_id} not found")
        if contact_id is not None and self.repository.find_contact(contact_id, client_id) is None:
            raise NotFoundError(f"Contact {contact_id} not found for client {client_id}")

    def _payment_term_days(self, organization: Organization) -> int:
        if organization.default_payment_term_days is not None:
            return organization.default_payment_term_days
        return self.config.default_payment_term_days

    def get(self, document_id: UUID, kind: DocumentKind | None = None) -> BillingDocument:
        """
        Get a document of the current organization.

        Raises:
            NotFoundError: If not found, in another organization, or of another kind
        """
        return self._get_document(document_id, kind)

    def list_for_client(self, client_id: UUID, kind: DocumentKind | None = None) -> list[BillingDocument]:
        """
        List a client's documents, newest first.

        Args:
            client_id: Client UUID
            kind: Restrict to quotes or invoices
        """
        return self.repository.find_documents_for_client(
            client_id, get_current_organization_id(), kind
        )

    # =========================================================================
    # CREATE / UPDATE / DELETE
    # =========================================================================

    def _new_draft(
        self,
        kind: DocumentKind,
        organization: Organization,
        client_id: UUID,
        currency: str | None = None,
        **header,
    ) -> BillingDocument:
        """Unsaved DRAFT with defaults filled in. The number is assigned on save."""
        now = now_utc()
        header = {k: v for k, v in header.items() if v is not None}
        header.setdefault("issue_date", today_utc())

        if kind is DocumentKind.INVOICE:
            term_days = self._payment_term_days(organization)
            header.setdefault("due_date", days_from_today(term_days))
            header.setdefault("payment_terms", f"Net {term_days} days")
        else:
            header.setdefault("valid_until", days_from_today(self.config.quote_validity_days))

        return BillingDocument(
            id=uuid4(),
            organization_id=organization.id,
            client_id=client_id,
            kind=kind,
            number="",
            status=kind.status_enum.DRAFT,
            currency=currency or organization.default_currency,
            created_at=now,
            updated_at=now,
            **header,
        )

    def _save_new(self, draft: BillingDocument) -> BillingDocument:
        document = self.numbering.allocate(
            draft.kind,
            draft.organization_id,
            lambda number: self.repository.save_document(draft.model_copy(update={"number": number})),
        )
        logger.info(f"Created {document.kind.entity_type} {document.number}")
        return document

    def create(self, kind: DocumentKind, data: DocumentCreate) -> BillingDocument:
        """
        Create an empty DRAFT quote or invoice.

        Currency comes from the organization. Invoices default to a due
        date and "Net N days" terms from the organization's payment term.
        Quotes default to a validity window.

        Args:
            kind: QUOTE or INVOICE
            data: Header fields

        Returns:
            Created document with a fresh number

        Raises:
            NotFoundError: If the client or contact is not found
            InvalidArgumentError: If a field of the other kind is set
            ConflictError: If no number could be allocated
        """
        organization_id = get_current_organization_id()
        fields = data.model_dump(exclude_none=True)
        self._check_kind_fields(kind, fields)

        organization = self._get_organization(organization_id)
        self._check_client(data.client_id, data.contact_id, organization_id)

        header = {k: v for k, v in fields.items() if k != "client_id"}

        with self.repository.transaction():
            document = self._save_new(
                self._new_draft(kind, organization, data.client_id, **header)
            )
            self.audit.log_change(
                entity_type=kind.entity_type,
                entity_id=document.id,
                action=AuditAction.CREATE,
                changes={"created": document.model_dump(mode="json")}
            )

        return document

    @staticmethod
    def _check_kind_fields(kind: DocumentKind, fields: dict) -> None:
        misplaced = _KIND_ONLY_FIELDS[kind] & fields.keys()
        if misplaced:
            raise InvalidArgumentError(
                f"{kind.value.title()} does not support {', '.join(sorted(misplaced))}"
            )

    def update(self, document_id: UUID, data: DocumentUpdate) -> BillingDocument:
        """
        Update header fields of a draft document.

        Args:
            document_id: Document UUID
            data: Fields to update (None fields are ignored)

        Returns:
            Updated document

        Raises:
            NotFoundError: If document or contact not found
            InvalidStateError: If the document is not a draft
            InvalidArgumentError: If a field of the other kind is set
        """
        with self.repository.transaction():
            current = self._get_document(document_id, for_update=True)
            require_editable(current)

            updates = data.model_dump(exclude_none=True)
            for field in updates:
                if field not in _UPDATABLE_FIELDS:
                    logger.warning(
                        f"Attempted to update unknown field '{field}' on document {document_id}"
                    )
            updates = {k: v for k, v in updates.items() if k in _UPDATABLE_FIELDS}
            if not updates:
                return current

            self._check_kind_fields(current.kind, updates)
            if "contact_id" in updates:
                self._check_client(current.client_id, updates["contact_id"], current.organization_id)

            updated = self.repository.save_document(
                current.model_copy(update={**updates, "updated_at": now_utc()})
            )

            changes = compute_changes(
                current.model_dump(mode="json"),
                updated.model_dump(mode="json")
            )
            if changes:
                self.audit.log_change(
                    entity_type=current.kind.entity_type,
                    entity_id=document_id,
                    action=AuditAction.UPDATE,
                    changes=changes
                )

        return updated

    def delete(self, document_id: UUID) -> None:
        """
        Delete a document and its line items. The client is untouched.

        Raises:
            NotFoundError: If document not found
        """
        with self.repository.transaction():
            document = self._get_document(document_id, for_update=True)
            self.repository.delete_document(document_id)

            self.audit.log_change(
                entity_type=document.kind.entity_type,
                entity_id=document_id,
                action=AuditAction.DELETE,
                changes={"deleted": document.model_dump(mode="json")}
            )

    def set_portal_visibility(self, document_id: UUID, visible: bool) -> BillingDocument:
        """
        Show or hide a document in the client portal. Independent of status.

        Raises:
            NotFoundError: If document not found
        """
        with self.repository.transaction():
            current = self._get_document(document_id, for_update=True)
            if current.portal_visible == visible:
                return current

            updated = self.repository.save_document(
                current.model_copy(update={"portal_visible": visible, "updated_at": now_utc()})
            )
            self.audit.log_change(
                entity_type=current.kind.entity_type,
                entity_id=document_id,
                action=AuditAction.UPDATE,
                changes={"portal_visible": {"old": current.portal_visible, "new": visible}}
            )

        return updated

    # =========================================================================
    # COPIES
    # =========================================================================

    def duplicate(self, document_id: UUID) -> BillingDocument:
        """
        Copy a document into a new DRAFT of the same kind.

        Header fields and every line item are copied. Status, number, paid
        amount and timestamps start fresh. Dates restart from today. The
        copy's title gets a " (Copy)" suffix.

        Raises:
            NotFoundError: If document not found
        """
        organization_id = get_current_organization_id()

        with self.repository.transaction():
            source = self._get_document(document_id)
            organization = self._get_organization(organization_id)
            items = self.repository.find_line_items(document_id)

            draft = self._new_draft(
                source.kind,
                organization,
                source.client_id,
                currency=source.currency,
                contact_id=source.contact_id,
                title=f"{source.title} (Copy)" if source.title else None,
                introduction=source.introduction,
                terms=source.terms,
                notes=source.notes,
                payment_terms=source.payment_terms,
            )
            document = self._save_new(draft)

            if items:
                self.line_items.add_items(document.id, [_copy_item(item) for item in items])

            document = self._get_document(document.id)
            self.audit.log_change(
                entity_type=document.kind.entity_type,
                entity_id=document.id,
                action=AuditAction.CREATE,
                changes={
                    "created": document.model_dump(mode="json"),
                    "duplicated_from": str(document_id),
                }
            )

        return document

    def create_invoice_from_quote(self, quote_id: UUID) -> BillingDocument:
        """
        Create a DRAFT invoice from a quote's included items.

        Unselected optional items are left out. The quote's terms become the
        invoice notes.

        Raises:
            NotFoundError: If the quote is not found
        """
        organization_id = get_current_organization_id()

        with self.repository.transaction():
            quote = self._get_document(quote_id, DocumentKind.QUOTE)
            organization = self._get_organization(organization_id)
            items = quote.included_items(self.repository.find_line_items(quote_id))

            invoice = self._save_new(self._new_draft(
                DocumentKind.INVOICE,
                organization,
                quote.client_id,
                currency=quote.currency,
                contact_id=quote.contact_id,
                title=quote.title,
                notes=quote.terms,
            ))

            if items:
                self.line_items.add_items(
                    invoice.id,
                    [_copy_item(item, is_optional=False, is_selected=True) for item in items]
                )

            invoice = self._get_document(invoice.id)
            self.audit.log_change(
                entity_type=invoice.kind.entity_type,
                entity_id=invoice.id,
                action=AuditAction.CREATE,
                changes={
                    "created": invoice.model_dump(mode="json"),
                    "source_quote_id": str(quote_id),
                }
            )

        return invoice

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    def _promote_client(self, document: BillingDocument, promotion: ClientPromotion) -> None:
        client = self.repository.find_client(document.client_id, document.organization_id)
        if client is None or not promotion.applies_to(client.status):
            return

        self.repository.update_client_status(client.id, promotion.target)
        self.audit.log_change(
            entity_type="client",
            entity_id=client.id,
            action=AuditAction.UPDATE,
            changes={
                "status": {"old": client.status.value, "new": promotion.target.value},
                "promoted_by": document.number,
            }
        )

    def _apply(self, current: BillingDocument, action: str) -> BillingDocument:
        """Apply, persist and audit one transition. Caller holds the transaction."""
        transition = get_transition(current.kind, action)
        updated = self.repository.save_document(apply_transition(current, action, now_utc()))

        if transition.promotion:
            self._promote_client(updated, transition.promotion)

        changes = compute_changes(
            current.model_dump(mode="json"),
            updated.model_dump(mode="json")
        )
        self.audit.log_change(
            entity_type=current.kind.entity_type,
            entity_id=current.id,
            action=AuditAction.UPDATE,
            changes={**changes, "transition": action}
        )
        return updated

    def _publish(self, document: BillingDocument, action: str) -> None:
        event = get_transition(document.kind, action).event
        if event is not None:
            self.event_bus.publish(event.create(document))

    def transition(
        self, document_id: UUID, action: str, kind: DocumentKind | None = None
    ) -> BillingDocument:
        """
        Apply a named status transition.

        Args:
            document_id: Document UUID
            action: Transition name from the kind's table ("finalize", "send", ...)
            kind: Expected kind, if the caller knows it

        Returns:
            Updated document

        Raises:
            NotFoundError: If document not found (or of another kind)
            InvalidStateError: If the action is unknown or illegal in the current status
        """
        with self.repository.transaction():
            current = self._get_document(document_id, kind, for_update=True)
            updated = self._apply(current, action)

        self._publish(updated, action)
        return updated

    def finalize(self, document_id: UUID, kind: DocumentKind | None = None) -> BillingDocument:
        """Lock a DRAFT against edits. Finalizing an invoice promotes its client to CLIENT."""
        return self.transition(document_id, "finalize", kind)

    def send(self, document_id: UUID, kind: DocumentKind | None = None) -> BillingDocument:
        """Mark as sent (again). Sending a quote promotes a LEAD client to PROSPECT."""
        return self.transition(document_id, "send", kind)

    def mark_viewed(self, document_id: UUID, kind: DocumentKind | None = None) -> BillingDocument:
        return self.transition(document_id, "mark_viewed", kind)

    def accept(self, quote_id: UUID) -> BillingDocument:
        return self.transition(quote_id, "accept", DocumentKind.QUOTE)

    def reject(self, quote_id: UUID) -> BillingDocument:
        return self.transition(quote_id, "reject", DocumentKind.QUOTE)

    def cancel(self, invoice_id: UUID) -> BillingDocument:
        return self.transition(invoice_id, "cancel", DocumentKind.INVOICE)

    def refund(self, invoice_id: UUID) -> BillingDocument:
        return self.transition(invoice_id, "refund", DocumentKind.INVOICE)

    # =========================================================================
    # DEADLINE SWEEPS
    # =========================================================================

    def _sweep(self, kind: DocumentKind, action: str) -> list[BillingDocument]:
        """Apply a date-triggered transition to every document past its deadline."""
        transition = get_transition(kind, action)
        organization_id = get_current_organization_id()
        today = today_utc()

        swept = []
        with self.repository.transaction():
            candidates = self.repository.find_documents_by_status(
                organization_id, kind, transition.sources
            )
            for candidate in candidates:
                deadline = getattr(candidate, transition.deadline_field)
                if deadline is None or deadline >= today:
                    continue

                current = self.repository.find_document(candidate.id, organization_id, for_update=True)
                if current is None or not transition.allows(current.status):
                    continue

                swept.append(self._apply(current, action))

        if swept:
            logger.info(f"Moved {len(swept)} {kind.entity_type}(s) to {transition.target.value}")

        for document in swept:
            self._publish(document, action)

        return swept

    def mark_overdue(self) -> list[BillingDocument]:
        """
        Mark sent, viewed and partially paid invoices past their due date OVERDUE.

        Returns:
            Invoices that changed
        """
        return self._sweep(DocumentKind.INVOICE, "mark_overdue")

    def expire_quotes(self) -> list[BillingDocument]:
        """
        Expire finalized, sent and viewed quotes past their validity date.

        Returns:
            Quotes that changed
        """
        return self._sweep(DocumentKind.QUOTE, "expire")
