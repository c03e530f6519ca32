"""
Status transition tables for billing documents.

Quotes and invoices run on one engine. Each kind supplies its legal
transitions as data: source statuses, target status, the timestamp the
transition stamps, the client promotion it triggers and the event it
publishes. Services never branch on kind to decide legality.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from core.events import (
    DocumentEvent,
    InvoiceFinalized, InvoiceSent,
    QuoteSent, QuoteAccepted, QuoteRejected,
)
from core.exceptions import InvalidStateError
from core.models import BillingDocument, ClientStatus, DocumentKind, InvoiceStatus, QuoteStatus


@dataclass(frozen=True)
class ClientPromotion:
    """Move the document's client to `target` if its status is in `eligible`."""

    eligible: frozenset[ClientStatus]
    target: ClientStatus

    def applies_to(self, status: ClientStatus) -> bool:
        return status in self.eligible


@dataclass(frozen=True)
class Transition:
    """One legal status change."""

    action: str
    sources: frozenset
    target: InvoiceStatus | QuoteStatus
    stamp: str | None = None       # Timestamp field set by this transition
    restamp: bool = False          # Overwrite the stamp on every call (resend)
    promotion: ClientPromotion | None = None
    event: type[DocumentEvent] | None = None
    deadline_field: str | None = None  # Date field that triggers a time-based sweep
    error_hint: str | None = None

    def allows(self, status) -> bool:
        return status in self.sources


# Invoices promote any not-yet-client to CLIENT when finalized.
_PROMOTE_TO_CLIENT = ClientPromotion(
    eligible=frozenset(ClientStatus) - {ClientStatus.CLIENT, ClientStatus.ARCHIVED},
    target=ClientStatus.CLIENT,
)

# Quotes only warm up leads.
_PROMOTE_TO_PROSPECT = ClientPromotion(
    eligible=frozenset({ClientStatus.LEAD}),
    target=ClientStatus.PROSPECT,
)

INVOICE_TRANSITIONS: dict[str, Transition] = {
    t.action: t for t in [
        Transition(
            action="finalize",
            sources=frozenset({InvoiceStatus.DRAFT}),
            target=InvoiceStatus.FINALIZED,
            promotion=_PROMOTE_TO_CLIENT,
            event=InvoiceFinalized,
        ),
        Transition(
            action="send",
            sources=frozenset({
                InvoiceStatus.FINALIZED, InvoiceStatus.SENT,
                InvoiceStatus.VIEWED, InvoiceStatus.OVERDUE,
            }),
            target=InvoiceStatus.SENT,
            stamp="sent_at",
            restamp=True,
            event=InvoiceSent,
            error_hint="must be finalized before sending",
        ),
        Transition(
            action="mark_viewed",
            sources=frozenset({InvoiceStatus.SENT}),
            target=InvoiceStatus.VIEWED,
            stamp="viewed_at",
        ),
        Transition(
            action="mark_overdue",
            sources=frozenset({
                InvoiceStatus.SENT, InvoiceStatus.VIEWED, InvoiceStatus.PARTIALLY_PAID,
            }),
            target=InvoiceStatus.OVERDUE,
            deadline_field="due_date",
        ),
        Transition(
            action="cancel",
            sources=frozenset({
                InvoiceStatus.DRAFT, InvoiceStatus.FINALIZED, InvoiceStatus.SENT,
                InvoiceStatus.VIEWED, InvoiceStatus.OVERDUE,
            }),
            target=InvoiceStatus.CANCELLED,
        ),
        Transition(
            action="refund",
            sources=frozenset({InvoiceStatus.PAID, InvoiceStatus.PARTIALLY_PAID}),
            target=InvoiceStatus.REFUNDED,
        ),
    ]
}

QUOTE_TRANSITIONS: dict[str, Transition] = {
    t.action: t for t in [
        Transition(
            action="finalize",
            sources=frozenset({QuoteStatus.DRAFT}),
            target=QuoteStatus.FINALIZED,
        ),
        Transition(
            action="send",
            sources=frozenset({
                QuoteStatus.DRAFT, QuoteStatus.FINALIZED,
                QuoteStatus.SENT, QuoteStatus.VIEWED,
            }),
            target=QuoteStatus.SENT,
            stamp="sent_at",
            restamp=True,
            promotion=_PROMOTE_TO_PROSPECT,
            event=QuoteSent,
        ),
        Transition(
            action="mark_viewed",
            sources=frozenset({QuoteStatus.SENT}),
            target=QuoteStatus.VIEWED,
            stamp="viewed_at",
        ),
        Transition(
            action="accept",
            sources=frozenset({QuoteStatus.FINALIZED, QuoteStatus.SENT, QuoteStatus.VIEWED}),
            target=QuoteStatus.ACCEPTED,
            stamp="accepted_at",
            event=QuoteAccepted,
        ),
        Transition(
            action="reject",
            sources=frozenset({QuoteStatus.FINALIZED, QuoteStatus.SENT, QuoteStatus.VIEWED}),
            target=QuoteStatus.REJECTED,
            stamp="rejected_at",
            event=QuoteRejected,
        ),
        Transition(
            action="expire",
            sources=frozenset({QuoteStatus.FINALIZED, QuoteStatus.SENT, QuoteStatus.VIEWED}),
            target=QuoteStatus.EXPIRED,
            deadline_field="valid_until",
        ),
    ]
}

TRANSITION_TABLES: Mapping[DocumentKind, dict[str, Transition]] = {
    DocumentKind.INVOICE: INVOICE_TRANSITIONS,
    DocumentKind.QUOTE: QUOTE_TRANSITIONS,
}

# Line items may only change while the document is a draft.
EDITABLE_STATUSES: Mapping[DocumentKind, frozenset] = {
    DocumentKind.INVOICE: frozenset({InvoiceStatus.DRAFT}),
    DocumentKind.QUOTE: frozenset({QuoteStatus.DRAFT}),
}

# Invoice states in which payments can be applied.
PAYABLE_STATUSES = frozenset({
    InvoiceStatus.FINALIZED, InvoiceStatus.SENT, InvoiceStatus.VIEWED,
    InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.OVERDUE,
})

# Corrections may also reopen a fully paid invoice.
CORRECTABLE_STATUSES = PAYABLE_STATUSES | {InvoiceStatus.PAID}


def get_transition(kind: DocumentKind, action: str) -> Transition:
    """
    Look up a transition by action name.

    Raises:
        InvalidStateError: If the kind has no such action
    """
    transition = TRANSITION_TABLES[kind].get(action)
    if transition is None:
        raise InvalidStateError(f"{kind.value.title()} has no '{action}' transition")
    return transition


def deadline_transitions(kind: DocumentKind) -> list[Transition]:
    """Transitions fired by a date passing (overdue, expiry)."""
    return [t for t in TRANSITION_TABLES[kind].values() if t.deadline_field]


def is_editable(document: BillingDocument) -> bool:
    return document.status in EDITABLE_STATUSES[document.kind]


def require_editable(document: BillingDocument) -> None:
    """
    Raises:
        InvalidStateError: If the document's line items are locked
    """
    if not is_editable(document):
        raise InvalidStateError(
            f"{document.kind.value.title()} {document.number} is {document.status.value} "
            f"and can no longer be edited"
        )


def apply_transition(document: BillingDocument, action: str, now: datetime) -> BillingDocument:
    """
    Return a copy of `document` with `action` applied.

    Pure: persistence, client promotion and events are the caller's job.

    Raises:
        InvalidStateError: If the action is not legal from the current status
    """
    transition = get_transition(document.kind, action)

    if not transition.allows(document.status):
        message = (
            f"Cannot {action.replace('_', ' ')} {document.kind.value.lower()} "
            f"{document.number} in status {document.status.value}"
        )
        if transition.error_hint and document.status.value == "DRAFT":
            message = f"{message}: {transition.error_hint}"
        raise InvalidStateError(message)

    update = {"status": transition.target, "updated_at": now}
    if transition.stamp and (transition.restamp or getattr(document, transition.stamp) is None):
        update[transition.stamp] = now

    return document.model_copy(update=update)
