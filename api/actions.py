"""POST /api/actions: unified mutation endpoint."""

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.models import (
    DocumentCreate, DocumentKind, DocumentUpdate,
    LineItemCreate, LineItemUpdate,
    PaymentCorrection, PaymentCreate,
    TimeEntryInvoiceRequest,
)


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "quote": QuoteHandler(services["document"]),
        "invoice": InvoiceHandler(services["document"]),
        "line_item": LineItemHandler(services["line_item"]),
        "payment": PaymentHandler(services["payment"]),
        "time_entry": TimeEntryHandler(services["time_entry"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}")
        result = method(body.data)
        return success_response(result, getattr(request.state, "request_id", None)).model_dump(mode="json")

    return router


def _require(data: dict, key: str) -> str:
    if key not in data:
        raise ValueError(f"'{key}' is required")
    return data[key]


def _require_bool(data: dict, key: str) -> bool:
    value = _require(data, key)
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' must be true or false")
    return value


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class DocumentHandler:
    """Actions shared by quotes and invoices. Subclasses set KIND."""

    KIND: DocumentKind
    ALLOWED_ACTIONS = {
        "create", "update", "delete", "duplicate",
        "finalize", "send", "mark_viewed", "set_portal_visibility",
    }

    def __init__(self, service):
        self.service = service

    def _id(self, data: dict) -> UUID:
        """Document id, checked to be of this handler's kind."""
        document_id = UUID(_require(data, "id"))
        self.service.get(document_id, self.KIND)
        return document_id

    def _handle_create(self, data: dict):
        document = self.service.create(self.KIND, DocumentCreate(**data))
        return document.model_dump(mode="json")

    def _handle_update(self, data: dict):
        document_id = self._id(data)
        data = {k: v for k, v in data.items() if k != "id"}
        document = self.service.update(document_id, DocumentUpdate(**data))
        return document.model_dump(mode="json")

    def _handle_delete(self, data: dict):
        self.service.delete(self._id(data))
        return {"deleted": True}

    def _handle_duplicate(self, data: dict):
        document = self.service.duplicate(self._id(data))
        return document.model_dump(mode="json")

    def _handle_finalize(self, data: dict):
        document = self.service.finalize(UUID(_require(data, "id")), self.KIND)
        return document.model_dump(mode="json")

    def _handle_send(self, data: dict):
        document = self.service.send(UUID(_require(data, "id")), self.KIND)
        return document.model_dump(mode="json")

    def _handle_mark_viewed(self, data: dict):
        document = self.service.mark_viewed(UUID(_require(data, "id")), self.KIND)
        return document.model_dump(mode="json")

    def _handle_set_portal_visibility(self, data: dict):
        document = self.service.set_portal_visibility(
            self._id(data), _require_bool(data, "visible")
        )
        return document.model_dump(mode="json")


class QuoteHandler(DocumentHandler):
    KIND = DocumentKind.QUOTE
    ALLOWED_ACTIONS = DocumentHandler.ALLOWED_ACTIONS | {
        "accept", "reject", "expire", "create_invoice",
    }

    def _handle_accept(self, data: dict):
        quote = self.service.accept(UUID(_require(data, "id")))
        return quote.model_dump(mode="json")

    def _handle_reject(self, data: dict):
        quote = self.service.reject(UUID(_require(data, "id")))
        return quote.model_dump(mode="json")

    def _handle_expire(self, data: dict):
        quotes = self.service.expire_quotes()
        return [q.model_dump(mode="json") for q in quotes]

    def _handle_create_invoice(self, data: dict):
        invoice = self.service.create_invoice_from_quote(UUID(_require(data, "id")))
        return invoice.model_dump(mode="json")


class InvoiceHandler(DocumentHandler):
    KIND = DocumentKind.INVOICE
    ALLOWED_ACTIONS = DocumentHandler.ALLOWED_ACTIONS | {
        "cancel", "refund", "mark_overdue",
    }

    def _handle_cancel(self, data: dict):
        invoice = self.service.cancel(UUID(_require(data, "id")))
        return invoice.model_dump(mode="json")

    def _handle_refund(self, data: dict):
        invoice = self.service.refund(UUID(_require(data, "id")))
        return invoice.model_dump(mode="json")

    def _handle_mark_overdue(self, data: dict):
        invoices = self.service.mark_overdue()
        return [i.model_dump(mode="json") for i in invoices]


class LineItemHandler:
    ALLOWED_ACTIONS = {"create", "update", "delete", "set_selected"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        document_id = UUID(_require(data, "document_id"))
        data = {k: v for k, v in data.items() if k != "document_id"}
        line_item = self.service.add_item(document_id, LineItemCreate(**data))
        return line_item.model_dump(mode="json")

    def _handle_update(self, data: dict):
        line_item_id = UUID(_require(data, "id"))
        data = {k: v for k, v in data.items() if k != "id"}
        line_item = self.service.update_item(line_item_id, LineItemUpdate(**data))
        return line_item.model_dump(mode="json")

    def _handle_delete(self, data: dict):
        self.service.remove_item(UUID(_require(data, "id")))
        return {"deleted": True}

    def _handle_set_selected(self, data: dict):
        line_item = self.service.set_item_selected(
            UUID(_require(data, "id")), _require_bool(data, "selected")
        )
        return line_item.model_dump(mode="json")


class PaymentHandler:
    ALLOWED_ACTIONS = {"record", "correct"}

    def __init__(self, service):
        self.service = service

    def _handle_record(self, data: dict):
        invoice = self.service.record_payment(PaymentCreate(**data))
        return invoice.model_dump(mode="json")

    def _handle_correct(self, data: dict):
        invoice = self.service.correct_payment(PaymentCorrection(**data))
        return invoice.model_dump(mode="json")


class TimeEntryHandler:
    ALLOWED_ACTIONS = {"create_invoice"}

    def __init__(self, service):
        self.service = service

    def _handle_create_invoice(self, data: dict):
        invoice = self.service.build_invoice_from_time_entries(TimeEntryInvoiceRequest(**data))
        return invoice.model_dump(mode="json")
