"""GET /api/data: unified read endpoint."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.models import DocumentKind


VALID_TYPES = {"quotes", "invoices", "unbilled_time"}

_KINDS = {
    "quotes": DocumentKind.QUOTE,
    "invoices": DocumentKind.INVOICE,
}


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    document_svc = services["document"]
    line_item_svc = services["line_item"]
    time_entry_svc = services["time_entry"]

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        client_id: str | None = Query(None),
        include: str | None = Query(None),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        request_id = getattr(request.state, "request_id", None)
        includes = set(include.split(",")) if include else set()

        if type == "unbilled_time":
            data = _handle_unbilled(time_entry_svc, client_id)
        else:
            data = _handle_documents(document_svc, line_item_svc, _KINDS[type], id, client_id, includes)

        return success_response(data, request_id).model_dump(mode="json")

    return router


def _handle_documents(document_svc, line_item_svc, kind, id, client_id, includes):
    if id:
        document = document_svc.get(UUID(id), kind)
        data = document.model_dump(mode="json")
        if "line_items" in includes:
            items = line_item_svc.get_items(document.id)
            data["line_items"] = [li.model_dump(mode="json") for li in items]
        return data

    if client_id:
        documents = document_svc.list_for_client(UUID(client_id), kind)
        return [d.model_dump(mode="json") for d in documents]

    raise ValueError(f"'{kind.value.lower()}s' type requires 'id' or 'client_id' parameter")


def _handle_unbilled(time_entry_svc, client_id):
    if not client_id:
        raise ValueError("'unbilled_time' type requires 'client_id' parameter")

    summary = time_entry_svc.unbilled_summary(UUID(client_id))
    return {**summary.model_dump(mode="json"), "total_hours": str(summary.total_hours)}
