"""Request-scoped middleware for API requests."""

from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from utils.organization_context import set_current_organization_id, clear_current_organization_id


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class OrganizationMiddleware(BaseHTTPMiddleware):
    """
    Sets the organization context from the X-Organization-ID header.

    Authentication happens upstream (gateway or auth middleware) and
    forwards the caller's organization in this header. Billing routes
    without it are rejected with 400. Context is cleared after every
    request.
    """

    HEADER = "X-Organization-ID"

    PUBLIC_PATHS = [
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def _is_public_path(self, path: str) -> bool:
        return any(path == p or path.startswith(p) for p in self.PUBLIC_PATHS)

    def _reject(self, request: Request, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=error_response(
                ErrorCodes.ORGANIZATION_REQUIRED,
                message,
                getattr(request.state, "request_id", None),
            ).model_dump(mode="json"),
        )

    async def dispatch(self, request: Request, call_next):
        if self._is_public_path(request.url.path):
            return await call_next(request)

        raw = request.headers.get(self.HEADER)
        if not raw:
            return self._reject(request, f"{self.HEADER} header is required")

        try:
            organization_id = UUID(raw)
        except ValueError:
            return self._reject(request, f"{self.HEADER} must be a UUID")

        set_current_organization_id(organization_id)
        request.state.organization_id = organization_id

        try:
            return await call_next(request)
        finally:
            clear_current_organization_id()
