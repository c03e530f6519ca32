"""HTTP interface for the billing engine: /api/data reads, /api/actions mutations."""

from api.base import (
    APIResponse,
    ErrorCodes,
    error_response,
    success_response,
)
