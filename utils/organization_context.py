"""Propagate the caller's organization through the call stack using contextvars."""

from contextlib import contextmanager
from contextvars import ContextVar
from uuid import UUID

_current_organization_id: ContextVar[UUID | None] = ContextVar(
    "current_organization_id", default=None
)


def get_current_organization_id() -> UUID:
    """
    Get current organization ID from context.

    Raises RuntimeError if no organization context is set. Billing code
    is always tenant-scoped, so a missing context is a bug in the caller.
    """
    organization_id = _current_organization_id.get()
    if organization_id is None:
        raise RuntimeError(
            "No organization context set. This usually means you're calling "
            "organization-scoped code outside of a request."
        )
    return organization_id


def set_current_organization_id(organization_id: UUID) -> None:
    """Set current organization ID. Called by the request middleware."""
    _current_organization_id.set(organization_id)


def clear_current_organization_id() -> None:
    """
    Clear organization context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_organization_id.set(None)


@contextmanager
def organization_context(organization_id: UUID):
    """
    Temporarily act on behalf of an organization.

    Useful for tests and for scheduled jobs (overdue/expiry sweeps) that
    iterate over organizations.

    Example:
        with organization_context(org_id):
            document_service.mark_overdue()
    """
    previous = _current_organization_id.get()
    set_current_organization_id(organization_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_organization_id()
        else:
            set_current_organization_id(previous)
