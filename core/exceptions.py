"""Typed exceptions for billing document operations.

The billing core raises these and never swallows them. Translating them
into user-facing messages is the caller's job (see api/errors.py).
"""


class BillingError(Exception):
    """Base class for billing document errors."""


class InvalidArgumentError(BillingError, ValueError):
    """
    Input has the wrong shape or range.

    Examples: quantity <= 0, negative unit price, empty time entry selection.
    """


class InvalidStateError(BillingError):
    """Operation is not legal in the document's current status."""


class NotFoundError(BillingError, LookupError):
    """
    Document, item, client or entry is absent.

    Also raised when the entity exists but belongs to another organization,
    so callers cannot probe for other tenants' IDs.
    """


class ConflictError(BillingError):
    """A concurrent write collided at commit (duplicate number, lost update)."""
