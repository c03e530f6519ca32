"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, today_utc, to_utc, parse_iso
from utils.organization_context import (
    get_current_organization_id,
    set_current_organization_id,
    clear_current_organization_id,
    organization_context,
)
