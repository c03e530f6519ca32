"""API test fixtures: organization-scoped TestClient over the in-memory services."""

import pytest
from starlette.testclient import TestClient

from api.app import create_app


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def services(numbering_service, line_item_service, document_service, payment_service, time_entry_service):
    return {
        "numbering": numbering_service,
        "line_item": line_item_service,
        "document": document_service,
        "payment": payment_service,
        "time_entry": time_entry_service,
    }


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services):
    """FastAPI app with organization middleware, error handlers, and data/actions routes."""
    return create_app(services)


@pytest.fixture
def client(app, organization_id):
    """Test client scoped to the test organization."""
    return TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-Organization-ID": str(organization_id)},
    )


@pytest.fixture
def other_org_client(app, organization_b_id):
    """Test client scoped to a second organization."""
    return TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-Organization-ID": str(organization_b_id)},
    )


@pytest.fixture
def unscoped_client(app):
    """Test client without an organization header."""
    return TestClient(app, raise_server_exceptions=False)
