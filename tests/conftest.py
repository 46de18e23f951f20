"""
Shared pytest fixtures for the Protocol Desk test suite.

Provides:
    - app: Flask application (session-scoped, in-memory backend)
    - reset_store: Per-test wipe of the in-memory record set (autouse)
    - client: Flask test client (function-scoped)
    - actor_headers: X-Actor header for mutating requests
    - protocol: Pre-created protocol via the API
"""

import pytest

from protocol_desk import create_app
from protocol_desk.models import db as _db


# ── App fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(autouse=True)
def reset_store(app):
    """Per-test: open app context and start from an empty record set."""
    store = app.extensions["protocol_store"]
    with app.app_context():
        store.backend.clear()
        store.reload()
        yield store
        store.backend.clear()
        store.reload()


@pytest.fixture()
def sql_tables(app):
    """Create the document-store table for SQL backend tests, drop afterwards."""
    _db.create_all()
    yield _db
    _db.session.rollback()
    _db.drop_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def actor_headers():
    return {"X-Actor": "Maria"}


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def protocol(client, actor_headers):
    """Create and return a protocol via the API."""
    res = client.post(
        "/api/v1/protocols",
        json={"customer_email": "buyer@acme.test", "subject": "Steel brackets x200"},
        headers=actor_headers,
    )
    assert res.status_code == 201
    return res.get_json()["protocol"]
