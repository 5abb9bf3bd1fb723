"""Shared test fixtures for the payment vault test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, no latency)
- db_session: clean database per test (tables created/dropped)
- client: Flask test client
- provider: FakeProvider installed as the app's payment provider
- store: IdempotencyStore bound to the test session
"""

import pytest

from vault import create_app
from vault.extensions import db as _db
from vault.services.idempotency_store import IdempotencyStore
from fakes import FakeProvider


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def provider(app):
    """Swap in a FakeProvider for the duration of a test."""
    original = app.extensions["payment_provider"]
    fake = FakeProvider()
    app.extensions["payment_provider"] = fake
    yield fake
    app.extensions["payment_provider"] = original


@pytest.fixture
def store(db_session):
    return IdempotencyStore(db_session)
