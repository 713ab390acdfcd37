"""
Shared fixtures for the identity service tests.

Every test gets its own SQLite file under ``tmp_path``. Use ``seed`` to insert
rows with explicit ids and timestamps when a test needs a specific history.

Markers:
- unit: pure functions, no database
- integration: exercise the store or the HTTP app against a real database
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from contact_store import ContactStore
from db_models import Contact
from db_setup import get_db_connection
from main import create_app
from reconciliation import ReconciliationEngine
from settings import Settings

BASE_TIME = datetime(2023, 4, 1, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast tests with no database")
    config.addinivalue_line("markers", "integration: Tests against a real SQLite file")


def at(minutes: int) -> str:
    """Timestamp ``minutes`` after BASE_TIME, in the store's format."""
    return (BASE_TIME + timedelta(minutes=minutes)).isoformat(timespec="microseconds")


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "contacts.db"


@pytest.fixture
def store(db_path):
    store = ContactStore(db_path, timeout=2.0)
    store.init_schema()
    return store


@pytest.fixture
def engine(store):
    return ReconciliationEngine(store)


@pytest.fixture
def seed(store):
    """Insert a contact row directly, bypassing the engine."""

    def _seed(email=None, phone=None, precedence="primary", linked_id=None,
              created_minute=0, contact_id=None, deleted=False):
        conn = get_db_connection(store.db_path)
        try:
            cursor = conn.execute(
                """
                INSERT INTO Contact (id, phoneNumber, email, linkedId, linkPrecedence,
                                     createdAt, updatedAt, deletedAt)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (contact_id, phone, email, linked_id, precedence,
                 at(created_minute), at(created_minute), at(created_minute + 1) if deleted else None),
            )
            return cursor.lastrowid
        finally:
            conn.close()

    return _seed


@pytest.fixture
def all_contacts(store):
    """Every stored row, soft-deleted ones included, by id."""

    def _all():
        conn = get_db_connection(store.db_path)
        try:
            rows = conn.execute("SELECT * FROM Contact ORDER BY id").fetchall()
            return [Contact.model_validate(dict(row)) for row in rows]
        finally:
            conn.close()

    return _all


@pytest.fixture
def settings(db_path):
    return Settings(db_path=db_path)


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as client:
        yield client
