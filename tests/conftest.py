"""
Shared pytest fixtures for the Scrap Operations Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - tenant_id / factory_id: ids for the default test scope
    - make_field: factory fixture creating a field configuration
    - make_transaction: factory fixture creating a transaction
    - advance_to: drives a transaction through levels with valid records
"""

import pytest

from scrapops import create_app
from scrapops.models import db as _db
from scrapops.models.transaction import LevelRecord, LevelValidationStatus
from scrapops.services import field_configuration_service, transaction_store, workflow_engine

TEST_TENANT_ID = "tenant-steelworks"
TEST_FACTORY_ID = "factory-pune"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def tenant_id():
    return TEST_TENANT_ID


@pytest.fixture()
def factory_id():
    return TEST_FACTORY_ID


@pytest.fixture()
def make_field(tenant_id):
    """Create a field configuration; keyword arguments override the defaults."""
    def _make(**overrides):
        data = {
            "tenant_id": tenant_id,
            "operational_level": 1,
            "field_name": "invoice_amount",
            "field_label": "Invoice Amount",
            "field_type": "NUMBER",
        }
        data.update(overrides)
        return field_configuration_service.create_field_configuration(data)
    return _make


@pytest.fixture()
def make_transaction(tenant_id, factory_id):
    def _make(**overrides):
        kwargs = {"tenant_id": tenant_id, "factory_id": factory_id}
        kwargs.update(overrides)
        return transaction_store.create_transaction(**kwargs)
    return _make


@pytest.fixture()
def advance_to():
    """Complete levels 2..target in order with APPROVED records.

    Transactions start at level 1, so the first completed level is 2.
    """
    def _advance(transaction_id, target, status=LevelValidationStatus.APPROVED):
        current = transaction_store.get_transaction(transaction_id)["current_level"]
        for level in range(current + 1, target + 1):
            result = workflow_engine.process_level_completion(
                transaction_id,
                LevelRecord(level=level, completed_by="operator-1", validation_status=status),
            )
            assert result.success, result.errors
        return transaction_store.get_transaction(transaction_id)
    return _advance
