"""
Shared Test Fixtures for the Payment Link Ledger
Provides an isolated file-backed SQLite database per test plus ready-made
ledger, claim orchestrator, key vault and API client fixtures.

A file database (not :memory:) is used so concurrent-claim tests get one
connection per thread, exactly as production workers do.
"""

import logging

import pytest
from fastapi.testclient import TestClient

from database import Database
from services.claim_orchestrator import ClaimOrchestrator
from services.key_vault import KeyVault
from services.link_ledger import LinkLedger

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

ONE_SOL = 1_000_000_000
CREATOR = "CreatorWa11et1111111111111111111111111111111"
RECIPIENT = "Recip1entWa11et111111111111111111111111111111"


@pytest.fixture
def database(tmp_path):
    """Fresh database with tables created, disposed after the test"""
    db = Database(database_url=f"sqlite:///{tmp_path / 'links.db'}", echo=False)
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def vault():
    return KeyVault()


@pytest.fixture
def ledger(database, vault):
    return LinkLedger(database, vault=vault)


@pytest.fixture
def orchestrator(database):
    return ClaimOrchestrator(database)


@pytest.fixture
def deposited_link(ledger):
    """A 1 SOL link with its deposit already recorded"""
    link_id = ledger.create(ONE_SOL, "SOL", creator_address=CREATOR)
    ledger.record_deposit(link_id, "deposit_sig_001", depositor_address=CREATOR)
    return link_id


@pytest.fixture
def client(database):
    """TestClient bound to the per-test database"""
    from web_server import create_app

    app = create_app(database)
    with TestClient(app) as test_client:
        yield test_client


def pytest_configure(config):
    """Configure pytest with custom marks"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "concurrent: Concurrent execution tests")
    config.addinivalue_line("markers", "api: API endpoint tests")
    config.addinivalue_line("markers", "security: Encryption and key handling tests")
