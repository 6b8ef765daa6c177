"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.helpers import set_ledger_service_override
from database import Base, get_db
from main import app
from services.account_locks import AccountLockRegistry
from services.ledger_service import LedgerService
from services.market_data_service import MarketDataService
from services.retry import RetryPolicy
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import account, second_account  # noqa: F401
from tests.fixtures.mocks import MockMarketDataProvider


@pytest.fixture(name="db")
def db_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="mock_provider")
def mock_provider_fixture():
    """Equity oracle with no data; tests add prices and quotes as needed."""
    return MockMarketDataProvider()


@pytest.fixture(name="mock_crypto_provider")
def mock_crypto_provider_fixture():
    return MockMarketDataProvider(name="mock-crypto")


@pytest.fixture(name="market_data")
def market_data_fixture(mock_provider, mock_crypto_provider):
    return MarketDataService(provider=mock_provider, crypto_provider=mock_crypto_provider)


@pytest.fixture(name="no_wait_retry")
def no_wait_retry_fixture():
    """Retry policy that records delays instead of sleeping."""
    delays: list[float] = []
    policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=delays.append)
    policy.delays = delays
    return policy


@pytest.fixture(name="ledger")
def ledger_fixture(market_data, no_wait_retry):
    """LedgerService wired to mock oracles, private locks and no retry waits."""
    return LedgerService(
        market_data=market_data,
        locks=AccountLockRegistry(),
        retry_policy=no_wait_retry,
    )


@pytest.fixture(name="client")
def client_fixture(db, ledger):
    """Create a test client with the test database."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    set_ledger_service_override(ledger)
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
    set_ledger_service_override(None)
