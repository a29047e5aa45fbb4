"""Pytest fixtures for testing"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from payout_ledger.api.dependencies import get_admin_directory
from payout_ledger.api.main import create_app
from payout_ledger.domain.authorization import AdminDirectory
from payout_ledger.infrastructure.database.models import Base
from payout_ledger.infrastructure.database.session import get_session_factory
from payout_ledger.infrastructure.memory import InMemoryBalanceStore, InMemoryPayoutRequestStore
from payout_ledger.services.ledger import LedgerService
from payout_ledger.services.workflow import PayoutWorkflow

MINIMUM_PAYOUT_CENTS = 100_000  # 1,000.00

ADMIN_ROLES = {
    "admin1": "finance",
    "root": "super_admin",
    "mod1": "moderator",
}

BANK_DETAILS = {
    "account_name": "Ada Stores Ltd",
    "account_number": "0123456789",
    "bank_name": "First Bank",
    "bank_code": "011",
}


class FakeClock:
    """Deterministic clock advancing one second per reading"""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def admins() -> AdminDirectory:
    return AdminDirectory(ADMIN_ROLES)


@pytest.fixture
def balance_store() -> InMemoryBalanceStore:
    return InMemoryBalanceStore()


@pytest.fixture
def request_store() -> InMemoryPayoutRequestStore:
    return InMemoryPayoutRequestStore()


@pytest.fixture
def ledger(balance_store: InMemoryBalanceStore, clock: FakeClock) -> LedgerService:
    """Ledger over an in-memory store, no retry backoff"""
    return LedgerService(balance_store, max_attempts=5, backoff_seconds=0, commission_rate=0.15, clock=clock)


@pytest.fixture
def workflow(
    ledger: LedgerService,
    request_store: InMemoryPayoutRequestStore,
    admins: AdminDirectory,
    clock: FakeClock,
) -> PayoutWorkflow:
    return PayoutWorkflow(
        ledger,
        request_store,
        admins,
        minimum_payout_cents=MINIMUM_PAYOUT_CENTS,
        max_attempts=3,
        clock=clock,
    )


@pytest.fixture
def session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """Create test database and session factory"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(session_factory: sessionmaker) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_admin_directory] = lambda: AdminDirectory(ADMIN_ROLES)
    return TestClient(app)
