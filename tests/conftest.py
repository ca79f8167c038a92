import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure project root on sys.path so 'attribution' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from attribution.main import app  # type: ignore
from attribution.database import Base  # type: ignore
from attribution.api import deps  # type: ignore
"""Pytest fixtures and factories.

The ledger lives in one in-memory SQLite connection (StaticPool) shared by
the test thread and the threadpool FastAPI runs sync endpoints in. Tables
are recreated for every test.
"""
from attribution.config import LEDGER_RANGES, SHEET_NAMES, Settings
from attribution.services.ledger_store import SqlLedgerStore
from attribution.services.signature import generate_signature

engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

WEBHOOK_SECRET = "test-webhook-secret"
CRON_SECRET = "test-cron-secret"
ALLOWED_IP = "13.114.169.190"


@pytest.fixture(autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db


@pytest.fixture()
def ledger_store(db_session):
    return SqlLedgerStore(db_session)


@pytest.fixture()
def settings():
    return Settings(
        environment="production",
        webhook_secrets={"afb": WEBHOOK_SECRET, "a8net": WEBHOOK_SECRET},
        cron_secret=CRON_SECRET,
        afb_partner_id="partner-1",
        afb_api_key="api-key-1",
        postback_allowed_ips=(ALLOWED_IP,),
    )


@pytest.fixture()
def make_client():
    """Build a TestClient whose requests see the given ``Settings``."""
    def _make(settings: Settings, **changes) -> TestClient:
        effective = replace(settings, **changes) if changes else settings
        app.dependency_overrides[deps.get_settings] = lambda: effective
        return TestClient(app)
    yield _make
    app.dependency_overrides.pop(deps.get_settings, None)


@pytest.fixture()
def client(make_client, settings):
    return make_client(settings)


@pytest.fixture()
def cron_headers():
    return {"Authorization": f"Bearer {CRON_SECRET}"}


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return generate_signature(body, secret)


# ---------- Fake polling source ----------

class FakeAfbClient:
    """Stands in for ``AfbApiClient``; returns canned records or raises."""

    def __init__(self, records: Optional[List[dict]] = None, error: Optional[Exception] = None):
        self.records = list(records or [])
        self.error = error
        self.calls: List[Optional[int]] = []

    async def fetch_last_n_days(self, days: Optional[int] = None):
        self.calls.append(days)
        if self.error is not None:
            raise self.error
        return list(self.records)


@pytest.fixture()
def fake_afb_client():
    installed = []

    def _install(records=None, error=None) -> FakeAfbClient:
        fake = FakeAfbClient(records, error)
        app.dependency_overrides[deps.get_afb_client] = lambda: fake
        installed.append(fake)
        return fake

    yield _install
    app.dependency_overrides.pop(deps.get_afb_client, None)


# ---------- Data factory helpers ----------

@pytest.fixture()
def click_factory(ledger_store):
    def _create(
        timestamp: datetime | str,
        tracking_id: str,
        deal_name: str = "",
        deal_id: str = "",
        event_id: str = "",
    ):
        ts = timestamp.isoformat() if isinstance(timestamp, datetime) else timestamp
        ledger_store.append(SHEET_NAMES["click_log"], [ts, tracking_id, deal_name, deal_id, event_id])
    return _create


@pytest.fixture()
def deal_factory(ledger_store):
    def _create(
        deal_id: str,
        deal_name: str = "",
        reward_amount: str = "",
        source_name: str = "afb",
        cashback_rate: str = "",
        is_active: str = "TRUE",
    ):
        ledger_store.append(
            SHEET_NAMES["deals"],
            [f"https://example.com/{deal_id}", deal_id, deal_name, source_name, reward_amount, cashback_rate, is_active],
        )
    return _create


@pytest.fixture()
def raw_rows(db_session, ledger_store):
    """Current rows of the raw conversion sheet."""
    def _read() -> List[List[str]]:
        db_session.expire_all()
        return ledger_store.read_range(SHEET_NAMES["conversions_raw"], LEDGER_RANGES["conversions_raw"])
    return _read
