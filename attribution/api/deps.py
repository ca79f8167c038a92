"""
Dependencies for database sessions, settings, pipeline components and
operator authentication.

Components are built per request from the injected ``Settings`` and
ledger store; tests swap them through ``app.dependency_overrides``.
"""
import hmac
from functools import lru_cache
from typing import Generator, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from attribution.config import Settings, load_settings
from attribution.database import SessionLocal
from attribution.errors import AuthenticationError
from attribution.services.afb_client import AfbApiClient
from attribution.services.click_log import ClickLogRepository
from attribution.services.deal_catalog import SheetDealCatalog
from attribution.services.ingestion import ConversionRecorder, DedupGate, LedgerWriter, SourceLocks
from attribution.services.ledger_store import LedgerStore, SqlLedgerStore
from attribution.services.matching_engine import MatchingEngine
from attribution.utils import get_logger

logger = get_logger(__name__)

# Shared by every request in this process.
_source_locks = SourceLocks()


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache
def get_settings() -> Settings:
    return load_settings()


def get_ledger_store(db: Session = Depends(get_db)) -> LedgerStore:
    return SqlLedgerStore(db)


def get_click_log(store: LedgerStore = Depends(get_ledger_store)) -> ClickLogRepository:
    return ClickLogRepository(store)


def get_recorder(store: LedgerStore = Depends(get_ledger_store)) -> ConversionRecorder:
    return ConversionRecorder(DedupGate(store), LedgerWriter(store), _source_locks)


def get_deal_catalog(store: LedgerStore = Depends(get_ledger_store)) -> SheetDealCatalog:
    return SheetDealCatalog(store)


def get_matching_engine(
    click_log: ClickLogRepository = Depends(get_click_log),
    catalog: SheetDealCatalog = Depends(get_deal_catalog),
) -> MatchingEngine:
    return MatchingEngine(click_log, catalog)


def get_afb_client(settings: Settings = Depends(get_settings)) -> AfbApiClient:
    return AfbApiClient.from_settings(settings)


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID", "unknown")


def get_client_ip(request: Request) -> Optional[str]:
    """Caller IP: first X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client else None


def require_cron_token(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Operator bearer-token check for cron and matching endpoints.

    Raises:
        ConfigurationError: CRON_SECRET is not configured (500)
        AuthenticationError: header missing or wrong (401)
    """
    secret = settings.require_cron_secret()
    received = request.headers.get("Authorization", "")
    expected = f"Bearer {secret}"

    if not hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(
            "Unauthorized operator request",
            path=request.url.path,
            remote_addr=get_client_ip(request),
        )
        raise AuthenticationError("Unauthorized")
