"""
Operator endpoints for click/conversion matching.

Results are ranked recommendations only; nothing is written to the ledger.
"""
from fastapi import APIRouter, Depends

from attribution.api.deps import get_ledger_store, get_matching_engine, require_cron_token
from attribution.models.schemas.matching import (
    BatchMatchRequest,
    BatchMatchResponse,
    MatchRequest,
    MatchResult,
    UnattributedMatchRequest,
)
from attribution.services.ledger_store import LedgerStore
from attribution.services.matching_engine import MatchingEngine
from attribution.utils import get_logger

router = APIRouter(dependencies=[Depends(require_cron_token)])
logger = get_logger(__name__)


@router.post(
    "/candidates",
    response_model=MatchResult,
    summary="Rank click candidates for one conversion",
)
def match_conversion(
    conversion: MatchRequest,
    engine: MatchingEngine = Depends(get_matching_engine),
) -> MatchResult:
    return engine.match(conversion)


@router.post(
    "/batch",
    response_model=BatchMatchResponse,
    summary="Rank click candidates for several conversions",
)
def match_batch(
    body: BatchMatchRequest,
    engine: MatchingEngine = Depends(get_matching_engine),
) -> BatchMatchResponse:
    results = engine.batch_match(body.conversions)
    return BatchMatchResponse(requested=len(body.conversions), matched=len(results), results=results)


@router.post(
    "/unattributed",
    response_model=BatchMatchResponse,
    summary="Match ledger rows recorded without a tracking id",
)
def match_unattributed(
    body: UnattributedMatchRequest,
    engine: MatchingEngine = Depends(get_matching_engine),
    store: LedgerStore = Depends(get_ledger_store),
) -> BatchMatchResponse:
    conversions = engine.unattributed_requests(store, body.source)
    results = engine.batch_match(conversions)
    logger.info("Unattributed conversions matched", source=body.source, requested=len(conversions), matched=len(results))
    return BatchMatchResponse(requested=len(conversions), matched=len(results), results=results)
