"""
Click/conversion matching engine.

Ranks recorded clicks as candidate attributions for a conversion that
arrived without a usable tracking id (typically polled records). The
result is advisory: candidates and a confidence tier, never a write.

Score = time range (0|10) + deal name (0|20|40) + reward validity (0|15|30).
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from attribution.config import LEDGER_RANGES, MATCHING_SETTINGS, SHEET_NAMES
from attribution.errors import StorageError
from attribution.models.db.enums import ConfidenceTier
from attribution.models.schemas.conversions import ClickEvent, Deal, to_currency
from attribution.models.schemas.matching import (
    MatchCandidate,
    MatchRequest,
    MatchResult,
    ScoreBreakdown,
)
from attribution.services.click_log import ClickLogRepository
from attribution.services.deal_catalog import DealCatalog
from attribution.services.ledger_store import LedgerStore
from attribution.utils import get_logger, log_business_event, log_performance
from attribution.utils.time import parse_iso_datetime

logger = get_logger(__name__)


def _weights() -> Dict[str, int]:
    return MATCHING_SETTINGS["weights"]  # type: ignore[return-value]


def time_window() -> timedelta:
    return timedelta(hours=float(MATCHING_SETTINGS["time_window_hours"]))


def within_time_window(click_at: Optional[datetime], occurred_at: datetime) -> bool:
    if click_at is None:
        return False
    return abs(occurred_at - click_at) <= time_window()


def calculate_time_range_score(click_at: Optional[datetime], occurred_at: datetime) -> int:
    return _weights()["time_range"] if within_time_window(click_at, occurred_at) else 0


def calculate_deal_name_similarity(name1: str, name2: str) -> int:
    """Exact (case-insensitive) match scores 40, substring either way 20.

    No fuzzy matching. A blank name on either side never matches.
    """
    a = (name1 or "").strip().lower()
    b = (name2 or "").strip().lower()
    # "" is a substring of every name; treat blank as no evidence
    if not a or not b:
        return 0
    if a == b:
        return _weights()["deal_name_exact"]
    if a in b or b in a:
        return _weights()["deal_name_partial"]
    return 0


def calculate_reward_validity_score(expected: Optional[Decimal], actual: Decimal) -> int:
    """Compare the catalog's expected reward with the reported one."""
    if expected is None or expected == 0:
        return 0
    if expected == actual:
        return _weights()["reward_exact"]
    tolerance = Decimal(str(MATCHING_SETTINGS["reward_tolerance_pct"]))
    lower = expected * (1 - tolerance)
    upper = expected * (1 + tolerance)
    if lower <= actual <= upper:
        return _weights()["reward_within_tolerance"]
    return 0


def confidence_for_score(score: int) -> ConfidenceTier:
    if score >= int(MATCHING_SETTINGS["high_confidence_min"]):
        return ConfidenceTier.HIGH
    if score >= int(MATCHING_SETTINGS["medium_confidence_min"]):
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


@dataclass
class _DealCache:
    catalog: DealCatalog
    deals: Dict[str, Optional[Deal]] = field(default_factory=dict)

    def expected_reward(self, deal_id: str) -> Optional[Decimal]:
        if not deal_id:
            return None
        if deal_id not in self.deals:
            try:
                self.deals[deal_id] = self.catalog.get_deal_by_id(deal_id)
            except StorageError as e:
                logger.warning("Deal lookup failed, reward score set to 0", deal_id=deal_id, error=str(e))
                self.deals[deal_id] = None
        deal = self.deals[deal_id]
        return deal.expected_reward_amount if deal else None


class MatchingEngine:
    def __init__(self, click_log: ClickLogRepository, catalog: DealCatalog):
        self.click_log = click_log
        self.catalog = catalog

    def score_click(
        self,
        click: ClickEvent,
        request: MatchRequest,
        expected_reward: Optional[Decimal],
    ) -> MatchCandidate:
        breakdown = ScoreBreakdown(
            time_range=calculate_time_range_score(click.timestamp, request.occurred_at),
            deal_name_match=calculate_deal_name_similarity(click.deal_name, request.deal_name),
            reward_match=calculate_reward_validity_score(expected_reward, request.reward_amount),
        )
        score = min(breakdown.total, 100)
        return MatchCandidate(
            click_event=click,
            score=score,
            score_breakdown=breakdown,
            confidence=confidence_for_score(score),
        )

    def _match(self, request: MatchRequest, clicks: Iterable[ClickEvent], deals: _DealCache) -> MatchResult:
        in_window = [c for c in clicks if within_time_window(c.timestamp, request.occurred_at)]
        candidates = [
            self.score_click(click, request, deals.expected_reward(click.deal_id))
            for click in in_window
        ]
        # sorted() is stable: ties keep click-log order
        candidates = sorted(candidates, key=lambda c: c.score, reverse=True)
        best = candidates[0] if candidates else None

        if best is not None:
            logger.info(
                "Best match found",
                order_id=request.order_id,
                score=best.score,
                confidence=best.confidence.value,
                tracking_id=best.click_event.tracking_id,
            )
        else:
            logger.info("No matching candidates found", order_id=request.order_id)

        return MatchResult(
            order_id=request.order_id,
            deal_name=request.deal_name,
            reward_amount=request.reward_amount,
            occurred_at=request.occurred_at,
            candidates=candidates,
            best_match=best,
        )

    def find_matching_candidates(
        self,
        order_id: str,
        deal_name: str,
        reward_amount: Decimal,
        occurred_at: datetime,
    ) -> MatchResult:
        request = MatchRequest(
            order_id=order_id,
            deal_name=deal_name,
            reward_amount=reward_amount,
            occurred_at=occurred_at,
        )
        return self.match(request)

    def match(self, request: MatchRequest) -> MatchResult:
        start = time.time()
        clicks = self.click_log.list_events()
        result = self._match(request, clicks, _DealCache(self.catalog))
        log_performance(
            "matching.find_candidates",
            (time.time() - start) * 1000,
            {"order_id": request.order_id, "clicks": len(clicks), "candidates": len(result.candidates)},
        )
        log_business_event(
            "match_completed",
            {
                "order_id": request.order_id,
                "candidates": len(result.candidates),
                "best_score": result.best_match.score if result.best_match else None,
            },
        )
        return result

    def batch_match(self, requests: List[MatchRequest]) -> List[MatchResult]:
        """Match each conversion in order; failed items are logged and omitted."""
        start = time.time()
        clicks = self.click_log.list_events()
        deals = _DealCache(self.catalog)
        results: List[MatchResult] = []
        for request in requests:
            try:
                results.append(self._match(request, clicks, deals))
            except Exception as e:
                logger.error(
                    "Matching failed for conversion",
                    order_id=request.order_id,
                    error=str(e),
                    exc_info=True,
                )
        log_performance(
            "matching.batch",
            (time.time() - start) * 1000,
            {"requested": len(requests), "matched": len(results)},
        )
        return results

    def unattributed_requests(self, store: LedgerStore, source_name: Optional[str] = None) -> List[MatchRequest]:
        """Raw ledger rows recorded without a tracking id, as match requests."""
        rows = store.read_range(SHEET_NAMES["conversions_raw"], LEDGER_RANGES["conversions_raw"])
        source = source_name.lower() if source_name else None
        requests: List[MatchRequest] = []
        for row in rows:
            tracking_id, _, deal_name, row_source, reward, _, order_id, occurred = (row + [""] * 8)[:8]
            if tracking_id.strip() or not order_id.strip():
                continue
            if source and row_source.strip().lower() != source:
                continue
            try:
                requests.append(MatchRequest(
                    order_id=order_id.strip(),
                    deal_name=deal_name.strip(),
                    reward_amount=to_currency(reward),
                    occurred_at=parse_iso_datetime(occurred),
                ))
            except ValueError as e:
                logger.warning("Skipping unparseable ledger row", order_id=order_id, error=str(e))
        return requests

    def match_unattributed(self, store: LedgerStore, source_name: Optional[str] = None) -> List[MatchResult]:
        return self.batch_match(self.unattributed_requests(store, source_name))


__all__ = [
    "MatchingEngine",
    "calculate_deal_name_similarity",
    "calculate_reward_validity_score",
    "calculate_time_range_score",
    "confidence_for_score",
    "within_time_window",
]
