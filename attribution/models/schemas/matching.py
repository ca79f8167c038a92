"""
Schemas for click/conversion matching results and requests.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import Field, field_validator

from attribution.models.db.enums import ConfidenceTier
from .base import CamelModel
from .conversions import ClickEvent, to_currency


class ScoreBreakdown(CamelModel):
    time_range: int = Field(0, ge=0, description="0 or 10")
    deal_name_match: int = Field(0, ge=0, description="0, 20 or 40")
    reward_match: int = Field(0, ge=0, description="0, 15 or 30")
    additional_info: int = Field(0, ge=0, description="Reserved (device, referrer); always 0")

    @property
    def total(self) -> int:
        return self.time_range + self.deal_name_match + self.reward_match + self.additional_info


class MatchCandidate(CamelModel):
    click_event: ClickEvent
    score: int = Field(ge=0, le=100)
    score_breakdown: ScoreBreakdown
    confidence: ConfidenceTier


class MatchResult(CamelModel):
    order_id: str
    deal_name: str
    reward_amount: Decimal
    occurred_at: datetime
    candidates: List[MatchCandidate] = Field(default_factory=list, description="Sorted by score, descending")
    best_match: Optional[MatchCandidate] = None


class MatchRequest(CamelModel):
    """A conversion to match, as posted to the matching endpoints."""

    order_id: str = Field(min_length=1)
    deal_name: str = ""
    reward_amount: Decimal
    occurred_at: datetime

    @field_validator("reward_amount", mode="before")
    @classmethod
    def _parse_reward(cls, v: Any) -> Decimal:
        return to_currency(v)

    @field_validator("occurred_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)


class BatchMatchRequest(CamelModel):
    conversions: List[MatchRequest] = Field(default_factory=list)


class UnattributedMatchRequest(CamelModel):
    source: Optional[str] = Field(None, description="Restrict to one source, e.g. 'afb'")


class BatchMatchResponse(CamelModel):
    requested: int
    matched: int = Field(description="Results returned; failed items are omitted")
    results: List[MatchResult] = Field(default_factory=list)


__all__ = [
    "ScoreBreakdown",
    "MatchCandidate",
    "MatchResult",
    "MatchRequest",
    "BatchMatchRequest",
    "UnattributedMatchRequest",
    "BatchMatchResponse",
]
