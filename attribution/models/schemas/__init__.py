from .base import CamelModel
from .conversions import ClickEvent, ConversionEvent, Deal, to_currency, format_amount
from .payloads import PushPayload, PostbackPayload, PolledRecord, RawConversionPayload
from .matching import (
    ScoreBreakdown,
    MatchCandidate,
    MatchResult,
    MatchRequest,
    BatchMatchRequest,
    UnattributedMatchRequest,
    BatchMatchResponse,
)
from .ingestion import PollingSummary, WebhookAck, PostbackAck, PollingResponse

__all__ = [
    # Base
    "CamelModel",

    # Canonical records
    "ClickEvent",
    "ConversionEvent",
    "Deal",
    "to_currency",
    "format_amount",

    # Source payloads
    "PushPayload",
    "PostbackPayload",
    "PolledRecord",
    "RawConversionPayload",

    # Matching
    "ScoreBreakdown",
    "MatchCandidate",
    "MatchResult",
    "MatchRequest",
    "BatchMatchRequest",
    "UnattributedMatchRequest",
    "BatchMatchResponse",

    # Ingestion
    "PollingSummary",
    "WebhookAck",
    "PostbackAck",
    "PollingResponse",
]
