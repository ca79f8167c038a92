"""Central Enum definitions for core domain states.

These replace scattered string literals so webhook schemas, the ledger
writer and the matching engine agree on the same values.
"""
from __future__ import annotations
import enum


class ConversionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"


class ConfidenceTier(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IngestOutcome(str, enum.Enum):
    RECORDED = "recorded"
    DUPLICATE = "duplicate"


class PayloadKind(str, enum.Enum):
    PUSH = "push"
    POSTBACK = "postback"
    POLLED = "polled"


__all__ = [
    "ConversionStatus",
    "ConfidenceTier",
    "IngestOutcome",
    "PayloadKind",
]
