"""
Dedup gate, ledger writer and the recorder that ties them together.

The ledger has no uniqueness constraint, so duplicate suppression is
"read the existing key set, then decide". ``ConversionRecorder`` holds a
per-source lock around that check-then-append sequence; this serializes
concurrent requests inside one process only. Several worker processes
writing to the same ledger can still race.
"""
from __future__ import annotations

import threading
import time
from collections import defaultdict
from typing import DefaultDict, List, Optional, Set

from attribution.config import LEDGER_RANGES, SHEET_NAMES
from attribution.models.db.enums import IngestOutcome
from attribution.models.schemas.conversions import ConversionEvent, format_amount
from attribution.services.ledger_store import LedgerStore
from attribution.utils import get_logger, log_business_event, log_performance

logger = get_logger(__name__)

# Raw row layout: trackingId, eventId, dealName, sourceName, rewardAmount,
# status, orderId, occurredAt
SOURCE_COLUMN = 3
ORDER_ID_COLUMN = 6


def event_to_row(event: ConversionEvent) -> List[str]:
    return [
        event.tracking_id,
        event.event_id,
        event.deal_name,
        event.source_name,
        format_amount(event.reward_amount),
        event.status.value,
        event.order_id,
        event.occurred_at.isoformat(),
    ]


class DedupGate:
    """Answers "has this (source, orderId) already been recorded?"."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def existing_keys(self, source_name: str) -> Set[str]:
        """Order ids already in the raw ledger for ``source_name`` (one full scan)."""
        start = time.time()
        source = source_name.lower()
        rows = self.store.read_range(SHEET_NAMES["conversions_raw"], LEDGER_RANGES["conversions_raw"])
        keys = {
            row[ORDER_ID_COLUMN].strip()
            for row in rows
            if len(row) > ORDER_ID_COLUMN
            and row[ORDER_ID_COLUMN].strip()
            and row[SOURCE_COLUMN].strip().lower() == source
        }
        log_performance("dedup.existing_keys", (time.time() - start) * 1000, {"source": source, "keys": len(keys)})
        return keys

    def is_duplicate(self, source_name: str, order_id: str) -> bool:
        return order_id in self.existing_keys(source_name)


class LedgerWriter:
    def __init__(self, store: LedgerStore):
        self.store = store

    def append(self, event: ConversionEvent) -> None:
        # StorageError propagates; no local retry
        self.store.append(SHEET_NAMES["conversions_raw"], event_to_row(event))


class SourceLocks:
    """Registry of one lock per source name."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: DefaultDict[str, threading.Lock] = defaultdict(threading.Lock)

    def for_source(self, source_name: str) -> threading.Lock:
        with self._guard:
            return self._locks[source_name.lower()]


class ConversionRecorder:
    """Records canonical events exactly once per (source, orderId)."""

    def __init__(
        self,
        gate: DedupGate,
        writer: LedgerWriter,
        locks: Optional[SourceLocks] = None,
    ):
        self.gate = gate
        self.writer = writer
        self.locks = locks or SourceLocks()

    def record(self, event: ConversionEvent, request_id: Optional[str] = None) -> IngestOutcome:
        source, order_id = event.dedup_key
        with self.locks.for_source(source):
            if self.gate.is_duplicate(source, order_id):
                logger.info("Duplicate conversion skipped", source=source, order_id=order_id)
                log_business_event(
                    "conversion_duplicate_skipped",
                    {"source": source, "order_id": order_id},
                    request_id=request_id,
                )
                return IngestOutcome.DUPLICATE
            self.writer.append(event)

        logger.info(
            "Conversion recorded",
            source=source,
            order_id=order_id,
            status=event.status.value,
            tracking_id=event.tracking_id,
        )
        log_business_event(
            "conversion_recorded",
            {
                "source": source,
                "order_id": order_id,
                "status": event.status.value,
                "reward_amount": format_amount(event.reward_amount),
            },
            request_id=request_id,
        )
        return IngestOutcome.RECORDED

    def record_known(self, event: ConversionEvent, known_keys: Set[str]) -> IngestOutcome:
        """Batch variant: dedup against a key set read once per run.

        A key missing from ``known_keys`` is checked again against the ledger
        under the source lock, since a push or postback may have recorded it
        after the set was read. ``known_keys`` is updated in place so a batch
        containing the same order id twice writes it once.
        """
        source, order_id = event.dedup_key
        if order_id in known_keys:
            return IngestOutcome.DUPLICATE
        with self.locks.for_source(source):
            if self.gate.is_duplicate(source, order_id):
                known_keys.add(order_id)
                logger.info("Duplicate conversion skipped", source=source, order_id=order_id)
                log_business_event(
                    "conversion_duplicate_skipped",
                    {"source": source, "order_id": order_id},
                )
                return IngestOutcome.DUPLICATE
            self.writer.append(event)
        known_keys.add(order_id)
        log_business_event(
            "conversion_recorded",
            {"source": source, "order_id": order_id, "status": event.status.value},
        )
        return IngestOutcome.RECORDED


__all__ = [
    "DedupGate",
    "LedgerWriter",
    "SourceLocks",
    "ConversionRecorder",
    "event_to_row",
    "SOURCE_COLUMN",
    "ORDER_ID_COLUMN",
]
