"""Read-only access to the click-event log.

Click rows are written by the click-tracking subsystem as
``timestamp, trackingId, dealName, dealId, eventId``. This module only
parses them; it never writes.
"""
from __future__ import annotations

from typing import List, Optional

from attribution.config import SHEET_NAMES, LEDGER_RANGES
from attribution.models.schemas.conversions import ClickEvent
from attribution.services.ledger_store import LedgerStore
from attribution.utils import get_logger
from attribution.utils.time import parse_iso_datetime

logger = get_logger(__name__)


def _cell(row: List[str], index: int) -> str:
    return row[index].strip() if len(row) > index and row[index] else ""


def row_to_click_event(row: List[str]) -> ClickEvent:
    raw_ts = _cell(row, 0)
    try:
        timestamp = parse_iso_datetime(raw_ts) if raw_ts else None
    except ValueError:
        logger.debug("Unparseable click timestamp", timestamp=raw_ts)
        timestamp = None
    return ClickEvent(
        timestamp=timestamp,
        tracking_id=_cell(row, 1),
        deal_name=_cell(row, 2),
        deal_id=_cell(row, 3),
        event_id=_cell(row, 4),
    )


class ClickLogRepository:
    def __init__(self, store: LedgerStore):
        self.store = store

    def list_events(self) -> List[ClickEvent]:
        """Every click in log order (full scan)."""
        rows = self.store.read_range(SHEET_NAMES["click_log"], LEDGER_RANGES["click_log"])
        return [row_to_click_event(row) for row in rows if any(cell.strip() for cell in row)]

    def get_by_event_id(self, event_id: str) -> Optional[ClickEvent]:
        if not event_id:
            return None
        for event in self.list_events():
            if event.event_id == event_id:
                return event
        return None


__all__ = ["ClickLogRepository", "row_to_click_event"]
