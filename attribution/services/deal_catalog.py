"""Deal catalog lookups (expected reward per deal).

Catalog rows: ``affiliateUrl, dealId, dealName, sourceName, rewardAmount,
cashbackRate, isActive``.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import List, Optional, Protocol

from attribution.config import SHEET_NAMES, LEDGER_RANGES
from attribution.models.schemas.conversions import Deal
from attribution.services.ledger_store import LedgerStore


class DealCatalog(Protocol):
    def get_deal_by_id(self, deal_id: str) -> Optional[Deal]: ...


def _decimal_or_none(raw: str) -> Optional[Decimal]:
    text = raw.replace(",", "").strip()
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def row_to_deal(row: List[str]) -> Deal:
    cells = [c.strip() for c in row] + [""] * (7 - len(row))
    rate = _decimal_or_none(cells[5])
    return Deal(
        affiliate_url=cells[0],
        deal_id=cells[1],
        deal_name=cells[2],
        source_name=cells[3],
        expected_reward_amount=_decimal_or_none(cells[4]),
        cashback_rate=float(rate) if rate is not None else None,
        is_active=cells[6].upper() != "FALSE",
    )


class SheetDealCatalog:
    """Deal catalog stored as a ledger sheet."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def get_deal_by_id(self, deal_id: str) -> Optional[Deal]:
        rows = self.store.read_range(SHEET_NAMES["deals"], LEDGER_RANGES["deals"])
        for row in rows:
            if len(row) > 1 and row[1].strip() == deal_id:
                return row_to_deal(row)
        return None


__all__ = ["DealCatalog", "SheetDealCatalog", "row_to_deal"]
