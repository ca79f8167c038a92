"""
Canonical domain records: click events, conversion events and catalog deals.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import Field, ConfigDict, field_validator

from attribution.models.db.enums import ConversionStatus
from .base import CamelModel

_AMOUNT_RE = re.compile(r"^\d+(\.\d{1,2})?$")
_CENT = Decimal("0.01")


def to_currency(value: Any) -> Decimal:
    """Parse a reward amount into a non-negative 2-decimal Decimal.

    Accepts numbers and numeric strings ("5000", "5000.5", "5000.50").
    Raises ValueError for negatives, more than two decimals or garbage.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("amount must be a number or numeric string")
    if isinstance(value, str):
        text = value.strip()
        if not _AMOUNT_RE.match(text):
            raise ValueError("amount must be numeric with at most 2 decimals")
        return Decimal(text).quantize(_CENT)
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError("amount must be a number or numeric string") from exc
    if not amount.is_finite() or amount < 0:
        raise ValueError("amount must be a non-negative number")
    if amount != amount.quantize(_CENT):
        raise ValueError("amount must have at most 2 decimals")
    return amount.quantize(_CENT)


def format_amount(amount: Decimal) -> str:
    return f"{amount.quantize(_CENT)}"


class ClickEvent(CamelModel):
    """A recorded offer-link click. Owned by the click-tracking subsystem."""

    model_config = ConfigDict(frozen=True)

    timestamp: Optional[datetime] = Field(description="Click instant; None when the stored value is unparseable")
    tracking_id: str = Field(description="Member id or guest:<uuid>")
    deal_name: str = ""
    deal_id: str = ""
    event_id: str = ""


class ConversionEvent(CamelModel):
    """Canonical, source-independent conversion."""

    model_config = ConfigDict(frozen=True)

    source_name: str = Field(min_length=1)
    order_id: str = Field(min_length=1, description="Source-scoped unique id; dedup key together with source_name")
    tracking_id: str = ""
    event_id: str = ""
    deal_name: str = ""
    reward_amount: Decimal = Field(ge=0)
    status: ConversionStatus
    occurred_at: datetime

    @field_validator("reward_amount", mode="before")
    @classmethod
    def _parse_reward(cls, v: Any) -> Decimal:
        return to_currency(v)

    @field_validator("occurred_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.source_name.lower(), self.order_id)


class Deal(CamelModel):
    """Deal catalog entry, used for the expected reward of a click's deal."""

    deal_id: str
    deal_name: str = ""
    source_name: str = ""
    affiliate_url: str = ""
    expected_reward_amount: Optional[Decimal] = None
    cashback_rate: Optional[float] = None
    is_active: bool = True


__all__ = ["to_currency", "format_amount", "ClickEvent", "ConversionEvent", "Deal"]
