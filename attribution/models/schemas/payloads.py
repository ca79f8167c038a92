"""
Source-native payload shapes, one variant per ingestion channel.

``RawConversionPayload`` is a tagged union on ``kind``; each variant has its
own normalizer in ``attribution.services.normalizer``. A new source shape is
added as a new variant plus a normalizer, not as a branch in shared code.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, AliasChoices, field_validator

from attribution.models.db.enums import ConversionStatus
from .conversions import to_currency


class PushPayload(BaseModel):
    """JSON body of a signed real-time push webhook.

    Canonical camelCase names are preferred; the source's legacy names
    (id1, order_id, reward, timestamp, deal_name) are accepted too.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    kind: Literal["push"] = "push"
    tracking_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("trackingId", "tracking_id", "id1"),
    )
    order_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("orderId", "order_id"),
    )
    reward_amount: Decimal = Field(
        validation_alias=AliasChoices("rewardAmount", "reward", "amount"),
    )
    status: ConversionStatus
    occurred_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("occurredAt", "timestamp"),
    )
    event_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("eventId", "event_id"),
    )
    deal_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("dealName", "deal_name"),
    )
    program_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("programId", "program_id"),
    )
    currency: str = Field(default="JPY", min_length=3, max_length=3)

    @field_validator("reward_amount", mode="before")
    @classmethod
    def _parse_reward(cls, v: Any) -> Decimal:
        return to_currency(v)

    @field_validator("event_id")
    @classmethod
    def _uuid_event_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        try:
            return str(UUID(v))
        except ValueError as exc:
            raise ValueError("eventId must be a UUID") from exc

    @field_validator("occurred_at")
    @classmethod
    def _aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class PostbackPayload(BaseModel):
    """Flat GET query parameters of a postback (source short names)."""

    model_config = ConfigDict(extra="ignore")

    kind: Literal["postback"] = "postback"
    paid: str          # member id given at click time
    adid: str          # source ad id
    time: str          # occurrence time, YYYY-MM-DD HH:MM:SS source-local
    judgetime: Optional[str] = None
    price: str         # reward
    judge: str         # status code
    u: str             # unique conversion id
    amount: Optional[str] = None  # sale amount, commerce offers only


class PolledRecord(BaseModel):
    """One conversion record returned by the source's reporting API."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    kind: Literal["polled"] = "polled"
    commit_id: str
    adv_id: str = ""
    adv_name: str = ""
    partner_site_id: str = ""
    partner_site_name: str = ""
    device: str = ""
    keyword: str = ""
    ref: str = ""
    visit_time: Optional[str] = None
    commit_time: str
    recognition_time: Optional[str] = None
    margin: Decimal
    commit_flg: int

    @field_validator("margin", mode="before")
    @classmethod
    def _parse_margin(cls, v: Any) -> Decimal:
        return to_currency(v)


RawConversionPayload = Annotated[
    Union[PushPayload, PostbackPayload, PolledRecord],
    Field(discriminator="kind"),
]


__all__ = ["PushPayload", "PostbackPayload", "PolledRecord", "RawConversionPayload"]
