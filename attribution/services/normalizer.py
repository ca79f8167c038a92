"""Normalization of source-native payloads into canonical ``ConversionEvent``s.

One normalizer per payload variant, registered in ``NORMALIZERS`` by the
variant's ``kind``:

* push webhook  -> click log is authoritative for dealName/trackingId when
  the payload's eventId matches a recorded click
* GET postback  -> short parameter names, source-local timestamps
* polled record -> no trackingId/eventId; resolved later by matching
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from attribution.config import DEFAULT_DEAL_NAME, SOURCE_UTC_OFFSETS
from attribution.errors import ValidationError
from attribution.models.db.enums import ConversionStatus, PayloadKind
from attribution.models.schemas.conversions import ClickEvent, ConversionEvent, to_currency
from attribution.models.schemas.payloads import (
    PolledRecord,
    PostbackPayload,
    PushPayload,
    RawConversionPayload,
)
from attribution.services.click_log import ClickLogRepository
from attribution.utils import get_logger
from attribution.utils.time import parse_iso_datetime, parse_source_local_time

logger = get_logger(__name__)

# Postback `judge` and polled `commit_flg` share one code space.
STATUS_CODE_MAPS: Dict[str, Dict[int, ConversionStatus]] = {
    "afb": {
        0: ConversionStatus.PENDING,
        1: ConversionStatus.APPROVED,
        2: ConversionStatus.CANCELLED,
        9: ConversionStatus.CANCELLED,
    },
}


@dataclass(frozen=True)
class NormalizationContext:
    source_name: str
    received_at: datetime
    click_log: Optional[ClickLogRepository] = None


@dataclass(frozen=True)
class NormalizedConversion:
    event: ConversionEvent
    # Set when the click log overrode the payload's dealName/trackingId.
    click_match: Optional[ClickEvent] = None
    extras: Dict[str, Any] = field(default_factory=dict)


def map_status_code(source_name: str, code: Any) -> ConversionStatus:
    """Map a source status code onto the canonical enum.

    Unknown codes fall back to PENDING with a warning so that a revenue
    event is never silently dropped.
    """
    mapping = STATUS_CODE_MAPS.get(source_name.lower(), {})
    try:
        status = mapping.get(int(str(code).strip()))
    except ValueError:
        status = None
    if status is None:
        logger.warning(
            "Unknown status code, defaulting to pending",
            source=source_name,
            status_code=code,
        )
        return ConversionStatus.PENDING
    return status


def _source_offset(source_name: str) -> str:
    return SOURCE_UTC_OFFSETS.get(source_name.lower(), "+00:00")


def _build_event(**fields: Any) -> ConversionEvent:
    try:
        return ConversionEvent(**fields)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid conversion payload",
            details=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
        ) from e


def normalize_push(payload: PushPayload, ctx: NormalizationContext) -> NormalizedConversion:
    deal_name = payload.deal_name or DEFAULT_DEAL_NAME
    tracking_id = payload.tracking_id
    click: Optional[ClickEvent] = None

    if payload.event_id:
        if ctx.click_log is not None:
            click = ctx.click_log.get_by_event_id(payload.event_id)
        if click is not None:
            deal_name = click.deal_name or deal_name
            tracking_id = click.tracking_id or tracking_id
        else:
            logger.warning(
                "Click log not found for eventId, using payload trackingId",
                event_id=payload.event_id,
                tracking_id=payload.tracking_id,
            )
    else:
        logger.warning("No eventId provided, using payload trackingId only", tracking_id=payload.tracking_id)

    event = _build_event(
        source_name=ctx.source_name.lower(),
        order_id=payload.order_id,
        tracking_id=tracking_id,
        event_id=payload.event_id or "",
        deal_name=deal_name,
        reward_amount=payload.reward_amount,
        status=payload.status,
        occurred_at=payload.occurred_at or ctx.received_at,
    )
    return NormalizedConversion(event=event, click_match=click, extras={"currency": payload.currency})


def normalize_postback(payload: PostbackPayload, ctx: NormalizationContext) -> NormalizedConversion:
    offset = _source_offset(ctx.source_name)
    errors = []

    reward: Optional[Decimal] = None
    try:
        reward = to_currency(payload.price)
    except ValueError as e:
        errors.append({"field": "price", "message": str(e)})

    occurred_at: Optional[datetime] = None
    try:
        occurred_at = parse_source_local_time(payload.time, offset)
    except ValueError:
        errors.append({"field": "time", "message": "expected YYYY-MM-DD HH:MM:SS"})

    approved_at: Optional[datetime] = None
    if payload.judgetime:
        try:
            approved_at = parse_source_local_time(payload.judgetime, offset)
        except ValueError:
            errors.append({"field": "judgetime", "message": "expected YYYY-MM-DD HH:MM:SS"})

    sale_amount: Optional[Decimal] = None
    if payload.amount:
        try:
            sale_amount = to_currency(payload.amount)
        except ValueError as e:
            errors.append({"field": "amount", "message": str(e)})

    if errors:
        raise ValidationError("Invalid postback parameters", details=errors)

    event = _build_event(
        source_name=ctx.source_name.lower(),
        order_id=payload.u,
        tracking_id=payload.paid,
        event_id="",
        # deal name is resolved later by matching
        deal_name=f"{ctx.source_name.lower()}-ad:{payload.adid}",
        reward_amount=reward,
        status=map_status_code(ctx.source_name, payload.judge),
        occurred_at=occurred_at,
    )
    return NormalizedConversion(
        event=event,
        extras={"ad_id": payload.adid, "approved_at": approved_at, "sale_amount": sale_amount},
    )


def normalize_polled(record: PolledRecord, ctx: NormalizationContext) -> NormalizedConversion:
    try:
        occurred_at = parse_iso_datetime(record.commit_time, default_offset=_source_offset(ctx.source_name))
    except ValueError as e:
        raise ValidationError(
            "Invalid polled record",
            details=[{"field": "commit_time", "message": str(e)}],
        ) from e

    event = _build_event(
        source_name=ctx.source_name.lower(),
        order_id=record.commit_id,
        tracking_id="",
        event_id="",
        deal_name=record.adv_name,
        reward_amount=record.margin,
        status=map_status_code(ctx.source_name, record.commit_flg),
        occurred_at=occurred_at,
    )
    return NormalizedConversion(event=event, extras={"ad_id": record.adv_id})


NORMALIZERS: Dict[str, Callable[[Any, NormalizationContext], NormalizedConversion]] = {
    PayloadKind.PUSH.value: normalize_push,
    PayloadKind.POSTBACK.value: normalize_postback,
    PayloadKind.POLLED.value: normalize_polled,
}


def normalize(raw: RawConversionPayload, ctx: NormalizationContext) -> NormalizedConversion:
    """Dispatch ``raw`` to the normalizer registered for its ``kind``."""
    normalizer = NORMALIZERS.get(raw.kind)
    if normalizer is None:
        raise ValidationError(f"Unsupported payload kind: {raw.kind}")
    return normalizer(raw, ctx)


__all__ = [
    "STATUS_CODE_MAPS",
    "NormalizationContext",
    "NormalizedConversion",
    "map_status_code",
    "normalize_push",
    "normalize_postback",
    "normalize_polled",
    "normalize",
    "NORMALIZERS",
]
