"""
Conversion webhooks: signed real-time push and GET postback.

Both answer 200 for a re-delivered conversion (sources retry on non-2xx)
and skip the append.
"""
import json
import time
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError as PydanticValidationError

from attribution.api.deps import (
    get_click_log,
    get_client_ip,
    get_recorder,
    get_request_id,
    get_settings,
)
from attribution.config import POSTBACK_SETTINGS, Settings
from attribution.errors import AuthenticationError, ValidationError
from attribution.models.db.enums import IngestOutcome
from attribution.models.schemas.conversions import format_amount
from attribution.models.schemas.ingestion import PostbackAck, WebhookAck
from attribution.models.schemas.payloads import PostbackPayload, PushPayload
from attribution.services.click_log import ClickLogRepository
from attribution.services.ingestion import ConversionRecorder
from attribution.services.normalizer import NormalizationContext, NormalizedConversion, normalize
from attribution.services.signature import extract_signature, verify_ip_allowlist, verify_signature
from attribution.utils import get_logger, log_performance, utc_now

router = APIRouter()
logger = get_logger(__name__)

POSTBACK_SOURCE = "afb"


def _field_errors(exc: PydanticValidationError) -> list:
    return [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


def _normalize_and_record(
    payload,
    ctx: NormalizationContext,
    recorder: ConversionRecorder,
    request_id: str,
) -> Tuple[NormalizedConversion, IngestOutcome]:
    normalized = normalize(payload, ctx)
    return normalized, recorder.record(normalized.event, request_id=request_id)


@router.post(
    "/asp-conversion",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Receive signed conversion push",
    description="HMAC-SHA256 signed JSON conversion from a source network",
)
async def receive_asp_conversion(
    request: Request,
    source: Optional[str] = Query(None, description="Source network name, e.g. 'afb'"),
    asp: Optional[str] = Query(None, include_in_schema=False),
    settings: Settings = Depends(get_settings),
    click_log: ClickLogRepository = Depends(get_click_log),
    recorder: ConversionRecorder = Depends(get_recorder),
) -> WebhookAck:
    start_time = time.time()
    request_id = get_request_id(request)
    source_name = (source or asp or "unknown").strip().lower()

    logger.info("Push webhook received", source=source_name, request_id=request_id)

    secret = settings.webhook_secret_for(source_name)
    signature = extract_signature(request.headers)
    raw_body = await request.body()

    if not signature:
        raise AuthenticationError("Missing signature")
    if not verify_signature(raw_body, signature, secret):
        logger.warning("Invalid webhook signature", source=source_name, request_id=request_id)
        raise AuthenticationError("Invalid signature")

    try:
        body = json.loads(raw_body)
    except ValueError as e:
        raise ValidationError("Invalid JSON body") from e

    try:
        payload = PushPayload.model_validate(body)
    except PydanticValidationError as e:
        raise ValidationError("Invalid webhook payload", details=_field_errors(e)) from e

    ctx = NormalizationContext(
        source_name=source_name,
        received_at=utc_now(),
        click_log=click_log,
    )
    normalized, outcome = await run_in_threadpool(_normalize_and_record, payload, ctx, recorder, request_id)

    if normalized.click_match is not None:
        logger.info(
            "Click log overrides payload attribution",
            event_id=payload.event_id,
            payload_tracking_id=payload.tracking_id,
            tracking_id=normalized.event.tracking_id,
            deal_name=normalized.event.deal_name,
            request_id=request_id,
        )

    log_performance(
        "webhook.push",
        (time.time() - start_time) * 1000,
        {"source": source_name, "outcome": outcome.value},
    )

    if outcome is IngestOutcome.DUPLICATE:
        return WebhookAck(message="Duplicate conversion skipped")
    return WebhookAck(message="Conversion recorded successfully")


@router.get(
    "/afb-postback",
    response_model=PostbackAck,
    response_model_exclude_none=True,
    summary="Receive conversion postback",
    description="GET postback with paid, adid, time, judgetime, price, judge, u, amount",
)
def receive_afb_postback(
    request: Request,
    settings: Settings = Depends(get_settings),
    recorder: ConversionRecorder = Depends(get_recorder),
) -> PostbackAck:
    request_id = get_request_id(request)
    client_ip = get_client_ip(request)

    logger.info("Postback received", remote_addr=client_ip, request_id=request_id)

    if settings.is_development:
        logger.info("IP allow-list bypassed in development", remote_addr=client_ip)
    elif not verify_ip_allowlist(client_ip, settings.postback_allowed_ips):
        raise AuthenticationError("Unauthorized IP address")

    params = request.query_params
    required = POSTBACK_SETTINGS["required_params"]
    missing = [name for name in required if not (params.get(name) or "").strip()]
    if missing:
        logger.warning("Postback missing required parameters", missing=missing, request_id=request_id)
        raise ValidationError(
            f"Missing required parameters: {', '.join(required)}",
            details=[{"field": name, "message": "required"} for name in missing],
        )

    payload = PostbackPayload.model_validate({
        name: params[name].strip()
        for name in PostbackPayload.model_fields
        if name != "kind" and params.get(name)
    })

    ctx = NormalizationContext(source_name=POSTBACK_SOURCE, received_at=utc_now())
    normalized, outcome = _normalize_and_record(payload, ctx, recorder, request_id)
    event = normalized.event

    if outcome is IngestOutcome.DUPLICATE:
        return PostbackAck(message="Duplicate conversion skipped", unique_id=event.order_id)

    data = {
        "memberId": event.tracking_id,
        "uniqueId": event.order_id,
        "rewardAmount": format_amount(event.reward_amount),
        "status": event.status.value,
    }
    if normalized.extras.get("approved_at") is not None:
        data["approvedAt"] = normalized.extras["approved_at"].isoformat()
    if normalized.extras.get("sale_amount") is not None:
        data["saleAmount"] = format_amount(normalized.extras["sale_amount"])

    return PostbackAck(message="Postback received and recorded successfully", data=data)
