"""
Polling pull: fetch the look-back window from the source API and record
every conversion the ledger does not know yet.

The existing key set is read once per run. Records are validated and
written one at a time; a failure on one record is counted and the run
carries on. Ledger work runs in the threadpool so a long run does not hold
up the event loop.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError as PydanticValidationError

from attribution.errors import StorageError, ValidationError
from attribution.models.db.enums import IngestOutcome
from attribution.models.schemas.ingestion import PollingSummary
from attribution.models.schemas.payloads import PolledRecord
from attribution.services.afb_client import AfbApiClient
from attribution.services.ingestion import ConversionRecorder
from attribution.services.normalizer import NormalizationContext, normalize
from attribution.utils import get_logger, log_business_event, utc_now
from attribution.utils.time import format_elapsed

logger = get_logger(__name__)


def _raw_order_id(item: Any) -> Optional[str]:
    if isinstance(item, dict) and item.get("commit_id") is not None:
        return str(item["commit_id"])
    return None


def record_polled(
    items: List[Dict[str, Any]],
    recorder: ConversionRecorder,
    source_name: str,
    received_at: datetime,
) -> PollingSummary:
    """Validate, dedup and append each polled record. Blocking; call off the loop."""
    known = recorder.gate.existing_keys(source_name)
    logger.info("Existing conversions loaded", source=source_name, existing=len(known))

    ctx = NormalizationContext(source_name=source_name, received_at=received_at)
    summary = PollingSummary(total=len(items))

    for item in items:
        try:
            record = PolledRecord.model_validate(item)
        except PydanticValidationError as e:
            summary.errors += 1
            logger.error(
                "Malformed polled conversion",
                source=source_name,
                order_id=_raw_order_id(item),
                error_count=e.error_count(),
                errors=[".".join(str(p) for p in err["loc"]) for err in e.errors()],
            )
            continue

        if record.commit_id in known:
            summary.skipped += 1
            continue
        try:
            normalized = normalize(record, ctx)
            outcome = recorder.record_known(normalized.event, known)
        except (StorageError, ValidationError) as e:
            summary.new += 1
            summary.errors += 1
            logger.error(
                "Failed to record polled conversion",
                source=source_name,
                order_id=record.commit_id,
                error=e.message,
            )
            continue

        if outcome is IngestOutcome.DUPLICATE:
            # recorded by a push or postback after the key set was read
            summary.skipped += 1
        else:
            summary.new += 1
            summary.recorded += 1

    return summary


async def sync_conversions(
    client: AfbApiClient,
    recorder: ConversionRecorder,
    source_name: str = "afb",
    lookback_days: Optional[int] = None,
    request_id: Optional[str] = None,
) -> PollingSummary:
    started = utc_now()
    logger.info("Starting polling run", source=source_name, request_id=request_id)

    # SourceApiError / ConfigurationError here fail the whole run
    items = await client.fetch_last_n_days(lookback_days)
    summary = await run_in_threadpool(record_polled, items, recorder, source_name, started)

    logger.info(
        "Polling run completed",
        source=source_name,
        elapsed=format_elapsed(started),
        **summary.model_dump(),
    )
    log_business_event(
        "polling_run_completed",
        {"source": source_name, **summary.model_dump()},
        request_id=request_id,
    )
    return summary


__all__ = ["record_polled", "sync_conversions"]
