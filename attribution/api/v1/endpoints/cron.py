"""
Scheduled jobs triggered by an external scheduler.
"""
from fastapi import APIRouter, Depends, Request

from attribution.api.deps import get_afb_client, get_recorder, get_request_id, require_cron_token
from attribution.models.schemas.ingestion import PollingResponse
from attribution.services.afb_client import AfbApiClient
from attribution.services.ingestion import ConversionRecorder
from attribution.services.polling import sync_conversions
from attribution.utils import get_logger, utc_now

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/sync-afb-conversions",
    response_model=PollingResponse,
    dependencies=[Depends(require_cron_token)],
    summary="Poll source conversions",
    description="Fetch the look-back window from the source API and record new conversions",
)
async def sync_afb_conversions(
    request: Request,
    client: AfbApiClient = Depends(get_afb_client),
    recorder: ConversionRecorder = Depends(get_recorder),
) -> PollingResponse:
    """Requires ``Authorization: Bearer <CRON_SECRET>``."""
    summary = await sync_conversions(client, recorder, request_id=get_request_id(request))
    return PollingResponse(
        message="AFB conversions synced successfully",
        summary=summary,
        timestamp=utc_now(),
    )
