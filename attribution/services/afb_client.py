"""
Client for the source's conversion reporting API (polling pull).

GET {base}/partners/{partner_id}/conversion
    ?start_date=YYYY-MM-DD&end_date=YYYY-MM-DD&conversion_date_type=N
    [&promotion_id][&partner_site_id][&status]
Header: authorizationtoken: <api key>
"""
from __future__ import annotations

import asyncio
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import aiohttp

from attribution.config import POLLING_SETTINGS, Settings
from attribution.errors import ConfigurationError, SourceApiError
from attribution.utils import get_logger, utc_now
from attribution.utils.time import parse_utc_offset

logger = get_logger(__name__)


class AfbApiClient:
    def __init__(
        self,
        partner_id: Optional[str],
        api_key: Optional[str],
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.partner_id = partner_id
        self.api_key = api_key
        self.base_url = (base_url or str(POLLING_SETTINGS["afb_api_base_url"])).rstrip("/")
        self.timeout_seconds = float(timeout_seconds or POLLING_SETTINGS["request_timeout_seconds"])

    @classmethod
    def from_settings(cls, settings: Settings) -> "AfbApiClient":
        return cls(partner_id=settings.afb_partner_id, api_key=settings.afb_api_key)

    def _check_config(self) -> None:
        if not self.partner_id or not self.api_key:
            raise ConfigurationError(
                "AFB API is not configured. Set AFB_PARTNER_ID and AFB_API_KEY."
            )

    async def fetch_conversions(
        self,
        start_date: date,
        end_date: date,
        conversion_date_type: Optional[int] = None,
        promotion_id: Optional[str] = None,
        partner_site_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        self._check_config()

        url = f"{self.base_url}/partners/{self.partner_id}/conversion"
        params: Dict[str, str] = {
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "conversion_date_type": str(conversion_date_type or POLLING_SETTINGS["conversion_date_type"]),
        }
        if promotion_id:
            params["promotion_id"] = promotion_id
        if partner_site_id:
            params["partner_site_id"] = partner_site_id
        if status:
            params["status"] = status

        headers = {"Content-Type": "application/json", "authorizationtoken": str(self.api_key)}
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        logger.info("Fetching conversions from AFB API", url=url, **params)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, params=params, headers=headers) as response:
                    if response.status < 200 or response.status >= 300:
                        text = await response.text()
                        logger.error("AFB API request failed", status_code=response.status, body=text[:500])
                        raise SourceApiError(
                            f"AFB API error: {response.status}",
                            details={"status_code": response.status},
                        )
                    data: Dict[str, Any] = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            logger.error("AFB API request timed out", url=url)
            raise SourceApiError("AFB API request timed out") from e
        except aiohttp.ClientError as e:
            logger.error("AFB API client error", url=url, error=str(e))
            raise SourceApiError(f"AFB API client error: {e}") from e

        if data.get("error_message"):
            logger.error("AFB API returned error", error_message=data["error_message"])
            raise SourceApiError(f"AFB API error: {data['error_message']}")

        # records are validated one by one by the caller
        records = list(data.get("response") or [])
        logger.info("Fetched conversions from AFB API", count=len(records))
        return records

    async def fetch_by_date_range(self, start_date: date, end_date: date) -> List[Dict[str, Any]]:
        """Occurrence-date based window."""
        return await self.fetch_conversions(start_date, end_date, conversion_date_type=2)

    async def fetch_last_n_days(self, days: Optional[int] = None) -> List[Dict[str, Any]]:
        days = int(days if days is not None else POLLING_SETTINGS["lookback_days"])
        # the source reports dates in its own local calendar
        today = utc_now().astimezone(parse_utc_offset("+09:00")).date()
        return await self.fetch_by_date_range(today - timedelta(days=days), today)

    async def fetch_pending_and_approved(self, start_date: date, end_date: date) -> List[Dict[str, Any]]:
        return await self.fetch_conversions(start_date, end_date, conversion_date_type=2, status="0,1")


__all__ = ["AfbApiClient"]
