"""
Schemas for ingestion adapter responses.
"""
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from .base import CamelModel


class PollingSummary(BaseModel):
    """Outcome of one polling run. Malformed records count only toward ``errors``."""

    total: int = Field(0, ge=0, description="Records returned by the source")
    new: int = Field(0, ge=0, description="Records not yet in the ledger")
    skipped: int = Field(0, ge=0, description="Records already in the ledger")
    recorded: int = Field(0, ge=0)
    errors: int = Field(0, ge=0, description="Malformed records and per-record ledger write failures")


class WebhookAck(BaseModel):
    status: Literal["success"] = "success"
    message: str


class PostbackAck(CamelModel):
    success: bool = True
    message: str
    data: Optional[Dict[str, Any]] = None
    # set on duplicates instead of ``data``
    unique_id: Optional[str] = None


class PollingResponse(BaseModel):
    success: bool = True
    message: str
    summary: PollingSummary
    timestamp: datetime


__all__ = ["PollingSummary", "WebhookAck", "PostbackAck", "PollingResponse"]
