"""Time utilities (UTC now, ISO parsing, source-local timestamps, elapsed formatting)."""
from __future__ import annotations
from datetime import datetime, timezone, timedelta

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def parse_utc_offset(offset: str) -> timezone:
    """Turn '+09:00' / '-05:30' into a fixed tzinfo."""
    sign = -1 if offset.startswith("-") else 1
    hours, _, minutes = offset.lstrip("+-").partition(":")
    return timezone(sign * timedelta(hours=int(hours), minutes=int(minutes or 0)))

def parse_iso_datetime(value: str, default_offset: str = "+00:00") -> datetime:
    """Parse an ISO-8601 string into an aware datetime.

    A trailing 'Z' is accepted. Naive values are read in ``default_offset``.
    Raises ValueError on anything unparseable.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty timestamp")
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=parse_utc_offset(default_offset))
    return parsed

def parse_source_local_time(value: str, offset: str) -> datetime:
    """Parse a source 'YYYY-MM-DD HH:MM:SS' wall-clock time in the source's fixed offset."""
    parsed = datetime.strptime(value.strip(), "%Y-%m-%d %H:%M:%S")
    return parsed.replace(tzinfo=parse_utc_offset(offset))

def format_elapsed(start: datetime, end: datetime | None = None) -> str:
    end_ts = end or utc_now()
    delta: timedelta = end_ts - start
    ms = int(delta.total_seconds() * 1000)
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms/1000:.2f}s"
    return f"{delta.total_seconds()/60:.2f}m"

__all__ = ["utc_now", "parse_utc_offset", "parse_iso_datetime", "parse_source_local_time", "format_elapsed"]
