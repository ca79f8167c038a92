"""Webhook authenticity checks: HMAC-SHA256 signatures and IP allow-lists.

The signature is computed over the exact raw request bytes, never over a
re-serialized object. Verification never raises: anything malformed is
simply "not verified".
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Iterable, Mapping, Optional

from attribution.config import SIGNATURE_HEADER_NAMES
from attribution.utils import get_logger

logger = get_logger(__name__)

_SIGNATURE_PREFIXES = ("sha256=", "hmac-sha256=")


def _as_bytes(body: bytes | str) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


def generate_signature(body: bytes | str, secret: str) -> str:
    """Hex HMAC-SHA256 of ``body`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), _as_bytes(body), hashlib.sha256).hexdigest()


def _normalize_received(signature: str) -> str:
    text = signature.strip().lower()
    for prefix in _SIGNATURE_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix):]
            break
    return text.strip()


def verify_signature(raw_body: bytes | str, received_signature: Optional[str], secret: Optional[str]) -> bool:
    """Check ``received_signature`` against the HMAC of ``raw_body``.

    Accepts ``sha256=`` / ``hmac-sha256=`` prefixes and upper-case hex.
    Returns False for a blank signature, a blank secret, a length mismatch
    or non-hex input. Equal-length digests are compared in constant time.
    """
    if not received_signature or not received_signature.strip():
        logger.error("Received signature is empty")
        return False
    if not secret or not secret.strip():
        logger.error("Signature secret is not configured")
        return False

    expected = generate_signature(raw_body, secret)
    received = _normalize_received(received_signature)

    if len(received) != len(expected):
        logger.error("Signature length mismatch", received_length=len(received))
        return False

    try:
        received_bytes = bytes.fromhex(received)
    except ValueError:
        logger.error("Signature is not valid hex")
        return False

    is_valid = hmac.compare_digest(received_bytes, bytes.fromhex(expected))
    if not is_valid:
        logger.error("Signature verification failed", received_prefix=received[:8] + "...")
    return is_valid


def extract_signature(headers: Mapping[str, str]) -> Optional[str]:
    """First non-blank signature header, searched in priority order."""
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in SIGNATURE_HEADER_NAMES:
        value = lowered.get(name)
        if value and value.strip():
            return value.strip()
    logger.warning("No signature header found")
    return None


def verify_ip_allowlist(request_ip: Optional[str], allowed_ips: Iterable[str]) -> bool:
    """True when ``request_ip`` is allowed. An empty allow-list allows everyone."""
    if not request_ip or not request_ip.strip():
        logger.error("Request IP is empty")
        return False

    allowed = [ip.strip().lower() for ip in allowed_ips if ip and ip.strip()]
    if not allowed:
        logger.warning("IP allow-list is empty, allowing all IPs")
        return True

    normalized = request_ip.strip().lower()
    if normalized not in allowed:
        logger.error("IP not in allow-list", request_ip=normalized)
        return False
    return True


__all__ = ["generate_signature", "verify_signature", "extract_signature", "verify_ip_allowlist"]
