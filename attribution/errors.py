"""Error taxonomy for the ingestion and matching pipeline.

Each error carries the HTTP status the adapters answer with; the handlers in
``attribution.main`` turn them into ``{"success": false, "error": ...}``.
A re-delivered conversion is not an error (see ``IngestOutcome``).
"""
from __future__ import annotations

from typing import Any


class AttributionError(Exception):
    status_code: int = 500

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigurationError(AttributionError):
    """Missing secret or credentials. Fatal for the request, never retried."""

    status_code = 500


class AuthenticationError(AttributionError):
    """Bad signature, bad bearer token or disallowed caller IP."""

    status_code = 401


class ValidationError(AttributionError):
    """Malformed or missing payload fields."""

    status_code = 400


class StorageError(AttributionError):
    """Ledger or catalog read/write failure."""

    status_code = 500


class SourceApiError(AttributionError):
    """The polled source API answered with an error."""

    status_code = 500


__all__ = [
    "AttributionError",
    "ConfigurationError",
    "AuthenticationError",
    "ValidationError",
    "StorageError",
    "SourceApiError",
]
