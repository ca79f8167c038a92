"""Core application configuration & tunable attribution rules.

Business rules that may evolve (matching window, score weights, confidence
tiers, polling look-back, postback allow-list) are module constants so they
can be tuned without touching service logic; tests monkeypatch the dicts.

Deployment secrets are different: they are read once into an immutable
``Settings`` object by ``load_settings()`` and handed to components through
FastAPI dependencies, never read from the environment deep inside services.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Final, Mapping

from attribution.errors import ConfigurationError

# ------------------------------- Matching -------------------------------- #
MATCHING_SETTINGS: dict[str, float | int | dict[str, int]] = {
	# Clicks further than this from the conversion are not candidates at all.
	"time_window_hours": 24,
	"weights": {
		"time_range": 10,
		"deal_name_exact": 40,
		"deal_name_partial": 20,
		"reward_exact": 30,
		"reward_within_tolerance": 15,
	},
	# +/- band around the catalog reward that still earns partial credit.
	"reward_tolerance_pct": 0.10,
	# Confidence tiers (lower bounds, inclusive).
	"high_confidence_min": 90,
	"medium_confidence_min": 70,
}

# -------------------------------- Polling -------------------------------- #
POLLING_SETTINGS: dict[str, str | int | float] = {
	"afb_api_base_url": os.getenv("AFB_API_BASE_URL", "https://api.afi-b.com"),
	"lookback_days": 7,
	# 1 = click date, 2 = occurrence date, 3 = approval date
	"conversion_date_type": 2,
	"request_timeout_seconds": float(os.getenv("AFB_API_TIMEOUT", "30")),
}

# ------------------------------- Postback -------------------------------- #
POSTBACK_SETTINGS: dict[str, list[str] | tuple[str, ...]] = {
	# Production sender plus the two resend hosts.
	"allowed_ips": ["13.114.169.190", "180.211.73.218", "112.137.189.110"],
	"required_params": ("paid", "adid", "price", "judge", "u", "time"),
}

# Searched in order; first non-blank header wins.
SIGNATURE_HEADER_NAMES: Final[tuple[str, ...]] = (
	"x-afb-signature",
	"x-asp-signature",
	"x-signature",
	"x-hub-signature",
	"x-hub-signature-256",
)

# Push sources that may be configured with a webhook secret.
WEBHOOK_SOURCES: Final[tuple[str, ...]] = ("afb", "a8net", "moshimo", "valuecommerce")

# Documented fixed offsets of source-local timestamps.
SOURCE_UTC_OFFSETS: dict[str, str] = {
	"afb": "+09:00",
}

# ----------------------------- Ledger layout ----------------------------- #
SHEET_NAMES: Final[dict[str, str]] = {
	"conversions_raw": "conversions_raw",
	"click_log": "click_log",
	"deals": "deals",
}

LEDGER_RANGES: Final[dict[str, str]] = {
	"conversions_raw": "A2:H",
	"click_log": "A2:E",
	"deals": "A2:G",
}

DEFAULT_DEAL_NAME: Final[str] = "unknown"


@dataclass(frozen=True)
class Settings:
	"""Deployment-specific values. Build with ``load_settings()``."""

	environment: str = "production"
	webhook_secrets: Mapping[str, str] = field(default_factory=dict)
	cron_secret: str | None = None
	afb_partner_id: str | None = None
	afb_api_key: str | None = None
	postback_allowed_ips: tuple[str, ...] = tuple(POSTBACK_SETTINGS["allowed_ips"])

	@property
	def is_development(self) -> bool:
		return self.environment.lower() == "development"

	def webhook_secret_for(self, source: str) -> str:
		"""Secret for a push source; unknown or blank is a deployment error."""
		secret = self.webhook_secrets.get(source.lower())
		if not secret or not secret.strip():
			raise ConfigurationError(
				"Webhook secret not configured",
				details={"source": source},
			)
		return secret

	def require_cron_secret(self) -> str:
		if not self.cron_secret:
			raise ConfigurationError("Server configuration error")
		return self.cron_secret


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
	"""Read deployment settings from the environment (or a supplied mapping)."""
	env = os.environ if environ is None else environ
	secrets = {
		source: env[f"{source.upper()}_WEBHOOK_SECRET"]
		for source in WEBHOOK_SOURCES
		if env.get(f"{source.upper()}_WEBHOOK_SECRET")
	}
	ips_raw = (env.get("AFB_POSTBACK_ALLOWED_IPS") or "").strip()
	allowed_ips = tuple(ip.strip() for ip in ips_raw.split(",") if ip.strip()) if ips_raw else tuple(POSTBACK_SETTINGS["allowed_ips"])
	return Settings(
		environment=env.get("ENVIRONMENT", "production"),
		webhook_secrets=secrets,
		cron_secret=env.get("CRON_SECRET") or None,
		afb_partner_id=env.get("AFB_PARTNER_ID") or None,
		afb_api_key=env.get("AFB_API_KEY") or None,
		postback_allowed_ips=allowed_ips,
	)


__all__ = [
	"MATCHING_SETTINGS",
	"POLLING_SETTINGS",
	"POSTBACK_SETTINGS",
	"SIGNATURE_HEADER_NAMES",
	"WEBHOOK_SOURCES",
	"SOURCE_UTC_OFFSETS",
	"SHEET_NAMES",
	"LEDGER_RANGES",
	"DEFAULT_DEAL_NAME",
	"Settings",
	"load_settings",
]
