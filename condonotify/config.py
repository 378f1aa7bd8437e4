"""
File: condonotify/config.py

Project: NotificaCondo WhatsApp Dispatcher

Purpose:
- Centralised dispatcher configuration.
- Environment-driven (Render compatible). No config files.

Notes:
- DATABASE_URL is read by condonotify.db (required).
- Everything here has a safe default:
  - COUNTRY_CODE            (default "55")
  - TIMEZONE_OFFSET_HOURS   (default -3, recipients are in Brazil)
  - SEND_DELAY_MS           (default 500, pacing between batch sends)
  - HTTP_TIMEOUT_SECONDS    (default 30)
  - OUTBOUND_MODE           ("live" or "dry_run", default "live")
  - CRON_SECRET             (optional bearer secret for the batch trigger)
  - APP_BASE_URL            (portal address used in links, default https://notificacondo.com.br)
  - LOG_LEVEL               (default INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta, timezone

OUTBOUND_MODES = ("live", "dry_run")
DEFAULT_APP_BASE_URL = "https://notificacondo.com.br"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class DispatcherSettings:
    country_code: str = "55"
    timezone_offset_hours: int = -3
    send_delay_ms: int = 500
    http_timeout_seconds: int = 30
    outbound_mode: str = "live"
    cron_secret: str | None = None
    app_base_url: str = DEFAULT_APP_BASE_URL
    log_level: str = "INFO"

    @property
    def local_timezone(self) -> timezone:
        return timezone(timedelta(hours=self.timezone_offset_hours))

    @property
    def dry_run(self) -> bool:
        return self.outbound_mode == "dry_run"


def load_settings() -> DispatcherSettings:
    mode = os.getenv("OUTBOUND_MODE", "live").strip().lower() or "live"
    if mode not in OUTBOUND_MODES:
        raise RuntimeError(
            f"OUTBOUND_MODE must be one of {', '.join(OUTBOUND_MODES)}, got {mode!r}"
        )

    return DispatcherSettings(
        country_code=os.getenv("COUNTRY_CODE", "55").strip() or "55",
        timezone_offset_hours=_int_env("TIMEZONE_OFFSET_HOURS", -3),
        send_delay_ms=_int_env("SEND_DELAY_MS", 500),
        http_timeout_seconds=_int_env("HTTP_TIMEOUT_SECONDS", 30),
        outbound_mode=mode,
        cron_secret=os.getenv("CRON_SECRET", "").strip() or None,
        app_base_url=os.getenv("APP_BASE_URL", "").strip() or DEFAULT_APP_BASE_URL,
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


# -------------------------------------------------
# Settings singleton
# -------------------------------------------------
_settings: DispatcherSettings | None = None


def get_settings() -> DispatcherSettings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
