from __future__ import annotations

import os
import secrets
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# Load env before anything else
load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass
class Settings:
    """Runtime configuration read from the environment (and `.env`)."""

    database_url: str = "sqlite+aiosqlite:///./coachsync.db"
    base_url: str = "http://localhost:8000"
    frontend_origin: str = "http://localhost:3000"
    log_level: str = "INFO"

    http_timeout_seconds: int = 30
    sync_timeout_seconds: int = 300
    sync_stale_after_seconds: int = 1800
    sync_reaper_interval_seconds: int = 300

    # A random per-process secret is used when none is configured, which only
    # works while the callback lands on the process that issued the state.
    oauth_state_secret: str = field(default_factory=lambda: secrets.token_hex(32))
    oauth_state_ttl_seconds: int = 900

    strava_client_id: str = ""
    strava_client_secret: str = ""
    strava_webhook_secret: Optional[str] = None
    strava_webhook_verify_token: Optional[str] = None

    myfitnesspal_client_id: str = ""
    myfitnesspal_client_secret: str = ""
    myfitnesspal_webhook_secret: Optional[str] = None

    def __post_init__(self) -> None:
        # A sync still inside its timeout must never look abandoned
        if self.sync_stale_after_seconds <= self.sync_timeout_seconds:
            raise ValueError(
                f"SYNC_STALE_AFTER_SECONDS ({self.sync_stale_after_seconds}) must be greater "
                f"than SYNC_TIMEOUT_SECONDS ({self.sync_timeout_seconds})"
            )

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            base_url=os.getenv("BASE_URL", defaults.base_url).rstrip("/"),
            frontend_origin=os.getenv("FRONTEND_ORIGIN", defaults.frontend_origin),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            http_timeout_seconds=_int_env("HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds),
            sync_timeout_seconds=_int_env("SYNC_TIMEOUT_SECONDS", defaults.sync_timeout_seconds),
            sync_stale_after_seconds=_int_env(
                "SYNC_STALE_AFTER_SECONDS", defaults.sync_stale_after_seconds
            ),
            sync_reaper_interval_seconds=_int_env(
                "SYNC_REAPER_INTERVAL_SECONDS", defaults.sync_reaper_interval_seconds
            ),
            oauth_state_secret=os.getenv("OAUTH_STATE_SECRET") or defaults.oauth_state_secret,
            oauth_state_ttl_seconds=_int_env(
                "OAUTH_STATE_TTL_SECONDS", defaults.oauth_state_ttl_seconds
            ),
            strava_client_id=os.getenv("STRAVA_CLIENT_ID", ""),
            strava_client_secret=os.getenv("STRAVA_CLIENT_SECRET", ""),
            strava_webhook_secret=os.getenv("STRAVA_WEBHOOK_SECRET") or None,
            strava_webhook_verify_token=os.getenv("STRAVA_WEBHOOK_VERIFY_TOKEN") or None,
            myfitnesspal_client_id=os.getenv("MYFITNESSPAL_CLIENT_ID", ""),
            myfitnesspal_client_secret=os.getenv("MYFITNESSPAL_CLIENT_SECRET", ""),
            myfitnesspal_webhook_secret=os.getenv("MYFITNESSPAL_WEBHOOK_SECRET") or None,
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
