# rollsync/config.py

"""
Settings for the roll sync engine.

One explicit settings object is built at startup and handed to every
component that needs it. Values come from ``ROLLSYNC_*`` environment
variables, optionally loaded from a local ``.env`` file.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_SOCKET_URL = "wss://game-log-api-live.dndbeyond.com/v1"

REQUIRED_SETTINGS = ["cobalt_cookie", "campaign_id", "user_id"]

SETTING_NAMES = {
    "cobalt_cookie": "CobaltSession cookie",
    "campaign_id": "Campaign ID",
    "user_id": "User ID",
    "proxy_url": "Proxy URL",
}


class SyncSettings(BaseModel):
    """Everything the engine reads from configuration."""

    cobalt_cookie: str = ""
    campaign_id: str = ""
    user_id: str = ""
    proxy_url: str = "http://localhost:3000"
    socket_url: str = DEFAULT_SOCKET_URL
    enabled: bool = False

    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay: float = Field(default=3.0, ge=0)  # seconds, multiplied by attempt number
    dedup_history: int = Field(default=50, ge=1)
    cache_ttl: float = Field(default=30.0, gt=0)
    processing_guard_delay: float = Field(default=5.0, ge=0)
    auto_confirm_remote: bool = True

    api_key: str = "default-dev-key"
    database_url: str = "sqlite:///rollsync.db"
    actors_file: Optional[str] = None  # JSON list of local actors


class ValidationResult(BaseModel):
    is_valid: bool
    missing: list[str] = []
    message: str


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_settings(env_file: Optional[str] = None) -> SyncSettings:
    """
    Build settings from the environment.

    Inside a container (``/.dockerenv`` present) the repository ``.env`` file
    is not loaded so that platform-provided variables win.
    """
    if env_file or not os.path.exists("/.dockerenv"):
        load_dotenv(env_file)

    defaults = SyncSettings()
    return SyncSettings(
        cobalt_cookie=os.getenv("ROLLSYNC_COBALT_COOKIE", ""),
        campaign_id=os.getenv("ROLLSYNC_CAMPAIGN_ID", ""),
        user_id=os.getenv("ROLLSYNC_USER_ID", ""),
        proxy_url=os.getenv("ROLLSYNC_PROXY_URL", defaults.proxy_url),
        socket_url=os.getenv("ROLLSYNC_SOCKET_URL", defaults.socket_url),
        enabled=_env_bool(os.getenv("ROLLSYNC_ENABLED"), defaults.enabled),
        max_reconnect_attempts=int(os.getenv("ROLLSYNC_MAX_RECONNECT_ATTEMPTS", defaults.max_reconnect_attempts)),
        reconnect_delay=float(os.getenv("ROLLSYNC_RECONNECT_DELAY", defaults.reconnect_delay)),
        dedup_history=int(os.getenv("ROLLSYNC_DEDUP_HISTORY", defaults.dedup_history)),
        cache_ttl=float(os.getenv("ROLLSYNC_CACHE_TTL", defaults.cache_ttl)),
        processing_guard_delay=float(os.getenv("ROLLSYNC_PROCESSING_GUARD_DELAY", defaults.processing_guard_delay)),
        auto_confirm_remote=_env_bool(os.getenv("ROLLSYNC_AUTO_CONFIRM_REMOTE"), defaults.auto_confirm_remote),
        api_key=os.getenv("API_KEY", defaults.api_key),
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        actors_file=os.getenv("ROLLSYNC_ACTORS_FILE") or None,
    )


def validate_settings(settings: SyncSettings) -> ValidationResult:
    """Check that every setting needed to open a connection is present."""
    missing = [key for key in REQUIRED_SETTINGS if not getattr(settings, key)]
    if missing:
        names = [SETTING_NAMES.get(key, key) for key in missing]
        message = f"Roll Sync: Missing required settings: {', '.join(names)}. Configure them before connecting."
        return ValidationResult(is_valid=False, missing=missing, message=message)

    return ValidationResult(is_valid=True, message="All required settings are configured")
