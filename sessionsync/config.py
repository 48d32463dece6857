"""
Application Configuration.

Pydantic Settings model for the SessionSync engine.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Backend API ---
    API_BASE_URL: str = "http://localhost:8000"
    API_TIMEOUT_S: float = 10.0

    # --- Identity provider redirect URLs ---
    APP_ORIGIN: str = "http://localhost:8080"
    AUTH_BASE_URL: str = ""
    AUTH_CALLBACK_URL: str = ""
    AUTH_LOGOUT_URL: str = ""

    # --- Synchronization policy ---
    MAX_SYNC_RETRIES: int = Field(default=3, ge=1)
    NAVIGATION_SETTLE_S: float = Field(default=1.0, ge=0.0)
    # Unset means the resolver's own HTTP timeout is the only bound.
    RESOLVE_TIMEOUT_S: Optional[float] = None

    # --- Environment bypass ---
    SANDBOX_MODE: Optional[bool] = None
    DEV_MODE: bool = False
    SANDBOX_INDICATORS: tuple[str, ...] = (
        "webcontainer",
        "bolt.new",
        "stackblitz",
        "gitpod",
        "codesandbox",
        "codepen",
        "repl.it",
        "localhost:5173",
        "localhost:3000",
        "127.0.0.1:5173",
        "127.0.0.1:3000",
    )
    MOCK_ACCESS_TOKEN: str = "webcontainer-mock-token"

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @field_validator("API_BASE_URL")
    @classmethod
    def _ensure_trailing_slash(cls, value: str) -> str:
        """Endpoint paths are joined onto the base URL, so keep the slash."""
        return value if value.endswith("/") else f"{value}/"

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when the runtime is not fully configured.

        Pydantic silently falls back to defaults when ``.env`` is missing.
        This validator logs a warning so operators know the engine is
        running with placeholder values.
        """
        _log = logging.getLogger("sessionsync.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if self.SANDBOX_MODE:
            _log.warning(
                "SANDBOX_MODE is forced on; sign-in will install a mock "
                "session and no identity provider calls will be made."
            )

        return self

    # --- Derived redirect URLs ---
    @property
    def auth_base_url(self) -> str:
        """Base URL used to build provider redirect targets."""
        return (self.AUTH_BASE_URL or self.APP_ORIGIN).rstrip("/")

    @property
    def auth_callback_url(self) -> str:
        """URL the identity provider returns to after sign-in."""
        return self.AUTH_CALLBACK_URL or f"{self.auth_base_url}/callback"

    @property
    def logout_redirect_url(self) -> str:
        """URL the identity provider returns to after sign-out."""
        return self.AUTH_LOGOUT_URL or self.auth_base_url


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Uses a check-lock-check
    pattern to avoid the lock overhead on the fast path while remaining
    thread-safe during first initialisation.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance


def reset_config() -> None:
    """Drop the cached singleton so the next ``get_config()`` re-reads the environment."""
    global _config_instance
    with _config_lock:
        _config_instance = None
