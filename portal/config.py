"""
Application Configuration.

Pydantic Settings model for the SchoolGate credential and session core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import SecretStr, model_validator


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Supabase (optional remote credential store) ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # --- Local store ---
    SQLITE_PATH: str = "schoolgate_local.db"

    # --- Logging ---
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    # --- Credential policy ---
    BCRYPT_ROUNDS: int = 10
    TEMP_PASSWORD_LENGTH: int = 8
    MIN_PASSWORD_LENGTH: int = 6
    ISSUE_MAX_ATTEMPTS: int = 1000

    # --- Legacy admin alias (email-form login kept for old bookmarks) ---
    LEGACY_ADMIN_EMAIL: str = "admin@asashs.edu.gh"
    LEGACY_ADMIN_ID: str = "ADMIN001"

    # --- Session lifecycle ---
    SESSION_MAX_AGE_HOURS: float = 24.0
    # ``None`` reproduces the legacy unbounded admin session.
    ADMIN_SESSION_MAX_AGE_HOURS: Optional[float] = 24.0
    REVALIDATE_ON_RESTORE: bool = True
    STORE_TIMEOUT_S: float = 10.0

    # --- Persisted session encryption ---
    # Empty means ``~/.schoolgate_session_salt``.
    SESSION_SALT_PATH: str = ""
    SESSION_KDF_ITERATIONS: int = 600_000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is empty.

        Pydantic silently falls back to defaults when ``.env`` is missing.
        This validator logs a warning so operators know the app is running
        with placeholder values.
        """
        _log = logging.getLogger("portal.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.SUPABASE_URL:
            _log.warning(
                "SUPABASE_URL is empty; the local SQLite store is the "
                "only credential store."
            )

        return self

    @model_validator(mode="after")
    def _check_password_policy(self) -> "AppConfig":
        """Refuse a temporary password shorter than the rotation minimum."""
        if self.TEMP_PASSWORD_LENGTH < self.MIN_PASSWORD_LENGTH:
            raise ValueError(
                "TEMP_PASSWORD_LENGTH must be at least MIN_PASSWORD_LENGTH "
                f"({self.MIN_PASSWORD_LENGTH})."
            )
        if not 4 <= self.BCRYPT_ROUNDS <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self

    def session_max_age_ms(self, is_admin: bool) -> Optional[int]:
        """Return the persisted-session validity window in milliseconds.

        ``None`` means the slot never expires.
        """
        hours: Optional[float] = (
            self.ADMIN_SESSION_MAX_AGE_HOURS if is_admin else self.SESSION_MAX_AGE_HOURS
        )
        if hours is None:
            return None
        return int(hours * 60 * 60 * 1000)


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

    Prefer direct constructor injection of ``AppConfig``; this factory
    serves the logger and the CLI entry point.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
