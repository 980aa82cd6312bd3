from __future__ import annotations

import os
from typing import Any, Literal, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from sessionkit.logging import get_logger

logger = get_logger(__name__)

SameSite = Literal["lax", "strict", "none"]


class CookieOptions(BaseModel):
    """Transport cookie policy handed to ``HttpContext.set_cookie``."""

    model_config = ConfigDict(frozen=True)

    name: str = "sid"
    path: str = "/"
    domain: Optional[str] = None
    http_only: bool = True
    secure: bool = False
    same_site: SameSite = "lax"
    # Overrides the session TTL as cookie max-age when set
    max_age_seconds: Optional[int] = None


class SessionPolicy(BaseModel):
    """TTL policy for sessions.

    ``renew_before_seconds`` wins over the legacy ``touch_every_seconds``;
    with neither set a rolling session is touched in its last 60 seconds.
    """

    model_config = ConfigDict(frozen=True)

    ttl_seconds: int = Field(gt=0)
    rolling: bool = False
    renew_before_seconds: Optional[int] = Field(default=None, ge=0)
    touch_every_seconds: Optional[int] = Field(default=None, ge=0)

    @property
    def touch_threshold_seconds(self) -> int:
        if self.renew_before_seconds is not None:
            return self.renew_before_seconds
        if self.touch_every_seconds is not None:
            return self.touch_every_seconds
        return 60


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process-level settings for wiring stores, locks and cookie policy."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_socket_timeout: float = env_field(5.0, "REDIS_SOCKET_TIMEOUT")
    session_key_prefix: str = env_field("sessionkit:sess:", "SESSIONKIT_SESSION_PREFIX")
    lock_key_prefix: str = env_field("sessionkit:lock:", "SESSIONKIT_LOCK_PREFIX")
    lock_acquire_timeout_ms: int = env_field(
        5000,
        "SESSIONKIT_LOCK_ACQUIRE_TIMEOUT_MS",
        description="How long a refresh waits for the per-session lock",
    )
    lock_retry_delay_ms: int = env_field(50, "SESSIONKIT_LOCK_RETRY_DELAY_MS")
    session_ttl_seconds: int = env_field(24 * 60 * 60, "SESSIONKIT_TTL_SECONDS")
    session_rolling: bool = env_field(False, "SESSIONKIT_ROLLING")
    session_renew_before_seconds: int | None = env_field(
        None, "SESSIONKIT_RENEW_BEFORE_SECONDS"
    )
    session_touch_every_seconds: int | None = env_field(
        None,
        "SESSIONKIT_TOUCH_EVERY_SECONDS",
        description="Legacy name; SESSIONKIT_RENEW_BEFORE_SECONDS takes priority",
    )
    cookie_name: str = env_field("sid", "SESSIONKIT_COOKIE_NAME")
    cookie_path: str = env_field("/", "SESSIONKIT_COOKIE_PATH")
    cookie_domain: str | None = env_field(None, "SESSIONKIT_COOKIE_DOMAIN")
    cookie_secure: bool = env_field(False, "SESSIONKIT_COOKIE_SECURE")
    cookie_http_only: bool = env_field(True, "SESSIONKIT_COOKIE_HTTP_ONLY")
    cookie_same_site: str = env_field("lax", "SESSIONKIT_COOKIE_SAME_SITE")
    cookie_max_age_seconds: int | None = env_field(None, "SESSIONKIT_COOKIE_MAX_AGE_SECONDS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("session_ttl_seconds", "lock_acquire_timeout_ms")
    @classmethod
    def _ensure_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("lock_retry_delay_ms")
    @classmethod
    def _ensure_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("cookie_same_site")
    @classmethod
    def _validate_same_site(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in {"lax", "strict", "none"}:
            raise ValueError(f"unsupported SameSite value: {value}")
        return normalized

    @field_validator(
        "session_renew_before_seconds",
        "session_touch_every_seconds",
        "cookie_domain",
        "cookie_max_age_seconds",
        mode="before",
    )
    @classmethod
    def _blank_as_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def session_policy(self) -> SessionPolicy:
        return SessionPolicy(
            ttl_seconds=self.session_ttl_seconds,
            rolling=self.session_rolling,
            renew_before_seconds=self.session_renew_before_seconds,
            touch_every_seconds=self.session_touch_every_seconds,
        )

    def cookie_options(self) -> CookieOptions:
        return CookieOptions(
            name=self.cookie_name,
            path=self.cookie_path,
            domain=self.cookie_domain,
            http_only=self.cookie_http_only,
            secure=self.cookie_secure,
            same_site=self.cookie_same_site,
            max_age_seconds=self.cookie_max_age_seconds,
        )


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.debug("settings_loaded", redis_url=_settings_cache.redis_url)
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
