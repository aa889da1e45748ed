"""Deletion Guard — Engine configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. System config: /etc/deletion-guard/config.yaml
    3. User config:   ~/.deletion-guard/config.yaml
    4. Explicit config file passed to ``Settings.load()``
    5. Environment variables prefixed with DELETION_GUARD_

Treat settings as read-only after load; derive variants with
``model_copy(update=...)``.  Call ``Settings.load()`` once at
startup and inject the instance into ``DeletionSecurityService``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class ApiConfig(BaseModel):
    """Remote operation engine connection."""

    base_url: str = "http://localhost:3001/api"
    token: str | None = Field(
        default=None,
        description="Static bearer token (CLI use). Services inject an IdentityProvider instead.",
    )
    timeout_seconds: Annotated[float, Field(gt=0, le=600)] = Field(
        default=60.0,
        description="Overall timeout applied to every call to the operation engine.",
    )
    retry_attempts: Annotated[int, Field(ge=1, le=10)] = Field(
        default=3,
        description="Total attempts for a call that fails with a transient network error.",
    )
    retry_delay_seconds: Annotated[float, Field(ge=0, le=60)] = Field(
        default=1.0,
        description="Base backoff delay; attempt N waits delay * 2**N.",
    )
    preview_cache_ttl_seconds: Annotated[float, Field(ge=0, le=3600)] = 300.0
    progress_cache_ttl_seconds: Annotated[float, Field(ge=0, le=60)] = 5.0
    supported_entity_types: list[str] = Field(
        default_factory=lambda: [
            "student",
            "teacher",
            "orchestra",
            "rehearsal",
            "theory_lesson",
            "bagrut",
        ],
    )


class CategoryLimit(BaseModel):
    max: Annotated[int, Field(ge=1)]
    window_seconds: Annotated[float, Field(gt=0)]


class RateLimitConfig(BaseModel):
    single: CategoryLimit = Field(default_factory=lambda: CategoryLimit(max=5, window_seconds=60))
    bulk: CategoryLimit = Field(default_factory=lambda: CategoryLimit(max=1, window_seconds=300))
    cleanup: CategoryLimit = Field(
        default_factory=lambda: CategoryLimit(max=1, window_seconds=3600)
    )
    failed_attempts_threshold: Annotated[int, Field(ge=1, le=100)] = 3
    lockout_seconds: Annotated[float, Field(gt=0)] = 900.0


class SuspiciousActivityConfig(BaseModel):
    window_seconds: Annotated[float, Field(gt=0)] = 600.0
    rapid_deletion_threshold: Annotated[int, Field(ge=1)] = 10
    failed_attempt_threshold: Annotated[int, Field(ge=1)] = 5
    unusual_hours_start: Annotated[int, Field(ge=0, le=23)] = 22
    unusual_hours_end: Annotated[int, Field(ge=0, le=23)] = 6
    after_hours_bulk_threshold: Annotated[int, Field(ge=1)] = Field(
        default=1,
        description="Bulk/cascade activities during unusual hours needed to flag the caller.",
    )


class TokenConfig(BaseModel):
    ttl_seconds: Annotated[float, Field(gt=0, le=3600)] = 300.0
    entropy_bytes: Annotated[int, Field(ge=16, le=128)] = 32


class VerificationConfig(BaseModel):
    session_seconds: Annotated[float, Field(gt=0)] = 1800.0
    refresh_threshold_seconds: Annotated[float, Field(ge=0)] = 300.0
    refresh_check_interval_seconds: Annotated[float, Field(gt=0)] = 60.0
    confirmation_phrase: str = Field(
        default="DELETE",
        description="Phrase the user must type to confirm a destructive operation.",
    )


class ActivityConfig(BaseModel):
    capacity: Annotated[int, Field(ge=10, le=100_000)] = 100
    device_fingerprint: str = "server-side"


class BatchConfig(BaseModel):
    progress_delay_seconds: Annotated[float, Field(ge=0, le=10)] = Field(
        default=0.5,
        description="Pause between batch items so progress reporting stays readable.",
    )


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None
    audit_file: Path | None = None


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DELETION_GUARD_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    api: ApiConfig = Field(default_factory=ApiConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    suspicious: SuspiciousActivityConfig = Field(default_factory=SuspiciousActivityConfig)
    tokens: TokenConfig = Field(default_factory=TokenConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    activity: ActivityConfig = Field(default_factory=ActivityConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_file: Path | None = None) -> "Settings":
        """Load settings from file + environment variables."""
        data: dict[str, object] = {}

        candidates = [
            Path("/etc/deletion-guard/config.yaml"),
            Path.home() / ".deletion-guard" / "config.yaml",
        ]
        if config_file:
            candidates.append(config_file)

        for path in candidates:
            if path.exists():
                import yaml

                with path.open() as f:
                    loaded = yaml.safe_load(f) or {}
                    data.update(loaded)

        return cls(**data)


# Module-level singleton, replaced by ``Settings.load()`` at startup.
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def override_settings(settings: Settings) -> None:
    """Replace the module-level singleton. Used in tests."""
    global _settings
    _settings = settings
