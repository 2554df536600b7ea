# src/kastrace/core/config.py
"""
Configuration schema and loading for kastrace.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Self

from pydantic import BaseModel, Field, field_validator, model_validator

from kastrace import __version__
from kastrace.contracts.enums import PageDirection, ResolvePreviousOutpoints
from kastrace.engine.throttle import ThrottleConfig

DEFAULT_API_URL = "https://api.kaspa.org"

# Page size of the upstream address endpoints
MIN_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


class ApiSettings(BaseModel):
    """Upstream REST API connection settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    base_url: str = Field(default=DEFAULT_API_URL, description="Base URL of the Kaspa REST API")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout")
    user_agent: str = Field(default=f"kastrace/{__version__}")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")


class PoolSettings(BaseModel):
    """Bounded dispatch and retry settings shared by both engines.

    Attributes:
        concurrency_limit: Maximum fetches in flight
        max_failed_tries: Retry rounds before failed work is abandoned
        poll_interval_seconds: Wait between polls when no capacity is free
        min_dispatch_delay_ms: Throttle floor
        max_dispatch_delay_ms: Throttle ceiling
        backoff_multiplier: Throttle multiplier on capacity errors
        recovery_step_ms: Throttle decrement on success
    """

    model_config = {"frozen": True, "extra": "forbid"}

    concurrency_limit: int = Field(default=4, ge=1)
    max_failed_tries: int = Field(default=3, ge=0)
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    min_dispatch_delay_ms: int = Field(default=0, ge=0)
    max_dispatch_delay_ms: int = Field(default=5000, ge=0)
    backoff_multiplier: float = Field(default=2.0, gt=1.0)
    recovery_step_ms: int = Field(default=50, ge=0)

    @model_validator(mode="after")
    def _validate_delay_invariants(self) -> Self:
        if self.min_dispatch_delay_ms > self.max_dispatch_delay_ms:
            raise ValueError(
                f"min_dispatch_delay_ms ({self.min_dispatch_delay_ms}) cannot exceed max_dispatch_delay_ms ({self.max_dispatch_delay_ms})"
            )
        return self

    def to_throttle_config(self) -> ThrottleConfig:
        """Convert to ThrottleConfig for runtime use."""
        return ThrottleConfig(
            min_dispatch_delay_ms=self.min_dispatch_delay_ms,
            max_dispatch_delay_ms=self.max_dispatch_delay_ms,
            backoff_multiplier=self.backoff_multiplier,
            recovery_step_ms=self.recovery_step_ms,
        )


class DiscoverySettings(BaseModel):
    """Address discovery traversal settings.

    Inputs only carry an address when previous outpoints are resolved, so
    the default resolution is ``light``.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    max_depth: int = Field(default=2, ge=1)
    skip_inputs: bool = False
    skip_outputs: bool = False
    transaction_limit: int = Field(default=MAX_PAGE_SIZE, ge=MIN_PAGE_SIZE, le=MAX_PAGE_SIZE)
    resolve_previous_outpoints: ResolvePreviousOutpoints = ResolvePreviousOutpoints.LIGHT
    fields: str | None = None


class HistorySettings(BaseModel):
    """Paginated history settings for both the offset and cursor flavors."""

    model_config = {"frozen": True, "extra": "forbid"}

    batch_size: int = Field(default=MAX_PAGE_SIZE, ge=MIN_PAGE_SIZE, le=MAX_PAGE_SIZE)
    wave_delay_seconds: float = Field(default=1.0, ge=0, description="Delay between waves or pages")
    single_wave_threshold: int = Field(
        default=5000,
        ge=0,
        description="Below this many transactions, size concurrency to fetch everything in one wave",
    )
    resolve_previous_outpoints: ResolvePreviousOutpoints = ResolvePreviousOutpoints.NO
    fields: str | None = None
    direction: PageDirection = PageDirection.BEFORE
    retry_base_delay_seconds: float = Field(default=1.0, gt=0)
    retry_max_delay_seconds: float = Field(default=30.0, gt=0)


class KastraceSettings(BaseModel):
    """Top-level settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    api: ApiSettings = Field(default_factory=ApiSettings)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    def with_overrides(self, section: str, **values: Any) -> KastraceSettings:
        """Return a copy with ``section`` fields replaced by non-None values.

        The result is re-validated, so CLI overrides obey the same ranges
        as file values.
        """
        updates = {k: v for k, v in values.items() if v is not None}
        if not updates:
            return self
        data = self.model_dump()
        data[section] = {**data[section], **updates}
        return KastraceSettings.model_validate(data)


def _lowercase_keys(value: Any) -> Any:
    """Recursively lowercase mapping keys.

    Dynaconf uppercases top-level keys and keeps nested env-var keys as
    written (KASTRACE_POOL__CONCURRENCY_LIMIT), while the models use
    lowercase field names.
    """
    if isinstance(value, dict):
        return {str(k).lower(): _lowercase_keys(v) for k, v in value.items()}
    return value


def load_settings(config_path: Path | None = None) -> KastraceSettings:
    """Load settings from an optional YAML file with environment overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (KASTRACE_*) - highest priority
    2. Config file
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: KASTRACE_POOL__CONCURRENCY_LIMIT for nested keys.

    Args:
        config_path: Path to YAML configuration file, or None for env only

    Returns:
        Validated KastraceSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="KASTRACE",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    return KastraceSettings(**_lowercase_keys(raw_config))
