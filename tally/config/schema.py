"""Pydantic models for tally.yaml validation."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from tally.config.defaults import (
    BASE_CURRENCY,
    CASH_PREFIX,
    COMMIT_TIMEOUT_SECONDS,
    DATABASE_PATH,
    OVERLAP_POLICIES,
    OVERLAP_POLICY,
    READ_TIMEOUT_SECONDS,
    SCHEDULE_DAILY_AT,
    SCHEDULE_POLL_SECONDS,
    SCHEDULER_LOCK_FILE,
    SHARE_BASES,
    SHARE_BASIS,
    TREASURY,
)

_DAILY_AT_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ---------------------------------------------------------------------------
# Aggregation Configs
# ---------------------------------------------------------------------------

class TreasuryConfig(BaseModel):
    enabled: bool = TREASURY["enabled"]
    instrument_id: str = TREASURY["instrument_id"]
    display_name: str = TREASURY["display_name"]
    par_price: float = Field(TREASURY["par_price"], gt=0)
    par_tolerance: float = Field(TREASURY["par_tolerance"], ge=0)
    asset_classes: list[str] = Field(
        default_factory=lambda: list(TREASURY["asset_classes"])
    )
    description_patterns: list[str] = Field(
        default_factory=lambda: list(TREASURY["description_patterns"])
    )
    ticker_aliases: list[str] = Field(
        default_factory=lambda: list(TREASURY["ticker_aliases"])
    )
    ticker_prefixes: list[str] = Field(
        default_factory=lambda: list(TREASURY["ticker_prefixes"])
    )


class AggregationConfig(BaseModel):
    cash_prefix: str = CASH_PREFIX
    share_basis: str = SHARE_BASIS
    drop_flat_positions: bool = False
    treasury: TreasuryConfig = Field(default_factory=TreasuryConfig)

    @field_validator("share_basis")
    @classmethod
    def known_share_basis(cls, v: str) -> str:
        if v not in SHARE_BASES:
            raise ValueError(f"share_basis must be one of {SHARE_BASES}, got {v!r}")
        return v

    @field_validator("cash_prefix")
    @classmethod
    def non_empty_prefix(cls, v: str) -> str:
        if not v:
            raise ValueError("cash_prefix must not be empty")
        return v


# ---------------------------------------------------------------------------
# Runner Config
# ---------------------------------------------------------------------------

class RunnerConfig(BaseModel):
    overlap_policy: str = OVERLAP_POLICY
    read_timeout_seconds: float | None = Field(READ_TIMEOUT_SECONDS, gt=0)
    commit_timeout_seconds: float = Field(COMMIT_TIMEOUT_SECONDS, gt=0)

    @field_validator("overlap_policy")
    @classmethod
    def known_policy(cls, v: str) -> str:
        if v not in OVERLAP_POLICIES:
            raise ValueError(
                f"overlap_policy must be one of {OVERLAP_POLICIES}, got {v!r}"
            )
        return v


# ---------------------------------------------------------------------------
# Scheduler Config
# ---------------------------------------------------------------------------

class SchedulerConfig(BaseModel):
    interval_seconds: int | None = Field(None, gt=0)
    daily_at: str | None = SCHEDULE_DAILY_AT
    poll_seconds: float = Field(SCHEDULE_POLL_SECONDS, gt=0)
    lock_file: str = SCHEDULER_LOCK_FILE

    @field_validator("daily_at")
    @classmethod
    def valid_time_of_day(cls, v: str | None) -> str | None:
        if v is not None and not _DAILY_AT_PATTERN.match(v):
            raise ValueError(f"daily_at must be HH:MM (24h), got {v!r}")
        return v

    @model_validator(mode="after")
    def one_trigger_mode(self) -> "SchedulerConfig":
        # An explicit interval takes precedence over the default daily time.
        if self.interval_seconds is not None and self.daily_at is not None:
            if "daily_at" in self.model_fields_set:
                raise ValueError("Set either interval_seconds or daily_at, not both")
            self.daily_at = None
        if self.interval_seconds is None and self.daily_at is None:
            raise ValueError("One of interval_seconds or daily_at is required")
        return self


# ---------------------------------------------------------------------------
# Database Config
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    path: str = DATABASE_PATH


# ---------------------------------------------------------------------------
# Top-Level Config
# ---------------------------------------------------------------------------

class TallyConfig(BaseModel):
    """Root configuration model for the Tally application."""

    version: int = 1
    base_currency: str = BASE_CURRENCY
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @model_validator(mode="before")
    @classmethod
    def coerce_none_to_defaults(cls, data: Any) -> Any:
        """YAML parses empty keys as None. Drop them so defaults apply."""
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @field_validator("base_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("base_currency must not be empty")
        return v
