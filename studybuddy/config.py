"""
Application settings (Pydantic Settings).

Every value can be overridden with a ``STUDYBUDDY_``-prefixed environment
variable or a ``.env`` file in the working directory.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulingPolicy(BaseModel):
    """Tunable constants shared by the validator, detector and balancer."""

    model_config = ConfigDict(frozen=True)

    buffer_minutes: int = Field(default=15, ge=0)
    earliest_hour: int = Field(default=9, ge=0, le=23)
    latest_hour: int = Field(default=21, ge=1, le=24)
    min_duration_minutes: int = Field(default=30, ge=30, le=480)
    max_duration_minutes: int = Field(default=480, ge=30, le=480)
    auto_assign_target: int = Field(default=3, ge=1)
    max_assignments_per_user: int = Field(default=3, ge=1)
    upcoming_limit: int = Field(default=5, ge=1)
    default_range_days: int = Field(default=7, ge=1)
    max_range_days: int = Field(default=90, ge=1)
    # datetime.weekday() numbering: Monday is 0
    weekend_days: frozenset[int] = frozenset({5, 6})

    @model_validator(mode="after")
    def _check_ranges(self) -> SchedulingPolicy:
        if self.earliest_hour >= self.latest_hour:
            raise ValueError("earliest_hour must be before latest_hour")
        if self.min_duration_minutes > self.max_duration_minutes:
            raise ValueError("min_duration_minutes must not exceed max_duration_minutes")
        if self.default_range_days > self.max_range_days:
            raise ValueError("default_range_days must not exceed max_range_days")
        return self


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STUDYBUDDY_",
        env_file=".env",
        extra="ignore",
    )

    buffer_minutes: int = 15
    earliest_hour: int = 9
    latest_hour: int = 21
    min_duration_minutes: int = 30
    max_duration_minutes: int = 480
    auto_assign_target: int = 3
    max_assignments_per_user: int = 3
    upcoming_limit: int = 5
    default_range_days: int = 7
    max_range_days: int = 90
    # Fixed seed for reproducible auto-assignment; unset in production.
    balancer_seed: int | None = None
    log_level: str = "INFO"

    def scheduling_policy(self) -> SchedulingPolicy:
        return SchedulingPolicy(
            buffer_minutes=self.buffer_minutes,
            earliest_hour=self.earliest_hour,
            latest_hour=self.latest_hour,
            min_duration_minutes=self.min_duration_minutes,
            max_duration_minutes=self.max_duration_minutes,
            auto_assign_target=self.auto_assign_target,
            max_assignments_per_user=self.max_assignments_per_user,
            upcoming_limit=self.upcoming_limit,
            default_range_days=self.default_range_days,
            max_range_days=self.max_range_days,
        )


settings = Settings()
