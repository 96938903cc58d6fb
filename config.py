"""
Configuration settings for recall-scheduler.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///data/recall.db",
        description="SQLAlchemy connection string for the aggregate store",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Minimum level written to stderr",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path (rotated at 10 MB)",
    )

    # ========================================
    # Baseline Algorithm (SM-2 style)
    # ========================================
    baseline_seed_interval: float = Field(
        default=1.0,
        description="Days used as the previous interval on a first review",
    )
    baseline_reset_interval: float = Field(
        default=1.0,
        description="Days until the next review after a lapse",
    )
    baseline_strength_gain: float = Field(
        default=1.0,
        description="Strength gained on a correct recall at difficulty 0",
    )
    baseline_difficulty_damping: float = Field(
        default=0.6,
        description="Fraction of the strength gain lost at difficulty 1",
    )
    baseline_growth_per_strength: float = Field(
        default=0.5,
        description="Interval multiplier slope per unit of strength",
    )
    baseline_lapse_retention: float = Field(
        default=0.3,
        description="Fraction of strength kept after a lapse",
    )
    baseline_difficulty_up: float = Field(
        default=0.1,
        description="Difficulty increase on a lapse",
    )
    baseline_difficulty_down: float = Field(
        default=0.02,
        description="Difficulty decrease on a correct recall",
    )
    expected_response_ms: int = Field(
        default=15000,
        description="Response time above twice this slows the difficulty decrease",
    )
    max_interval_days: float = Field(
        default=365.0,
        description="Upper bound for every predicted interval",
    )

    # ========================================
    # Learned Predictor
    # ========================================
    predictor_model_path: str | None = Field(
        default=None,
        description="JSON model document loaded at startup (learned/comparison modes)",
    )
    predictor_timeout_seconds: float | None = Field(
        default=0.5,
        description="Time limit for one learned prediction; None disables the limit",
    )

    # ========================================
    # Learners
    # ========================================
    default_algorithm_mode: Literal["baseline", "learned", "comparison"] = Field(
        default="baseline",
        description="Algorithm mode assigned to newly created learners",
    )

    def get_baseline_config(self) -> dict[str, Any]:
        """Get baseline algorithm parameters as a dictionary."""
        return {
            "seed_interval": self.baseline_seed_interval,
            "reset_interval": self.baseline_reset_interval,
            "max_interval": self.max_interval_days,
            "strength_gain": self.baseline_strength_gain,
            "difficulty_damping": self.baseline_difficulty_damping,
            "growth_per_strength": self.baseline_growth_per_strength,
            "lapse_retention": self.baseline_lapse_retention,
            "difficulty_up": self.baseline_difficulty_up,
            "difficulty_down": self.baseline_difficulty_down,
            "expected_response_ms": self.expected_response_ms,
        }

    def get_predictor_config(self) -> dict[str, Any]:
        """Get learned predictor settings as a dictionary."""
        return {
            "model_path": self.predictor_model_path,
            "max_interval": self.max_interval_days,
            "timeout_seconds": self.predictor_timeout_seconds,
        }

    def has_model_configured(self) -> bool:
        """Check if a learned model document is configured."""
        return bool(self.predictor_model_path)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
