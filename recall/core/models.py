"""
Core scheduling models.

Plain dataclasses shared by the sequence, predictors, orchestrator and
persistence layers:
- Item: one learnable unit plus its scheduling state and chain link
- ReviewRecord: append-only review history entry
- LearnerSettings: per-learner algorithm selection
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum

from recall.core.errors import InvalidStateError

# Valid ranges shared by every predictor
MIN_STRENGTH = 0.0
MAX_STRENGTH = 5.0
MIN_DIFFICULTY = 0.0
MAX_DIFFICULTY = 1.0
MIN_INTERVAL_DAYS = 1.0

DEFAULT_STRENGTH = 0.0
DEFAULT_DIFFICULTY = 0.3


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


class AlgorithmMode(str, Enum):
    """Which predictor governs a learner's intervals."""

    BASELINE = "baseline"
    LEARNED = "learned"
    COMPARISON = "comparison"  # A/B: both run, one applied at random


class AlgorithmUsed(str, Enum):
    """Predictor whose interval was actually applied to a review."""

    BASELINE = "baseline"
    LEARNED = "learned"


@dataclass
class Item:
    """A learnable unit and its scheduling state."""

    id: str
    prompt: str = ""
    answer: str = ""

    memory_strength: float = DEFAULT_STRENGTH  # 0.0 - 5.0
    difficulty_rating: float = DEFAULT_DIFFICULTY  # 0.0 (easy) - 1.0 (hard)
    last_reviewed_at: datetime | None = None
    times_correct: int = 0
    times_incorrect: int = 0

    interval_days: float | None = None  # Last applied interval
    due_at: datetime = field(default_factory=utc_now)

    # Key of the next item in the learner's chain; None marks the end
    next_id: str | None = None

    @property
    def total_reviews(self) -> int:
        return self.times_correct + self.times_incorrect

    @property
    def is_new(self) -> bool:
        """True if the item has never been reviewed."""
        return self.last_reviewed_at is None

    def copy(self) -> Item:
        """Return an independent copy of this item."""
        return replace(self)


@dataclass(frozen=True)
class ReviewRecord:
    """
    One entry in an item's review history.

    Both predictions are kept regardless of which one was applied so the
    baseline and learned predictors can be compared after the fact.
    """

    reviewed_at: datetime
    recalled: bool
    response_time_ms: int
    interval_used: float
    algorithm_used: AlgorithmUsed
    baseline_interval: float
    learned_interval: float | None = None

    def __post_init__(self) -> None:
        if self.response_time_ms < 0:
            raise InvalidStateError(
                f"response_time_ms must be non-negative, got {self.response_time_ms}"
            )
        if not math.isfinite(self.interval_used) or self.interval_used <= 0:
            raise InvalidStateError(f"interval_used must be positive, got {self.interval_used}")

        expected = (
            self.learned_interval
            if self.algorithm_used == AlgorithmUsed.LEARNED
            else self.baseline_interval
        )
        if expected is None or not math.isclose(self.interval_used, expected):
            raise InvalidStateError(
                f"interval_used={self.interval_used} does not match the "
                f"{self.algorithm_used.value} prediction ({expected})"
            )


@dataclass
class LearnerSettings:
    """Per-learner settings read on every review."""

    algorithm_mode: AlgorithmMode = AlgorithmMode.BASELINE

    def copy(self) -> LearnerSettings:
        return replace(self)


def parse_mode(value: AlgorithmMode | str) -> AlgorithmMode:
    """Coerce a mode name into an AlgorithmMode."""
    if isinstance(value, AlgorithmMode):
        return value
    try:
        return AlgorithmMode(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(m.value for m in AlgorithmMode)
        raise InvalidStateError(f"Unknown algorithm mode '{value}' (expected one of: {valid})")
