"""
Baseline Predictor - deterministic SM-2 style interval update.

Memory strength plays the role of SM-2's repetition count and easiness
factor combined:

- Correct recall: strength grows by an amount that shrinks with difficulty,
  and the interval grows multiplicatively from the previous one (or from
  the seed interval on a first review), scaled by the new strength.
- Incorrect recall: strength collapses toward zero and the interval resets
  to a short fixed value.
- Difficulty drifts up quickly on lapses and down slowly on successes.

Same inputs always produce the same outputs: there is no randomness and no
clock access.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from loguru import logger

from recall.core.errors import InvalidStateError
from recall.core.models import (
    MAX_DIFFICULTY,
    MAX_STRENGTH,
    MIN_DIFFICULTY,
    MIN_INTERVAL_DAYS,
    MIN_STRENGTH,
    Item,
    clamp,
)

# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class BaselineConfig:
    """Tunable constants for the baseline algorithm."""

    seed_interval: float = 1.0  # Days, used as "previous interval" on first review
    reset_interval: float = 1.0  # Days after a lapse
    max_interval: float = 365.0

    strength_gain: float = 1.0  # Gain at difficulty 0
    difficulty_damping: float = 0.6  # Fraction of gain lost at difficulty 1
    growth_per_strength: float = 0.5  # Interval multiplier slope
    lapse_retention: float = 0.3  # Fraction of strength kept after a lapse

    difficulty_up: float = 0.1
    difficulty_down: float = 0.02
    expected_response_ms: int = 15000

    @classmethod
    def from_settings(cls, settings) -> BaselineConfig:
        """Build from the application Settings object."""
        return cls(**settings.get_baseline_config())


@dataclass(frozen=True)
class BaselineResult:
    """Output of one baseline computation."""

    interval: float
    strength: float
    difficulty: float


# =============================================================================
# Predictor
# =============================================================================


class BaselinePredictor:
    """
    Formula-based interval/strength update with no learned parameters.

    Example:
        >>> predictor = BaselinePredictor()
        >>> result = predictor.compute(item, recalled=True, response_time_ms=1500)
        >>> result.interval  # days until next review
    """

    def __init__(self, config: BaselineConfig | None = None):
        self.config = config or BaselineConfig()

    def compute(self, item: Item, recalled: bool, response_time_ms: int) -> BaselineResult:
        """
        Compute the next interval, strength and difficulty for a review.

        Args:
            item: Item state before the review
            recalled: Whether the learner answered correctly
            response_time_ms: Time taken to answer

        Returns:
            BaselineResult with all values clamped to their valid ranges
        """
        if response_time_ms < 0:
            raise InvalidStateError(f"response_time_ms must be non-negative, got {response_time_ms}")

        cfg = self.config
        strength = clamp(item.memory_strength, MIN_STRENGTH, MAX_STRENGTH)
        difficulty = clamp(item.difficulty_rating, MIN_DIFFICULTY, MAX_DIFFICULTY)

        if recalled:
            gain = cfg.strength_gain * (1.0 - difficulty * cfg.difficulty_damping)
            new_strength = clamp(strength + gain, MIN_STRENGTH, MAX_STRENGTH)

            previous = self._previous_interval(item)
            interval = previous * (1.0 + cfg.growth_per_strength * new_strength)

            # Slow correct answers lower difficulty at half speed
            step = cfg.difficulty_down
            if response_time_ms > 2 * cfg.expected_response_ms:
                step /= 2
            new_difficulty = difficulty - step
        else:
            new_strength = clamp(strength * cfg.lapse_retention, MIN_STRENGTH, MAX_STRENGTH)
            interval = cfg.reset_interval
            new_difficulty = difficulty + cfg.difficulty_up

        result = BaselineResult(
            interval=clamp(interval, MIN_INTERVAL_DAYS, cfg.max_interval),
            strength=new_strength,
            difficulty=clamp(new_difficulty, MIN_DIFFICULTY, MAX_DIFFICULTY),
        )

        logger.debug(
            f"Baseline for {item.id}: recalled={recalled}, "
            f"strength {strength:.2f}->{result.strength:.2f}, "
            f"difficulty {difficulty:.2f}->{result.difficulty:.2f}, "
            f"interval={result.interval:.2f}d"
        )
        return result

    def _previous_interval(self, item: Item) -> float:
        previous = item.interval_days
        if previous is None or not math.isfinite(previous) or previous <= 0:
            return self.config.seed_interval
        return previous
