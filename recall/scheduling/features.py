"""
Feature Extractor - fixed-size numeric inputs for learned predictors.

The vector layout is part of the model contract; trained models depend on
this exact order:

    0  memory_strength               item strength, 0-5
    1  difficulty_rating             item difficulty, 0-1
    2  time_since_last_review_days   0 for never-reviewed items
    3  success_rate                  correct / (correct + incorrect), 0 if none
    4  average_response_time_ms      mean over history, 0 if empty
    5  total_reviews                 history length
    6  consecutive_correct           trailing correct streak
    7  normalized_time_of_day        fraction of the UTC day at extraction time

Everything except the last slot is a pure function of the item and its
history. Callers that need full reproducibility pin the clock.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime

import numpy as np

from recall.core.errors import InvalidStateError
from recall.core.models import Item, ReviewRecord, utc_now

FEATURE_NAMES: tuple[str, ...] = (
    "memory_strength",
    "difficulty_rating",
    "time_since_last_review_days",
    "success_rate",
    "average_response_time_ms",
    "total_reviews",
    "consecutive_correct",
    "normalized_time_of_day",
)

FEATURE_COUNT = len(FEATURE_NAMES)

SECONDS_PER_DAY = 86400.0


class FeatureExtractor:
    """Builds the 8-slot feature vector from an item and its history."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    def extract(
        self,
        item: Item | None,
        history: Sequence[ReviewRecord],
        now: datetime | None = None,
    ) -> np.ndarray:
        """
        Extract features for one item.

        Args:
            item: Item state to describe
            history: The item's review records, oldest first
            now: Reference time (defaults to the extractor's clock)

        Returns:
            float64 array of shape (8,)

        Raises:
            InvalidStateError: item is None, a record is dated in the future,
                or a feature is not finite
        """
        if item is None:
            raise InvalidStateError("Cannot extract features without an item")

        now = now or self.clock()
        for record in history:
            if record.reviewed_at > now:
                raise InvalidStateError(
                    f"Review record for {item.id} is dated in the future "
                    f"({record.reviewed_at.isoformat()} > {now.isoformat()})"
                )

        if item.last_reviewed_at is None:
            days_since = 0.0
        else:
            days_since = max(0.0, (now - item.last_reviewed_at).total_seconds() / SECONDS_PER_DAY)

        total = item.times_correct + item.times_incorrect
        success_rate = item.times_correct / total if total > 0 else 0.0

        if history:
            avg_response = float(np.mean([r.response_time_ms for r in history]))
        else:
            avg_response = 0.0

        vector = np.array(
            [
                item.memory_strength,
                item.difficulty_rating,
                days_since,
                success_rate,
                avg_response,
                float(len(history)),
                float(consecutive_correct(history)),
                time_of_day_fraction(now),
            ],
            dtype=np.float64,
        )

        if not np.all(np.isfinite(vector)):
            bad = [name for name, value in zip(FEATURE_NAMES, vector) if not np.isfinite(value)]
            raise InvalidStateError(f"Non-finite features for {item.id}: {bad}")

        return vector


def consecutive_correct(history: Sequence[ReviewRecord]) -> int:
    """Length of the trailing run of correct recalls."""
    streak = 0
    for record in reversed(history):
        if not record.recalled:
            break
        streak += 1
    return streak


def time_of_day_fraction(moment: datetime) -> float:
    """Seconds since UTC midnight as a fraction of the day, in [0, 1)."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    seconds = moment.hour * 3600 + moment.minute * 60 + moment.second + moment.microsecond / 1e6
    return seconds / SECONDS_PER_DAY


def as_dict(vector: np.ndarray) -> dict[str, float]:
    """Label a feature vector for logging and debugging."""
    return {name: float(value) for name, value in zip(FEATURE_NAMES, vector)}
