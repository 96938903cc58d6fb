"""
Unit tests for FeatureExtractor.
"""

from datetime import UTC, datetime, timedelta, timezone

import numpy as np
import pytest

from recall.core.errors import InvalidStateError
from recall.core.models import AlgorithmUsed, Item, ReviewRecord
from recall.scheduling.features import (
    FEATURE_COUNT,
    FEATURE_NAMES,
    FeatureExtractor,
    as_dict,
    consecutive_correct,
    time_of_day_fraction,
)


def record(at: datetime, recalled: bool = True, response_ms: int = 2000) -> ReviewRecord:
    return ReviewRecord(
        reviewed_at=at,
        recalled=recalled,
        response_time_ms=response_ms,
        interval_used=1.0,
        algorithm_used=AlgorithmUsed.BASELINE,
        baseline_interval=1.0,
    )


@pytest.fixture
def extractor(clock):
    return FeatureExtractor(clock=clock)


class TestVectorShape:
    def test_layout_has_eight_named_slots(self):
        assert FEATURE_COUNT == 8
        assert FEATURE_NAMES[0] == "memory_strength"
        assert FEATURE_NAMES[-1] == "normalized_time_of_day"

    def test_new_item_vector_is_finite(self, extractor):
        vector = extractor.extract(Item(id="new"), [])

        assert vector.shape == (FEATURE_COUNT,)
        assert vector.dtype == np.float64
        assert np.all(np.isfinite(vector))

    def test_new_item_history_slots_are_zero(self, extractor):
        features = as_dict(extractor.extract(Item(id="new"), []))

        assert features["time_since_last_review_days"] == 0.0
        assert features["success_rate"] == 0.0
        assert features["average_response_time_ms"] == 0.0
        assert features["total_reviews"] == 0.0
        assert features["consecutive_correct"] == 0.0

    @pytest.mark.parametrize("seed", range(10))
    def test_random_histories_always_finite(self, extractor, t0, seed):
        rng = np.random.default_rng(seed)
        count = int(rng.integers(0, 30))
        history = [
            record(
                t0 - timedelta(days=float(rng.uniform(0, 100))),
                recalled=bool(rng.integers(0, 2)),
                response_ms=int(rng.integers(0, 120000)),
            )
            for _ in range(count)
        ]
        item = Item(
            id="fuzz",
            memory_strength=float(rng.uniform(0, 5)),
            difficulty_rating=float(rng.uniform(0, 1)),
            last_reviewed_at=t0 - timedelta(days=float(rng.uniform(0, 50))),
            times_correct=int(rng.integers(0, 20)),
            times_incorrect=int(rng.integers(0, 20)),
        )

        vector = extractor.extract(item, history)

        assert len(vector) == FEATURE_COUNT
        assert np.all(np.isfinite(vector))


class TestFeatureValues:
    def test_reviewed_item(self, extractor, sample_item, t0):
        history = [
            record(t0 - timedelta(days=10), recalled=False, response_ms=6000),
            record(t0 - timedelta(days=6), recalled=True, response_ms=3000),
            record(t0 - timedelta(days=3), recalled=True, response_ms=1500),
        ]

        features = as_dict(extractor.extract(sample_item, history))

        assert features["memory_strength"] == 2.0
        assert features["difficulty_rating"] == 0.3
        assert features["time_since_last_review_days"] == pytest.approx(3.0)
        assert features["success_rate"] == 1.0  # counters: 2 correct, 0 incorrect
        assert features["average_response_time_ms"] == pytest.approx(3500.0)
        assert features["total_reviews"] == 3.0
        assert features["consecutive_correct"] == 2.0
        assert features["normalized_time_of_day"] == pytest.approx(9 / 24)

    def test_explicit_now_overrides_clock(self, extractor, t0):
        item = Item(id="a", last_reviewed_at=t0)
        later = t0 + timedelta(days=2, hours=6)

        features = as_dict(extractor.extract(item, [], now=later))

        assert features["time_since_last_review_days"] == pytest.approx(2.25)
        assert features["normalized_time_of_day"] == pytest.approx(15 / 24)

    def test_pinned_clock_is_reproducible(self, extractor, sample_item):
        first = extractor.extract(sample_item, [])
        second = extractor.extract(sample_item, [])
        np.testing.assert_array_equal(first, second)


class TestInvalidInput:
    def test_missing_item_rejected(self, extractor):
        with pytest.raises(InvalidStateError):
            extractor.extract(None, [])

    def test_future_record_rejected(self, extractor, t0):
        with pytest.raises(InvalidStateError, match="future"):
            extractor.extract(Item(id="a"), [record(t0 + timedelta(minutes=1))])

    def test_non_finite_state_rejected(self, extractor):
        with pytest.raises(InvalidStateError, match="Non-finite"):
            extractor.extract(Item(id="a", memory_strength=float("nan")), [])


class TestHelpers:
    def test_consecutive_correct_counts_trailing_run(self, t0):
        history = [record(t0, True), record(t0, False), record(t0, True), record(t0, True)]
        assert consecutive_correct(history) == 2

    def test_consecutive_correct_zero_after_lapse(self, t0):
        assert consecutive_correct([record(t0, True), record(t0, False)]) == 0

    def test_time_of_day_converts_to_utc(self):
        # 03:00 at UTC+3 is midnight UTC
        moment = datetime(2024, 3, 1, 3, 0, tzinfo=timezone(timedelta(hours=3)))
        assert time_of_day_fraction(moment) == 0.0

    def test_time_of_day_in_unit_interval(self):
        moment = datetime(2024, 3, 1, 23, 59, 59, tzinfo=UTC)
        assert 0.0 <= time_of_day_fraction(moment) < 1.0
