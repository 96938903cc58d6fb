"""
Review Processor - entry point for answering, peeking and configuring.

A submission runs as one unit under the learner's lock:

1. Load the learner aggregate (cached after first load)
2. Check the item exists and is the current head
3. Grade the answer against the stored answer
4. Extract features and resolve the interval through the orchestrator
5. Apply strength, difficulty, counters and interval to a working copy,
   append the review record, advance the sequence
6. Save the working copy; swap it in only if the save succeeds

Any error before the swap leaves the stored aggregate exactly as it was, so
a retried submission is safe and at most one review is recorded per
successful call. Each save carries the version it was loaded at; when
another writer got there first the save raises ConflictError and the stale
cache entry is dropped.
"""

from __future__ import annotations

import threading
import weakref
from collections import OrderedDict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

import numpy as np
from loguru import logger

from recall.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
)
from recall.core.models import (
    MIN_INTERVAL_DAYS,
    AlgorithmMode,
    AlgorithmUsed,
    Item,
    LearnerSettings,
    ReviewRecord,
    parse_mode,
    utc_now,
)
from recall.scheduling.aggregate import LearnerAggregate
from recall.scheduling.features import FeatureExtractor
from recall.scheduling.orchestrator import AlgorithmOrchestrator

if TYPE_CHECKING:
    from recall.db.store import AggregateStore

DEFAULT_CACHE_SIZE = 256


@dataclass(frozen=True)
class ReviewOutcome:
    """What the caller gets back from a submission."""

    item_id: str
    correct: bool
    correct_answer: str
    next_interval_days: float
    algorithm_used: AlgorithmUsed
    feedback: str
    next_due: datetime
    baseline_interval: float
    learned_interval: float | None = None


class LearnerLocks:
    """
    One mutex per learner; different learners never contend.

    Entries are weakly held and disappear once no caller is using them, so
    lookups for unknown learners leave nothing behind.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._guard = threading.Lock()

    def lock_for(self, learner_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(learner_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[learner_id] = lock
            return lock

    @contextmanager
    def hold(self, learner_id: str) -> Iterator[None]:
        with self.lock_for(learner_id):
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def normalize_answer(text: str) -> str:
    """Case-insensitive, whitespace-collapsed form used for grading."""
    return " ".join(str(text).split()).casefold()


def answers_match(given: str, expected: str) -> bool:
    return normalize_answer(given) == normalize_answer(expected)


class ReviewProcessor:
    """
    Drives reviews for any number of learners against an aggregate store.

    Example:
        >>> processor = ReviewProcessor(InMemoryAggregateStore())
        >>> processor.create_learner("ada")
        >>> item = processor.add_item("ada", "capital of France?", "Paris")
        >>> outcome = processor.submit_answer("ada", item.id, "paris", 1800)
        >>> outcome.next_interval_days
    """

    def __init__(
        self,
        store: AggregateStore,
        orchestrator: AlgorithmOrchestrator | None = None,
        extractor: FeatureExtractor | None = None,
        clock: Callable[[], datetime] = utc_now,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ):
        self.store = store
        self.clock = clock
        self.extractor = extractor or FeatureExtractor(clock=clock)
        self.orchestrator = orchestrator or AlgorithmOrchestrator(extractor=self.extractor)
        self.cache_size = cache_size
        self._locks = LearnerLocks()
        self._aggregates: OrderedDict[str, LearnerAggregate] = OrderedDict()
        self._cache_guard = threading.Lock()

    # =========================================================================
    # Reviews
    # =========================================================================

    def submit_answer(
        self,
        learner_id: str,
        item_id: str,
        answer: str,
        response_time_ms: int,
    ) -> ReviewOutcome:
        """
        Score an answer for the learner's due item and reschedule it.

        Raises:
            NotFoundError: unknown learner or item
            ConflictError: the item is not the learner's current head, or another
                writer changed the learner since it was loaded
            InvalidStateError: negative response time or malformed history
            PersistenceError: the store failed to save; nothing was applied
        """
        with self._locks.hold(learner_id):
            current = self._aggregate(learner_id)

            if item_id not in current.sequence:
                raise NotFoundError(f"Item {item_id} not found for learner {learner_id}")
            if current.sequence.head != item_id:
                raise ConflictError(
                    f"Item {item_id} is not due; learner {learner_id} must answer "
                    f"{current.sequence.head} first"
                )
            if response_time_ms < 0:
                raise InvalidStateError(
                    f"response_time_ms must be non-negative, got {response_time_ms}"
                )

            now = self.clock()
            working = current.clone()
            item = working.sequence.get(item_id)
            history = working.history_for(item_id)
            recalled = answers_match(answer, item.answer)

            features = self._features(item, history, recalled, response_time_ms, now)
            resolution = self.orchestrator.resolve(
                item,
                history,
                working.settings,
                recalled,
                response_time_ms,
                features=features,
            )

            record = ReviewRecord(
                reviewed_at=now,
                recalled=recalled,
                response_time_ms=response_time_ms,
                interval_used=resolution.applied_interval,
                algorithm_used=resolution.algorithm_used,
                baseline_interval=resolution.baseline_interval,
                learned_interval=resolution.learned_interval,
            )

            item.memory_strength = resolution.strength
            item.difficulty_rating = resolution.difficulty
            item.last_reviewed_at = now
            item.interval_days = resolution.applied_interval
            if recalled:
                item.times_correct += 1
            else:
                item.times_incorrect += 1

            working.append_review(item_id, record)
            working.sequence.advance(item_id, resolution.applied_interval, reviewed_at=now)
            next_due = item.due_at

            self._commit(learner_id, working)

        logger.info(
            f"Review {learner_id}/{item_id}: correct={recalled}, "
            f"interval={resolution.applied_interval:.2f}d via {resolution.algorithm_used.value} "
            f"(baseline={resolution.baseline_interval:.2f}, learned={resolution.learned_interval})"
        )

        return ReviewOutcome(
            item_id=item_id,
            correct=recalled,
            correct_answer=item.answer,
            next_interval_days=resolution.applied_interval,
            algorithm_used=resolution.algorithm_used,
            feedback=self._feedback(recalled, item.answer, resolution.applied_interval),
            next_due=next_due,
            baseline_interval=resolution.baseline_interval,
            learned_interval=resolution.learned_interval,
        )

    def peek_due(self, learner_id: str) -> Item | None:
        """The learner's next due item (a copy), or None when nothing is left."""
        with self._locks.hold(learner_id):
            item = self._aggregate(learner_id).sequence.peek_due()
            return item.copy() if item is not None else None

    def due_count(self, learner_id: str, now: datetime | None = None) -> int:
        """Number of items due at or before ``now``."""
        with self._locks.hold(learner_id):
            sequence = self._aggregate(learner_id).sequence
            return len(sequence.due_items(now or self.clock()))

    def history(self, learner_id: str, item_id: str) -> list[ReviewRecord]:
        """Review records for an item, oldest first."""
        with self._locks.hold(learner_id):
            aggregate = self._aggregate(learner_id)
            if item_id not in aggregate.sequence:
                raise NotFoundError(f"Item {item_id} not found for learner {learner_id}")
            return aggregate.history_for(item_id)

    def items(self, learner_id: str) -> list[Item]:
        """Copies of the learner's items in review order."""
        with self._locks.hold(learner_id):
            return [item.copy() for item in self._aggregate(learner_id).sequence]

    # =========================================================================
    # Learner and Item Maintenance
    # =========================================================================

    def create_learner(
        self,
        learner_id: str,
        mode: AlgorithmMode | str = AlgorithmMode.BASELINE,
    ) -> LearnerSettings:
        """
        Register a new learner with an empty sequence.

        Raises:
            ConflictError: the learner already exists
        """
        settings = LearnerSettings(algorithm_mode=parse_mode(mode))
        with self._locks.hold(learner_id):
            if (
                self._cached(learner_id) is not None
                or self.store.load_learner_aggregate(learner_id) is not None
            ):
                raise ConflictError(f"Learner {learner_id} already exists")
            self._commit(learner_id, LearnerAggregate(learner_id=learner_id, settings=settings))

        logger.info(f"Created learner {learner_id} (mode={settings.algorithm_mode.value})")
        return settings.copy()

    def set_algorithm_mode(self, learner_id: str, mode: AlgorithmMode | str) -> LearnerSettings:
        """Change which predictor governs the learner's future reviews."""
        new_mode = parse_mode(mode)
        with self._locks.hold(learner_id):
            working = self._aggregate(learner_id).clone()
            previous = working.settings.algorithm_mode
            working.settings.algorithm_mode = new_mode
            self._commit(learner_id, working)

        logger.info(f"Learner {learner_id} mode: {previous.value} -> {new_mode.value}")
        return working.settings.copy()

    def get_settings(self, learner_id: str) -> LearnerSettings:
        with self._locks.hold(learner_id):
            return self._aggregate(learner_id).settings.copy()

    def add_item(
        self,
        learner_id: str,
        prompt: str,
        answer: str,
        item_id: str | None = None,
    ) -> Item:
        """
        Add a new, never-reviewed item to the learner's sequence.

        Raises:
            ConflictError: an item with this id already exists
        """
        with self._locks.hold(learner_id):
            working = self._aggregate(learner_id).clone()
            item = Item(
                id=item_id or uuid4().hex,
                prompt=prompt,
                answer=answer,
                due_at=self.clock(),
            )
            working.sequence.insert(item)
            self._commit(learner_id, working)

        logger.debug(f"Added item {item.id} for learner {learner_id}")
        return item.copy()

    def remove_item(self, learner_id: str, item_id: str) -> None:
        """
        Delete an item and its review history, relinking its neighbours.

        Raises:
            NotFoundError: the item does not exist
        """
        with self._locks.hold(learner_id):
            working = self._aggregate(learner_id).clone()
            working.sequence.remove(item_id)
            working.history.pop(item_id, None)
            self._commit(learner_id, working)

        logger.debug(f"Removed item {item_id} for learner {learner_id}")

    def forget(self, learner_id: str) -> None:
        """Drop the cached aggregate so the next call reloads from the store."""
        with self._locks.hold(learner_id):
            self._evict(learner_id)

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _aggregate(self, learner_id: str) -> LearnerAggregate:
        """Cached aggregate for the learner; caller holds the learner lock."""
        aggregate = self._cached(learner_id)
        if aggregate is None:
            aggregate = self.store.load_learner_aggregate(learner_id)
            if aggregate is None:
                raise NotFoundError(f"Learner {learner_id} not found")
            self._remember(learner_id, aggregate)
        return aggregate

    def _cached(self, learner_id: str) -> LearnerAggregate | None:
        with self._cache_guard:
            aggregate = self._aggregates.get(learner_id)
            if aggregate is not None:
                self._aggregates.move_to_end(learner_id)
            return aggregate

    def _remember(self, learner_id: str, aggregate: LearnerAggregate) -> None:
        """Cache the aggregate, evicting the least recently used beyond cache_size."""
        with self._cache_guard:
            self._aggregates[learner_id] = aggregate
            self._aggregates.move_to_end(learner_id)
            while len(self._aggregates) > self.cache_size:
                evicted, _ = self._aggregates.popitem(last=False)
                logger.debug(f"Evicted cached aggregate for learner {evicted}")

    def _evict(self, learner_id: str) -> None:
        with self._cache_guard:
            self._aggregates.pop(learner_id, None)

    def _commit(self, learner_id: str, working: LearnerAggregate) -> None:
        """
        Save the working copy and make it current only on success.

        A failed save drops the cached aggregate, so the next call starts
        from what the store actually holds.
        """
        try:
            saved = self.store.save_learner_aggregate(learner_id, working)
        except ConflictError as e:
            self._evict(learner_id)
            logger.warning(f"Aggregate for {learner_id} was stale: {e}")
            raise
        except Exception as e:  # Store is an external collaborator; normalize its failures
            self._evict(learner_id)
            logger.error(f"Saving aggregate for {learner_id} raised: {e}")
            raise PersistenceError(f"Failed to save learner {learner_id}: {e}") from e

        if not saved:
            self._evict(learner_id)
            logger.error(f"Store refused aggregate for {learner_id}")
            raise PersistenceError(f"Store refused to save learner {learner_id}")

        self._remember(learner_id, working)

    def _features(
        self,
        item: Item,
        history: list[ReviewRecord],
        recalled: bool,
        response_time_ms: int,
        now: datetime,
    ) -> np.ndarray:
        """
        Features describing the item with the current answer folded in.

        Counters and history include the answer being scored; strength,
        difficulty and time since last review still reflect the state
        before it.
        """
        provisional = item.copy()
        if recalled:
            provisional.times_correct += 1
        else:
            provisional.times_incorrect += 1

        # Interval fields are placeholders; the extractor only reads timing and outcome
        pending = ReviewRecord(
            reviewed_at=now,
            recalled=recalled,
            response_time_ms=response_time_ms,
            interval_used=MIN_INTERVAL_DAYS,
            algorithm_used=AlgorithmUsed.BASELINE,
            baseline_interval=MIN_INTERVAL_DAYS,
        )
        return self.extractor.extract(provisional, [*history, pending], now=now)

    @staticmethod
    def _feedback(recalled: bool, correct_answer: str, interval: float) -> str:
        when = "tomorrow" if interval < 1.5 else f"in {interval:.1f} days"
        if recalled:
            return f"Correct! Next review {when}."
        return f"Expected: {correct_answer}. Next review {when}."
