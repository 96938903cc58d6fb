"""
Aggregate store interface and an in-memory implementation.

The scheduling core only needs two calls from persistence:
load a learner's aggregate, and save it back atomically.
"""

from __future__ import annotations

import threading
from typing import Protocol

from loguru import logger

from recall.core.errors import ConflictError
from recall.scheduling.aggregate import LearnerAggregate


class AggregateStore(Protocol):
    """Persistence collaborator used by the review processor."""

    def load_learner_aggregate(self, learner_id: str) -> LearnerAggregate | None:
        """Return the learner's aggregate, or None if the learner is unknown."""
        ...

    def save_learner_aggregate(self, learner_id: str, aggregate: LearnerAggregate) -> bool:
        """
        Persist the whole aggregate atomically; True on success.

        Saving an aggregate whose ``version`` no longer matches the stored
        one raises ConflictError. A successful save bumps ``version``.
        """
        ...


class InMemoryAggregateStore:
    """
    Dict-backed store for tests and ephemeral sessions.

    Aggregates are cloned on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._aggregates: dict[str, LearnerAggregate] = {}
        self._lock = threading.Lock()
        self.save_count = 0

    def load_learner_aggregate(self, learner_id: str) -> LearnerAggregate | None:
        with self._lock:
            aggregate = self._aggregates.get(learner_id)
            return aggregate.clone() if aggregate is not None else None

    def save_learner_aggregate(self, learner_id: str, aggregate: LearnerAggregate) -> bool:
        with self._lock:
            stored = self._aggregates.get(learner_id)
            stored_version = 0 if stored is None else stored.version
            if stored_version != aggregate.version:
                raise ConflictError(
                    f"Learner {learner_id} changed since it was loaded "
                    f"(stored version {stored_version}, loaded {aggregate.version})"
                )
            aggregate.version += 1
            self._aggregates[learner_id] = aggregate.clone()
            self.save_count += 1
        logger.debug(f"Saved aggregate for learner {learner_id} ({len(aggregate.sequence)} items)")
        return True

    def learner_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._aggregates)
