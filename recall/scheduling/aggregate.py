"""
Learner aggregate: the unit of mutation and persistence.

One learner's items (inside their ItemSequence), review history and settings
are loaded, mutated and saved together. Reviews mutate a clone and the
original is only replaced once the store confirms the save.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from recall.core.models import LearnerSettings, ReviewRecord
from recall.scheduling.sequence import ItemSequence


@dataclass
class LearnerAggregate:
    """Everything owned by one learner."""

    learner_id: str
    sequence: ItemSequence = field(default_factory=ItemSequence)
    settings: LearnerSettings = field(default_factory=LearnerSettings)
    history: dict[str, list[ReviewRecord]] = field(default_factory=dict)
    version: int = 0  # bumped by the store on every successful save

    def history_for(self, item_id: str) -> list[ReviewRecord]:
        """Review history for an item, oldest first."""
        return list(self.history.get(item_id, ()))

    def append_review(self, item_id: str, record: ReviewRecord) -> None:
        self.history.setdefault(item_id, []).append(record)

    def clone(self) -> LearnerAggregate:
        """Independent working copy (records are immutable and shared)."""
        return LearnerAggregate(
            learner_id=self.learner_id,
            sequence=self.sequence.clone(),
            settings=self.settings.copy(),
            history={item_id: list(records) for item_id, records in self.history.items()},
            version=self.version,
        )
