"""
SQL-backed aggregate store.

Saves are a single transaction: the learner row is upserted, item rows are
merged (and rows for deleted items dropped), and review records not yet in
the table are inserted. Existing review rows are never updated.
"""

from __future__ import annotations

from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import Engine, delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from recall.core.errors import ConflictError, InvalidStateError
from recall.core.models import AlgorithmUsed, Item, LearnerSettings, ReviewRecord, parse_mode
from recall.db.database import get_engine, init_db, session_scope
from recall.db.models import ItemRow, LearnerRow, ReviewRow
from recall.scheduling.aggregate import LearnerAggregate
from recall.scheduling.sequence import ItemSequence


def _aware(moment: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored values are always UTC."""
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=UTC)


class SqlAggregateStore:
    """
    AggregateStore on top of SQLAlchemy.

    Example:
        >>> store = SqlAggregateStore(create_db_engine("sqlite:///data/recall.db"))
        >>> processor = ReviewProcessor(store)
    """

    def __init__(self, engine: Engine | None = None, create_tables: bool = True):
        self.engine = engine or get_engine()
        if create_tables:
            init_db(self.engine)

    # =========================================================================
    # Load
    # =========================================================================

    def load_learner_aggregate(self, learner_id: str) -> LearnerAggregate | None:
        with session_scope(self.engine) as session:
            learner = session.get(LearnerRow, learner_id)
            if learner is None:
                return None

            item_rows = session.scalars(
                select(ItemRow).where(ItemRow.learner_id == learner_id)
            ).all()
            review_rows = session.scalars(
                select(ReviewRow)
                .where(ReviewRow.learner_id == learner_id)
                .order_by(ReviewRow.item_id, ReviewRow.position)
            ).all()

            items = [self._row_to_item(row) for row in item_rows]
            history: dict[str, list[ReviewRecord]] = {}
            for row in review_rows:
                history.setdefault(row.item_id, []).append(self._row_to_record(row))

            sequence = ItemSequence.from_chain(items, learner.head_item_id)
            aggregate = LearnerAggregate(
                learner_id=learner_id,
                sequence=sequence,
                settings=LearnerSettings(algorithm_mode=parse_mode(learner.algorithm_mode)),
                history=history,
                version=learner.version,
            )

        logger.debug(f"Loaded learner {learner_id}: {len(items)} items, {len(review_rows)} reviews")
        return aggregate

    # =========================================================================
    # Save
    # =========================================================================

    def save_learner_aggregate(self, learner_id: str, aggregate: LearnerAggregate) -> bool:
        """
        Persist the aggregate in one transaction.

        Raises:
            ConflictError: the stored learner changed since the aggregate was loaded
        """
        try:
            aggregate.sequence.validate()
            with session_scope(self.engine) as session:
                self._save(session, learner_id, aggregate)
        except (SQLAlchemyError, InvalidStateError) as e:
            logger.error(f"Failed to save learner {learner_id}: {e}")
            return False
        aggregate.version += 1
        return True

    def _save(self, session, learner_id: str, aggregate: LearnerAggregate) -> None:
        learner = session.get(LearnerRow, learner_id)
        stored_version = 0 if learner is None else learner.version
        if stored_version != aggregate.version:
            raise ConflictError(
                f"Learner {learner_id} changed since it was loaded "
                f"(stored version {stored_version}, loaded {aggregate.version})"
            )
        if learner is None:
            learner = LearnerRow(id=learner_id)
            session.add(learner)
        learner.version = aggregate.version + 1
        learner.algorithm_mode = aggregate.settings.algorithm_mode.value
        learner.head_item_id = aggregate.sequence.head
        session.flush()

        live_ids = set(aggregate.sequence.ids())
        stored_ids = set(
            session.scalars(select(ItemRow.id).where(ItemRow.learner_id == learner_id)).all()
        )
        removed = stored_ids - live_ids
        if removed:
            session.execute(
                delete(ReviewRow).where(
                    ReviewRow.learner_id == learner_id, ReviewRow.item_id.in_(removed)
                )
            )
            session.execute(
                delete(ItemRow).where(ItemRow.learner_id == learner_id, ItemRow.id.in_(removed))
            )

        for item in aggregate.sequence:
            session.merge(self._item_to_row(learner_id, item))
        session.flush()

        stored_counts = dict(
            session.execute(
                select(ReviewRow.item_id, func.count(ReviewRow.id))
                .where(ReviewRow.learner_id == learner_id)
                .group_by(ReviewRow.item_id)
            ).all()
        )
        for item_id, records in aggregate.history.items():
            if item_id not in live_ids:
                continue
            already = stored_counts.get(item_id, 0)
            if already > len(records):
                raise InvalidStateError(
                    f"Stored history for {item_id} is longer than the aggregate's; "
                    "review records are append-only"
                )
            for position, record in enumerate(records[already:], start=already):
                session.add(self._record_to_row(learner_id, item_id, position, record))

    # =========================================================================
    # Row Mapping
    # =========================================================================

    @staticmethod
    def _item_to_row(learner_id: str, item: Item) -> ItemRow:
        return ItemRow(
            learner_id=learner_id,
            id=item.id,
            prompt=item.prompt,
            answer=item.answer,
            memory_strength=item.memory_strength,
            difficulty_rating=item.difficulty_rating,
            last_reviewed_at=item.last_reviewed_at,
            times_correct=item.times_correct,
            times_incorrect=item.times_incorrect,
            interval_days=item.interval_days,
            due_at=item.due_at,
            next_item_id=item.next_id,
        )

    @staticmethod
    def _row_to_item(row: ItemRow) -> Item:
        return Item(
            id=row.id,
            prompt=row.prompt,
            answer=row.answer,
            memory_strength=row.memory_strength,
            difficulty_rating=row.difficulty_rating,
            last_reviewed_at=_aware(row.last_reviewed_at),
            times_correct=row.times_correct,
            times_incorrect=row.times_incorrect,
            interval_days=row.interval_days,
            due_at=_aware(row.due_at),
            next_id=row.next_item_id,
        )

    @staticmethod
    def _record_to_row(
        learner_id: str, item_id: str, position: int, record: ReviewRecord
    ) -> ReviewRow:
        return ReviewRow(
            learner_id=learner_id,
            item_id=item_id,
            position=position,
            reviewed_at=record.reviewed_at,
            recalled=record.recalled,
            response_time_ms=record.response_time_ms,
            interval_used=record.interval_used,
            algorithm_used=record.algorithm_used.value,
            baseline_interval=record.baseline_interval,
            learned_interval=record.learned_interval,
        )

    @staticmethod
    def _row_to_record(row: ReviewRow) -> ReviewRecord:
        return ReviewRecord(
            reviewed_at=_aware(row.reviewed_at),
            recalled=row.recalled,
            response_time_ms=row.response_time_ms,
            interval_used=row.interval_used,
            algorithm_used=AlgorithmUsed(row.algorithm_used),
            baseline_interval=row.baseline_interval,
            learned_interval=row.learned_interval,
        )
