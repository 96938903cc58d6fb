"""
Integration Tests for the SQL aggregate store.

Runs the review processor against a throwaway SQLite database:
1. Learners, items and chain links survive a reload
2. Review records are append-only
3. Removing an item removes its rows
4. Stale writers get a conflict instead of overwriting
"""

import pytest
from sqlalchemy import func, select

from recall.core.errors import ConflictError, NotFoundError, PersistenceError
from recall.core.models import AlgorithmMode, AlgorithmUsed
from recall.db.database import create_db_engine, session_scope
from recall.db.models import ItemRow, LearnerRow, ReviewRow
from recall.db.sql_store import SqlAggregateStore
from recall.scheduling.review_processor import ReviewProcessor

pytestmark = pytest.mark.integration


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'db' / 'recall.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SqlAggregateStore(engine)


@pytest.fixture
def sql_processor(store, clock):
    processor = ReviewProcessor(store, clock=clock)
    processor.create_learner("ada", mode="comparison")
    for item_id, prompt, answer in [
        ("fr", "capital of France?", "Paris"),
        ("it", "capital of Italy?", "Rome"),
        ("es", "capital of Spain?", "Madrid"),
    ]:
        processor.add_item("ada", prompt, answer, item_id=item_id)
    return processor


def count(engine, model) -> int:
    with session_scope(engine) as session:
        return session.scalar(select(func.count()).select_from(model))


class TestRoundTrip:
    def test_unknown_learner_loads_none(self, store):
        assert store.load_learner_aggregate("nobody") is None

    def test_reload_preserves_chain_and_state(self, sql_processor, store, clock):
        sql_processor.submit_answer("ada", "fr", "Paris", 1500)
        sql_processor.submit_answer("ada", "it", "Milan", 4000)

        fresh = ReviewProcessor(store, clock=clock)
        items = fresh.items("ada")

        assert [item.id for item in items] == [item.id for item in sql_processor.items("ada")]
        assert fresh.peek_due("ada").id == "es"
        assert fresh.get_settings("ada").algorithm_mode == AlgorithmMode.COMPARISON

        fr = next(item for item in items if item.id == "fr")
        assert fr.times_correct == 1
        assert fr.last_reviewed_at == clock.now
        assert fr.due_at.tzinfo is not None

    def test_reload_preserves_history(self, sql_processor, store, clock):
        outcome = sql_processor.submit_answer("ada", "fr", "Paris", 1500)

        [record] = ReviewProcessor(store, clock=clock).history("ada", "fr")

        assert record.reviewed_at == clock.now
        assert record.recalled is True
        assert record.response_time_ms == 1500
        assert record.interval_used == outcome.next_interval_days
        # No learned model installed, so comparison mode fell back
        assert record.algorithm_used == AlgorithmUsed.BASELINE
        assert record.learned_interval is None

    def test_stored_chain_validates(self, sql_processor, store):
        sql_processor.submit_answer("ada", "fr", "Paris", 1500)
        aggregate = store.load_learner_aggregate("ada")
        aggregate.sequence.validate()
        assert len(aggregate.sequence) == 3


class TestAppendOnlyHistory:
    def test_reviews_accumulate(self, sql_processor, engine, clock):
        sql_processor.submit_answer("ada", "fr", "Paris", 1500)
        clock.advance(days=2)
        sql_processor.submit_answer("ada", "it", "Rome", 1500)
        sql_processor.submit_answer("ada", "es", "Madrid", 1500)
        sql_processor.submit_answer("ada", "fr", "Paris", 1500)

        assert count(engine, ReviewRow) == 4
        with session_scope(engine) as session:
            positions = session.scalars(
                select(ReviewRow.position).where(ReviewRow.item_id == "fr").order_by(ReviewRow.position)
            ).all()
        assert positions == [0, 1]

    def test_shortened_history_refused(self, sql_processor, store):
        sql_processor.submit_answer("ada", "fr", "Paris", 1500)
        aggregate = store.load_learner_aggregate("ada")
        aggregate.history["fr"] = []

        assert store.save_learner_aggregate("ada", aggregate) is False
        assert len(store.load_learner_aggregate("ada").history_for("fr")) == 1


class TestRemoval:
    def test_remove_item_deletes_rows(self, sql_processor, store, engine, clock):
        sql_processor.submit_answer("ada", "fr", "Paris", 1500)
        sql_processor.remove_item("ada", "fr")

        assert count(engine, ItemRow) == 2
        assert count(engine, ReviewRow) == 0

        fresh = ReviewProcessor(store, clock=clock)
        assert [item.id for item in fresh.items("ada")] == ["it", "es"]
        with pytest.raises(NotFoundError):
            fresh.history("ada", "fr")


class TestFailedSave:
    def test_broken_chain_not_saved(self, sql_processor, store, engine):
        aggregate = store.load_learner_aggregate("ada")
        aggregate.sequence.get("es").next_id = "fr"  # introduces a cycle

        assert store.save_learner_aggregate("ada", aggregate) is False
        assert count(engine, LearnerRow) == 1
        store.load_learner_aggregate("ada").sequence.validate()

    def test_processor_surfaces_refused_save(self, clock, engine):
        class RefusingSqlStore(SqlAggregateStore):
            def save_learner_aggregate(self, learner_id, aggregate):
                return False

        processor = ReviewProcessor(RefusingSqlStore(engine), clock=clock)
        with pytest.raises(PersistenceError):
            processor.create_learner("bob")


class TestStaleWriters:
    def test_version_advances_per_save(self, sql_processor, store):
        before = store.load_learner_aggregate("ada").version
        sql_processor.submit_answer("ada", "fr", "Paris", 1500)

        assert store.load_learner_aggregate("ada").version == before + 1

    def test_stale_aggregate_conflicts(self, sql_processor, store, engine):
        stale = store.load_learner_aggregate("ada")
        sql_processor.submit_answer("ada", "fr", "Paris", 1500)

        stale.settings.algorithm_mode = AlgorithmMode.LEARNED
        with pytest.raises(ConflictError):
            store.save_learner_aggregate("ada", stale)

        assert count(engine, ReviewRow) == 1
        assert store.load_learner_aggregate("ada").settings.algorithm_mode == AlgorithmMode.COMPARISON

    def test_second_processor_recovers_after_conflict(self, sql_processor, store, clock):
        other = ReviewProcessor(store, clock=clock)
        assert other.peek_due("ada").id == "fr"
        sql_processor.submit_answer("ada", "fr", "Paris", 1500)

        with pytest.raises(ConflictError):
            other.submit_answer("ada", "fr", "Paris", 1500)

        assert other.peek_due("ada").id == "it"
        other.submit_answer("ada", "it", "Rome", 1500)
        assert len(store.load_learner_aggregate("ada").history_for("fr")) == 1
