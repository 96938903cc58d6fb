"""
SQLAlchemy table models for learner aggregates.

One row per learner (settings + chain head), one row per item (state +
chain link), and an append-only table of review records.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    ForeignKeyConstraint,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all recall tables."""
    pass


class LearnerRow(Base):
    """A learner, its algorithm mode and the head of its item chain."""

    __tablename__ = "learners"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    algorithm_mode: Mapped[str] = mapped_column(Text, nullable=False, default="baseline")
    head_item_id: Mapped[str | None] = mapped_column(Text)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )


class ItemRow(Base):
    """Scheduling state and chain link for one item."""

    __tablename__ = "items"

    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), primary_key=True
    )
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    answer: Mapped[str] = mapped_column(Text, nullable=False, default="")

    memory_strength: Mapped[float] = mapped_column(Float, nullable=False)
    difficulty_rating: Mapped[float] = mapped_column(Float, nullable=False)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    times_correct: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    times_incorrect: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interval_days: Mapped[float | None] = mapped_column(Float)
    due_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    next_item_id: Mapped[str | None] = mapped_column(Text)  # NULL = end of chain


class ReviewRow(Base):
    """One review record. Rows are only ever inserted."""

    __tablename__ = "review_records"
    __table_args__ = (
        UniqueConstraint("learner_id", "item_id", "position", name="uq_review_position"),
        ForeignKeyConstraint(
            ["learner_id", "item_id"],
            ["items.learner_id", "items.id"],
            ondelete="CASCADE",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False)
    item_id: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # 0-based within item history

    reviewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    recalled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    interval_used: Mapped[float] = mapped_column(Float, nullable=False)
    algorithm_used: Mapped[str] = mapped_column(Text, nullable=False)
    baseline_interval: Mapped[float] = mapped_column(Float, nullable=False)
    learned_interval: Mapped[float | None] = mapped_column(Float)
