"""
Learner progress models.

ProgressRecord rows carry a `version` column used by SQLAlchemy as an
optimistic lock: an UPDATE whose version no longer matches raises
StaleDataError instead of silently overwriting a concurrent review.

Progress rows reference lessons and subjects by id without a foreign key:
removing content never removes a learner's history.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JsonType, TimestampMixin


class ProgressRecord(TimestampMixin, Base):
    """
    Spaced-repetition state for one (user, lesson) pair.

    `review_history` is a JSON list of review entries, oldest first; it is
    always replaced as a whole, never mutated in place.
    """

    __tablename__ = "progress_records"
    __table_args__ = (
        UniqueConstraint("user_id", "lesson_id"),
        Index("ix_progress_due", "user_id", "next_review_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    lesson_id: Mapped[str] = mapped_column(String(64), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="not_started", nullable=False)

    easiness_factor: Mapped[float] = mapped_column(Float, default=2.5, nullable=False)
    repetitions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    interval_days: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    next_review_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_reviewed_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    review_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JsonType, default=list, nullable=False
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<ProgressRecord {self.user_id}/{self.lesson_id} {self.status}>"


class SubjectProgress(TimestampMixin, Base):
    """Marks a subject as completed by a user."""

    __tablename__ = "subject_progress"
    __table_args__ = (UniqueConstraint("user_id", "subject_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
