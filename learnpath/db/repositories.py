"""
Storage access for the engine.

Each repository hands out detached domain dataclasses and never leaks ORM
rows. Read-modify-write operations run inside one transaction, lock the row
with SELECT ... FOR UPDATE where the dialect supports it, and rely on the
version column for compare-and-swap, so two concurrent reviews of the same
(user, lesson) can never interleave.

The Protocol classes describe what the engine needs from storage; tests
substitute in-memory implementations.
"""
from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Optional, Protocol

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from learnpath.db.database import Database
from learnpath.db.models import (
    CognitiveStateRecord,
    Lesson,
    ProgressRecord,
    Subject,
    SubjectPrerequisite,
    SubjectProgress,
)
from learnpath.errors import LearnPathError, NotFound, StorageUnavailable
from learnpath.models import (
    CognitiveRecord,
    LessonNode,
    ProgressStatus,
    SessionSummary,
    SubjectNode,
)
from learnpath.srs import LessonProgress, ReviewEntry, SrsState

ProgressUpdate = Callable[[LessonProgress], LessonProgress]
CognitiveUpdate = Callable[[CognitiveRecord], CognitiveRecord]


# =============================================================================
# Interfaces
# =============================================================================


class ContentStore(Protocol):
    """Read-only view of subjects and lessons."""

    def list_subjects(self) -> list[SubjectNode]: ...

    def get_subject(self, subject_id: str) -> Optional[SubjectNode]: ...

    def list_lessons(self, subject_id: str) -> list[LessonNode]: ...

    def get_lesson(self, lesson_id: str) -> Optional[LessonNode]: ...

    def content_version(self) -> str: ...


class ProgressRepository(Protocol):
    """Per (user, lesson) progress records and per (user, subject) completion."""

    def get(self, user_id: str, lesson_id: str) -> Optional[LessonProgress]: ...

    def completed_lesson_ids(self, user_id: str) -> set[str]: ...

    def mark_completed(
        self,
        user_id: str,
        lesson: LessonNode,
        srs: Optional[SrsState],
    ) -> tuple[LessonProgress, bool]: ...

    def update(self, user_id: str, lesson_id: str, change: ProgressUpdate) -> LessonProgress: ...

    def due(self, user_id: str, now: datetime, limit: int) -> list[LessonProgress]: ...

    def recent_quality_scores(self, user_id: str, lookback: int) -> list[float]: ...

    def mark_subject_completed(self, user_id: str, subject_id: str, now: datetime) -> bool: ...


class CognitiveStateRepository(Protocol):
    """The single durable cognitive-state record per user."""

    def get(self, user_id: str) -> Optional[CognitiveRecord]: ...

    def update(self, user_id: str, change: CognitiveUpdate) -> CognitiveRecord: ...

    def stale_user_ids(self, updated_before: datetime) -> list[str]: ...


# =============================================================================
# Error translation
# =============================================================================


@contextmanager
def storage_errors(operation: str) -> Generator[None, None, None]:
    """
    Translate SQLAlchemy failures raised inside the block into StorageUnavailable.

    Place it outside `session_scope()` so the transaction is rolled back
    before the error is translated.
    """
    try:
        yield
    except LearnPathError:
        raise
    except (StaleDataError, IntegrityError) as e:
        logger.warning(f"Concurrent update conflict during {operation}: {e}")
        raise StorageUnavailable(
            f"Concurrent update conflict during {operation}; retry the request.",
            operation=operation,
        ) from e
    except SQLAlchemyError as e:
        logger.error(f"Storage failure during {operation}: {e}")
        raise StorageUnavailable(f"Storage unavailable during {operation}.", operation=operation) from e


# =============================================================================
# Row mapping
# =============================================================================


def _subject_node(row: Subject) -> SubjectNode:
    return SubjectNode(
        id=row.id,
        title=row.title,
        prerequisite_ids=tuple(p.prerequisite_id for p in row.prerequisites),
        position=row.position,
    )


def _lesson_node(row: Lesson) -> LessonNode:
    return LessonNode(
        id=row.id,
        subject_id=row.subject_id,
        title=row.title,
        position=row.position,
        is_reviewable=row.is_reviewable,
        recommended_audio_preset=row.recommended_audio_preset,
    )


def _lesson_progress(row: ProgressRecord) -> LessonProgress:
    return LessonProgress(
        user_id=row.user_id,
        lesson_id=row.lesson_id,
        subject_id=row.subject_id,
        status=ProgressStatus(row.status),
        srs=SrsState(
            easiness_factor=row.easiness_factor,
            repetitions=row.repetitions,
            interval_days=row.interval_days,
            next_review_date=row.next_review_date,
            last_reviewed_date=row.last_reviewed_date,
        ),
        review_history=tuple(ReviewEntry.from_dict(e) for e in row.review_history or []),
    )


def _write_progress(row: ProgressRecord, progress: LessonProgress) -> None:
    row.status = progress.status.value
    row.easiness_factor = progress.srs.easiness_factor
    row.repetitions = progress.srs.repetitions
    row.interval_days = progress.srs.interval_days
    row.next_review_date = progress.srs.next_review_date
    row.last_reviewed_date = progress.srs.last_reviewed_date
    # Replace, never mutate: in-place JSON changes are invisible to the ORM
    row.review_history = [e.to_dict() for e in progress.review_history]


def _cognitive_record(row: CognitiveStateRecord) -> CognitiveRecord:
    return CognitiveRecord(
        user_id=row.user_id,
        focus_score=row.focus_score,
        last_updated=row.last_updated,
        session_history=tuple(SessionSummary.from_dict(s) for s in row.session_history or []),
    )


# =============================================================================
# SQLAlchemy implementations
# =============================================================================


class SqlContentStore:
    """Subjects and lessons from the relational store."""

    def __init__(self, db: Database):
        self.db = db

    def list_subjects(self) -> list[SubjectNode]:
        """All subjects in natural stored order (position, then creation time)."""
        with storage_errors("list_subjects"), self.db.session_scope() as session:
            rows = session.scalars(
                select(Subject).order_by(Subject.position, Subject.created_at, Subject.id)
            ).all()
            return [_subject_node(row) for row in rows]

    def get_subject(self, subject_id: str) -> Optional[SubjectNode]:
        with storage_errors("get_subject"), self.db.session_scope() as session:
            row = session.get(Subject, subject_id)
            return _subject_node(row) if row else None

    def list_lessons(self, subject_id: str) -> list[LessonNode]:
        with storage_errors("list_lessons"), self.db.session_scope() as session:
            rows = session.scalars(
                select(Lesson)
                .where(Lesson.subject_id == subject_id)
                .order_by(Lesson.position, Lesson.created_at, Lesson.id)
            ).all()
            return [_lesson_node(row) for row in rows]

    def get_lesson(self, lesson_id: str) -> Optional[LessonNode]:
        with storage_errors("get_lesson"), self.db.session_scope() as session:
            row = session.get(Lesson, lesson_id)
            return _lesson_node(row) if row else None

    def content_version(self) -> str:
        """
        Cheap fingerprint of the subject graph.

        Changes whenever a subject or prerequisite edge is added, removed or
        edited, which is what keys the subject-order cache.
        """
        with storage_errors("content_version"), self.db.session_scope() as session:
            subjects = session.execute(
                select(func.count(Subject.id), func.max(Subject.updated_at))
            ).one()
            edges = session.execute(
                select(func.count(SubjectPrerequisite.id), func.max(SubjectPrerequisite.updated_at))
            ).one()
            return f"{subjects[0]}:{subjects[1]}:{edges[0]}:{edges[1]}"


class SqlProgressRepository:
    """ProgressRecord and SubjectProgress persistence."""

    def __init__(self, db: Database):
        self.db = db

    def _locked(self, session: Session, user_id: str, lesson_id: str) -> Optional[ProgressRecord]:
        return session.scalars(
            select(ProgressRecord)
            .where(ProgressRecord.user_id == user_id, ProgressRecord.lesson_id == lesson_id)
            .with_for_update()
        ).one_or_none()

    def get(self, user_id: str, lesson_id: str) -> Optional[LessonProgress]:
        with storage_errors("get_progress"), self.db.session_scope() as session:
            row = session.scalars(
                select(ProgressRecord).where(
                    ProgressRecord.user_id == user_id, ProgressRecord.lesson_id == lesson_id
                )
            ).one_or_none()
            return _lesson_progress(row) if row else None

    def completed_lesson_ids(self, user_id: str) -> set[str]:
        done = [ProgressStatus.COMPLETED.value, ProgressStatus.MASTERED.value]
        with storage_errors("completed_lesson_ids"), self.db.session_scope() as session:
            return set(
                session.scalars(
                    select(ProgressRecord.lesson_id).where(
                        ProgressRecord.user_id == user_id, ProgressRecord.status.in_(done)
                    )
                ).all()
            )

    def mark_completed(
        self,
        user_id: str,
        lesson: LessonNode,
        srs: Optional[SrsState],
    ) -> tuple[LessonProgress, bool]:
        """
        Mark a lesson completed, creating the record on first completion.

        `srs` is the initial review state, or None for a lesson that is never
        reviewed (no review date is stored for it).

        Returns:
            (progress, newly_completed)
        """
        with storage_errors("mark_completed"), self.db.session_scope() as session:
            row = self._locked(session, user_id, lesson.id)
            if row is not None and ProgressStatus(row.status).is_done:
                return _lesson_progress(row), False

            if row is None:
                row = ProgressRecord(
                    user_id=user_id,
                    lesson_id=lesson.id,
                    subject_id=lesson.subject_id,
                    review_history=[],
                )
                session.add(row)

            state = srs or SrsState()
            row.status = ProgressStatus.COMPLETED.value
            row.easiness_factor = state.easiness_factor
            row.repetitions = state.repetitions
            row.interval_days = state.interval_days
            row.next_review_date = state.next_review_date if srs else None
            row.last_reviewed_date = state.last_reviewed_date
            session.flush()
            return _lesson_progress(row), True

    def update(self, user_id: str, lesson_id: str, change: ProgressUpdate) -> LessonProgress:
        """
        Atomically apply `change` to an existing record.

        Raises:
            NotFound: no record for (user, lesson)
            StorageUnavailable: store failure or concurrent-write conflict
        """
        with storage_errors("update_progress"), self.db.session_scope() as session:
            row = self._locked(session, user_id, lesson_id)
            if row is None:
                raise NotFound(
                    f"No progress record for lesson {lesson_id}.",
                    user_id=user_id,
                    lesson_id=lesson_id,
                )
            updated = change(_lesson_progress(row))
            _write_progress(row, updated)
            session.flush()
            return _lesson_progress(row)

    def due(self, user_id: str, now: datetime, limit: int) -> list[LessonProgress]:
        with storage_errors("due_reviews"), self.db.session_scope() as session:
            rows = session.scalars(
                select(ProgressRecord)
                .where(
                    ProgressRecord.user_id == user_id,
                    ProgressRecord.next_review_date.is_not(None),
                    ProgressRecord.next_review_date <= now,
                )
                .order_by(ProgressRecord.next_review_date.asc(), ProgressRecord.id.asc())
                .limit(limit)
            ).all()
            return [_lesson_progress(row) for row in rows]

    def recent_quality_scores(self, user_id: str, lookback: int) -> list[float]:
        """Quality scores of the user's `lookback` most recent reviews, newest first."""
        with storage_errors("recent_quality_scores"), self.db.session_scope() as session:
            histories = session.scalars(
                select(ProgressRecord.review_history).where(ProgressRecord.user_id == user_id)
            ).all()
        entries = [ReviewEntry.from_dict(e) for history in histories for e in history or []]
        entries.sort(key=lambda e: e.date, reverse=True)
        return [e.quality_score for e in entries[:lookback]]

    def mark_subject_completed(self, user_id: str, subject_id: str, now: datetime) -> bool:
        """Record subject completion; False when it was already recorded."""
        with storage_errors("mark_subject_completed"), self.db.session_scope() as session:
            existing = session.scalars(
                select(SubjectProgress).where(
                    SubjectProgress.user_id == user_id, SubjectProgress.subject_id == subject_id
                )
            ).one_or_none()
            if existing is not None:
                return False
            session.add(SubjectProgress(user_id=user_id, subject_id=subject_id, completed_at=now))
            session.flush()
            return True


class SqlCognitiveStateRepository:
    """CognitiveStateRecord persistence, created lazily on first update."""

    def __init__(self, db: Database, default_focus: float = 50.0, history_limit: int = 50):
        self.db = db
        self.default_focus = default_focus
        self.history_limit = history_limit

    def _locked(self, session: Session, user_id: str) -> Optional[CognitiveStateRecord]:
        return session.scalars(
            select(CognitiveStateRecord)
            .where(CognitiveStateRecord.user_id == user_id)
            .with_for_update()
        ).one_or_none()

    def get(self, user_id: str) -> Optional[CognitiveRecord]:
        with storage_errors("get_cognitive_state"), self.db.session_scope() as session:
            row = session.get(CognitiveStateRecord, user_id)
            return _cognitive_record(row) if row else None

    def update(self, user_id: str, change: CognitiveUpdate) -> CognitiveRecord:
        """Atomically apply `change`, creating the record with defaults if needed."""
        with storage_errors("update_cognitive_state"), self.db.session_scope() as session:
            row = self._locked(session, user_id)
            if row is None:
                row = CognitiveStateRecord(
                    user_id=user_id,
                    focus_score=self.default_focus,
                    last_updated=None,
                    session_history=[],
                )
                session.add(row)
                session.flush()

            updated = change(_cognitive_record(row))
            history = updated.session_history
            if self.history_limit > 0:
                history = history[-self.history_limit:]
            row.focus_score = updated.focus_score
            row.last_updated = updated.last_updated
            row.session_history = [s.to_dict() for s in history]
            session.flush()
            return _cognitive_record(row)

    def stale_user_ids(self, updated_before: datetime) -> list[str]:
        with storage_errors("stale_user_ids"), self.db.session_scope() as session:
            return list(
                session.scalars(
                    select(CognitiveStateRecord.user_id)
                    .where(
                        CognitiveStateRecord.last_updated.is_not(None),
                        CognitiveStateRecord.last_updated < updated_before,
                    )
                    .order_by(CognitiveStateRecord.user_id)
                ).all()
            )
