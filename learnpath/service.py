"""
Learning service: the operations exposed to the HTTP and CLI layers.

- next_lesson: recommendation (read-only)
- submit_review: SM-2 update of one progress record
- due_reviews: oldest-due-first review queue
- complete_lesson / complete_subject: completion bookkeeping reported back
  to the caller (awarding XP is the caller's business)
- recent_performance: average recent review quality

`build_services` wires the SQL repositories and engine components together.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from loguru import logger

from learnpath.adaptive import PathRecommender, RecommendationResult
from learnpath.cognitive import CognitiveStateTracker
from learnpath.config import Settings, get_settings
from learnpath.db.database import Database, get_database
from learnpath.db.repositories import (
    ContentStore,
    ProgressRepository,
    SqlCognitiveStateRepository,
    SqlContentStore,
    SqlProgressRepository,
)
from learnpath.errors import InvalidInput, NotFound
from learnpath.graph import SubjectGraph, SubjectOrderCache
from learnpath.models import Clock, utcnow
from learnpath.srs import LessonProgress, SM2Config, SrsScheduler, validate_quality


@dataclass(frozen=True)
class LessonCompletion:
    progress: LessonProgress
    newly_completed: bool

    def to_dict(self) -> dict[str, Any]:
        return {"newly_completed": self.newly_completed, "progress": self.progress.to_dict()}


@dataclass(frozen=True)
class SubjectCompletion:
    user_id: str
    subject_id: str
    newly_completed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "subject_id": self.subject_id,
            "newly_completed": self.newly_completed,
        }


@dataclass(frozen=True)
class RecentPerformance:
    average_quality: Optional[float]
    reviews_considered: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "average_quality": self.average_quality,
            "reviews_considered": self.reviews_considered,
        }


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidInput(f"{name} must be a positive integer.", **{name: value})
    return value


class LearningService:
    """Per-user learning operations over the content and progress stores."""

    def __init__(
        self,
        content: ContentStore,
        progress: ProgressRepository,
        scheduler: SrsScheduler,
        recommender: PathRecommender,
        clock: Clock = utcnow,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.content = content
        self.progress = progress
        self.scheduler = scheduler
        self.recommender = recommender
        self._clock = clock
        self.history_limit = settings.srs_review_history_limit
        self.due_default_limit = settings.srs_due_default_limit
        self.due_max_limit = settings.srs_due_max_limit

    def next_lesson(self, user_id: str, now: datetime | None = None) -> RecommendationResult:
        return self.recommender.suggest_next(user_id, now or self._clock())

    def submit_review(
        self,
        user_id: str,
        lesson_id: str,
        quality_score: Any,
        now: datetime | None = None,
    ) -> LessonProgress:
        """
        Apply one review to a (user, lesson) record.

        Raises:
            InvalidInput: quality outside [0, 5] or lesson not reviewable
            NotFound: no progress record for (user, lesson)
            StorageUnavailable: the update could not be committed
        """
        quality = validate_quality(quality_score)
        now = now or self._clock()

        lesson = self.content.get_lesson(lesson_id)
        if lesson is not None and not lesson.is_reviewable:
            raise InvalidInput(f"Lesson {lesson_id} is not reviewable.", lesson_id=lesson_id)

        def review(current: LessonProgress) -> LessonProgress:
            state = self.scheduler.compute_next(current.srs, quality, now)
            status = self.scheduler.next_status(current.status, state)
            entry = self.scheduler.review_entry(state, quality)
            return current.with_review(state, status, entry, self.history_limit)

        updated = self.progress.update(user_id, lesson_id, review)
        logger.info(
            f"Review q={quality:g} for {user_id}/{lesson_id}: interval {updated.srs.interval_days}d, "
            f"EF {updated.srs.easiness_factor:.2f}, status {updated.status.value}"
        )
        return updated

    def due_reviews(
        self,
        user_id: str,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[LessonProgress]:
        """
        Records due at `now`, oldest first, at most `limit`.

        Raises:
            InvalidInput: limit not a positive integer, or above the configured max
        """
        limit = self.due_default_limit if limit is None else _positive_int(limit, "limit")
        if limit > self.due_max_limit:
            raise InvalidInput(
                f"limit must be at most {self.due_max_limit}.",
                limit=limit,
                max_limit=self.due_max_limit,
            )
        items = self.progress.due(user_id, now or self._clock(), limit)
        logger.debug(f"{len(items)} review(s) due for user {user_id}")
        return items

    def complete_lesson(
        self,
        user_id: str,
        lesson_id: str,
        now: datetime | None = None,
    ) -> LessonCompletion:
        """
        Mark a lesson completed.

        Reviewable lessons start their review schedule (due the next calendar
        day); other lessons are only marked completed.

        Raises:
            NotFound: unknown lesson
        """
        lesson = self.content.get_lesson(lesson_id)
        if lesson is None:
            raise NotFound(f"Lesson not found: {lesson_id}", lesson_id=lesson_id)
        now = now or self._clock()

        initial = self.scheduler.initial_state(now) if lesson.is_reviewable else None
        progress, newly = self.progress.mark_completed(user_id, lesson, initial)
        if newly:
            logger.info(f"User {user_id} completed lesson {lesson_id}")
        else:
            logger.info(f"Lesson {lesson_id} already completed by user {user_id}")
        return LessonCompletion(progress=progress, newly_completed=newly)

    def complete_subject(
        self,
        user_id: str,
        subject_id: str,
        now: datetime | None = None,
    ) -> SubjectCompletion:
        """
        Record that a user finished every lesson of a subject.

        Raises:
            NotFound: unknown subject, or a subject without lessons
            InvalidInput: some lessons are not completed yet
        """
        subject = self.content.get_subject(subject_id)
        if subject is None:
            raise NotFound(f"Subject not found: {subject_id}", subject_id=subject_id)
        lessons = self.content.list_lessons(subject_id)
        if not lessons:
            raise NotFound(f"No lessons found for subject {subject_id}", subject_id=subject_id)

        completed = self.progress.completed_lesson_ids(user_id)
        remaining = [lesson.id for lesson in lessons if lesson.id not in completed]
        if remaining:
            raise InvalidInput(
                "Not all lessons in this subject are completed.",
                subject_id=subject_id,
                remaining=remaining,
            )

        newly = self.progress.mark_subject_completed(user_id, subject_id, now or self._clock())
        if newly:
            logger.info(f"User {user_id} completed subject {subject_id}")
        return SubjectCompletion(user_id=user_id, subject_id=subject_id, newly_completed=newly)

    def recent_performance(self, user_id: str, lookback: int = 10) -> RecentPerformance:
        lookback = _positive_int(lookback, "lookback")
        scores = self.progress.recent_quality_scores(user_id, lookback)
        if not scores:
            return RecentPerformance(average_quality=None, reviews_considered=0)
        return RecentPerformance(
            average_quality=sum(scores) / len(scores), reviews_considered=len(scores)
        )

    def subject_graph(self) -> SubjectGraph:
        """Current prerequisite graph, for inspection."""
        return SubjectGraph(self.content.list_subjects())


@dataclass
class Services:
    """Wired engine components sharing one Database."""
    db: Database
    content: SqlContentStore
    progress: SqlProgressRepository
    cognitive: SqlCognitiveStateRepository
    scheduler: SrsScheduler
    tracker: CognitiveStateTracker
    order_cache: SubjectOrderCache
    recommender: PathRecommender
    learning: LearningService


def build_services(
    db: Database | None = None,
    settings: Settings | None = None,
    clock: Clock = utcnow,
) -> Services:
    """Construct the SQL-backed components."""
    settings = settings or get_settings()
    db = db or get_database()

    content = SqlContentStore(db)
    progress = SqlProgressRepository(db)
    cognitive = SqlCognitiveStateRepository(
        db,
        default_focus=settings.cognitive_default_focus,
        history_limit=settings.cognitive_session_history_limit,
    )
    scheduler = SrsScheduler(SM2Config.from_settings(settings), clock=clock)
    tracker = CognitiveStateTracker(
        cognitive,
        clock=clock,
        default_focus=settings.cognitive_default_focus,
        decay_half_life_hours=settings.cognitive_decay_half_life_hours,
        session_capacity=settings.cognitive_active_session_capacity,
        session_ttl_seconds=settings.cognitive_active_session_ttl_seconds,
    )
    order_cache = SubjectOrderCache(ttl_seconds=settings.subject_order_cache_ttl_seconds)
    recommender = PathRecommender(
        content,
        progress,
        tracker,
        order_cache=order_cache,
        read_scope=db.session_scope,
        clock=clock,
        low_threshold=settings.focus_low_threshold,
        high_threshold=settings.focus_high_threshold,
        fallback_scan_limit=settings.fallback_scan_limit,
    )
    learning = LearningService(content, progress, scheduler, recommender, clock=clock, settings=settings)
    return Services(
        db=db,
        content=content,
        progress=progress,
        cognitive=cognitive,
        scheduler=scheduler,
        tracker=tracker,
        order_cache=order_cache,
        recommender=recommender,
        learning=learning,
    )
