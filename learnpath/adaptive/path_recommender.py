"""
Path Recommender.

Picks the next lesson for a user:
- Orders subjects by their prerequisite graph (topological sort)
- Skips lessons the user has already completed
- Attaches a rationale chosen from the user's focus band

Falls back to a plain scan of subjects in stored order when the graph has a
cycle or when the ordered path fails for any other reason. Only a failure of
the fallback itself is reported to the caller.
"""
from __future__ import annotations

from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from loguru import logger

from learnpath.cognitive import CognitiveStateTracker
from learnpath.config import get_settings
from learnpath.db.repositories import ContentStore, ProgressRepository
from learnpath.errors import LearnPathError, StorageUnavailable
from learnpath.graph import CycleDetected, OrderResult, SubjectGraph, SubjectOrderCache
from learnpath.models import (
    Clock,
    CognitiveSnapshot,
    LessonNode,
    SubjectNode,
    utcnow,
)

ReadScope = Callable[[], AbstractContextManager]


# =============================================================================
# Rationale
# =============================================================================


class FocusBand(str, Enum):
    """Coarse classification of a focus score."""
    UNKNOWN = "unknown"
    LOW = "low"
    NEUTRAL = "neutral"
    HIGH = "high"


BASE_RATIONALE = "Next lesson in calculated learning path."
FALLBACK_RATIONALE = (
    "System suggestion: fallback path (degraded mode) due to a dependency cycle or error."
)
NO_SUBJECTS_RATIONALE = "No subjects available."
ALL_COMPLETED_RATIONALE = "All available lessons completed!"
SCAN_LIMIT_RATIONALE = "Fallback scan limit reached (degraded mode); no lesson could be suggested."

# band -> (prefix, suffix) around the base rationale
RATIONALE_TABLE: dict[FocusBand, tuple[str, str]] = {
    FocusBand.UNKNOWN: ("", " (First steps - adapt as you go!)"),
    FocusBand.LOW: ("Performance suggests easing in. ", ""),
    FocusBand.HIGH: ("Strong performance! ", ""),
    FocusBand.NEUTRAL: ("", " (Steady progress.)"),
}


def focus_band(
    snapshot: Optional[CognitiveSnapshot],
    low_threshold: float = 25.0,
    high_threshold: float = 80.0,
) -> FocusBand:
    """UNKNOWN without a stored score, otherwise LOW / NEUTRAL / HIGH."""
    if snapshot is None or not snapshot.has_history:
        return FocusBand.UNKNOWN
    score = snapshot.focus_score
    if score < low_threshold:
        return FocusBand.LOW
    if score > high_threshold:
        return FocusBand.HIGH
    return FocusBand.NEUTRAL


def build_rationale(
    band: FocusBand,
    audio_preset: Optional[str] = None,
    base: str = BASE_RATIONALE,
) -> str:
    prefix, suffix = RATIONALE_TABLE[band]
    rationale = f"{prefix}{base}{suffix}"
    if audio_preset:
        rationale += f" Recommended audio: {audio_preset}."
    return rationale


# =============================================================================
# Result
# =============================================================================


class RecommendationStatus(str, Enum):
    LESSON = "lesson"
    ALL_COMPLETED = "all_completed"
    NO_SUBJECTS = "no_subjects"
    SCAN_LIMIT = "scan_limit"


@dataclass(frozen=True)
class RecommendationResult:
    """
    Outcome of `PathRecommender.suggest_next`.

    `degraded` is True when the result came from the fallback path.
    """
    status: RecommendationStatus
    rationale: str
    subject_id: Optional[str] = None
    subject_title: Optional[str] = None
    lesson_id: Optional[str] = None
    lesson_title: Optional[str] = None
    recommended_audio_preset: Optional[str] = None
    degraded: bool = False
    focus_score: Optional[float] = None

    @property
    def all_completed(self) -> bool:
        return self.status in (RecommendationStatus.ALL_COMPLETED, RecommendationStatus.NO_SUBJECTS)

    @classmethod
    def for_lesson(
        cls,
        subject: SubjectNode,
        lesson: LessonNode,
        rationale: str,
        degraded: bool = False,
        focus_score: Optional[float] = None,
    ) -> RecommendationResult:
        return cls(
            status=RecommendationStatus.LESSON,
            rationale=rationale,
            subject_id=subject.id,
            subject_title=subject.title,
            lesson_id=lesson.id,
            lesson_title=lesson.title,
            recommended_audio_preset=lesson.recommended_audio_preset,
            degraded=degraded,
            focus_score=focus_score,
        )

    def to_dict(self) -> dict[str, Any]:
        if self.status is not RecommendationStatus.LESSON:
            return {
                "all_completed": self.all_completed,
                "status": self.status.value,
                "rationale": self.rationale,
                "degraded": self.degraded,
            }
        return {
            "all_completed": False,
            "status": self.status.value,
            "subject_id": self.subject_id,
            "subject_title": self.subject_title,
            "lesson_id": self.lesson_id,
            "lesson_title": self.lesson_title,
            "rationale": self.rationale,
            "recommended_audio_preset": self.recommended_audio_preset,
            "degraded": self.degraded,
            "focus_score": self.focus_score,
        }


# =============================================================================
# Recommender
# =============================================================================


class PathRecommender:
    """
    Compose subject ordering, completion state and cognitive state into a
    single next-lesson suggestion.

    `read_scope` wraps each attempt so that every read of one attempt sees
    the same snapshot (the SQL wiring passes `Database.session_scope`).
    """

    def __init__(
        self,
        content: ContentStore,
        progress: ProgressRepository,
        tracker: CognitiveStateTracker,
        order_cache: SubjectOrderCache | None = None,
        read_scope: ReadScope = nullcontext,
        clock: Clock = utcnow,
        low_threshold: float | None = None,
        high_threshold: float | None = None,
        fallback_scan_limit: int | None = None,
    ):
        settings = get_settings()
        self.content = content
        self.progress = progress
        self.tracker = tracker
        self.order_cache = order_cache
        self._read_scope = read_scope
        self._clock = clock
        self.low_threshold = settings.focus_low_threshold if low_threshold is None else low_threshold
        self.high_threshold = (
            settings.focus_high_threshold if high_threshold is None else high_threshold
        )
        self.fallback_scan_limit = (
            settings.fallback_scan_limit if fallback_scan_limit is None else fallback_scan_limit
        )

    def suggest_next(self, user_id: str, now: datetime | None = None) -> RecommendationResult:
        """
        Suggest the next lesson for a user. Read-only.

        Raises:
            StorageUnavailable: both the ordered path and the fallback failed
        """
        now = now or self._clock()
        try:
            with self._read_scope():
                return self._suggest_ordered(user_id, now)
        except Exception as e:  # Intentionally broad - any failure gets a fallback attempt
            logger.exception(f"Ordered recommendation failed for user {user_id}: {e}")

        try:
            with self._read_scope():
                subjects = self.content.list_subjects()
                completed = self.progress.completed_lesson_ids(user_id)
                return self._suggest_fallback(user_id, subjects, completed)
        except Exception as fallback_error:
            logger.error(f"Fallback recommendation also failed for user {user_id}: {fallback_error}")
            raise StorageUnavailable(
                "Could not compute a recommendation.", user_id=user_id
            ) from fallback_error

    # ------------------------------------------------------------------
    # Ordered path
    # ------------------------------------------------------------------

    def _order(self, subjects: Sequence[SubjectNode], graph: SubjectGraph) -> OrderResult:
        if self.order_cache is None:
            return graph.topological_order()
        return self.order_cache.get_or_compute(self.content.content_version(), subjects)

    def _snapshot(self, user_id: str, now: datetime) -> CognitiveSnapshot:
        try:
            return self.tracker.current_state(user_id, now)
        except LearnPathError as e:
            # Advisory signal only; recommend without it
            logger.warning(f"Cognitive state unavailable for user {user_id}: {e.message}")
            return CognitiveSnapshot(user_id=user_id, focus_score=None)

    def _suggest_ordered(self, user_id: str, now: datetime) -> RecommendationResult:
        subjects = self.content.list_subjects()
        if not subjects:
            logger.info("No subjects available for recommendation")
            return RecommendationResult(
                status=RecommendationStatus.NO_SUBJECTS, rationale=NO_SUBJECTS_RATIONALE
            )

        completed = self.progress.completed_lesson_ids(user_id)

        graph = SubjectGraph(subjects)
        cycle = graph.find_cycle()
        if cycle:
            logger.warning(
                f"Prerequisite cycle {' -> '.join(cycle)}; using fallback path for user {user_id}"
            )
            return self._suggest_fallback(user_id, subjects, completed)

        order = self._order(subjects, graph)
        if isinstance(order, CycleDetected):
            return self._suggest_fallback(user_id, subjects, completed)

        snapshot = self._snapshot(user_id, now)
        band = focus_band(snapshot, self.low_threshold, self.high_threshold)

        for subject_id in order.sequence:
            subject = graph.get(subject_id)
            lessons = self.content.list_lessons(subject_id)
            if not lessons:
                logger.debug(f"Subject {subject_id} has no lessons; skipping")
                continue
            for lesson in lessons:
                if lesson.id in completed:
                    continue
                logger.info(f"Suggesting lesson {lesson.id} ({subject_id}) to user {user_id}")
                return RecommendationResult.for_lesson(
                    subject,
                    lesson,
                    build_rationale(band, lesson.recommended_audio_preset),
                    focus_score=snapshot.focus_score,
                )

        logger.info(f"User {user_id} has completed all available lessons")
        return RecommendationResult(
            status=RecommendationStatus.ALL_COMPLETED, rationale=ALL_COMPLETED_RATIONALE
        )

    # ------------------------------------------------------------------
    # Fallback path
    # ------------------------------------------------------------------

    def _suggest_fallback(
        self,
        user_id: str,
        subjects: Sequence[SubjectNode],
        completed: set[str],
    ) -> RecommendationResult:
        """First incomplete lesson in stored subject order, ignoring prerequisites."""
        if not subjects:
            return RecommendationResult(
                status=RecommendationStatus.NO_SUBJECTS,
                rationale=NO_SUBJECTS_RATIONALE,
                degraded=True,
            )

        scanned = 0
        for subject in subjects:
            for lesson in self.content.list_lessons(subject.id):
                scanned += 1
                if scanned > self.fallback_scan_limit:
                    logger.warning(
                        f"Fallback scan for user {user_id} stopped after "
                        f"{self.fallback_scan_limit} lessons"
                    )
                    return RecommendationResult(
                        status=RecommendationStatus.SCAN_LIMIT,
                        rationale=SCAN_LIMIT_RATIONALE,
                        degraded=True,
                    )
                if lesson.id not in completed:
                    logger.warning(
                        f"Fallback path suggesting lesson {lesson.id} in subject "
                        f"'{subject.title}' to user {user_id}"
                    )
                    return RecommendationResult.for_lesson(
                        subject, lesson, FALLBACK_RATIONALE, degraded=True
                    )

        return RecommendationResult(
            status=RecommendationStatus.ALL_COMPLETED,
            rationale=ALL_COMPLETED_RATIONALE,
            degraded=True,
        )
