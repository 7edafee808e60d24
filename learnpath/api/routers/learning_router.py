"""
Learning router.

Endpoints for a learner's path:
- Next lesson recommendation
- Review submission and the due-review queue
- Lesson and subject completion
- Recent review performance
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from loguru import logger
from pydantic import BaseModel, Field

from learnpath.api.deps import get_learning_service
from learnpath.service import LearningService
from learnpath.srs import LessonProgress

router = APIRouter()


# ========================================
# Request/Response Models
# ========================================


class NextLessonResponse(BaseModel):
    """
    One of three shapes, told apart by `status`:

    - "lesson": subject and lesson fields set, all_completed false
    - "all_completed" / "no_subjects": all_completed true, no lesson
    - "scan_limit": degraded fallback gave up before finding a lesson;
      all_completed false, no lesson, retry later
    """

    all_completed: bool
    status: str
    rationale: str
    degraded: bool = False
    subject_id: str | None = None
    subject_title: str | None = None
    lesson_id: str | None = None
    lesson_title: str | None = None
    recommended_audio_preset: str | None = None
    focus_score: float | None = None


class ReviewRequest(BaseModel):
    """A recall-quality grade for one lesson (0 = blackout, 5 = perfect)."""

    lesson_id: str = Field(..., min_length=1, description="Reviewed lesson")
    quality_score: float = Field(..., description="Recall quality, 0-5")


class ReviewEntryResponse(BaseModel):
    date: datetime
    quality_score: float
    interval_days: int
    easiness_factor: float


class ProgressResponse(BaseModel):
    """Spaced-repetition state of one (user, lesson) record."""

    user_id: str
    lesson_id: str
    subject_id: str
    status: str
    easiness_factor: float
    repetitions: int
    interval_days: int
    next_review_date: Optional[datetime]
    last_reviewed_date: Optional[datetime]
    review_history: list[ReviewEntryResponse]

    @classmethod
    def from_progress(cls, progress: LessonProgress) -> ProgressResponse:
        return cls(**progress.to_dict())


class DueReviewsResponse(BaseModel):
    count: int
    items: list[ProgressResponse]


class LessonCompletionResponse(BaseModel):
    newly_completed: bool
    progress: ProgressResponse


class SubjectCompletionResponse(BaseModel):
    user_id: str
    subject_id: str
    newly_completed: bool


class RecentPerformanceResponse(BaseModel):
    average_quality: float | None
    reviews_considered: int


# ========================================
# Endpoints
# ========================================


@router.get(
    "/users/{user_id}/next-lesson",
    response_model=NextLessonResponse,
    summary="Suggest the next lesson",
)
def get_next_lesson(
    user_id: str,
    service: LearningService = Depends(get_learning_service),
) -> NextLessonResponse:
    """
    Next incomplete lesson in prerequisite order.

    When the prerequisite graph is broken the suggestion comes from a plain
    scan of subjects and `degraded` is true. A scan that hits the configured
    cap answers with status "scan_limit" and no lesson.
    """
    result = service.next_lesson(user_id)
    return NextLessonResponse(**result.to_dict())


@router.post(
    "/users/{user_id}/reviews",
    response_model=ProgressResponse,
    summary="Submit a review",
)
def submit_review(
    user_id: str,
    request: ReviewRequest,
    service: LearningService = Depends(get_learning_service),
) -> ProgressResponse:
    progress = service.submit_review(user_id, request.lesson_id, request.quality_score)
    return ProgressResponse.from_progress(progress)


@router.get(
    "/users/{user_id}/due-reviews",
    response_model=DueReviewsResponse,
    summary="List due reviews",
)
def get_due_reviews(
    user_id: str,
    limit: Optional[int] = Query(None, description="Maximum items (default 20, at most 100; larger values are rejected)"),
    service: LearningService = Depends(get_learning_service),
) -> DueReviewsResponse:
    """Records due now, oldest-due first."""
    items = service.due_reviews(user_id, limit)
    return DueReviewsResponse(
        count=len(items), items=[ProgressResponse.from_progress(p) for p in items]
    )


@router.post(
    "/users/{user_id}/lessons/{lesson_id}/complete",
    response_model=LessonCompletionResponse,
    summary="Mark a lesson completed",
)
def complete_lesson(
    user_id: str,
    lesson_id: str,
    service: LearningService = Depends(get_learning_service),
) -> LessonCompletionResponse:
    completion = service.complete_lesson(user_id, lesson_id)
    return LessonCompletionResponse(
        newly_completed=completion.newly_completed,
        progress=ProgressResponse.from_progress(completion.progress),
    )


@router.post(
    "/users/{user_id}/subjects/{subject_id}/complete",
    response_model=SubjectCompletionResponse,
    summary="Mark a subject completed",
)
def complete_subject(
    user_id: str,
    subject_id: str,
    service: LearningService = Depends(get_learning_service),
) -> SubjectCompletionResponse:
    """Requires every lesson of the subject to be completed first."""
    completion = service.complete_subject(user_id, subject_id)
    if not completion.newly_completed:
        logger.info(f"Subject {subject_id} was already completed by user {user_id}")
    return SubjectCompletionResponse(**completion.to_dict())


@router.get(
    "/users/{user_id}/performance",
    response_model=RecentPerformanceResponse,
    summary="Average recent review quality",
)
def get_recent_performance(
    user_id: str,
    lookback: int = Query(10, description="Number of most recent reviews considered"),
    service: LearningService = Depends(get_learning_service),
) -> dict[str, Any]:
    return service.recent_performance(user_id, lookback).to_dict()
