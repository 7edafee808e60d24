"""
Per (user, lesson) progress as seen by the scheduler and the service layer.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from learnpath.models import ProgressStatus
from learnpath.srs.scheduler import ReviewEntry, SrsState


@dataclass(frozen=True)
class LessonProgress:
    """
    Detached copy of a ProgressRecord row.

    `review_history` is append-only and oldest-first; `with_review` trims it
    to the configured cap from the oldest end.
    """
    user_id: str
    lesson_id: str
    subject_id: str
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    srs: SrsState = field(default_factory=SrsState)
    review_history: tuple[ReviewEntry, ...] = ()

    def with_review(
        self,
        srs: SrsState,
        status: ProgressStatus,
        entry: ReviewEntry,
        history_limit: int,
    ) -> LessonProgress:
        history = (*self.review_history, entry)
        if history_limit > 0:
            history = history[-history_limit:]
        return replace(self, srs=srs, status=status, review_history=history)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "lesson_id": self.lesson_id,
            "subject_id": self.subject_id,
            "status": self.status.value,
            "easiness_factor": self.srs.easiness_factor,
            "repetitions": self.srs.repetitions,
            "interval_days": self.srs.interval_days,
            "next_review_date": (
                self.srs.next_review_date.isoformat() if self.srs.next_review_date else None
            ),
            "last_reviewed_date": (
                self.srs.last_reviewed_date.isoformat() if self.srs.last_reviewed_date else None
            ),
            "review_history": [entry.to_dict() for entry in self.review_history],
        }
