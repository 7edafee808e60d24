"""
Domain models shared by the engine components.

These are plain dataclasses, detached from the ORM, so that the graph,
scheduler, tracker and recommender can be driven by any content store
(SQLAlchemy repositories in production, in-memory doubles in tests).

All timestamps are naive UTC datetimes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    """Midnight at the start of the calendar day containing `moment`."""
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def add_calendar_days(moment: datetime, days: int) -> datetime:
    """Start of the calendar day `days` after the day containing `moment`."""
    return start_of_day(moment) + timedelta(days=days)


class ProgressStatus(str, Enum):
    """Lifecycle of a (user, lesson) progress record."""
    NOT_STARTED = "not_started"
    COMPLETED = "completed"
    MASTERED = "mastered"

    @property
    def is_done(self) -> bool:
        return self in (ProgressStatus.COMPLETED, ProgressStatus.MASTERED)


# =============================================================================
# Content
# =============================================================================


@dataclass(frozen=True)
class SubjectNode:
    """
    A subject as seen by the engine.

    Attributes:
        id: Subject identifier
        title: Display title
        prerequisite_ids: Ordered prerequisite subject ids (prerequisite -> this)
        position: Creation order; ties in the topological sort resolve on it
    """
    id: str
    title: str
    prerequisite_ids: tuple[str, ...] = ()
    position: int = 0


@dataclass(frozen=True)
class LessonNode:
    """A lesson as seen by the engine, in its subject's stored order."""
    id: str
    subject_id: str
    title: str
    position: int = 0
    is_reviewable: bool = True
    recommended_audio_preset: Optional[str] = None


# =============================================================================
# Cognitive state
# =============================================================================


@dataclass(frozen=True)
class SessionContext:
    """What a learning session is about (a lesson, a review run, ...)."""
    type: str
    id: str

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Optional[SessionContext]:
        """Build a context from a telemetry payload; None when malformed."""
        if not isinstance(data, dict):
            return None
        ctx_type = data.get("type")
        ctx_id = data.get("id")
        if not ctx_type or not ctx_id:
            return None
        return cls(type=str(ctx_type), id=str(ctx_id))


@dataclass(frozen=True)
class Interaction:
    """A single telemetry interaction event."""
    interaction_type: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionSummary:
    """Durable summary of a finished session."""
    session_id: str
    context_type: str
    context_id: str
    start: datetime
    end: datetime
    duration_seconds: float
    interaction_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "context_type": self.context_type,
            "context_id": self.context_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_seconds": self.duration_seconds,
            "interaction_count": self.interaction_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionSummary:
        return cls(
            session_id=data["session_id"],
            context_type=data["context_type"],
            context_id=data["context_id"],
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            duration_seconds=float(data["duration_seconds"]),
            interaction_count=int(data.get("interaction_count", 0)),
        )


@dataclass(frozen=True)
class CognitiveSnapshot:
    """
    Durable cognitive state of a user at read time.

    `focus_score` is None only when the state could not be read at all;
    a user without a stored record gets the neutral default and
    `last_updated` None.
    """
    user_id: str
    focus_score: Optional[float]
    last_updated: Optional[datetime] = None

    @property
    def has_history(self) -> bool:
        return self.focus_score is not None and self.last_updated is not None


@dataclass(frozen=True)
class CognitiveRecord:
    """Detached copy of the durable per-user cognitive state."""
    user_id: str
    focus_score: float = 50.0
    last_updated: Optional[datetime] = None
    session_history: tuple[SessionSummary, ...] = ()
