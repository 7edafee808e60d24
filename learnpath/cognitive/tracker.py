"""
Cognitive State Tracker.

Maintains a per-user focus score (0-100, neutral 50) derived from
interaction telemetry, plus a capped history of finished sessions.

Session lifecycle per user: NoSession -> Active -> Closed.
- Active sessions live only in a bounded in-memory cache (lost on restart).
- Starting a session while another is active closes the previous one and
  flushes its summary to durable history before the new one begins.
- The read path (`current_state`) only looks at the durable record, so a
  recommendation never depends on which process served the telemetry.

The focus score decays toward neutral while the user is idle. Decay is a
pure function of (score, elapsed) and composes (decaying by a then by b
equals decaying by a + b), which makes the periodic sweep idempotent.
"""
from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from cachetools import TTLCache
from loguru import logger

from learnpath.config import get_settings
from learnpath.db.repositories import CognitiveStateRepository
from learnpath.errors import InvalidInput
from learnpath.models import (
    Clock,
    CognitiveRecord,
    CognitiveSnapshot,
    Interaction,
    SessionContext,
    SessionSummary,
    utcnow,
)

NEUTRAL_FOCUS = 50.0

SRS_REVIEW_SUBMIT = "srs_review_submit"
QUIZ_ANSWER_SUBMIT = "quiz_answer_submit"
AUDIO_PRESET_CHANGE = "audio_preset_change"

QUIZ_CORRECT_DELTA = 3.0
QUIZ_INCORRECT_DELTA = -2.0


# =============================================================================
# Scoring
# =============================================================================


def clamp_focus(score: float) -> float:
    return max(0.0, min(100.0, score))


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return float(value)


def score_delta(interaction: Interaction) -> float:
    """
    Focus-score change caused by one interaction.

    - srs_review_submit: (quality - 2.5) * 2, so 5 -> +5 and 0 -> -5
    - quiz_answer_submit: +3 correct, -2 incorrect
    - audio_preset_change: +1 when "focus" starts playing, -1 for "relaxation"
    - anything else, or missing details: 0
    """
    details = interaction.details or {}
    kind = interaction.interaction_type

    if kind == SRS_REVIEW_SUBMIT:
        quality = _number(details.get("quality_score", details.get("performance_score")))
        if quality is not None:
            return (quality - 2.5) * 2
    elif kind == QUIZ_ANSWER_SUBMIT:
        is_correct = details.get("is_correct")
        if isinstance(is_correct, bool):
            return QUIZ_CORRECT_DELTA if is_correct else QUIZ_INCORRECT_DELTA
    elif kind == AUDIO_PRESET_CHANGE:
        if details.get("is_playing"):
            preset = details.get("preset")
            if preset == "focus":
                return 1.0
            if preset == "relaxation":
                return -1.0
    return 0.0


def decay_focus(
    score: float,
    elapsed: timedelta,
    half_life_hours: float,
    neutral: float = NEUTRAL_FOCUS,
) -> float:
    """Exponential decay of the distance from `neutral`; 0 half-life disables it."""
    seconds = elapsed.total_seconds()
    if half_life_hours <= 0 or seconds <= 0:
        return score
    factor = 0.5 ** (seconds / (half_life_hours * 3600.0))
    return neutral + (score - neutral) * factor


# =============================================================================
# Active sessions
# =============================================================================


@dataclass(frozen=True)
class ActiveSession:
    session_id: str
    context_type: str
    context_id: str
    start: datetime
    interaction_count: int = 0

    def summarize(self, end: datetime, duration_seconds: Optional[float] = None) -> SessionSummary:
        if duration_seconds is None or duration_seconds <= 0:
            duration_seconds = max(0.0, (end - self.start).total_seconds())
        return SessionSummary(
            session_id=self.session_id,
            context_type=self.context_type,
            context_id=self.context_id,
            start=self.start,
            end=end,
            duration_seconds=float(duration_seconds),
            interaction_count=self.interaction_count,
        )


class ActiveSessionCache:
    """
    Bounded user_id -> ActiveSession map.

    Entries expire `ttl_seconds` after their last write (start or
    interaction); past `maxsize` the oldest entries are evicted.
    """

    def __init__(
        self,
        maxsize: int = 10_000,
        ttl_seconds: float = 4 * 60 * 60,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._sessions: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[ActiveSession]:
        with self._lock:
            return self._sessions.get(user_id)

    def put(self, user_id: str, session: ActiveSession) -> None:
        with self._lock:
            self._sessions[user_id] = session

    def pop(self, user_id: str) -> Optional[ActiveSession]:
        with self._lock:
            return self._sessions.pop(user_id, None)

    def pop_if(self, user_id: str, context_id: str) -> Optional[ActiveSession]:
        """Remove and return the session only when it belongs to `context_id`."""
        with self._lock:
            session = self._sessions.get(user_id)
            if session is None or session.context_id != context_id:
                return None
            return self._sessions.pop(user_id)

    def record_interaction(self, user_id: str) -> Optional[ActiveSession]:
        """Bump the interaction counter; None when no session is active."""
        with self._lock:
            session = self._sessions.get(user_id)
            if session is None:
                return None
            session = replace(session, interaction_count=session.interaction_count + 1)
            self._sessions[user_id] = session
            return session

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


# =============================================================================
# Tracker
# =============================================================================


class CognitiveStateTracker:
    """Focus-score bookkeeping over a CognitiveStateRepository."""

    def __init__(
        self,
        repository: CognitiveStateRepository,
        sessions: ActiveSessionCache | None = None,
        clock: Clock = utcnow,
        default_focus: float | None = None,
        decay_half_life_hours: float | None = None,
        session_capacity: int | None = None,
        session_ttl_seconds: float | None = None,
    ):
        settings = get_settings()
        self.repository = repository
        if sessions is None:
            sessions = ActiveSessionCache(
                maxsize=(
                    settings.cognitive_active_session_capacity
                    if session_capacity is None
                    else session_capacity
                ),
                ttl_seconds=(
                    settings.cognitive_active_session_ttl_seconds
                    if session_ttl_seconds is None
                    else session_ttl_seconds
                ),
            )
        self.sessions = sessions
        self._clock = clock
        self.default_focus = (
            settings.cognitive_default_focus if default_focus is None else default_focus
        )
        self.decay_half_life_hours = (
            settings.cognitive_decay_half_life_hours
            if decay_half_life_hours is None
            else decay_half_life_hours
        )

    def _decayed(self, record: CognitiveRecord, now: datetime) -> float:
        if record.last_updated is None:
            return record.focus_score
        return decay_focus(
            record.focus_score,
            now - record.last_updated,
            self.decay_half_life_hours,
            neutral=self.default_focus,
        )

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(
        self,
        user_id: str,
        context: SessionContext | dict | None,
        now: datetime | None = None,
    ) -> ActiveSession:
        """
        Begin tracking a session.

        Raises:
            InvalidInput: context lacks a type or id
        """
        if not isinstance(context, SessionContext):
            context = SessionContext.from_dict(context)
        if context is None:
            raise InvalidInput("Session context requires a type and an id.", user_id=user_id)
        now = now or self._clock()

        previous = self.sessions.pop(user_id)
        if previous is not None:
            logger.info(
                f"Closing session {previous.session_id} for user {user_id} "
                f"before starting {context.type}:{context.id}"
            )
            self._flush_summary(user_id, previous.summarize(now))

        session = ActiveSession(
            session_id=str(uuid.uuid4()),
            context_type=context.type,
            context_id=context.id,
            start=now,
        )
        self.sessions.put(user_id, session)
        logger.info(f"Session {session.session_id} started for user {user_id} ({context.type}:{context.id})")
        return session

    def log_interaction(
        self,
        user_id: str,
        interaction: Interaction,
        context: SessionContext | None = None,
        now: datetime | None = None,
    ) -> CognitiveRecord:
        """
        Count an interaction against the active session and update the focus score.

        Interactions outside an active session still move the score.
        """
        if not interaction.interaction_type:
            raise InvalidInput("Interaction requires an interaction_type.", user_id=user_id)
        now = now or self._clock()

        session = self.sessions.record_interaction(user_id)
        if session is None:
            logger.warning(f"Interaction {interaction.interaction_type} for user {user_id} outside an active session")
        elif context is not None and context.id != session.context_id:
            logger.warning(
                f"Interaction context mismatch for user {user_id}: "
                f"active {session.context_id}, got {context.id}"
            )

        delta = score_delta(interaction)

        def apply(record: CognitiveRecord) -> CognitiveRecord:
            if delta == 0:
                return record
            score = clamp_focus(self._decayed(record, now) + delta)
            return replace(record, focus_score=score, last_updated=now)

        record = self.repository.update(user_id, apply)
        logger.debug(
            f"Focus score for user {user_id} is {record.focus_score:.1f} "
            f"after {interaction.interaction_type} ({delta:+.1f})"
        )
        return record

    def end_session(
        self,
        user_id: str,
        context: SessionContext | dict | None,
        duration_seconds: float | None = None,
        now: datetime | None = None,
    ) -> Optional[SessionSummary]:
        """
        Close the active session if `context` matches it and persist its summary.

        A missing or mismatched session is logged and ignored (returns None).
        """
        if not isinstance(context, SessionContext):
            context = SessionContext.from_dict(context)
        if context is None:
            raise InvalidInput("Session context requires a type and an id.", user_id=user_id)
        now = now or self._clock()

        active = self.sessions.pop_if(user_id, context.id)
        if active is None:
            logger.warning(
                f"endSession for user {user_id} ignored: no matching active session "
                f"(context {context.type}:{context.id})"
            )
            return None

        summary = active.summarize(now, duration_seconds)
        self._flush_summary(user_id, summary)
        logger.info(
            f"Session {summary.session_id} ended for user {user_id}: "
            f"{summary.duration_seconds:.0f}s, {summary.interaction_count} interactions"
        )
        return summary

    def _flush_summary(self, user_id: str, summary: SessionSummary) -> None:
        self.repository.update(
            user_id,
            lambda record: replace(record, session_history=(*record.session_history, summary)),
        )

    # ------------------------------------------------------------------
    # Read path and maintenance
    # ------------------------------------------------------------------

    def current_state(self, user_id: str, now: datetime | None = None) -> CognitiveSnapshot:
        """
        Durable focus score with idle decay applied.

        A user without a record gets the neutral default and no
        `last_updated`, which the recommender treats as "no history".
        """
        now = now or self._clock()
        record = self.repository.get(user_id)
        if record is None:
            return CognitiveSnapshot(user_id=user_id, focus_score=self.default_focus)
        return CognitiveSnapshot(
            user_id=user_id,
            focus_score=self._decayed(record, now),
            last_updated=record.last_updated,
        )

    def decay_stale_states(
        self,
        now: datetime | None = None,
        idle_for: timedelta = timedelta(hours=1),
    ) -> int:
        """
        Persist idle decay for users not updated within `idle_for`.

        Returns:
            Number of records rewritten
        """
        if self.decay_half_life_hours <= 0:
            logger.info("Focus decay disabled; nothing to sweep")
            return 0
        now = now or self._clock()

        def apply(record: CognitiveRecord) -> CognitiveRecord:
            if record.last_updated is None or record.last_updated >= now:
                return record
            return replace(record, focus_score=self._decayed(record, now), last_updated=now)

        user_ids = self.repository.stale_user_ids(now - idle_for)
        for user_id in user_ids:
            self.repository.update(user_id, apply)
        logger.info(f"Decayed focus scores for {len(user_ids)} idle users")
        return len(user_ids)
