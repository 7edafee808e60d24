"""
SM-2 Spaced Repetition Scheduler.

Implements:
- SM-2 state transition for a (user, lesson) item
- Mastery promotion (informational status, not an interval input)
- Initial state for a freshly completed lesson

SM-2 Grade Scale:
0 - Complete blackout, wrong response
1 - Incorrect, but upon seeing answer remembered
2 - Incorrect, but answer seemed easy to recall
3 - Correct, but with significant difficulty
4 - Correct, with some hesitation
5 - Correct, with perfect recall

`compute_next` is a pure function of (state, quality, now). Review dates are
calendar days: a review at any hour of day D with interval I is due from the
start of day D+I.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from learnpath.config import Settings, get_settings
from learnpath.errors import InvalidInput
from learnpath.models import Clock, ProgressStatus, add_calendar_days, utcnow

# =============================================================================
# State
# =============================================================================


@dataclass(frozen=True)
class SrsState:
    """SM-2 algorithm state for a single (user, lesson) item."""

    easiness_factor: float = 2.5
    repetitions: int = 0
    interval_days: int = 1
    next_review_date: Optional[datetime] = None
    last_reviewed_date: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        """Due once the scheduled date has been reached."""
        return self.next_review_date is not None and self.next_review_date <= now


@dataclass(frozen=True)
class ReviewEntry:
    """One row of a progress record's review history."""

    date: datetime
    quality_score: float
    interval_days: int
    easiness_factor: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "quality_score": self.quality_score,
            "interval_days": self.interval_days,
            "easiness_factor": self.easiness_factor,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReviewEntry:
        return cls(
            date=datetime.fromisoformat(data["date"]),
            quality_score=float(data["quality_score"]),
            interval_days=int(data["interval_days"]),
            easiness_factor=float(data["easiness_factor"]),
        )


# =============================================================================
# SM-2 Algorithm
# =============================================================================


@dataclass
class SM2Config:
    """Configuration for SM-2 algorithm."""

    initial_easiness: float = 2.5
    minimum_easiness: float = 1.3
    first_interval: int = 1  # Days for first review
    second_interval: int = 6  # Days for second review
    mastery_easiness: float = 4.0
    mastery_interval: int = 90

    @classmethod
    def from_settings(cls, settings: Settings) -> SM2Config:
        return cls(
            initial_easiness=settings.srs_initial_easiness,
            minimum_easiness=settings.srs_minimum_easiness,
            first_interval=settings.srs_first_interval_days,
            second_interval=settings.srs_second_interval_days,
            mastery_easiness=settings.srs_mastery_easiness,
            mastery_interval=settings.srs_mastery_interval_days,
        )


def validate_quality(quality_score: Any) -> float:
    """
    Check a recall-quality score.

    Raises:
        InvalidInput: if the score is not a number in [0, 5]
    """
    if isinstance(quality_score, bool) or not isinstance(quality_score, (int, float)):
        raise InvalidInput(
            "Quality score must be a number between 0 and 5.", quality_score=quality_score
        )
    if math.isnan(quality_score) or not 0 <= quality_score <= 5:
        raise InvalidInput(
            "Quality score must be between 0 and 5.", quality_score=quality_score
        )
    return float(quality_score)


class SrsScheduler:
    """
    Implements the SM-2 spaced repetition algorithm.

    The SuperMemo 2 algorithm calculates optimal review intervals
    based on performance history. Each item has:
    - Easiness Factor (EF): How easy the item is (2.5 default, min 1.3)
    - Interval: Days until next review
    - Repetitions: Consecutive correct recalls
    """

    def __init__(self, config: SM2Config | None = None, clock: Clock = utcnow):
        """
        Initialize SM-2 scheduler.

        Args:
            config: Custom configuration (defaults from settings if None)
            clock: Source of "now" when a call does not pass one
        """
        self.config = config or SM2Config.from_settings(get_settings())
        self._clock = clock

    def initial_state(self, now: datetime | None = None) -> SrsState:
        """State of a lesson on first completion: due the next calendar day."""
        now = now or self._clock()
        return SrsState(
            easiness_factor=self.config.initial_easiness,
            repetitions=0,
            interval_days=self.config.first_interval,
            next_review_date=add_calendar_days(now, self.config.first_interval),
            last_reviewed_date=now,
        )

    def compute_next(
        self,
        state: SrsState,
        quality_score: float,
        now: datetime | None = None,
    ) -> SrsState:
        """
        Calculate next review date based on recall quality.

        Args:
            state: Current SRS state for the item
            quality_score: Recall quality (0-5)
            now: Review time (clock default)

        Returns:
            New SrsState; `state` is not modified

        Raises:
            InvalidInput: quality outside [0, 5]
        """
        q = validate_quality(quality_score)
        now = now or self._clock()

        # EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
        ef_delta = 0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)
        new_ef = max(self.config.minimum_easiness, state.easiness_factor + ef_delta)

        if q < 3:
            # Failed - relearn from scratch with the updated EF
            new_repetitions = 0
            new_interval = self.config.first_interval
        else:
            new_repetitions = state.repetitions + 1

            if new_repetitions == 1:
                new_interval = self.config.first_interval
            elif new_repetitions == 2:
                new_interval = self.config.second_interval
            else:
                # Rounded first so float noise (13.000000000000002) cannot add a day
                new_interval = math.ceil(round(state.interval_days * new_ef, 9))

        return SrsState(
            easiness_factor=new_ef,
            repetitions=new_repetitions,
            interval_days=new_interval,
            next_review_date=add_calendar_days(now, new_interval),
            last_reviewed_date=now,
        )

    def is_mastered(self, state: SrsState) -> bool:
        return (
            state.easiness_factor > self.config.mastery_easiness
            and state.interval_days > self.config.mastery_interval
        )

    def next_status(self, current: ProgressStatus, state: SrsState) -> ProgressStatus:
        """
        Status after a review: reviewed items are at least completed, and
        mastery, once reached, is kept.
        """
        if current is ProgressStatus.MASTERED or self.is_mastered(state):
            return ProgressStatus.MASTERED
        return ProgressStatus.COMPLETED

    def review_entry(self, state: SrsState, quality_score: float) -> ReviewEntry:
        """History row for a review that produced `state`."""
        return ReviewEntry(
            date=state.last_reviewed_date or self._clock(),
            quality_score=float(quality_score),
            interval_days=state.interval_days,
            easiness_factor=state.easiness_factor,
        )

