"""
Spaced repetition (SM-2) scheduling.
"""
from learnpath.srs.progress import LessonProgress
from learnpath.srs.scheduler import (
    ReviewEntry,
    SM2Config,
    SrsScheduler,
    SrsState,
    validate_quality,
)

__all__ = [
    "SrsScheduler",
    "SM2Config",
    "SrsState",
    "ReviewEntry",
    "LessonProgress",
    "validate_quality",
]
