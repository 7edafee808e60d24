"""
Next-lesson recommendation.
"""
from learnpath.adaptive.path_recommender import (
    ALL_COMPLETED_RATIONALE,
    BASE_RATIONALE,
    FALLBACK_RATIONALE,
    NO_SUBJECTS_RATIONALE,
    RATIONALE_TABLE,
    SCAN_LIMIT_RATIONALE,
    FocusBand,
    PathRecommender,
    RecommendationResult,
    RecommendationStatus,
    build_rationale,
    focus_band,
)

__all__ = [
    "PathRecommender",
    "RecommendationResult",
    "RecommendationStatus",
    "FocusBand",
    "RATIONALE_TABLE",
    "BASE_RATIONALE",
    "FALLBACK_RATIONALE",
    "NO_SUBJECTS_RATIONALE",
    "ALL_COMPLETED_RATIONALE",
    "SCAN_LIMIT_RATIONALE",
    "build_rationale",
    "focus_band",
]
