"""
Per-user cognitive state: focus score, session telemetry and idle decay.
"""
from learnpath.cognitive.tracker import (
    ActiveSession,
    ActiveSessionCache,
    CognitiveStateTracker,
    clamp_focus,
    decay_focus,
    score_delta,
)

__all__ = [
    "CognitiveStateTracker",
    "ActiveSession",
    "ActiveSessionCache",
    "score_delta",
    "decay_focus",
    "clamp_focus",
]
