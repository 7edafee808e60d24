"""
Subject dependency graph: ordering, cycle detection and order caching.
"""
from learnpath.graph.cache import SubjectOrderCache
from learnpath.graph.subject_graph import (
    CycleDetected,
    DanglingPrerequisite,
    Ordered,
    OrderResult,
    SubjectGraph,
)

__all__ = [
    "SubjectGraph",
    "SubjectOrderCache",
    "Ordered",
    "CycleDetected",
    "OrderResult",
    "DanglingPrerequisite",
]
