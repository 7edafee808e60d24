"""
learnpath: adaptive learning-path engine.

Prerequisite-ordered lesson recommendation, SM-2 spaced repetition and a
decaying per-user focus score.
"""

__version__ = "0.1.0"
