"""API routers for the learnpath engine."""

from learnpath.api.routers import learning_router, telemetry_router

__all__ = [
    "learning_router",
    "telemetry_router",
]
