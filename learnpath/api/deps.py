"""
FastAPI dependencies.
"""
from __future__ import annotations

from fastapi import Request

from learnpath.cognitive import CognitiveStateTracker
from learnpath.service import LearningService, Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_learning_service(request: Request) -> LearningService:
    return get_services(request).learning


def get_tracker(request: Request) -> CognitiveStateTracker:
    return get_services(request).tracker
