"""
Telemetry router.

Session start / interaction / end events. They update the durable focus
score and session history; the in-flight session itself is process-local.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from learnpath.api.deps import get_tracker
from learnpath.cognitive import CognitiveStateTracker
from learnpath.models import Interaction, SessionContext

router = APIRouter()


# ========================================
# Request/Response Models
# ========================================


class ContextModel(BaseModel):
    type: str = Field(..., min_length=1, description="What the session is about, e.g. lesson")
    id: str = Field(..., min_length=1, description="Identifier of that thing")

    def to_context(self) -> SessionContext:
        return SessionContext(type=self.type, id=self.id)


class SessionStartRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    context: ContextModel


class SessionStartResponse(BaseModel):
    session_id: str
    context_type: str
    context_id: str
    start: datetime


class InteractionRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    context: Optional[ContextModel] = None
    interaction_type: str = Field(..., min_length=1)
    details: dict[str, Any] = Field(default_factory=dict)


class InteractionResponse(BaseModel):
    user_id: str
    focus_score: float
    last_updated: Optional[datetime]


class SessionEndRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    context: ContextModel
    duration_seconds: Optional[float] = Field(None, ge=0)


class SessionEndResponse(BaseModel):
    ended: bool
    summary: Optional[dict[str, Any]] = None


# ========================================
# Endpoints
# ========================================


@router.post("/sessions/start", response_model=SessionStartResponse, summary="Start a session")
def start_session(
    request: SessionStartRequest,
    tracker: CognitiveStateTracker = Depends(get_tracker),
) -> SessionStartResponse:
    """A session already active for the user is closed and recorded first."""
    session = tracker.start_session(request.user_id, request.context.to_context())
    return SessionStartResponse(
        session_id=session.session_id,
        context_type=session.context_type,
        context_id=session.context_id,
        start=session.start,
    )


@router.post(
    "/sessions/interactions", response_model=InteractionResponse, summary="Log an interaction"
)
def log_interaction(
    request: InteractionRequest,
    tracker: CognitiveStateTracker = Depends(get_tracker),
) -> InteractionResponse:
    record = tracker.log_interaction(
        request.user_id,
        Interaction(interaction_type=request.interaction_type, details=request.details),
        context=request.context.to_context() if request.context else None,
    )
    return InteractionResponse(
        user_id=record.user_id,
        focus_score=record.focus_score,
        last_updated=record.last_updated,
    )


@router.post("/sessions/end", response_model=SessionEndResponse, summary="End a session")
def end_session(
    request: SessionEndRequest,
    tracker: CognitiveStateTracker = Depends(get_tracker),
) -> SessionEndResponse:
    """Ignored (ended=false) when no matching session is active."""
    summary = tracker.end_session(
        request.user_id, request.context.to_context(), request.duration_seconds
    )
    if summary is None:
        return SessionEndResponse(ended=False)
    return SessionEndResponse(ended=True, summary=summary.to_dict())
