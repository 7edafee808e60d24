"""
Durable per-user cognitive state.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JsonType, TimestampMixin


class CognitiveStateRecord(TimestampMixin, Base):
    """
    Focus score and recent session summaries for one user.

    Attributes:
        focus_score: 0-100, neutral 50
        last_updated: Time of the last score change (drives decay)
        session_history: JSON list of session summaries, newest last, capped
    """

    __tablename__ = "cognitive_states"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    focus_score: Mapped[float] = mapped_column(Float, default=50.0, nullable=False)
    last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime)
    session_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JsonType, default=list, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
