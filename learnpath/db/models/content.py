"""
Content models: subjects, their prerequisite edges, and lessons.

Prerequisite rows are ordered by `position` and deliberately carry no
foreign key on `prerequisite_id`, so a reference to a removed subject
survives as a dangling edge that the graph layer reports and skips.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin


class Subject(TimestampMixin, Base):
    """
    A unit of curriculum that contains ordered lessons.

    Attributes:
        position: Creation order; the topological sort breaks ties on it
    """

    __tablename__ = "subjects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False, index=True)

    prerequisites: Mapped[list[SubjectPrerequisite]] = relationship(
        back_populates="subject",
        cascade="all, delete-orphan",
        order_by="SubjectPrerequisite.position",
    )
    lessons: Mapped[list[Lesson]] = relationship(
        back_populates="subject",
        cascade="all, delete-orphan",
        order_by="Lesson.position",
    )

    def __repr__(self) -> str:
        return f"<Subject {self.id} '{self.title}'>"


class SubjectPrerequisite(TimestampMixin, Base):
    """Edge prerequisite -> subject: `prerequisite_id` must be learned first."""

    __tablename__ = "subject_prerequisites"
    __table_args__ = (UniqueConstraint("subject_id", "prerequisite_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject_id: Mapped[str] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    prerequisite_id: Mapped[str] = mapped_column(String(64), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    subject: Mapped[Subject] = relationship(back_populates="prerequisites")


class Lesson(TimestampMixin, Base):
    """
    A single learnable item inside a subject.

    Attributes:
        position: Order within the subject
        is_reviewable: Whether completion schedules spaced-repetition reviews
        recommended_audio_preset: Optional audio preset suggested alongside
    """

    __tablename__ = "lessons"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_id: Mapped[str] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_reviewable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    recommended_audio_preset: Mapped[Optional[str]] = mapped_column(String(64))

    subject: Mapped[Subject] = relationship(back_populates="lessons")

    def __repr__(self) -> str:
        return f"<Lesson {self.id} '{self.title}'>"
