"""
Content loading.

Upserts subjects, their ordered prerequisite lists and their lessons from a
JSON document:

    {"subjects": [
        {"id": "algebra", "title": "Algebra", "prerequisites": ["arithmetic"],
         "lessons": [{"id": "alg-1", "title": "Variables"}]}
    ]}

Subjects are positioned in document order. Existing lessons missing from the
document are kept so that progress pointing at them stays valid.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field

from learnpath.db.database import Database
from learnpath.db.models import Lesson, Subject, SubjectPrerequisite
from learnpath.db.repositories import storage_errors


class LessonSeed(BaseModel):
    id: str = Field(..., min_length=1)
    title: str
    is_reviewable: bool = True
    recommended_audio_preset: Optional[str] = None


class SubjectSeed(BaseModel):
    id: str = Field(..., min_length=1)
    title: str
    description: Optional[str] = None
    prerequisites: list[str] = Field(default_factory=list)
    lessons: list[LessonSeed] = Field(default_factory=list)


class ContentSeed(BaseModel):
    subjects: list[SubjectSeed] = Field(default_factory=list)

    @classmethod
    def from_file(cls, path: Path) -> ContentSeed:
        return cls.model_validate(json.loads(path.read_text(encoding="utf-8")))


def _sync_prerequisites(subject: Subject, prerequisite_ids: list[str]) -> None:
    wanted = list(dict.fromkeys(prerequisite_ids))
    existing = {edge.prerequisite_id: edge for edge in subject.prerequisites}
    for edge in list(subject.prerequisites):
        if edge.prerequisite_id not in wanted:
            subject.prerequisites.remove(edge)
    for position, prerequisite_id in enumerate(wanted):
        edge = existing.get(prerequisite_id)
        if edge is None:
            subject.prerequisites.append(
                SubjectPrerequisite(prerequisite_id=prerequisite_id, position=position)
            )
        elif edge.position != position:
            edge.position = position


def load_content(db: Database, seed: ContentSeed) -> dict[str, int]:
    """
    Upsert the seed into the store.

    Returns:
        Counts of subjects and lessons written
    """
    subjects = lessons = 0
    with storage_errors("load_content"), db.session_scope() as session:
        for position, item in enumerate(seed.subjects):
            subject = session.get(Subject, item.id)
            if subject is None:
                subject = Subject(id=item.id, title=item.title, position=position)
                session.add(subject)
            subject.title = item.title
            subject.description = item.description
            subject.position = position
            _sync_prerequisites(subject, item.prerequisites)
            subjects += 1

            for lesson_position, lesson_item in enumerate(item.lessons):
                lesson = session.get(Lesson, lesson_item.id)
                if lesson is None:
                    lesson = Lesson(id=lesson_item.id, subject_id=item.id, title=lesson_item.title)
                    session.add(lesson)
                lesson.subject_id = item.id
                lesson.title = lesson_item.title
                lesson.position = lesson_position
                lesson.is_reviewable = lesson_item.is_reviewable
                lesson.recommended_audio_preset = lesson_item.recommended_audio_preset
                lessons += 1
            session.flush()

    logger.info(f"Loaded {subjects} subjects and {lessons} lessons")
    return {"subjects": subjects, "lessons": lessons}
