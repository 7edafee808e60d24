# SQLAlchemy models
from .base import Base
from .cognitive import CognitiveStateRecord
from .content import Lesson, Subject, SubjectPrerequisite
from .progress import ProgressRecord, SubjectProgress

__all__ = [
    "Base",
    "Subject",
    "SubjectPrerequisite",
    "Lesson",
    "ProgressRecord",
    "SubjectProgress",
    "CognitiveStateRecord",
]
