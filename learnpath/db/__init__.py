"""
Relational storage: engine/session management, ORM models and repositories.
"""
from learnpath.db.database import Database, get_database
from learnpath.db.repositories import (
    CognitiveStateRepository,
    ContentStore,
    ProgressRepository,
    SqlCognitiveStateRepository,
    SqlContentStore,
    SqlProgressRepository,
    storage_errors,
)

__all__ = [
    "Database",
    "get_database",
    "ContentStore",
    "ProgressRepository",
    "CognitiveStateRepository",
    "SqlContentStore",
    "SqlProgressRepository",
    "SqlCognitiveStateRepository",
    "storage_errors",
]
