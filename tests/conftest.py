"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests:
a controllable clock, in-memory store doubles, and an in-memory SQLite
database wired through the real repositories.
"""
import sys
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from learnpath.adaptive import PathRecommender  # noqa: E402
from learnpath.cognitive import ActiveSessionCache, CognitiveStateTracker  # noqa: E402
from learnpath.config import Settings  # noqa: E402
from learnpath.errors import NotFound, StorageUnavailable  # noqa: E402
from learnpath.graph import SubjectOrderCache  # noqa: E402
from learnpath.models import CognitiveRecord, ProgressStatus  # noqa: E402
from learnpath.service import LearningService  # noqa: E402
from learnpath.srs import LessonProgress, SM2Config, SrsScheduler, SrsState  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory SQLite)")
    config.addinivalue_line("markers", "slow: Slow tests")
    config.addinivalue_line("markers", "smoke: CLI smoke tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ========================================
# Clock
# ========================================


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


T0 = datetime(2024, 3, 10, 14, 30)


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def settings():
    """Settings with library defaults, independent of the environment."""
    return Settings(
        database_url="sqlite://",
        log_level="DEBUG",
        log_file=None,
        cognitive_decay_half_life_hours=72.0,
        fallback_scan_limit=2000,
    )


# ========================================
# In-memory doubles
# ========================================


class InMemoryContentStore:
    """ContentStore over plain lists; `fail_times` makes the next N subject reads fail."""

    def __init__(self, subjects=(), lessons=()):
        self.subjects = list(subjects)
        self.lessons = list(lessons)
        self.fail_times = 0
        self.lesson_reads = 0
        self.version = 1

    def list_subjects(self):
        if self.fail_times > 0:
            self.fail_times -= 1
            raise StorageUnavailable("content store down")
        return list(self.subjects)

    def get_subject(self, subject_id):
        return next((s for s in self.subjects if s.id == subject_id), None)

    def list_lessons(self, subject_id):
        self.lesson_reads += 1
        return sorted(
            (lesson for lesson in self.lessons if lesson.subject_id == subject_id),
            key=lambda lesson: lesson.position,
        )

    def get_lesson(self, lesson_id):
        return next((lesson for lesson in self.lessons if lesson.id == lesson_id), None)

    def content_version(self):
        return str(self.version)


class InMemoryProgressRepository:
    """ProgressRepository backed by a dict, serialized with a lock."""

    def __init__(self):
        self.records: dict[tuple[str, str], LessonProgress] = {}
        self.subjects_done: dict[tuple[str, str], datetime] = {}
        self.fail = False
        self._lock = threading.Lock()

    def _check(self):
        if self.fail:
            raise StorageUnavailable("progress store down")

    def get(self, user_id, lesson_id):
        self._check()
        return self.records.get((user_id, lesson_id))

    def completed_lesson_ids(self, user_id):
        self._check()
        return {
            lesson_id
            for (uid, lesson_id), record in self.records.items()
            if uid == user_id and record.status.is_done
        }

    def mark_completed(self, user_id, lesson, srs):
        self._check()
        with self._lock:
            current = self.records.get((user_id, lesson.id))
            if current is not None and current.status.is_done:
                return current, False
            record = LessonProgress(
                user_id=user_id,
                lesson_id=lesson.id,
                subject_id=lesson.subject_id,
                status=ProgressStatus.COMPLETED,
                srs=srs or SrsState(),
            )
            self.records[(user_id, lesson.id)] = record
            return record, True

    def update(self, user_id, lesson_id, change):
        self._check()
        with self._lock:
            current = self.records.get((user_id, lesson_id))
            if current is None:
                raise NotFound(f"No progress record for lesson {lesson_id}.")
            updated = change(current)
            self.records[(user_id, lesson_id)] = updated
            return updated

    def due(self, user_id, now, limit):
        self._check()
        items = [
            record
            for (uid, _), record in self.records.items()
            if uid == user_id
            and record.srs.next_review_date is not None
            and record.srs.next_review_date <= now
        ]
        items.sort(key=lambda record: record.srs.next_review_date)
        return items[:limit]

    def recent_quality_scores(self, user_id, lookback):
        entries = [
            entry
            for (uid, _), record in self.records.items()
            if uid == user_id
            for entry in record.review_history
        ]
        entries.sort(key=lambda entry: entry.date, reverse=True)
        return [entry.quality_score for entry in entries[:lookback]]

    def mark_subject_completed(self, user_id, subject_id, now):
        self._check()
        if (user_id, subject_id) in self.subjects_done:
            return False
        self.subjects_done[(user_id, subject_id)] = now
        return True


class InMemoryCognitiveRepository:
    """CognitiveStateRepository backed by a dict."""

    def __init__(self, default_focus=50.0, history_limit=50):
        self.records: dict[str, CognitiveRecord] = {}
        self.default_focus = default_focus
        self.history_limit = history_limit
        self.fail = False

    def get(self, user_id):
        if self.fail:
            raise StorageUnavailable("cognitive store down")
        return self.records.get(user_id)

    def update(self, user_id, change):
        if self.fail:
            raise StorageUnavailable("cognitive store down")
        current = self.records.get(user_id) or CognitiveRecord(
            user_id=user_id, focus_score=self.default_focus
        )
        updated = change(current)
        updated = replace(updated, session_history=updated.session_history[-self.history_limit:])
        self.records[user_id] = updated
        return updated

    def stale_user_ids(self, updated_before):
        return sorted(
            uid
            for uid, record in self.records.items()
            if record.last_updated is not None and record.last_updated < updated_before
        )


# ========================================
# Engine wiring
# ========================================


@pytest.fixture
def make_engine(clock, settings):
    """
    Build in-memory engine components.

    Usage:
        engine = make_engine(subjects=[...], lessons=[...])
        engine.recommender.suggest_next("alice")
    """

    def _make(subjects=(), lessons=(), use_cache=False, fallback_scan_limit=None):
        content = InMemoryContentStore(subjects, lessons)
        progress = InMemoryProgressRepository()
        cognitive = InMemoryCognitiveRepository()
        scheduler = SrsScheduler(SM2Config(), clock=clock)
        tracker = CognitiveStateTracker(
            cognitive,
            sessions=ActiveSessionCache(maxsize=100, ttl_seconds=3600),
            clock=clock,
            default_focus=50.0,
            decay_half_life_hours=0,
        )
        recommender = PathRecommender(
            content,
            progress,
            tracker,
            order_cache=SubjectOrderCache(ttl_seconds=60) if use_cache else None,
            clock=clock,
            low_threshold=25.0,
            high_threshold=80.0,
            fallback_scan_limit=(
                settings.fallback_scan_limit if fallback_scan_limit is None else fallback_scan_limit
            ),
        )
        service = LearningService(content, progress, scheduler, recommender, clock=clock, settings=settings)
        return SimpleNamespace(
            content=content,
            progress=progress,
            cognitive=cognitive,
            scheduler=scheduler,
            tracker=tracker,
            recommender=recommender,
            service=service,
        )

    return _make


# ========================================
# SQLite-backed fixtures
# ========================================


@pytest.fixture
def database():
    """Fresh in-memory SQLite database with all tables."""
    from learnpath.db import Database

    db = Database("sqlite://")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def sql_services(database, settings, clock):
    """SQL-backed components sharing the in-memory database."""
    from learnpath.service import build_services

    return build_services(database, settings=settings, clock=clock)


@pytest.fixture
def seed_content(database):
    """Load a content document into the database."""
    from learnpath.db.seed import ContentSeed, load_content

    def _seed(document: dict):
        return load_content(database, ContentSeed.model_validate(document))

    return _seed
