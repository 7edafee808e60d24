"""
Integration tests for the HTTP API over in-memory SQLite.
"""
import pytest
from fastapi.testclient import TestClient

from learnpath.api.main import create_app
from learnpath.errors import GraphInconsistency, StorageUnavailable
from learnpath.service import build_services

CURRICULUM = {
    "subjects": [
        {
            "id": "arith",
            "title": "Arithmetic",
            "lessons": [
                {"id": "ar-1", "title": "Counting"},
                {"id": "ar-2", "title": "Addition", "recommended_audio_preset": "focus"},
            ],
        },
        {
            "id": "alg",
            "title": "Algebra",
            "prerequisites": ["arith"],
            "lessons": [{"id": "al-1", "title": "Variables"}],
        },
    ]
}

FIRST_STEPS = "Next lesson in calculated learning path. (First steps - adapt as you go!)"


@pytest.fixture
def app(sql_services):
    return create_app(sql_services)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def seeded(seed_content):
    seed_content(CURRICULUM)


def assert_error(response, status_code, code):
    assert response.status_code == status_code
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == code
    assert body["error"]["message"]


class TestHealth:
    def test_healthy(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["components"] == {"database": "ok"}
        assert body["version"]

    def test_unhealthy(self, client, sql_services, monkeypatch):
        monkeypatch.setattr(sql_services.db, "check_health", lambda: False)
        response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestNextLesson:
    def test_empty_content(self, client):
        body = client.get("/learning/users/alice/next-lesson").json()
        assert body["all_completed"] is True
        assert body["status"] == "no_subjects"
        assert body["rationale"] == "No subjects available."

    def test_first_lesson(self, client, seeded):
        response = client.get("/learning/users/alice/next-lesson")
        assert response.status_code == 200
        body = response.json()
        assert body["subject_id"] == "arith"
        assert body["lesson_id"] == "ar-1"
        assert body["lesson_title"] == "Counting"
        assert body["rationale"] == FIRST_STEPS
        assert body["degraded"] is False

    def test_cycle_is_served_degraded(self, client, seed_content):
        seed_content(
            {
                "subjects": [
                    {"id": "a", "title": "A", "prerequisites": ["b"]},
                    {"id": "b", "title": "B", "prerequisites": ["a"]},
                    {"id": "c", "title": "C", "lessons": [{"id": "c-1", "title": "Only lesson"}]},
                ]
            }
        )
        body = client.get("/learning/users/alice/next-lesson").json()
        assert body["lesson_id"] == "c-1"
        assert body["degraded"] is True
        assert body["rationale"].startswith("System suggestion: fallback path")

    def test_scan_limit_has_no_lesson(self, database, settings, clock, seed_content):
        services = build_services(
            database, settings=settings.model_copy(update={"fallback_scan_limit": 1}), clock=clock
        )
        client = TestClient(create_app(services))
        seed_content(
            {
                "subjects": [
                    {
                        "id": "a",
                        "title": "A",
                        "prerequisites": ["b"],
                        "lessons": [{"id": "a-1", "title": "One"}, {"id": "a-2", "title": "Two"}],
                    },
                    {"id": "b", "title": "B", "prerequisites": ["a"]},
                ]
            }
        )
        client.post("/learning/users/alice/lessons/a-1/complete")

        body = client.get("/learning/users/alice/next-lesson").json()

        assert body["status"] == "scan_limit"
        assert body["all_completed"] is False
        assert body["degraded"] is True
        assert body["lesson_id"] is None
        assert body["rationale"]

    def test_storage_failure_is_503(self, client, sql_services, monkeypatch):
        def down(user_id, now=None):
            raise StorageUnavailable("Could not compute a recommendation.")

        monkeypatch.setattr(sql_services.learning, "next_lesson", down)
        assert_error(client.get("/learning/users/alice/next-lesson"), 503, "storage_unavailable")


class TestReviews:
    def test_review_without_record_is_404(self, client, seeded):
        response = client.post("/learning/users/alice/reviews", json={"lesson_id": "ar-1", "quality_score": 4})
        assert_error(response, 404, "not_found")

    def test_out_of_range_quality_is_400(self, client, seeded):
        client.post("/learning/users/alice/lessons/ar-1/complete")
        response = client.post("/learning/users/alice/reviews", json={"lesson_id": "ar-1", "quality_score": 7})
        assert_error(response, 400, "invalid_input")

    def test_malformed_body_is_400(self, client, seeded):
        response = client.post("/learning/users/alice/reviews", json={"lesson_id": "ar-1"})
        assert_error(response, 400, "invalid_input")
        assert "quality_score" in response.json()["error"]["message"]

    def test_complete_review_and_due(self, client, seeded, clock):
        completed = client.post("/learning/users/alice/lessons/ar-1/complete").json()
        assert completed["newly_completed"] is True
        assert completed["progress"]["next_review_date"] == "2024-03-11T00:00:00"

        assert client.get("/learning/users/alice/due-reviews").json() == {"count": 0, "items": []}

        clock.advance(days=1)
        due = client.get("/learning/users/alice/due-reviews").json()
        assert due["count"] == 1
        assert due["items"][0]["lesson_id"] == "ar-1"

        reviewed = client.post(
            "/learning/users/alice/reviews", json={"lesson_id": "ar-1", "quality_score": 5}
        ).json()
        assert reviewed["repetitions"] == 1
        assert reviewed["interval_days"] == 1
        assert reviewed["easiness_factor"] == pytest.approx(2.6)
        assert reviewed["next_review_date"] == "2024-03-12T00:00:00"
        assert [e["quality_score"] for e in reviewed["review_history"]] == [5.0]

        performance = client.get("/learning/users/alice/performance").json()
        assert performance == {"average_quality": 5.0, "reviews_considered": 1}

    def test_invalid_due_limit_is_400(self, client):
        assert_error(client.get("/learning/users/alice/due-reviews?limit=0"), 400, "invalid_input")
        assert_error(client.get("/learning/users/alice/due-reviews?limit=101"), 400, "invalid_input")


class TestCompletion:
    def test_repeat_completion(self, client, seeded):
        client.post("/learning/users/alice/lessons/ar-1/complete")
        again = client.post("/learning/users/alice/lessons/ar-1/complete").json()
        assert again["newly_completed"] is False

    def test_unknown_lesson_is_404(self, client, seeded):
        assert_error(client.post("/learning/users/alice/lessons/zz/complete"), 404, "not_found")

    def test_subject_completion(self, client, seeded):
        client.post("/learning/users/alice/lessons/ar-1/complete")
        assert_error(client.post("/learning/users/alice/subjects/arith/complete"), 400, "invalid_input")

        client.post("/learning/users/alice/lessons/ar-2/complete")
        body = client.post("/learning/users/alice/subjects/arith/complete").json()
        assert body == {"user_id": "alice", "subject_id": "arith", "newly_completed": True}

        next_lesson = client.get("/learning/users/alice/next-lesson").json()
        assert next_lesson["lesson_id"] == "al-1"

    def test_unknown_subject_is_404(self, client, seeded):
        assert_error(client.post("/learning/users/alice/subjects/zz/complete"), 404, "not_found")


class TestTelemetry:
    def test_session_lifecycle(self, client, seeded, clock):
        context = {"type": "lesson", "id": "ar-1"}
        started = client.post("/telemetry/sessions/start", json={"user_id": "alice", "context": context})
        assert started.status_code == 200
        session_id = started.json()["session_id"]

        interaction = client.post(
            "/telemetry/sessions/interactions",
            json={
                "user_id": "alice",
                "context": context,
                "interaction_type": "quiz_answer_submit",
                "details": {"is_correct": True},
            },
        ).json()
        assert interaction["focus_score"] == pytest.approx(53.0)

        clock.advance(minutes=10)
        ended = client.post("/telemetry/sessions/end", json={"user_id": "alice", "context": context}).json()
        assert ended["ended"] is True
        assert ended["summary"]["session_id"] == session_id
        assert ended["summary"]["duration_seconds"] == 600.0
        assert ended["summary"]["interaction_count"] == 1

        again = client.post("/telemetry/sessions/end", json={"user_id": "alice", "context": context}).json()
        assert again == {"ended": False, "summary": None}

    def test_focus_history_changes_rationale(self, client, seeded):
        client.post(
            "/telemetry/sessions/interactions",
            json={"user_id": "alice", "interaction_type": "quiz_answer_submit", "details": {"is_correct": True}},
        )
        body = client.get("/learning/users/alice/next-lesson").json()
        assert body["rationale"] == "Next lesson in calculated learning path. (Steady progress.)"

    def test_context_without_id_is_400(self, client):
        response = client.post(
            "/telemetry/sessions/start", json={"user_id": "alice", "context": {"type": "lesson", "id": ""}}
        )
        assert_error(response, 400, "invalid_input")

    def test_negative_duration_is_400(self, client):
        response = client.post(
            "/telemetry/sessions/end",
            json={"user_id": "alice", "context": {"type": "lesson", "id": "x"}, "duration_seconds": -1},
        )
        assert_error(response, 400, "invalid_input")


class TestErrorMapping:
    def test_graph_inconsistency_is_409(self, app, client):
        @app.get("/boom")
        def boom():
            raise GraphInconsistency("Subject prerequisites are inconsistent.", cycle=["a", "b"])

        assert_error(client.get("/boom"), 409, "graph_inconsistency")
