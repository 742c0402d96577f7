"""
Tests for the Proctoring API endpoints
"""

import pytest

from stareware.proctor.models import TestDefinition, TestStatus


def start(client, **payload):
    payload.setdefault("test_id", "test-1")
    response = client.post("/api/proctor/start", json=payload)
    assert response.status_code == 200, response.text
    return response.json()["session_id"]


class TestStartEndpoint:
    """Tests for POST /api/proctor/start"""

    def test_start_session(self, client):
        response = client.post("/api/proctor/start", json={"test_id": "test-1", "candidate_id": "student-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["session_id"].startswith("EXM_")
        assert data["phase"] == "running"
        assert data["remaining_seconds"] == 600
        assert data["total_questions"] == 3
        assert data["notice"] is None

    def test_config_overrides(self, client):
        sid = start(client, time_limit_seconds=120, max_warnings=5)

        data = client.get(f"/api/proctor/{sid}/status").json()
        assert data["remaining_seconds"] == 120
        assert data["max_warnings"] == 5

    def test_unknown_test(self, client):
        response = client.post("/api/proctor/start", json={"test_id": "missing"})
        assert response.status_code == 404

    def test_test_not_live(self, client):
        response = client.post("/api/proctor/start", json={"test_id": "draft-1"})
        assert response.status_code == 409

    def test_invalid_test(self, client, registry):
        registry.repository.add(TestDefinition(id="empty", status=TestStatus.LIVE, questions=()))

        response = client.post("/api/proctor/start", json={"test_id": "empty"})

        assert response.status_code == 422
        assert len(registry) == 0

    def test_fullscreen_not_granted(self, client):
        sid = start(client, fullscreen_granted=False)

        data = client.get(f"/api/proctor/{sid}/status").json()
        assert data["phase"] == "running"
        assert data["violation_count"] == 0


class TestSignalEndpoints:
    """Tests for proctoring signal endpoints"""

    def test_tick(self, client):
        sid = start(client)

        data = client.post(f"/api/proctor/{sid}/tick", json={"elapsed_seconds": 10}).json()

        assert data["remaining_seconds"] == 590
        assert data["remaining_display"] == "00:09:50"

    def test_fractional_ticks(self, client):
        sid = start(client)

        client.post(f"/api/proctor/{sid}/tick", json={"elapsed_seconds": 0.5})
        data = client.post(f"/api/proctor/{sid}/tick", json={"elapsed_seconds": 0.5}).json()

        assert data["remaining_seconds"] == 599

    def test_time_expiry(self, client):
        sid = start(client, time_limit_seconds=5)

        data = client.post(f"/api/proctor/{sid}/tick", json={"elapsed_seconds": 5}).json()

        assert data["phase"] == "completed"
        assert data["completion_reason"] == "time_expired"

    def test_visibility_warning(self, client):
        sid = start(client)

        data = client.post(f"/api/proctor/{sid}/visibility", json={"hidden": True}).json()

        assert data["violation_count"] == 1
        assert data["notice"]["kind"] == "warning"
        assert data["notice"]["reason"] == "Tab switching detected"
        assert "warning 1 of 3" in data["notice"]["message"]

    def test_face_loss_after_grace(self, client, scheduler):
        sid = start(client)

        data = client.post(f"/api/proctor/{sid}/face", json={"present": False}).json()
        assert data["face_present"] is False
        assert data["violation_count"] == 0

        scheduler.advance(5)

        data = client.get(f"/api/proctor/{sid}/status").json()
        assert data["violation_count"] == 1

    def test_face_confidence(self, client):
        sid = start(client)

        data = client.post(f"/api/proctor/{sid}/face", json={"confidence": 0.1}).json()

        assert data["face_present"] is False

    def test_face_requires_a_signal(self, client):
        sid = start(client)
        response = client.post(f"/api/proctor/{sid}/face", json={})
        assert response.status_code == 422

    def test_policy_violation_auto_submit(self, client, scheduler, result_sink):
        sid = start(client)
        client.post(f"/api/proctor/{sid}/fullscreen", json={"is_fullscreen": False})
        client.post(f"/api/proctor/{sid}/visibility", json={"hidden": True})
        data = client.post(f"/api/proctor/{sid}/before-unload").json()

        assert data["phase"] == "running"
        assert data["notice"]["kind"] == "final"

        scheduler.advance(2)

        result = client.get(f"/api/proctor/{sid}/result").json()
        assert result["reason"] == "policy_violation"
        assert result["violation_count"] == 3
        assert len(result_sink.results) == 1

    def test_acknowledge(self, client):
        sid = start(client, require_acknowledgment=True)
        client.post(f"/api/proctor/{sid}/visibility", json={"hidden": True})

        data = client.post(f"/api/proctor/{sid}/acknowledge").json()

        assert data["notice"] is None
        assert data["violation_count"] == 1


class TestAnswerEndpoints:
    """Tests for answers, navigation and questions"""

    def test_answer_and_navigate(self, client):
        sid = start(client)

        client.post(f"/api/proctor/{sid}/navigate", json={"question_index": 1})
        data = client.post(f"/api/proctor/{sid}/answer", json={"question_index": 1, "selection": [2, 0]}).json()

        assert data["current_question_index"] == 1
        assert data["answered_questions"] == [1]

        question = client.get(f"/api/proctor/{sid}/question/1").json()
        assert question["saved_answer"] == [0, 2]
        assert question["type"] == "multiple"
        assert "is_correct" not in question["options"][0]

    def test_fractional_selection_rejected(self, client):
        sid = start(client)
        response = client.post(f"/api/proctor/{sid}/answer", json={"question_index": 0, "selection": 1.5})
        assert response.status_code == 422

    def test_answer_out_of_range(self, client):
        sid = start(client)
        response = client.post(f"/api/proctor/{sid}/answer", json={"question_index": 0, "selection": 7})
        assert response.status_code == 422

    def test_navigate_out_of_range(self, client):
        sid = start(client)
        response = client.post(f"/api/proctor/{sid}/navigate", json={"question_index": 9})
        assert response.status_code == 422

    def test_answer_after_submit_in_strict_mode(self, client):
        sid = start(client, strict_mode=True)
        client.post(f"/api/proctor/{sid}/submit")

        response = client.post(f"/api/proctor/{sid}/answer", json={"question_index": 0, "selection": 1})

        assert response.status_code == 409

    def test_unknown_question(self, client):
        sid = start(client)
        response = client.get(f"/api/proctor/{sid}/question/3")
        assert response.status_code == 404


class TestResultEndpoints:
    """Tests for submit and result"""

    def test_submit(self, client):
        sid = start(client, candidate_id="student-9")
        client.post(f"/api/proctor/{sid}/answer", json={"question_index": 0, "selection": 1})
        client.post(f"/api/proctor/{sid}/answer", json={"question_index": 2, "selection": 0})

        response = client.post(f"/api/proctor/{sid}/submit")

        assert response.status_code == 200
        result = response.json()
        assert result["reason"] == "manual_submit"
        assert result["score"] == 67
        assert result["candidate_id"] == "student-9"
        assert result["skipped_count"] == 1

    def test_submit_twice_returns_same_result(self, client, scheduler, result_sink):
        sid = start(client)

        first = client.post(f"/api/proctor/{sid}/submit").json()
        second = client.post(f"/api/proctor/{sid}/submit").json()
        scheduler.advance(0)

        assert first == second
        assert len(result_sink.results) == 1

    def test_result_written_in_background(self, client, scheduler, result_sink):
        """Submit answers before the result sink has run"""
        sid = start(client)
        client.post(f"/api/proctor/{sid}/submit")

        status = client.get(f"/api/proctor/{sid}/status").json()
        assert status["phase"] == "completed"
        assert status["persistence_pending"] is True
        assert result_sink.results == []

        scheduler.advance(0)

        status = client.get(f"/api/proctor/{sid}/status").json()
        assert status["persistence_pending"] is False
        assert status["persistence_error"] is None
        assert len(result_sink.results) == 1

    def test_result_before_completion(self, client):
        sid = start(client)
        response = client.get(f"/api/proctor/{sid}/result")
        assert response.status_code == 409

    @pytest.mark.parametrize("method,path", [
        ("get", "/status"),
        ("get", "/result"),
        ("post", "/submit"),
        ("post", "/before-unload"),
    ])
    def test_unknown_session(self, client, method, path):
        response = getattr(client, method)(f"/api/proctor/EXM_NOPE00{path}")
        assert response.status_code == 404
