"""
Integration tests for saved diagnoses, guest sessions and drafts
"""
import inspect

import pytest

from sihat.api import sessions

pytestmark = pytest.mark.integration

DIAGNOSIS = {
    "primary_diagnosis": "Spleen Qi Deficiency",
    "constitution": "Qi Deficiency",
    "overall_score": 66,
    "full_report": {"recommendations": {"herbal_formulas": [{"name": "Si Jun Zi Tang"}]}},
}


class TestSavedDiagnoses:
    def test_user_save_and_manage(self, client, patient_headers):
        response = client.post("/api/sessions", json=DIAGNOSIS, headers=patient_headers)
        assert response.status_code == 201
        body = response.json()
        assert "session_token" not in body
        session_id = body["session"]["id"]
        assert body["session"]["medicines"] == ["Si Jun Zi Tang"]

        notes = client.patch(f"/api/sessions/{session_id}/notes", json={"notes": "Better"}, headers=patient_headers)
        assert notes.json()["notes"] == "Better"

        assert client.post(f"/api/sessions/{session_id}/hide", headers=patient_headers).status_code == 200
        history = client.get("/api/patient/history", headers=patient_headers).json()
        assert history["total"] == 0

        assert client.delete(f"/api/sessions/{session_id}", headers=patient_headers).status_code == 200
        assert client.get(f"/api/sessions/{session_id}", headers=patient_headers).status_code == 404

    def test_anonymous_save_rejected(self, client):
        response = client.post("/api/sessions", json=DIAGNOSIS)
        assert response.status_code == 401
        assert response.json()["detail"].startswith("Not authenticated")

    def test_other_user_cannot_read(self, client, patient_headers, other_headers):
        session_id = client.post("/api/sessions", json=DIAGNOSIS, headers=patient_headers).json()["session"]["id"]
        assert client.get(f"/api/sessions/{session_id}", headers=other_headers).status_code == 404

    def test_guest_save_and_migrate(self, client, patient_headers):
        response = client.post("/api/sessions", json=dict(DIAGNOSIS, is_guest_session=True, guest_name="Ali"))
        assert response.status_code == 201
        token = response.json()["session_token"]

        guest = client.get(f"/api/sessions/guest/{token}")
        assert guest.status_code == 200
        assert guest.json()["guest_name"] == "Ali"

        migrated = client.post("/api/sessions/guest/migrate", json={"session_token": token}, headers=patient_headers)
        assert migrated.status_code == 200
        assert migrated.json()["session"]["primary_diagnosis"] == "Spleen Qi Deficiency"

        again = client.post("/api/sessions/guest/migrate", json={"session_token": token}, headers=patient_headers)
        assert again.status_code == 404

    def test_migrate_requires_login(self, client):
        assert client.post("/api/sessions/guest/migrate", json={"session_token": "x"}).status_code == 401


class TestDrafts:
    def test_guest_draft_lifecycle(self, client):
        created = client.post("/api/sessions/drafts", json={"guest_token": "guest-1", "data": {"name": "Ali"}})
        assert created.status_code == 201
        session_id = created.json()["sessionId"]
        assert created.json()["isGuest"] is True
        owner = {"guest_token": "guest-1"}

        saved = client.put(
            f"/api/sessions/drafts/{session_id}",
            json={"data": {"name": "Ali", "age": 30}, "current_step": "tongue", "completion_percentage": 25,
                  "guest_token": "guest-1"},
        )
        assert saved.json()["currentStep"] == "tongue"

        recovered = client.get("/api/sessions/drafts", params=owner).json()["sessions"]
        assert recovered[0]["sessionId"] == session_id
        assert recovered[0]["data"] == {"name": "Ali", "age": 30}

        progress = client.patch(
            f"/api/sessions/drafts/{session_id}/progress", params=owner,
            json={"step": "audio", "completion_percentage": 60},
        )
        assert progress.json()["completionPercentage"] == 60

        assert client.get(f"/api/sessions/drafts/{session_id}", params=owner).json()["currentStep"] == "audio"
        assert client.delete(f"/api/sessions/drafts/{session_id}", params=owner).status_code == 200
        assert client.get(f"/api/sessions/drafts/{session_id}", params=owner).status_code == 404
        assert client.delete(f"/api/sessions/drafts/{session_id}", params=owner).status_code == 404

    def test_recover_needs_owner(self, client):
        assert client.get("/api/sessions/drafts").status_code == 400

    def test_guest_create_needs_token(self, client):
        assert client.post("/api/sessions/drafts", json={"data": {}}).status_code == 400

    def test_bad_progress(self, client):
        session_id = client.post("/api/sessions/drafts", json={"guest_token": "g"}).json()["sessionId"]
        response = client.patch(
            f"/api/sessions/drafts/{session_id}/progress", params={"guest_token": "g"},
            json={"step": "dance", "completion_percentage": 10},
        )
        assert response.status_code == 400
        missing = client.patch(
            "/api/sessions/drafts/session_x/progress", params={"guest_token": "g"},
            json={"step": "audio", "completion_percentage": 10},
        )
        assert missing.status_code == 404

    def test_complete_for_user(self, client, patient_headers):
        session_id = client.post("/api/sessions/drafts", json={}, headers=patient_headers).json()["sessionId"]
        response = client.post(f"/api/sessions/drafts/{session_id}/complete", json=DIAGNOSIS, headers=patient_headers)
        assert response.status_code == 201
        assert response.json()["session"]["overall_score"] == 66
        assert client.get(f"/api/sessions/drafts/{session_id}", headers=patient_headers).status_code == 404

        recovered = client.get("/api/sessions/drafts", headers=patient_headers).json()
        assert recovered == {"sessions": []}

    def test_draft_handlers_run_in_threadpool(self):
        handlers = [
            sessions.create_draft, sessions.recover_drafts, sessions.resume_draft, sessions.save_draft,
            sessions.update_draft_progress, sessions.complete_draft, sessions.delete_draft,
        ]
        assert not any(inspect.iscoroutinefunction(handler) for handler in handlers)

    def test_cleanup_is_admin_only(self, client, patient_headers, admin_headers):
        assert client.post("/api/sessions/drafts/cleanup", headers=patient_headers).status_code == 403
        response = client.post("/api/sessions/drafts/cleanup", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"deleted": 0}


class TestDraftOwnership:
    @pytest.fixture
    def user_draft(self, client, patient_headers):
        created = client.post("/api/sessions/drafts", json={"data": {"name": "Ali", "secret": "x"}}, headers=patient_headers)
        return created.json()["sessionId"]

    def test_anonymous_cannot_read(self, client, user_draft):
        assert client.get(f"/api/sessions/drafts/{user_draft}").status_code == 400
        assert client.get(f"/api/sessions/drafts/{user_draft}", params={"guest_token": "guess"}).status_code == 404

    def test_other_user_cannot_read_or_overwrite(self, client, user_draft, patient_headers, other_headers):
        path = f"/api/sessions/drafts/{user_draft}"
        assert client.get(path, headers=other_headers).status_code == 404
        assert client.put(path, json={"data": {"name": "evil"}}, headers=other_headers).status_code == 404
        progress = client.patch(f"{path}/progress", json={"step": "pulse", "completion_percentage": 70}, headers=other_headers)
        assert progress.status_code == 404
        complete = client.post(f"{path}/complete", json=DIAGNOSIS, headers=other_headers)
        assert complete.status_code == 404
        assert client.delete(path, headers=other_headers).status_code == 404

        mine = client.get(path, headers=patient_headers)
        assert mine.status_code == 200
        assert mine.json()["data"] == {"name": "Ali", "secret": "x"}
        assert mine.json()["currentStep"] == "basic_info"

    def test_guest_token_must_match(self, client):
        session_id = client.post("/api/sessions/drafts", json={"guest_token": "guest-a"}).json()["sessionId"]
        path = f"/api/sessions/drafts/{session_id}"
        assert client.get(path, params={"guest_token": "guest-b"}).status_code == 404
        assert client.put(path, json={"data": {}, "guest_token": "guest-b"}).status_code == 404
        assert client.delete(path, params={"guest_token": "guest-b"}).status_code == 404
        assert client.get(path, params={"guest_token": "guest-a"}).status_code == 200

    def test_user_cannot_take_guest_draft(self, client, patient_headers):
        session_id = client.post("/api/sessions/drafts", json={"guest_token": "guest-a"}).json()["sessionId"]
        assert client.get(f"/api/sessions/drafts/{session_id}", headers=patient_headers).status_code == 404
