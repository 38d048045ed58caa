"""
Integration tests for the admin routes
"""
from unittest.mock import patch

import pytest

from sihat.services.alert_manager import AlertManager

pytestmark = pytest.mark.integration


@pytest.fixture
def alerts():
    manager = AlertManager(enabled=True)
    with patch("sihat.api.admin.alert_manager", manager), patch(
        "sihat.services.monitoring_service.alert_manager", manager
    ):
        yield manager


class TestAccess:
    @pytest.mark.parametrize("path", ["/api/admin/system-health", "/api/admin/prompts", "/api/admin/settings", "/api/admin/users"])
    def test_patient_forbidden(self, client, patient_headers, path):
        assert client.get(path, headers=patient_headers).status_code == 403

    def test_anonymous_unauthorized(self, client):
        assert client.get("/api/admin/logs").status_code == 401


class TestSystemHealth:
    def test_dashboard(self, client, admin_headers, alerts):
        response = client.get("/api/admin/system-health", headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["error_statistics"]["total_errors"] == 0
        assert body["health_metrics"]["database"]["status"] in ("healthy", "degraded")
        assert body["recent_errors"] == []

    def test_guest_error_report(self, client, admin_headers, alerts):
        response = client.post("/api/admin/system-health", json={
            "error_type": "TypeError", "message": "x is undefined", "component": "CameraCapture", "severity": "critical"
        })
        assert response.status_code == 200
        error_id = response.json()["error_id"]
        assert len(alerts.get_active_alerts()) == 1

        resolved = client.post(f"/api/admin/errors/{error_id}/resolve", headers=admin_headers)
        assert resolved.json()["resolved"] is True
        assert client.post("/api/admin/errors/999/resolve", headers=admin_headers).status_code == 404

    def test_error_report_validation(self, client, alerts):
        assert client.post("/api/admin/system-health", json={"message": "no type"}).status_code == 400
        response = client.post(
            "/api/admin/system-health", json={"error_type": "E", "message": "m", "severity": "apocalyptic"}
        )
        assert response.status_code == 400


class TestPrompts:
    def test_customize_and_reset(self, client, admin_headers):
        response = client.put("/api/admin/prompts/doctor_chat", json={"prompt_text": "Be brief."}, headers=admin_headers)
        assert response.status_code == 200

        status = {s["role"]: s["status"] for s in client.get("/api/admin/prompts/status", headers=admin_headers).json()}
        assert status["doctor_chat"] == "customized"

        reset = client.delete("/api/admin/prompts/doctor_chat", headers=admin_headers).json()
        assert reset == {"success": True, "reset": True}

    def test_unknown_role(self, client, admin_headers):
        response = client.put("/api/admin/prompts/doctor_dentist", json={"prompt_text": "x"}, headers=admin_headers)
        assert response.status_code == 404

    def test_doctor_config(self, client, admin_headers):
        assert client.get("/api/admin/doctor-config", headers=admin_headers).json()["default_level"] == "Physician"
        saved = client.put("/api/admin/doctor-config", json={"default_level": "Master"}, headers=admin_headers)
        assert saved.json() == {"default_level": "Master", "model": "gemini-3.0-preview"}
        bad = client.put("/api/admin/doctor-config", json={"default_level": "Intern"}, headers=admin_headers)
        assert bad.status_code == 400


class TestSettings:
    def test_secret_masked(self, client, admin_headers):
        response = client.put(
            "/api/admin/settings/gemini_api_key", json={"value": "AIzaSyExample9876"}, headers=admin_headers
        )
        assert response.json()["value"] == "********9876"
        assert response.json()["is_secret"] is True

        client.put("/api/admin/settings/maintenance_mode", json={"value": "off"}, headers=admin_headers)
        listed = {s["key"]: s["value"] for s in client.get("/api/admin/settings", headers=admin_headers).json()}
        assert listed == {"gemini_api_key": "********9876", "maintenance_mode": "off"}

    def test_delete(self, client, admin_headers):
        client.put("/api/admin/settings/theme", json={"value": "dark"}, headers=admin_headers)
        assert client.delete("/api/admin/settings/theme", headers=admin_headers).status_code == 200
        assert client.delete("/api/admin/settings/theme", headers=admin_headers).status_code == 404


class TestLogs:
    def test_log_lifecycle(self, client, admin_headers):
        created = client.post("/api/admin/logs", json={"level": "warn", "category": "camera", "message": "Low light"})
        assert created.status_code == 201
        client.post("/api/admin/logs", json={"level": "info", "message": "Started"})

        warnings = client.get("/api/admin/logs", params={"level": "warn"}, headers=admin_headers).json()
        assert warnings["total"] == 1
        assert warnings["logs"][0]["category"] == "camera"

        stats = client.get("/api/admin/logs/stats", headers=admin_headers).json()
        assert stats["total"] == 2

        assert client.delete("/api/admin/logs", headers=admin_headers).json() == {"deleted": 2}

    def test_invalid_level(self, client):
        assert client.post("/api/admin/logs", json={"level": "fatal", "message": "x"}).status_code == 400


class TestAlerts:
    def test_list_and_resolve(self, client, admin_headers, alerts):
        alert = alerts.send_alert("disk_full", "Disk almost full", "high")
        listed = client.get("/api/admin/alerts", headers=admin_headers).json()
        assert [a["id"] for a in listed] == [alert.id]

        assert client.post(f"/api/admin/alerts/{alert.id}/resolve", headers=admin_headers).status_code == 200
        assert client.post(f"/api/admin/alerts/{alert.id}/resolve", headers=admin_headers).status_code == 404
        assert client.get("/api/admin/alerts", headers=admin_headers).json() == []

        stats = client.get("/api/admin/alerts/statistics", headers=admin_headers).json()
        assert stats["resolvedAlerts"] == 1


class TestUsers:
    def test_list_and_change_role(self, client, admin_headers, patient_user):
        users = client.get("/api/admin/users", headers=admin_headers).json()
        assert users["total"] == 2

        patients = client.get("/api/admin/users", params={"role": "patient"}, headers=admin_headers).json()
        assert [u["email"] for u in patients["users"]] == ["patient@example.com"]

        changed = client.put(f"/api/admin/users/{patient_user.id}/role", json={"role": "doctor"}, headers=admin_headers)
        assert changed.json()["role"] == "doctor"

    def test_bad_role(self, client, admin_headers, patient_user):
        response = client.put(f"/api/admin/users/{patient_user.id}/role", json={"role": "wizard"}, headers=admin_headers)
        assert response.status_code == 400
        assert client.get("/api/admin/users", params={"role": "wizard"}, headers=admin_headers).status_code == 400
        assert client.put("/api/admin/users/9999/role", json={"role": "doctor"}, headers=admin_headers).status_code == 404
