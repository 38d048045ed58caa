"""
Integration tests for the consultation, analysis, safety and health routes
"""
import base64
import io
import json
from types import SimpleNamespace
from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image

pytestmark = pytest.mark.integration

IMAGE_DATA_URL = "data:image/jpeg;base64," + base64.b64encode(b"fake-jpeg").decode()


def gray_png_data_url(value=128, size=800):
    buf = io.BytesIO()
    Image.fromarray(np.full((size, size, 3), value, dtype=np.uint8)).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


class TestChat:
    def test_streams_with_model_header(self, client, fake_gemini):
        fake_gemini.default = ["How long ", "have you felt tired?"]
        response = client.post("/api/chat", json={
            "messages": [{"role": "user", "content": "I am always tired"}],
            "basicInfo": {"name": "Mei", "age": 34},
        })
        assert response.status_code == 200
        assert response.text == "How long have you felt tired?"
        assert response.headers["x-model-used"] == "gemini-2.0-flash"

    def test_fallback_header(self, client, fake_gemini):
        fake_gemini.responses = {"gemini-2.0-flash": RuntimeError("503 overloaded")}
        fake_gemini.default = ["Tell me more."]
        response = client.post("/api/chat", json={"messages": []})
        assert response.headers["x-model-used"].endswith("-fallback")

    def test_all_models_fail(self, client, fake_gemini):
        fake_gemini.default = RuntimeError("429 quota exceeded")
        response = client.post("/api/chat", json={"messages": []})
        assert response.status_code == 500
        assert response.json()["code"] == "API_QUOTA_EXCEEDED"

    def test_server_errors_feed_error_rate(self, client, fake_gemini):
        fake_gemini.default = RuntimeError("429 quota exceeded")
        with patch("main.alert_manager") as alerts:
            client.post("/api/chat", json={"messages": []})
            client.post("/api/safety/emergency", json={"symptoms": ["headache"]})
        assert [c.args for c in alerts.record_ratio.call_args_list] == [
            ("error_rate", True),
            ("error_rate", False),
        ]
        assert alerts.record_metric.call_count == 2


class TestSummarizeInquiry:
    def test_summary(self, client, fake_gemini):
        fake_gemini.default = "Cold limbs for two months."
        response = client.post("/api/summarize-inquiry", json={
            "chatHistory": [{"role": "user", "content": "My hands are always cold"}],
        })
        assert response.status_code == 200
        assert response.json()["summary"] == "Cold limbs for two months."

    def test_no_history(self, client, fake_gemini):
        response = client.post("/api/summarize-inquiry", json={"chatHistory": []})
        assert response.status_code == 400
        assert response.json()["code"] == "NO_HISTORY"
        assert fake_gemini.calls == []

    def test_all_models_fail(self, client, fake_gemini):
        fake_gemini.default = RuntimeError("something odd")
        response = client.post("/api/summarize-inquiry", json={
            "chatHistory": [{"role": "user", "content": "headache"}],
        })
        assert response.status_code == 500
        assert response.json()["code"] == "GENERATION_FAILED"


class TestConsultAndReportChat:
    def test_consult_streams_report(self, client, fake_gemini):
        fake_gemini.default = ['{"diagnosis": ', '"Qi Deficiency"}']
        response = client.post("/api/consult", json={
            "data": {"basic_info": {"name": "Mei", "age": 34}, "inquiry": "Tired after meals"},
        })
        assert response.status_code == 200
        assert json.loads(response.text) == {"diagnosis": "Qi Deficiency"}
        assert response.headers["x-model-used"] == "gemini-1.5-flash"

    def test_consult_with_malformed_sections(self, client, fake_gemini):
        fake_gemini.default = ['{"diagnosis": "Heat"}']
        response = client.post("/api/consult", json={
            "data": {"qie": 72, "wen_audio": {"audio": "data:audio/webm;base64,AAAA", "analysis": "weak"}},
        })
        assert response.status_code == 200
        assert "Pulse not measured" in fake_gemini.contents[0]

    def test_report_chat(self, client, fake_gemini):
        fake_gemini.default = ["Eat warm, cooked food."]
        response = client.post("/api/report-chat", json={
            "messages": [{"role": "user", "content": "What should I eat?"}],
            "reportData": {"diagnosis": "Spleen Qi Deficiency"},
        })
        assert response.text == "Eat warm, cooked food."

    def test_report_chat_requires_report(self, client):
        response = client.post("/api/report-chat", json={"messages": []})
        assert response.status_code == 422


class TestAdminModelSettings:
    def test_doctor_level_picks_model(self, client, fake_gemini):
        fake_gemini.default = ['{"diagnosis": "Qi Deficiency"}']
        response = client.post("/api/consult", json={"data": {}, "doctorLevel": "Expert"})
        assert response.headers["x-model-used"] == "gemini-2.5-pro"

    def test_default_level_follows_admin_config(self, client, admin_headers, fake_gemini):
        client.put("/api/admin/doctor-config", json={"default_level": "Master"}, headers=admin_headers)
        fake_gemini.default = ["How long have you felt this way?"]
        response = client.post("/api/chat", json={"messages": [], "doctorLevel": "default"})
        assert response.headers["x-model-used"] == "gemini-3.0-preview"

    def test_admin_api_key_applied(self, client, admin_headers, fake_gemini):
        client.put("/api/admin/settings/gemini_api_key", json={"value": "AIzaSyAdminKey1234"}, headers=admin_headers)
        fake_gemini.default = ["Tell me more."]
        with patch("sihat.services.gemini_service.get_gemini_service") as get_service:
            client.post("/api/chat", json={"messages": []})
        get_service.return_value.use_api_key.assert_called_once_with("AIzaSyAdminKey1234")

    def test_no_admin_api_key(self, client, fake_gemini):
        fake_gemini.default = ["Tell me more."]
        with patch("sihat.services.gemini_service.get_gemini_service") as get_service:
            client.post("/api/chat", json={"messages": []})
        get_service.assert_not_called()


class TestAnalysis:
    def test_analyze_image(self, client, fake_gemini):
        fake_gemini.default = json.dumps({
            "observation": "Red complexion with dry lips and a flushed area over both cheeks",
            "issues": ["Heat"],
            "confidence": 88,
            "is_valid_image": True,
        })
        response = client.post("/api/analyze-image", json={"image": IMAGE_DATA_URL, "type": "face"})
        assert response.status_code == 200
        assert response.json()["observation"] == "Red complexion with dry lips and a flushed area over both cheeks"
        assert response.json()["modelUsed"] == 1

    def test_analyze_image_bad_type(self, client):
        assert client.post("/api/analyze-image", json={"image": IMAGE_DATA_URL, "type": "foot"}).status_code == 422

    def test_analyze_audio_without_recording(self, client, fake_gemini):
        response = client.post("/api/analyze-audio", json={})
        assert response.status_code == 200
        assert response.json()["status"] == "error"

    def test_image_quality(self, client):
        response = client.post("/api/image-quality", json={"image": gray_png_data_url(), "mode": "face"})
        assert response.status_code == 200
        assert response.json()["score"] == 25
        assert response.json()["overall"] == "poor"

    def test_image_quality_bad_payload(self, client):
        response = client.post("/api/image-quality", json={"image": "data:image/png;base64,@@@"})
        assert response.status_code == 400


class TestSafety:
    def test_emergency(self, client):
        response = client.post("/api/safety/emergency", json={"symptoms": ["chest pain", "sweating"]})
        assert response.json()["is_emergency"] is True
        assert response.json()["urgency"] == "immediate"

    def test_interactions(self, client):
        response = client.post("/api/safety/interactions", json={"herbs": ["Ginkgo"], "medications": ["warfarin"]})
        assert response.json()["count"] == 1
        assert response.json()["interactions"][0]["severity"] == "major"

    def test_validate(self, client):
        response = client.post("/api/safety/validate", json={
            "recommendations": {"dietary": ["Peanut soup"]},
            "medical_history": {"allergies": ["peanut"]},
        })
        assert response.json()["risk_level"] == "high"
        assert response.json()["concerns"][0]["type"] == "allergy"


class TestHealth:
    @staticmethod
    def memory(percent):
        return SimpleNamespace(percent=percent, used=2 * 1024 ** 3, total=8 * 1024 ** 3)

    def test_healthy(self, client):
        keys = {"gemini": {"status": "ok", "responseTime": 0}, "claude": {"status": "ok", "responseTime": 0}}
        with patch("sihat.services.health_service.check_ai_api", return_value=keys), patch(
            "sihat.services.health_service.psutil.virtual_memory", return_value=self.memory(25.0)
        ):
            response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["checks"]["memory"]["used"] == 2048

    def test_unhealthy_without_ai_keys(self, client):
        down = {"status": "down", "responseTime": 0, "message": "not configured"}
        with patch("sihat.services.health_service.check_ai_api", return_value={"gemini": down, "claude": down}), patch(
            "sihat.services.health_service.psutil.virtual_memory", return_value=self.memory(25.0)
        ):
            response = client.get("/api/health")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_root(self, client):
        assert client.get("/").json()["docs"] == "/api/docs"
