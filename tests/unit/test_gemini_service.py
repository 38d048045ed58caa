"""
Unit tests for sihat.services.gemini_service
"""
from unittest.mock import patch

import pytest

from sihat.database.models import SystemSetting
from sihat.services.gemini_service import GeminiService, apply_admin_api_key, decode_data_url


@pytest.fixture
def service():
    with patch.object(GeminiService, "_initialize"):
        return GeminiService()


class TestAdminApiKey:
    def test_applies_new_key(self, service):
        with patch("sihat.services.gemini_service.vertexai.init") as init:
            assert service.use_api_key("AIzaSyAdminKey1234") is True
            assert service.use_api_key("AIzaSyAdminKey1234") is False
        init.assert_called_once_with(api_key="AIzaSyAdminKey1234")
        assert service.initialized is True
        assert service.api_key == "AIzaSyAdminKey1234"

    def test_service_account_keeps_priority(self, service):
        service.project_id = "sihat-prod"
        with patch("sihat.services.gemini_service.vertexai.init") as init:
            assert service.use_api_key("AIzaSyAdminKey1234") is False
        init.assert_not_called()

    def test_blank_key_ignored(self, service):
        assert service.use_api_key("") is False
        assert service.use_api_key(None) is False

    def test_init_failure_leaves_service_unchanged(self, service):
        with patch("sihat.services.gemini_service.vertexai.init", side_effect=ValueError("bad key")):
            assert service.use_api_key("AIzaSyBroken") is False
        assert service.initialized is False
        assert service.api_key is None

    def test_dependency_reads_setting(self, db, service):
        db.add(SystemSetting(key="gemini_api_key", value=" AIzaSyAdminKey1234 ", is_secret=True))
        db.commit()
        with patch("sihat.services.gemini_service.get_gemini_service", return_value=service), \
                patch.object(service, "use_api_key") as use_api_key:
            apply_admin_api_key(db)
        use_api_key.assert_called_once_with("AIzaSyAdminKey1234")

    def test_dependency_without_setting(self, db, service):
        with patch("sihat.services.gemini_service.get_gemini_service", return_value=service), \
                patch.object(service, "use_api_key") as use_api_key:
            apply_admin_api_key(db)
        use_api_key.assert_not_called()


class TestDataUrls:
    def test_data_url(self):
        assert decode_data_url("data:image/png;base64,aGk=", "image/jpeg") == (b"hi", "image/png")

    def test_bare_base64_uses_default(self):
        assert decode_data_url("aGk=", "audio/webm") == (b"hi", "audio/webm")

    def test_invalid(self):
        with pytest.raises(ValueError):
            decode_data_url("data:image/png;base64,@@@", "image/png")
