"""
Unit tests for sihat.services.model_fallback
"""
import json
from unittest.mock import patch

import pytest

from sihat.services.model_fallback import (
    AllModelsFailedError,
    build_error_response,
    generate_text_with_fallback,
    model_for_doctor_level,
    model_order,
    parse_api_error,
    stream_text_with_fallback,
)


class TestModelOrder:
    def test_primary_first_then_fallbacks(self):
        assert model_order("a", ["b", "c"]) == ["a", "b", "c"]

    def test_primary_not_repeated(self):
        assert model_order("gemini-2.0-flash", ["gemini-2.0-flash", "gemini-1.5-flash"]) == [
            "gemini-2.0-flash",
            "gemini-1.5-flash",
        ]

    def test_doctor_level_mapping(self):
        assert model_for_doctor_level("Master") == "gemini-3.0-preview"
        assert model_for_doctor_level("Expert") == "gemini-2.5-pro"
        assert model_for_doctor_level("Physician") == "gemini-2.0-flash"


class TestGenerateWithFallback:
    def test_primary_success(self, fake_gemini):
        fake_gemini.responses = {"primary": "hello"}
        result = generate_text_with_fallback("primary", "prompt", fallbacks=["backup"])
        assert result.text == "hello"
        assert result.model_used == 1
        assert result.model_id == "primary"
        assert result.status == "Analysis complete"
        assert fake_gemini.calls == ["primary"]

    def test_falls_back_on_error(self, fake_gemini):
        fake_gemini.responses = {"primary": RuntimeError("boom"), "gemini-1.5-flash": "ok"}
        result = generate_text_with_fallback("primary", "prompt", fallbacks=["gemini-1.5-flash"])
        assert result.model_used == 2
        assert result.model_id == "gemini-1.5-flash"
        assert result.status == "Using standard analysis..."

    def test_empty_response_counts_as_failure(self, fake_gemini):
        fake_gemini.responses = {"primary": "   ", "backup": "real answer"}
        result = generate_text_with_fallback("primary", "prompt", fallbacks=["backup"])
        assert result.text == "real answer"
        assert fake_gemini.calls == ["primary", "backup"]

    def test_primary_not_retried_as_fallback(self, fake_gemini):
        fake_gemini.responses = {"primary": RuntimeError("down")}
        with pytest.raises(AllModelsFailedError):
            generate_text_with_fallback("primary", "prompt", fallbacks=["primary"])
        assert fake_gemini.calls == ["primary"]

    def test_validator_rejects_response(self, fake_gemini):
        fake_gemini.responses = {"primary": "not json", "backup": '{"ok": true}'}

        def validator(text):
            try:
                return True, json.loads(text)
            except ValueError:
                return False, None

        result = generate_text_with_fallback("primary", "prompt", fallbacks=["backup"], validator=validator)
        assert result.parsed == {"ok": True}
        assert result.model_id == "backup"

    def test_all_fail_raises_with_cause(self, fake_gemini):
        fake_gemini.responses = {"a": RuntimeError("first"), "b": RuntimeError("quota exceeded")}
        with pytest.raises(AllModelsFailedError) as exc_info:
            generate_text_with_fallback("a", "prompt", fallbacks=["b"], context="unit test")
        assert "unit test" in str(exc_info.value)
        assert "quota" in str(exc_info.value.__cause__)

    def test_outcomes_feed_ai_success_rate(self, fake_gemini):
        fake_gemini.responses = {"primary": RuntimeError("boom"), "blank": "  ", "backup": "ok"}
        with patch("sihat.services.model_fallback.alert_manager") as alerts:
            generate_text_with_fallback("primary", "prompt", fallbacks=["blank", "backup"])
        assert [c.args for c in alerts.record_ratio.call_args_list] == [
            ("ai_success_rate", False),
            ("ai_success_rate", False),
            ("ai_success_rate", True),
        ]


class TestStreamWithFallback:
    def test_primary_stream(self, fake_gemini):
        fake_gemini.responses = {"primary": ["Hel", "lo"]}
        result = stream_text_with_fallback("primary", "prompt", fallbacks=["backup"])
        assert "".join(result.chunks) == "Hello"
        assert result.header_value == "primary"

    def test_fallback_header(self, fake_gemini):
        fake_gemini.responses = {"primary": RuntimeError("429"), "backup": ["ok"]}
        result = stream_text_with_fallback("primary", "prompt", fallbacks=["backup"])
        assert list(result.chunks) == ["ok"]
        assert result.header_value == "backup-fallback"

    def test_empty_stream_moves_on(self, fake_gemini):
        fake_gemini.responses = {"primary": [], "backup": ["text"]}
        result = stream_text_with_fallback("primary", "prompt", fallbacks=["backup"])
        assert result.model_id == "backup"

    def test_all_fail_reports_primary_error(self, fake_gemini):
        fake_gemini.responses = {"primary": RuntimeError("primary broke"), "backup": RuntimeError("backup broke")}
        with pytest.raises(AllModelsFailedError) as exc_info:
            stream_text_with_fallback("primary", "prompt", fallbacks=["backup"])
        assert "Primary error: primary broke" in str(exc_info.value)

    def test_stream_outcomes_feed_ai_success_rate(self, fake_gemini):
        fake_gemini.responses = {"primary": RuntimeError("429"), "backup": ["ok"]}
        with patch("sihat.services.model_fallback.alert_manager") as alerts:
            stream_text_with_fallback("primary", "prompt", fallbacks=["backup"])
        assert [c.args for c in alerts.record_ratio.call_args_list] == [
            ("ai_success_rate", False),
            ("ai_success_rate", True),
        ]


class TestParseApiError:
    @pytest.mark.parametrize("message,code", [
        ("Your API key was reported as leaked", "API_KEY_LEAKED"),
        ("API_KEY_INVALID: check your key", "API_KEY_INVALID"),
        ("429 Resource exhausted", "API_QUOTA_EXCEEDED"),
        ("Quota exceeded for project", "API_QUOTA_EXCEEDED"),
        ("Model gemini-9 does not exist", "MODEL_NOT_FOUND"),
        ("something odd", "UNKNOWN_ERROR"),
    ])
    def test_codes(self, message, code):
        assert parse_api_error(Exception(message)).code == code

    def test_unknown_message(self):
        assert parse_api_error(Exception("weird")).user_message == "An error occurred. Please try again."


class TestBuildErrorResponse:
    def test_details_in_development(self):
        with patch("sihat.services.model_fallback.settings") as mock_settings:
            mock_settings.is_development = True
            response = build_error_response(Exception("quota hit"), "test")
        body = json.loads(response.body)
        assert response.status_code == 500
        assert body["code"] == "API_QUOTA_EXCEEDED"
        assert body["details"] == "quota hit"

    def test_no_details_in_production(self):
        with patch("sihat.services.model_fallback.settings") as mock_settings:
            mock_settings.is_development = False
            response = build_error_response(Exception("quota hit"), "test")
        assert "details" not in json.loads(response.body)
