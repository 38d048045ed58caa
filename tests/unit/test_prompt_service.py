"""
Unit tests for sihat.services.prompt_service
"""
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from sihat.database.models import SystemSetting
from sihat.services.prompt_service import prompt_service
from sihat.services.prompts import DEFAULT_PROMPTS, REQUIRED_PROMPT_ROLES, language_instruction


class TestPromptResolution:
    def test_default_without_database(self):
        assert prompt_service.get_system_prompt(None, "doctor_chat") == DEFAULT_PROMPTS["doctor_chat"]

    def test_unknown_role(self):
        with pytest.raises(KeyError):
            prompt_service.get_default_prompt("doctor_dentist")

    def test_override_wins(self, db):
        prompt_service.save_prompt(db, "doctor_final", "Custom final prompt")
        assert prompt_service.get_system_prompt(db, "doctor_final") == "Custom final prompt"
        assert prompt_service.has_custom_prompt(db, "doctor_final") is True

    def test_blank_override_ignored(self, db):
        prompt_service.save_prompt(db, "doctor_face", "   ")
        assert prompt_service.get_system_prompt(db, "doctor_face") == DEFAULT_PROMPTS["doctor_face"]
        assert prompt_service.has_custom_prompt(db, "doctor_face") is False

    def test_database_error_falls_back(self):
        broken = MagicMock()
        broken.query.side_effect = OperationalError("SELECT", {}, Exception("db down"))
        assert prompt_service.get_system_prompt(broken, "doctor_tongue") == DEFAULT_PROMPTS["doctor_tongue"]
        assert prompt_service.has_custom_prompt(broken, "doctor_tongue") is False

    def test_save_unknown_role(self, db):
        with pytest.raises(KeyError):
            prompt_service.save_prompt(db, "doctor_dentist", "text")

    def test_save_updates_existing(self, db):
        first = prompt_service.save_prompt(db, "doctor_chat", "v1")
        second = prompt_service.save_prompt(db, "doctor_chat", "v2")
        assert first.id == second.id
        assert prompt_service.get_system_prompt(db, "doctor_chat") == "v2"

    def test_reset(self, db):
        prompt_service.save_prompt(db, "doctor_chat", "custom")
        assert prompt_service.reset_prompt(db, "doctor_chat") is True
        assert prompt_service.reset_prompt(db, "doctor_chat") is False
        assert prompt_service.get_system_prompt(db, "doctor_chat") == DEFAULT_PROMPTS["doctor_chat"]


class TestListingAndStatus:
    def test_list_prompts(self, db):
        prompt_service.save_prompt(db, "doctor_body", "Body override")
        prompts = {p["role"]: p for p in prompt_service.list_prompts(db)}
        assert set(prompts) == set(DEFAULT_PROMPTS)
        assert prompts["doctor_body"]["is_custom"] is True
        assert prompts["doctor_body"]["prompt_text"] == "Body override"
        assert prompts["doctor_chat"]["is_custom"] is False

    def test_status(self, db):
        prompt_service.save_prompt(db, "doctor_listening", "Listen closely")
        status = {s["role"]: s["status"] for s in prompt_service.get_prompt_status(db)}
        assert list(status) == REQUIRED_PROMPT_ROLES
        assert status["doctor_listening"] == "customized"
        assert status["doctor_chat"] == "default"


class TestDoctorConfig:
    def test_default(self, db):
        assert prompt_service.get_doctor_config(db) == {"default_level": "Physician", "model": "gemini-2.0-flash"}

    def test_save(self, db):
        config = prompt_service.save_doctor_config(db, "Expert")
        assert config == {"default_level": "Expert", "model": "gemini-2.5-pro"}
        assert prompt_service.get_doctor_config(db) == config

    def test_unknown_level(self, db):
        with pytest.raises(ValueError):
            prompt_service.save_doctor_config(db, "Wizard")

    def test_seeded_default_level(self, db):
        db.add(SystemSetting(key="default_doctor_level", value="Expert"))
        db.commit()
        assert prompt_service.get_doctor_config(db) == {"default_level": "Expert", "model": "gemini-2.5-pro"}

    @pytest.mark.parametrize("level,expected", [
        (None, "gemini-1.5-flash"),
        ("Master", "gemini-3.0-preview"),
        ("Expert", "gemini-2.5-pro"),
        ("default", "gemini-2.0-flash"),
    ])
    def test_resolve_model(self, db, level, expected):
        assert prompt_service.resolve_model(db, "gemini-1.5-flash", level) == expected

    def test_resolve_model_uses_saved_default(self, db):
        prompt_service.save_doctor_config(db, "Master")
        assert prompt_service.resolve_model(db, "gemini-1.5-flash", "default") == "gemini-3.0-preview"

    def test_config_row_is_not_a_prompt(self, db):
        prompt_service.save_doctor_config(db, "Master")
        assert "doctor" not in {p["role"] for p in prompt_service.list_prompts(db)}


class TestLanguageInstruction:
    def test_unknown_language_falls_back(self):
        assert language_instruction("fr") == language_instruction("en")

    def test_languages_differ(self):
        assert language_instruction("zh") != language_instruction("en")
        assert language_instruction("ms") != language_instruction("en")
