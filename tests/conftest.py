"""
Shared pytest fixtures for Sihat TCM tests.
"""
import os
from unittest.mock import patch

import pytest

from sihat.database.connection import DatabaseManager, get_db
from sihat.database.models import UserRole
from sihat.services.auth_service import auth_service


@pytest.fixture
def mock_env():
    """Fixture to set common test environment variables."""
    env_vars = {
        "DATABASE_URL": "sqlite://",
        "JWT_SECRET_KEY": "test_secret_key_for_testing_only",
        "GEMINI_API_KEY": "test_gemini_key_placeholder",
        "ANTHROPIC_API_KEY": "test_anthropic_key_placeholder",
        "ENVIRONMENT": "development",
    }
    with patch.dict(os.environ, env_vars, clear=False):
        yield env_vars


@pytest.fixture
def database():
    """Fresh in-memory SQLite database per test."""
    manager = DatabaseManager()
    manager.init_db("sqlite://")
    yield manager
    manager.close()


@pytest.fixture
def db(database):
    session = database.get_session()
    yield session
    session.close()


@pytest.fixture
def patient_user(db):
    return auth_service.register_user(db, "patient@example.com", "password123", "Test Patient")


@pytest.fixture
def other_user(db):
    return auth_service.register_user(db, "other@example.com", "password123", "Other Patient")


@pytest.fixture
def admin_user(db):
    return auth_service.register_user(db, "admin@example.com", "adminpass", "Test Admin", role=UserRole.ADMIN)


# ==================== Fake Gemini ====================

class FakeGemini:
    """
    Stand-in for GeminiService.

    `responses` maps a model id to the text it returns, a list of chunks
    (streaming), or an exception it raises. Models not listed use `default`.
    """

    def __init__(self, responses=None, default=None):
        self.responses = responses or {}
        self.default = default
        self.calls = []
        self.system_instructions = []
        self.contents = []

    def _result(self, model_id, contents, system_instruction):
        self.calls.append(model_id)
        self.contents.append(contents)
        self.system_instructions.append(system_instruction)
        result = self.responses.get(model_id, self.default)
        if result is None:
            raise RuntimeError(f"Model {model_id} not found")
        if isinstance(result, Exception):
            raise result
        return result

    def generate(self, model_id, contents, system_instruction=None, generation_config=None):
        result = self._result(model_id, contents, system_instruction)
        return "".join(result) if isinstance(result, list) else result

    def stream(self, model_id, contents, system_instruction=None, generation_config=None):
        result = self._result(model_id, contents, system_instruction)
        return iter(result if isinstance(result, list) else [result])

    @staticmethod
    def part_from_data(data, mime_type):
        return {"mime_type": mime_type, "size": len(data)}


@pytest.fixture
def fake_gemini():
    """Patch every module that looks up the shared Gemini service."""
    fake = FakeGemini()
    with patch("sihat.services.model_fallback.get_gemini_service", return_value=fake), patch(
        "sihat.services.image_analysis_service.get_gemini_service", return_value=fake
    ), patch("sihat.services.audio_analysis_service.get_gemini_service", return_value=fake):
        yield fake


# ==================== API client ====================

@pytest.fixture
def client(database):
    """TestClient bound to the in-memory database (startup hooks are not run)."""
    from fastapi.testclient import TestClient
    from main import app

    def override_get_db():
        session = database.get_session()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def bearer(user):
    return {"Authorization": f"Bearer {auth_service.create_user_token(user)}"}


@pytest.fixture
def patient_headers(patient_user):
    return bearer(patient_user)


@pytest.fixture
def admin_headers(admin_user):
    return bearer(admin_user)


@pytest.fixture
def other_headers(other_user):
    return bearer(other_user)
