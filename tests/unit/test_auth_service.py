"""
Unit tests for sihat.services.auth_service
"""
from datetime import timedelta

import pytest
from fastapi import HTTPException

from sihat.database.models import AuditLog, UserRole
from sihat.services.auth_service import audit_service, auth_service, require_admin


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = auth_service.hash_password("secret123")
        assert hashed != "secret123"
        assert auth_service.verify_password("secret123", hashed) is True
        assert auth_service.verify_password("wrong", hashed) is False

    def test_malformed_hash(self):
        assert auth_service.verify_password("secret123", "not-a-bcrypt-hash") is False


class TestTokens:
    def test_round_trip_claims(self, patient_user):
        payload = auth_service.decode_token(auth_service.create_user_token(patient_user))
        assert payload["sub"] == str(patient_user.id)
        assert payload["role"] == "patient"

    def test_expired_token(self):
        token = auth_service.create_access_token({"sub": "1"}, expires_delta=timedelta(seconds=-1))
        assert auth_service.decode_token(token) is None

    def test_garbage_token(self):
        assert auth_service.decode_token("not.a.jwt") is None


class TestRegistration:
    def test_email_normalized(self, db):
        user = auth_service.register_user(db, "  New.User@Example.COM ", "password123")
        assert user.email == "new.user@example.com"
        assert user.role == UserRole.PATIENT

    def test_duplicate_email(self, db, patient_user):
        with pytest.raises(ValueError):
            auth_service.register_user(db, "PATIENT@example.com", "another")

    def test_authenticate(self, db, patient_user):
        user = auth_service.authenticate_user(db, "patient@example.com", "password123")
        assert user.id == patient_user.id
        assert user.last_login is not None

    def test_authenticate_failures(self, db, patient_user):
        assert auth_service.authenticate_user(db, "patient@example.com", "wrong") is None
        assert auth_service.authenticate_user(db, "nobody@example.com", "password123") is None

    def test_inactive_user_cannot_login(self, db, patient_user):
        patient_user.is_active = False
        db.commit()
        assert auth_service.authenticate_user(db, "patient@example.com", "password123") is None


class TestRoles:
    def test_admin_allowed(self, admin_user):
        assert require_admin(admin_user) is admin_user

    def test_patient_rejected(self, patient_user):
        with pytest.raises(HTTPException) as exc_info:
            require_admin(patient_user)
        assert exc_info.value.status_code == 403

    def test_require_roles(self, patient_user):
        checker = auth_service.require_roles(UserRole.DOCTOR)
        with pytest.raises(HTTPException) as exc_info:
            checker(current_user=patient_user)
        assert exc_info.value.status_code == 403


class TestAudit:
    def test_system_entry(self, db):
        entry = audit_service.log(db=db, action="cleanup", resource_type="draft", description="Removed 3 drafts")
        assert entry.user_email == "system"
        assert entry.user_role == "system"

    def test_user_entry(self, db, admin_user):
        audit_service.log(
            db=db, action="update", resource_type="setting", resource_id=42, new_values={"value": "x"}, user=admin_user
        )
        entry = db.query(AuditLog).one()
        assert entry.resource_id == "42"
        assert entry.user_role == "admin"
        assert entry.new_values == {"value": "x"}
