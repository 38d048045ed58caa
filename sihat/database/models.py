"""
Database Models
SQLAlchemy models for the Sihat TCM diagnosis platform
"""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, Float,
    ForeignKey, JSON, Enum as SQLEnum, Index
)
from sqlalchemy.orm import declarative_base, relationship
import enum

Base = declarative_base()


class UserRole(enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"
    DEVELOPER = "developer"


class User(Base):
    """Patient, doctor and admin profiles"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(100))
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.PATIENT)

    # Profile used to pre-fill the diagnosis wizard
    age = Column(Integer)
    gender = Column(String(20))
    height = Column(Float)
    weight = Column(Float)
    medical_history = Column(Text)
    preferred_language = Column(String(5), default="en")

    is_active = Column(Boolean, default=True)
    last_login = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    diagnosis_sessions = relationship("DiagnosisSession", back_populates="user", cascade="all, delete-orphan")
    medicines = relationship("PatientMedicine", back_populates="user", cascade="all, delete-orphan")
    audit_logs = relationship("AuditLog", back_populates="user")

    __table_args__ = (
        Index('idx_user_role', 'role'),
    )


class DiagnosisRecordMixin:
    """Columns shared by user and guest diagnosis sessions"""

    primary_diagnosis = Column(String(255), nullable=False)
    constitution = Column(String(255))
    overall_score = Column(Integer)
    full_report = Column(JSON, nullable=False, default=dict)
    notes = Column(Text)

    # Extracted from the report for quick access
    symptoms = Column(JSON)
    medicines = Column(JSON)
    vital_signs = Column(JSON)
    treatment_plan = Column(JSON)

    # Raw wizard input
    inquiry_summary = Column(Text)
    inquiry_chat_history = Column(JSON)
    inquiry_report_files = Column(JSON)
    inquiry_medicine_files = Column(JSON)
    tongue_analysis = Column(JSON)
    face_analysis = Column(JSON)
    body_analysis = Column(JSON)
    audio_analysis = Column(JSON)
    pulse_data = Column(JSON)

    is_hidden = Column(Boolean, default=False)
    is_guest_session = Column(Boolean, default=False)
    guest_email = Column(String(255))
    guest_name = Column(String(100))

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class DiagnosisSession(DiagnosisRecordMixin, Base):
    """Completed diagnosis owned by a registered user"""
    __tablename__ = 'diagnosis_sessions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)

    user = relationship("User", back_populates="diagnosis_sessions")

    __table_args__ = (
        Index('idx_diagnosis_user_created', 'user_id', 'created_at'),
    )


class GuestDiagnosisSession(DiagnosisRecordMixin, Base):
    """Diagnosis saved without an account, claimable later by token"""
    __tablename__ = 'guest_diagnosis_sessions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_token = Column(String(64), unique=True, nullable=False, index=True)
    migrated_to_user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'))
    migrated_at = Column(DateTime)


class DiagnosisSessionDraft(Base):
    """Autosaved in-progress wizard state"""
    __tablename__ = 'diagnosis_session_drafts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'))
    guest_token = Column(String(64))
    data = Column(JSON, nullable=False, default=dict)
    session_metadata = Column(JSON, nullable=False, default=dict)
    current_step = Column(String(50), default="basic_info")
    completion_percentage = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_draft_updated', 'updated_at'),
    )


class PatientMedicine(Base):
    """Medicines a patient is currently taking or has taken"""
    __tablename__ = 'patient_medicines'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(200), nullable=False)
    chinese_name = Column(String(200))
    dosage = Column(String(100))
    frequency = Column(String(100))
    purpose = Column(String(255))
    specialty = Column(String(100))
    notes = Column(Text)
    is_active = Column(Boolean, default=True)
    start_date = Column(String(20))
    stop_date = Column(String(20))
    edited_by = Column(String(20), default="patient")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="medicines")


class MedicalReport(Base):
    """Uploaded medical documents"""
    __tablename__ = 'medical_reports'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(255), nullable=False)
    date = Column(String(20))
    size = Column(String(20))
    type = Column(String(100))
    file_url = Column(Text)
    extracted_text = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)


class NotificationPreference(Base):
    """Per-user notification settings"""
    __tablename__ = 'user_notification_preferences'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)

    enabled = Column(Boolean, default=True)
    health_reminders = Column(Boolean, default=True)
    medication_alerts = Column(Boolean, default=True)
    appointment_reminders = Column(Boolean, default=True)
    exercise_reminders = Column(Boolean, default=True)
    sleep_reminders = Column(Boolean, default=True)

    quiet_hours_enabled = Column(Boolean, default=False)
    quiet_hours_start = Column(String(5), default="22:00")
    quiet_hours_end = Column(String(5), default="07:00")

    frequency_daily = Column(Boolean, default=True)
    frequency_weekly = Column(Boolean, default=True)
    frequency_monthly = Column(Boolean, default=False)

    categories = Column(JSON)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SystemPrompt(Base):
    """Admin overrides for AI system prompts, keyed by role"""
    __tablename__ = 'system_prompts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    role = Column(String(50), unique=True, nullable=False, index=True)
    prompt_text = Column(Text, default="")
    config = Column(JSON)
    updated_by = Column(Integer, ForeignKey('users.id'))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SystemLog(Base):
    """Application events surfaced in the admin console"""
    __tablename__ = 'system_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    level = Column(String(20), nullable=False, default="info")
    category = Column(String(50), nullable=False, default="system")
    message = Column(Text, nullable=False)
    log_metadata = Column(JSON)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'))
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_system_logs_timestamp', 'timestamp'),
        Index('idx_system_logs_level', 'level'),
        Index('idx_system_logs_category', 'category'),
    )


class SystemErrorRecord(Base):
    """Errors reported by clients and services for the health dashboard"""
    __tablename__ = 'system_errors'

    id = Column(Integer, primary_key=True, autoincrement=True)
    error_type = Column(String(100), nullable=False)
    message = Column(Text, nullable=False)
    stack_trace = Column(Text)
    component = Column(String(100))
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'))
    session_id = Column(String(64))
    url = Column(Text)
    user_agent = Column(String(500))
    severity = Column(String(20), nullable=False, default="medium")
    error_metadata = Column(JSON)
    resolved = Column(Boolean, default=False)
    resolved_at = Column(DateTime)
    resolved_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'))
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_system_errors_timestamp', 'timestamp'),
        Index('idx_system_errors_severity', 'severity'),
    )


class AuditLog(Base):
    """Audit trail of account and admin actions"""
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Who
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'))
    user_email = Column(String(255))
    user_role = Column(String(50))
    ip_address = Column(String(50))
    user_agent = Column(String(500))

    # What
    action = Column(String(100), nullable=False)  # login, create, update, delete
    resource_type = Column(String(50), nullable=False)  # session, prompt, setting, user
    resource_id = Column(String(64))
    description = Column(Text)
    new_values = Column(JSON)

    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    success = Column(Boolean, default=True)

    user = relationship("User", back_populates="audit_logs")

    __table_args__ = (
        Index('idx_audit_timestamp', 'timestamp'),
        Index('idx_audit_resource', 'resource_type', 'resource_id'),
    )


class SystemSetting(Base):
    """Admin-editable configuration"""
    __tablename__ = 'system_settings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(Text)
    description = Column(Text)
    is_secret = Column(Boolean, default=False)
    updated_by = Column(Integer, ForeignKey('users.id'))
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
