"""
Database Package
Provides database models, connection management, and session handling
"""
from sihat.database.connection import get_db, db_manager, init_database
from sihat.database.models import (
    Base, User, UserRole, DiagnosisSession, GuestDiagnosisSession,
    DiagnosisSessionDraft, PatientMedicine, MedicalReport, NotificationPreference,
    SystemPrompt, SystemLog, SystemErrorRecord, AuditLog, SystemSetting
)


def init_db():
    """Initialize database and seed default data"""
    db_manager.init_database()


__all__ = [
    'get_db', 'db_manager', 'init_database', 'init_db',
    'Base', 'User', 'UserRole', 'DiagnosisSession', 'GuestDiagnosisSession',
    'DiagnosisSessionDraft', 'PatientMedicine', 'MedicalReport', 'NotificationPreference',
    'SystemPrompt', 'SystemLog', 'SystemErrorRecord', 'AuditLog', 'SystemSetting'
]
