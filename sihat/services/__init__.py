# Services Package
from .gemini_service import GeminiService, get_gemini_service
from .model_fallback import AllModelsFailedError, generate_text_with_fallback, stream_text_with_fallback
from .auth_service import AuthService, auth_service, AuditService, audit_service
from .prompt_service import prompt_service
from .diagnosis_service import diagnosis_service
from .session_manager import SessionManager, session_manager
from .monitoring_service import monitoring_service
from .alert_manager import AlertManager, alert_manager
from .health_service import health_service
from .medical_safety_service import medical_safety_service
from .image_quality_service import image_quality_service

__all__ = [
    'GeminiService',
    'get_gemini_service',
    'AllModelsFailedError',
    'generate_text_with_fallback',
    'stream_text_with_fallback',
    'AuthService',
    'auth_service',
    'AuditService',
    'audit_service',
    'prompt_service',
    'diagnosis_service',
    'SessionManager',
    'session_manager',
    'monitoring_service',
    'AlertManager',
    'alert_manager',
    'health_service',
    'medical_safety_service',
    'image_quality_service',
]
