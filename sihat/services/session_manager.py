"""
Diagnosis Session Manager
Autosaves in-progress wizard state so patients can resume a consultation,
and cleans up drafts that were abandoned.
"""
import time
import secrets
import string
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sihat.config import settings
from sihat.database.models import DiagnosisSessionDraft, User
from sihat.services.diagnosis_service import diagnosis_service

logger = logging.getLogger(__name__)

# Wizard order; the draft's current_step is one of these
WIZARD_STEPS = [
    "basic_info",
    "inquiry",
    "tongue",
    "face",
    "body",
    "audio",
    "pulse",
    "smart_connect",
    "report",
]
MINUTES_PER_STEP = 2
SESSION_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id() -> str:
    """session_<epoch ms>_<9 random base36 chars>"""
    suffix = "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def estimate_time_remaining(current_step: str) -> int:
    """Minutes left, counting the current step and those after it"""
    if current_step not in WIZARD_STEPS:
        return len(WIZARD_STEPS) * MINUTES_PER_STEP
    remaining = len(WIZARD_STEPS) - WIZARD_STEPS.index(current_step)
    return remaining * MINUTES_PER_STEP


def owns_draft(draft: DiagnosisSessionDraft, user_id: int = None, guest_token: str = None) -> bool:
    """Account drafts belong to their user, guest drafts to their guest token"""
    if draft.user_id is not None:
        return draft.user_id == user_id
    return user_id is None and draft.guest_token == guest_token


def draft_to_dict(draft: DiagnosisSessionDraft) -> Dict[str, Any]:
    metadata = draft.session_metadata or {}
    return {
        "sessionId": draft.session_id,
        "userId": draft.user_id,
        "guestToken": draft.guest_token,
        "isGuest": draft.user_id is None,
        "data": draft.data or {},
        "currentStep": draft.current_step,
        "completionPercentage": draft.completion_percentage,
        "startTime": metadata.get("startTime") or (draft.created_at.isoformat() if draft.created_at else None),
        "lastSaved": draft.updated_at.isoformat() if draft.updated_at else None,
        "estimatedTimeRemaining": metadata.get("estimatedTimeRemaining"),
    }


class SessionManager:
    """Draft lifecycle: initialize, autosave, recover, resume, complete, clean up"""

    def __init__(
        self,
        max_retries: int = None,
        retry_delay: float = None,
        session_timeout_minutes: int = None
    ):
        self.max_retries = settings.SESSION_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.SESSION_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.session_timeout_minutes = (
            settings.SESSION_TIMEOUT_MINUTES if session_timeout_minutes is None else session_timeout_minutes
        )

    def _get_draft(self, db: Session, session_id: str) -> Optional[DiagnosisSessionDraft]:
        return db.query(DiagnosisSessionDraft).filter(DiagnosisSessionDraft.session_id == session_id).first()

    def get_owned_draft(
        self,
        db: Session,
        session_id: str,
        user_id: int = None,
        guest_token: str = None
    ) -> DiagnosisSessionDraft:
        """The caller's draft; someone else's draft is reported as missing"""
        draft = self._get_draft(db, session_id)
        if draft is None or not owns_draft(draft, user_id, guest_token):
            raise LookupError("Session not found")
        return draft

    def initialize_session(
        self,
        db: Session,
        user_id: int = None,
        guest_token: str = None,
        initial_data: Dict[str, Any] = None
    ) -> Dict[str, Any]:
        """Create a draft at the first wizard step"""
        session_id = generate_session_id()
        draft = self.save_session_data(
            db,
            session_id,
            initial_data or {},
            current_step=WIZARD_STEPS[0],
            completion_percentage=0,
            user_id=user_id,
            guest_token=guest_token
        )
        logger.info(f"Diagnosis session initialized: {session_id} (guest={user_id is None})")
        return draft_to_dict(draft)

    def save_session_data(
        self,
        db: Session,
        session_id: str,
        data: Dict[str, Any],
        current_step: str = None,
        completion_percentage: int = None,
        user_id: int = None,
        guest_token: str = None
    ) -> DiagnosisSessionDraft:
        """
        Upsert a draft by session_id

        An existing draft is only updated for its owner; otherwise LookupError.
        Failed writes are retried up to max_retries times, waiting
        retry_delay * attempt seconds between tries. The last error is re-raised.
        """
        attempt = 0
        while True:
            try:
                return self._upsert(db, session_id, data, current_step, completion_percentage, user_id, guest_token)
            except SQLAlchemyError as e:
                db.rollback()
                if attempt >= self.max_retries:
                    logger.error(f"Failed to save session {session_id} after {attempt + 1} attempts: {e}")
                    raise
                attempt += 1
                logger.warning(f"Save of session {session_id} failed, retry {attempt}/{self.max_retries}: {e}")
                time.sleep(self.retry_delay * attempt)

    def _upsert(
        self,
        db: Session,
        session_id: str,
        data: Dict[str, Any],
        current_step: Optional[str],
        completion_percentage: Optional[int],
        user_id: Optional[int],
        guest_token: Optional[str]
    ) -> DiagnosisSessionDraft:
        now = datetime.utcnow()
        draft = self._get_draft(db, session_id)
        if draft is None:
            draft = DiagnosisSessionDraft(
                session_id=session_id,
                user_id=user_id,
                guest_token=guest_token,
                current_step=current_step or WIZARD_STEPS[0],
                completion_percentage=completion_percentage or 0,
                created_at=now
            )
            db.add(draft)
        elif not owns_draft(draft, user_id, guest_token):
            raise LookupError("Session not found")
        else:
            if current_step is not None:
                draft.current_step = current_step
            if completion_percentage is not None:
                draft.completion_percentage = completion_percentage

        previous = draft.session_metadata or {}
        draft.data = data
        draft.session_metadata = {
            "currentStep": draft.current_step,
            "completionPercentage": draft.completion_percentage,
            "startTime": previous.get("startTime") or now.isoformat(),
            "lastSaved": now.isoformat(),
            "estimatedTimeRemaining": estimate_time_remaining(draft.current_step),
        }
        draft.updated_at = now
        db.commit()
        db.refresh(draft)
        return draft

    def recover_sessions(
        self,
        db: Session,
        include_incomplete: bool = True,
        max_age_hours: int = 24,
        user_id: int = None,
        guest_token: str = None
    ) -> List[Dict[str, Any]]:
        """Recent drafts for a user or guest, newest first"""
        cutoff = datetime.utcnow() - timedelta(hours=max_age_hours)
        q = db.query(DiagnosisSessionDraft).filter(DiagnosisSessionDraft.updated_at >= cutoff)
        if user_id is not None:
            q = q.filter(DiagnosisSessionDraft.user_id == user_id)
        elif guest_token:
            q = q.filter(DiagnosisSessionDraft.guest_token == guest_token)

        drafts = q.order_by(DiagnosisSessionDraft.updated_at.desc()).all()
        if not include_incomplete:
            drafts = [d for d in drafts if d.completion_percentage == 100]

        logger.info(f"Recovered {len(drafts)} sessions (user={user_id}, guest={bool(guest_token)})")
        return [
            {
                "sessionId": d.session_id,
                "step": d.current_step or WIZARD_STEPS[0],
                "data": d.data or {},
                "timestamp": d.updated_at.isoformat(),
                "completionPercentage": d.completion_percentage or 0,
            }
            for d in drafts
        ]

    def resume_session(
        self,
        db: Session,
        session_id: str,
        user_id: int = None,
        guest_token: str = None
    ) -> Dict[str, Any]:
        return draft_to_dict(self.get_owned_draft(db, session_id, user_id, guest_token))

    def update_progress(
        self,
        db: Session,
        session_id: str,
        step: str,
        completion_percentage: int,
        user_id: int = None,
        guest_token: str = None
    ) -> Dict[str, Any]:
        """Move the draft to another step without touching its data"""
        if step not in WIZARD_STEPS:
            raise ValueError(f"Unknown step: {step}")
        if not 0 <= completion_percentage <= 100:
            raise ValueError("completion_percentage must be between 0 and 100")
        draft = self.get_owned_draft(db, session_id, user_id, guest_token)
        draft = self.save_session_data(
            db, session_id, draft.data or {}, step, completion_percentage, user_id, guest_token
        )
        return draft_to_dict(draft)

    def complete_session(
        self,
        db: Session,
        session_id: str,
        final_diagnosis: Dict[str, Any],
        user: User = None,
        guest_token: str = None
    ):
        """Save the finished diagnosis, then drop the draft"""
        user_id = user.id if user else None
        self.get_owned_draft(db, session_id, user_id, guest_token)
        diagnosis = diagnosis_service.save_diagnosis(db, final_diagnosis, user)
        self.cleanup_session(db, session_id, user_id, guest_token)
        logger.info(f"Session {session_id} completed as diagnosis {diagnosis.id}")
        return diagnosis

    def cleanup_session(self, db: Session, session_id: str, user_id: int = None, guest_token: str = None) -> bool:
        """Delete the caller's draft; False when there is none"""
        draft = self._get_draft(db, session_id)
        if draft is None or not owns_draft(draft, user_id, guest_token):
            return False
        db.delete(draft)
        db.commit()
        return True

    def cleanup_expired_sessions(self, db: Session) -> int:
        """Delete drafts idle longer than the session timeout; returns the count"""
        expired = datetime.utcnow() - timedelta(minutes=self.session_timeout_minutes)
        count = db.query(DiagnosisSessionDraft).filter(
            DiagnosisSessionDraft.updated_at < expired
        ).delete(synchronize_session=False)
        db.commit()
        logger.info(f"Expired sessions cleaned up: {count}")
        return count


session_manager = SessionManager()
