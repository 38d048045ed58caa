"""
Diagnosis Session API Routes
Saving finished diagnoses (users and guests), guest migration and
autosaved wizard drafts
"""
import logging
from typing import Optional, Dict, Any, Tuple
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field

from sihat.database.connection import get_db
from sihat.database.models import User
from sihat.services.auth_service import get_current_user, get_optional_user, require_admin, audit_service
from sihat.services.diagnosis_service import diagnosis_service, session_to_dict
from sihat.services.session_manager import session_manager, draft_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["Diagnosis Sessions"])


# ==================== Pydantic Models ====================

class SaveDiagnosisRequest(BaseModel):
    primary_diagnosis: str
    constitution: Optional[str] = None
    overall_score: Optional[int] = Field(None, ge=0, le=100)
    full_report: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    symptoms: Optional[list] = None
    medicines: Optional[list] = None
    vital_signs: Optional[Dict[str, Any]] = None
    treatment_plan: Optional[str] = None
    inquiry_summary: Optional[str] = None
    inquiry_chat_history: Optional[list] = None
    inquiry_report_files: Optional[list] = None
    inquiry_medicine_files: Optional[list] = None
    tongue_analysis: Optional[Dict[str, Any]] = None
    face_analysis: Optional[Dict[str, Any]] = None
    body_analysis: Optional[Dict[str, Any]] = None
    audio_analysis: Optional[Dict[str, Any]] = None
    pulse_data: Optional[Dict[str, Any]] = None
    is_guest_session: bool = False
    guest_email: Optional[str] = None
    guest_name: Optional[str] = None
    session_token: Optional[str] = None


class MigrateRequest(BaseModel):
    session_token: str


class NotesUpdate(BaseModel):
    notes: str


class DraftCreate(BaseModel):
    guest_token: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class DraftSave(BaseModel):
    data: Dict[str, Any]
    current_step: Optional[str] = None
    completion_percentage: Optional[int] = Field(None, ge=0, le=100)
    guest_token: Optional[str] = None


class ProgressUpdate(BaseModel):
    step: str
    completion_percentage: int


def save_diagnosis_or_raise(db: Session, data: Dict[str, Any], user: Optional[User]):
    try:
        return diagnosis_service.save_diagnosis(db, data, user)
    except PermissionError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def draft_owner(current_user: Optional[User], guest_token: Optional[str]) -> Tuple[Optional[int], Optional[str]]:
    """(user_id, guest_token) identifying the caller's drafts"""
    if current_user:
        return current_user.id, None
    if not guest_token:
        raise HTTPException(status_code=400, detail="guest_token is required for guests")
    return None, guest_token


# ==================== Drafts ====================
# Sync handlers: draft saves sleep between retries

@router.post("/drafts", status_code=201)
def create_draft(
    body: DraftCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    """Start a new wizard draft for the user, or for a guest token"""
    user_id, guest_token = draft_owner(current_user, body.guest_token)
    return session_manager.initialize_session(
        db,
        user_id=user_id,
        guest_token=guest_token,
        initial_data=body.data
    )


@router.get("/drafts")
def recover_drafts(
    include_incomplete: bool = True,
    max_age_hours: int = Query(24, ge=1, le=24 * 30),
    guest_token: Optional[str] = None,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    """Drafts that can be resumed, newest first"""
    user_id, guest_token = draft_owner(current_user, guest_token)
    sessions = session_manager.recover_sessions(
        db,
        include_incomplete=include_incomplete,
        max_age_hours=max_age_hours,
        user_id=user_id,
        guest_token=guest_token
    )
    return {"sessions": sessions}


@router.post("/drafts/cleanup")
def cleanup_drafts(
    request: Request,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    count = session_manager.cleanup_expired_sessions(db)
    audit_service.log(
        db=db,
        action="cleanup",
        resource_type="session_draft",
        description=f"Removed {count} expired drafts",
        user=current_user,
        request=request
    )
    return {"deleted": count}


@router.get("/drafts/{session_id}")
def resume_draft(
    session_id: str,
    guest_token: Optional[str] = None,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    user_id, guest_token = draft_owner(current_user, guest_token)
    try:
        return session_manager.resume_session(db, session_id, user_id, guest_token)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/drafts/{session_id}")
def save_draft(
    session_id: str,
    body: DraftSave,
    guest_token: Optional[str] = None,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    """Autosave wizard state; creates the draft if the id is new"""
    user_id, guest_token = draft_owner(current_user, guest_token or body.guest_token)
    try:
        draft = session_manager.save_session_data(
            db,
            session_id,
            body.data,
            current_step=body.current_step,
            completion_percentage=body.completion_percentage,
            user_id=user_id,
            guest_token=guest_token
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return draft_to_dict(draft)


@router.patch("/drafts/{session_id}/progress")
def update_draft_progress(
    session_id: str,
    body: ProgressUpdate,
    guest_token: Optional[str] = None,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    user_id, guest_token = draft_owner(current_user, guest_token)
    try:
        return session_manager.update_progress(
            db, session_id, body.step, body.completion_percentage, user_id, guest_token
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/drafts/{session_id}/complete", status_code=201)
def complete_draft(
    session_id: str,
    body: SaveDiagnosisRequest,
    guest_token: Optional[str] = None,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    """Save the finished diagnosis and discard the draft"""
    _, guest_token = draft_owner(current_user, guest_token)
    try:
        session = session_manager.complete_session(db, session_id, body.model_dump(), current_user, guest_token)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "session": session_to_dict(session)}


@router.delete("/drafts/{session_id}")
def delete_draft(
    session_id: str,
    guest_token: Optional[str] = None,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    user_id, guest_token = draft_owner(current_user, guest_token)
    if not session_manager.cleanup_session(db, session_id, user_id, guest_token):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"success": True}


# ==================== Guest sessions ====================

@router.post("/guest/migrate")
async def migrate_guest_session(
    request: Request,
    body: MigrateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Claim a diagnosis saved as a guest"""
    try:
        session = diagnosis_service.migrate_guest_session(db, body.session_token, current_user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    audit_service.log(
        db=db,
        action="migrate",
        resource_type="session",
        resource_id=session.id,
        description="Guest diagnosis migrated to account",
        user=current_user,
        request=request
    )
    return {"success": True, "session": session_to_dict(session)}


@router.get("/guest/{session_token}")
async def get_guest_session(session_token: str, db: Session = Depends(get_db)):
    try:
        guest = diagnosis_service.get_guest_session(db, session_token)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return session_to_dict(guest)


# ==================== Saved diagnoses ====================

@router.post("", status_code=201)
async def save_diagnosis(
    body: SaveDiagnosisRequest,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    """Save a finished diagnosis; guests must set is_guest_session or guest_email"""
    session = save_diagnosis_or_raise(db, body.model_dump(), current_user)
    result = {"success": True, "session": session_to_dict(session)}
    if current_user is None:
        result["session_token"] = session.session_token
    return result


@router.get("/{session_id}")
async def get_session(
    session_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return session_to_dict(diagnosis_service.get_session_by_id(db, session_id, current_user))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{session_id}/notes")
async def update_notes(
    session_id: int,
    body: NotesUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        session = diagnosis_service.update_session_notes(db, session_id, body.notes, current_user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return session_to_dict(session)


@router.post("/{session_id}/hide")
async def hide_session(
    session_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        diagnosis_service.hide_session(db, session_id, current_user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True}


@router.delete("/{session_id}")
async def delete_session(
    request: Request,
    session_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        diagnosis_service.delete_session(db, session_id, current_user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    audit_service.log(
        db=db,
        action="delete",
        resource_type="session",
        resource_id=session_id,
        description="Diagnosis session deleted",
        user=current_user,
        request=request
    )
    return {"success": True}
