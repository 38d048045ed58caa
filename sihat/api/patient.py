"""
Patient API Routes
Diagnosis history, health trends, medicines and medical reports
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel

from sihat.database.connection import get_db
from sihat.database.models import User
from sihat.services.auth_service import get_current_user, audit_service
from sihat.services.diagnosis_service import diagnosis_service, session_to_dict
from sihat.services.patient_record_service import (
    patient_record_service, medicine_to_dict, report_to_dict
)


router = APIRouter(prefix="/api/patient", tags=["Patient"])


# ==================== Pydantic Models ====================

class MedicineSave(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    chinese_name: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    purpose: Optional[str] = None
    specialty: Optional[str] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None
    start_date: Optional[str] = None
    stop_date: Optional[str] = None
    edited_by: Optional[str] = None


class MedicineToggle(BaseModel):
    is_active: bool


class ReportSave(BaseModel):
    name: str
    date: Optional[str] = None
    size: Optional[str] = None
    type: Optional[str] = None
    file_url: Optional[str] = None
    extracted_text: Optional[str] = None


# ==================== History ====================

@router.get("/history")
async def get_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    lightweight: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Visible diagnosis sessions, newest first"""
    return diagnosis_service.get_patient_history(db, current_user, limit, offset, lightweight)


@router.get("/trends")
async def get_trends(
    days: int = Query(30, ge=1, le=365),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return diagnosis_service.get_health_trends(db, current_user, days)


@router.get("/last-symptoms")
async def get_last_symptoms(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return {"symptoms": diagnosis_service.get_last_symptoms(db, current_user)}
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/last-medicines")
async def get_last_medicines(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return {"medicines": diagnosis_service.get_last_medicines(db, current_user)}
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/seed-history", status_code=201)
async def seed_history(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Insert demo sessions so the dashboard has something to show"""
    sessions = diagnosis_service.seed_patient_history(db, current_user)
    audit_service.log(
        db=db,
        action="seed",
        resource_type="session",
        description=f"Seeded {len(sessions)} demo sessions",
        user=current_user,
        request=request
    )
    return {"success": True, "sessions": [session_to_dict(s, lightweight=True) for s in sessions]}


# ==================== Medicines ====================

@router.get("/medicines")
async def list_medicines(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return [medicine_to_dict(m) for m in patient_record_service.list_medicines(db, current_user)]


@router.post("/medicines")
async def save_medicine(
    body: MedicineSave,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Insert a medicine, or update the one named by `id`"""
    try:
        medicine = patient_record_service.save_medicine(db, body.model_dump(exclude_unset=True), current_user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return medicine_to_dict(medicine)


@router.patch("/medicines/{medicine_id}/active")
async def toggle_medicine(
    medicine_id: int,
    body: MedicineToggle,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        medicine = patient_record_service.toggle_medicine(db, medicine_id, body.is_active, current_user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return medicine_to_dict(medicine)


@router.delete("/medicines/{medicine_id}")
async def delete_medicine(
    medicine_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        patient_record_service.delete_medicine(db, medicine_id, current_user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True}


# ==================== Medical reports ====================

@router.get("/reports")
async def list_reports(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return [report_to_dict(r) for r in patient_record_service.list_reports(db, current_user)]


@router.post("/reports", status_code=201)
async def save_report(
    body: ReportSave,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        report = patient_record_service.save_report(db, body.model_dump(), current_user)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return report_to_dict(report)


@router.delete("/reports/{report_id}")
async def delete_report(
    report_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        patient_record_service.delete_report(db, report_id, current_user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True}
