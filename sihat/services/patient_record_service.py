"""
Patient Record Service
Medicines and uploaded medical reports kept on the patient profile
"""
import logging
from typing import Optional, List, Dict, Any

from dateutil import parser as date_parser
from sqlalchemy.orm import Session

from sihat.database.models import PatientMedicine, MedicalReport, User

logger = logging.getLogger(__name__)

MEDICINE_FIELDS = [
    "name", "chinese_name", "dosage", "frequency", "purpose", "specialty",
    "notes", "is_active", "start_date", "stop_date", "edited_by",
]

REPORT_FIELDS = ["name", "date", "size", "type", "file_url", "extracted_text"]

DATE_FIELDS = ("start_date", "stop_date", "date")


def normalize_date(value: Optional[str]) -> Optional[str]:
    """Free-form date (e.g. "3/1/2024", "1 Mar 2024") as YYYY-MM-DD; raises ValueError"""
    if not value:
        return None
    try:
        return date_parser.parse(value, dayfirst=True).strftime("%Y-%m-%d")
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Invalid date: {value}") from e


def _normalize_dates(data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data)
    for name in DATE_FIELDS:
        if name in data:
            data[name] = normalize_date(data[name])
    return data


def medicine_to_dict(medicine: PatientMedicine) -> Dict[str, Any]:
    data = {"id": medicine.id, "user_id": medicine.user_id}
    data.update({name: getattr(medicine, name) for name in MEDICINE_FIELDS})
    data["created_at"] = medicine.created_at.isoformat() if medicine.created_at else None
    data["updated_at"] = medicine.updated_at.isoformat() if medicine.updated_at else None
    return data


def report_to_dict(report: MedicalReport) -> Dict[str, Any]:
    data = {"id": report.id, "user_id": report.user_id}
    data.update({name: getattr(report, name) for name in REPORT_FIELDS})
    data["created_at"] = report.created_at.isoformat() if report.created_at else None
    return data


class PatientRecordService:
    """Owner-scoped CRUD over medicines and medical reports"""

    # ==================== Medicines ====================

    def list_medicines(self, db: Session, user: User) -> List[PatientMedicine]:
        return db.query(PatientMedicine).filter(
            PatientMedicine.user_id == user.id
        ).order_by(PatientMedicine.created_at.desc(), PatientMedicine.id.desc()).all()

    def _get_medicine(self, db: Session, medicine_id: int, user: User) -> PatientMedicine:
        medicine = db.query(PatientMedicine).filter(
            PatientMedicine.id == medicine_id,
            PatientMedicine.user_id == user.id
        ).first()
        if not medicine:
            raise LookupError("Medicine not found")
        return medicine

    def save_medicine(self, db: Session, data: Dict[str, Any], user: User) -> PatientMedicine:
        """Update the medicine named by data['id'], or insert a new one"""
        data = _normalize_dates(data)
        medicine_id = data.get("id")
        if medicine_id:
            medicine = self._get_medicine(db, medicine_id, user)
            for name in MEDICINE_FIELDS:
                if name in data:
                    setattr(medicine, name, data[name])
        else:
            if not data.get("name"):
                raise ValueError("Medicine name is required")
            medicine = PatientMedicine(
                user_id=user.id,
                **{name: data[name] for name in MEDICINE_FIELDS if name in data}
            )
            db.add(medicine)

        db.commit()
        db.refresh(medicine)
        logger.info(f"Saved medicine {medicine.id} for user {user.id}")
        return medicine

    def delete_medicine(self, db: Session, medicine_id: int, user: User) -> None:
        medicine = self._get_medicine(db, medicine_id, user)
        db.delete(medicine)
        db.commit()

    def toggle_medicine(self, db: Session, medicine_id: int, is_active: bool, user: User) -> PatientMedicine:
        medicine = self._get_medicine(db, medicine_id, user)
        medicine.is_active = is_active
        db.commit()
        db.refresh(medicine)
        return medicine

    # ==================== Medical reports ====================

    def list_reports(self, db: Session, user: User) -> List[MedicalReport]:
        return db.query(MedicalReport).filter(
            MedicalReport.user_id == user.id
        ).order_by(MedicalReport.created_at.desc(), MedicalReport.id.desc()).all()

    def save_report(self, db: Session, data: Dict[str, Any], user: User) -> MedicalReport:
        if not data.get("name"):
            raise ValueError("Report name is required")
        data = _normalize_dates(data)
        report = MedicalReport(
            user_id=user.id,
            **{name: data.get(name) for name in REPORT_FIELDS}
        )
        db.add(report)
        db.commit()
        db.refresh(report)
        return report

    def delete_report(self, db: Session, report_id: int, user: User) -> None:
        report = db.query(MedicalReport).filter(
            MedicalReport.id == report_id,
            MedicalReport.user_id == user.id
        ).first()
        if not report:
            raise LookupError("Report not found")
        db.delete(report)
        db.commit()


patient_record_service = PatientRecordService()
