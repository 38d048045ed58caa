"""
Diagnosis Service
Saved diagnosis sessions for patients and guests, history and trends
"""
import uuid
import random
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from sihat.database.models import DiagnosisSession, GuestDiagnosisSession, PatientMedicine, User

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED_MESSAGE = "Not authenticated. Please log in to save your diagnosis."

# Copied from a guest row into the user's session on migration
SHARED_FIELDS = [
    "primary_diagnosis", "constitution", "overall_score", "full_report", "notes",
    "symptoms", "medicines", "vital_signs", "treatment_plan",
    "inquiry_summary", "inquiry_chat_history", "inquiry_report_files", "inquiry_medicine_files",
    "tongue_analysis", "face_analysis", "body_analysis", "audio_analysis", "pulse_data",
]

# Dropped from lightweight history listings
HEAVY_FIELDS = {
    "full_report", "inquiry_chat_history", "inquiry_report_files", "inquiry_medicine_files",
    "tongue_analysis", "face_analysis", "body_analysis", "audio_analysis", "pulse_data",
}

# (keywords, symptoms, medicines), first match wins
MOCK_PATTERNS = [
    (("yin deficiency", "阴虚"),
     ["Night sweats", "Insomnia", "Dry mouth", "Hot palms and soles"],
     ["Liu Wei Di Huang Wan", "Zhi Bai Di Huang Wan"]),
    (("yang deficiency", "阳虚"),
     ["Cold extremities", "Lower back pain", "Fatigue", "Frequent urination"],
     ["Jin Gui Shen Qi Wan", "You Gui Wan"]),
    (("qi deficiency", "气虚"),
     ["Fatigue", "Shortness of breath", "Weak voice", "Spontaneous sweating"],
     ["Si Jun Zi Tang", "Bu Zhong Yi Qi Tang"]),
    (("qi stagnation", "气滞"),
     ["Chest tightness", "Irritability", "Bloating", "Sighing"],
     ["Xiao Yao San", "Chai Hu Shu Gan San"]),
    (("blood deficiency", "血虚"),
     ["Dizziness", "Palpitations", "Poor memory", "Pale complexion"],
     ["Si Wu Tang", "Gui Pi Tang"]),
    (("damp heat", "湿热"),
     ["Heavy feeling", "Sticky mouth", "Yellow discharge", "Urinary discomfort"],
     ["Ba Zheng San", "Long Dan Xie Gan Tang"]),
    (("wind-cold", "风寒"),
     ["Chills", "Runny nose", "Body aches", "Headache"],
     ["Gui Zhi Tang", "Ma Huang Tang"]),
    (("phlegm", "痰"),
     ["Chest oppression", "Cough with phlegm", "Heaviness", "Foggy thinking"],
     ["Er Chen Tang", "Wen Dan Tang"]),
]
DEFAULT_MOCK_SYMPTOMS = ["Fatigue", "General discomfort", "Sleep issues"]
DEFAULT_MOCK_MEDICINES = ["General TCM Formula"]

SEED_SESSIONS = [
    {
        "primary_diagnosis": "Yin Deficiency with Empty Heat",
        "constitution": "Yin Deficiency Constitution",
        "overall_score": 68,
        "notes": "Noticed improvement in sleep after following diet recommendations.",
        "days_ago": 2,
        "full_report": {
            "diagnosis": {"primary_pattern": "Yin Deficiency with Empty Heat"},
            "recommendations": {"food": ["Black sesame", "Goji berries"], "herbal_formulas": [{"name": "Liu Wei Di Huang Wan"}]},
        },
    },
    {
        "primary_diagnosis": "Liver Qi Stagnation",
        "constitution": "Qi Stagnation Constitution",
        "overall_score": 62,
        "notes": "Very stressful week at work.",
        "days_ago": 7,
        "full_report": {
            "diagnosis": {"primary_pattern": "Liver Qi Stagnation"},
            "recommendations": {"food": ["Green vegetables", "Citrus"], "herbal_formulas": [{"name": "Xiao Yao San"}]},
        },
    },
    {
        "primary_diagnosis": "Spleen Qi Deficiency",
        "constitution": "Qi Deficiency Constitution",
        "overall_score": 65,
        "notes": "Started eating congee for breakfast.",
        "days_ago": 14,
        "full_report": {
            "diagnosis": {"primary_pattern": "Spleen Qi Deficiency"},
            "recommendations": {"food": ["Congee", "Chinese yam"], "herbal_formulas": [{"name": "Si Jun Zi Tang"}]},
        },
    },
]


def _mock_entry(diagnosis: str):
    lowered = (diagnosis or "").lower()
    for keywords, symptoms, medicines in MOCK_PATTERNS:
        if any(k in lowered for k in keywords):
            return symptoms, medicines
    return DEFAULT_MOCK_SYMPTOMS, DEFAULT_MOCK_MEDICINES


def generate_mock_symptoms(diagnosis: str) -> List[str]:
    return list(_mock_entry(diagnosis)[0])


def generate_mock_medicines(diagnosis: str) -> List[str]:
    return list(_mock_entry(diagnosis)[1])


# ==================== Report extraction ====================

def extract_symptoms_from_report(report: Optional[Dict[str, Any]]) -> Optional[List[str]]:
    """Symptoms the patient entered, as stored on the report"""
    if not isinstance(report, dict):
        return None
    input_data = report.get("input_data") or {}
    symptoms = input_data.get("symptoms") or report.get("symptoms")
    if isinstance(symptoms, str):
        symptoms = [s.strip() for s in symptoms.split(",") if s.strip()]
    return list(symptoms) if symptoms else None


def extract_medicines_from_report(report: Optional[Dict[str, Any]]) -> Optional[List[str]]:
    """Current medicines from the input data, else the recommended formulas"""
    if not isinstance(report, dict):
        return None
    medicines = (report.get("input_data") or {}).get("medicines")
    if medicines:
        return list(medicines)
    formulas = (report.get("recommendations") or {}).get("herbal_formulas") or []
    names = [f.get("name") if isinstance(f, dict) else str(f) for f in formulas]
    names = [n for n in names if n]
    return names or None


def extract_vital_signs_from_report(report: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not isinstance(report, dict):
        return None
    input_data = report.get("input_data") or {}
    vitals = {}
    if input_data.get("bpm"):
        vitals["bpm"] = input_data["bpm"]
    device = input_data.get("smart_connect_data") or report.get("vital_signs") or {}
    for key in ("pulseRate", "bloodPressure", "bloodOxygen", "bodyTemp", "hrv", "stressLevel"):
        if device.get(key) is not None:
            vitals[key] = device[key]
    return vitals or None


def extract_treatment_plan_from_report(report: Optional[Dict[str, Any]]) -> Optional[str]:
    """Short plan built from the recommendation headings"""
    if not isinstance(report, dict):
        return None
    recommendations = report.get("recommendations") or {}
    parts = []
    if recommendations.get("food") or recommendations.get("food_therapy"):
        parts.append("Dietary adjustments")
    if recommendations.get("lifestyle"):
        parts.append("Lifestyle modifications")
    if recommendations.get("herbal_formulas"):
        parts.append("Herbal support")
    if recommendations.get("acupoints"):
        parts.append("Acupressure")
    return " | ".join(parts) or None


def session_to_dict(session, lightweight: bool = False) -> Dict[str, Any]:
    """Serialize a user or guest session row"""
    data = {"id": session.id}
    for name in SHARED_FIELDS + ["is_hidden", "is_guest_session", "guest_email", "guest_name"]:
        if lightweight and name in HEAVY_FIELDS:
            continue
        data[name] = getattr(session, name)
    data["created_at"] = session.created_at.isoformat() if session.created_at else None
    data["updated_at"] = session.updated_at.isoformat() if session.updated_at else None

    if isinstance(session, DiagnosisSession):
        data["user_id"] = session.user_id
    else:
        data["session_token"] = session.session_token
        data["migrated_to_user_id"] = session.migrated_to_user_id
        data["migrated_at"] = session.migrated_at.isoformat() if session.migrated_at else None
    return data


class DiagnosisService:
    """
    Persistence for finished diagnoses

    Registered users own rows in diagnosis_sessions; guests get a row in
    guest_diagnosis_sessions that can later be claimed with its token.
    """

    # ==================== Save / migrate ====================

    def save_diagnosis(self, db: Session, data: Dict[str, Any], user: User = None):
        """
        Save a finished diagnosis

        Raises:
            PermissionError: no user and the payload is not marked as a guest session
            ValueError: primary_diagnosis missing
        """
        if not data.get("primary_diagnosis"):
            raise ValueError("primary_diagnosis is required")

        report = data.get("full_report") or {}
        values = {name: data.get(name) for name in SHARED_FIELDS}
        values["full_report"] = report
        values["symptoms"] = data.get("symptoms") or extract_symptoms_from_report(report)
        values["medicines"] = data.get("medicines") or extract_medicines_from_report(report)
        values["vital_signs"] = data.get("vital_signs") or extract_vital_signs_from_report(report)
        values["treatment_plan"] = data.get("treatment_plan") or extract_treatment_plan_from_report(report)

        if user is not None:
            session = DiagnosisSession(
                user_id=user.id,
                is_guest_session=False,
                **values
            )
        elif data.get("is_guest_session") or data.get("guest_email"):
            session = GuestDiagnosisSession(
                session_token=data.get("session_token") or str(uuid.uuid4()),
                is_guest_session=True,
                guest_email=data.get("guest_email"),
                guest_name=data.get("guest_name"),
                **values
            )
        else:
            raise PermissionError(NOT_AUTHENTICATED_MESSAGE)

        db.add(session)
        db.commit()
        db.refresh(session)
        logger.info(
            f"Saved {'guest' if user is None else 'user'} diagnosis {session.id}: {session.primary_diagnosis}"
        )
        return session

    def migrate_guest_session(self, db: Session, session_token: str, user: User) -> DiagnosisSession:
        """Copy an unclaimed guest diagnosis into the user's history"""
        guest = db.query(GuestDiagnosisSession).filter(
            GuestDiagnosisSession.session_token == session_token,
            GuestDiagnosisSession.migrated_to_user_id.is_(None)
        ).first()
        if not guest:
            raise LookupError("Guest session not found or already migrated.")

        session = DiagnosisSession(
            user_id=user.id,
            is_guest_session=False,
            **{name: getattr(guest, name) for name in SHARED_FIELDS}
        )
        db.add(session)

        guest.migrated_to_user_id = user.id
        guest.migrated_at = datetime.utcnow()
        db.commit()
        db.refresh(session)
        logger.info(f"Migrated guest session {guest.id} to user {user.id}")
        return session

    def get_guest_session(self, db: Session, session_token: str) -> GuestDiagnosisSession:
        guest = db.query(GuestDiagnosisSession).filter(
            GuestDiagnosisSession.session_token == session_token
        ).first()
        if not guest:
            raise LookupError("Session not found")
        return guest

    # ==================== Per-owner operations ====================

    def get_session_by_id(self, db: Session, session_id: int, user: User) -> DiagnosisSession:
        session = db.query(DiagnosisSession).filter(
            DiagnosisSession.id == session_id,
            DiagnosisSession.user_id == user.id
        ).first()
        if not session:
            raise LookupError("Session not found")
        return session

    def update_session_notes(self, db: Session, session_id: int, notes: str, user: User) -> DiagnosisSession:
        session = self.get_session_by_id(db, session_id, user)
        session.notes = notes
        db.commit()
        db.refresh(session)
        return session

    def delete_session(self, db: Session, session_id: int, user: User) -> None:
        session = self.get_session_by_id(db, session_id, user)
        db.delete(session)
        db.commit()
        logger.info(f"Deleted diagnosis session {session_id} for user {user.id}")

    def hide_session(self, db: Session, session_id: int, user: User) -> DiagnosisSession:
        """Remove a session from history without deleting it"""
        session = self.get_session_by_id(db, session_id, user)
        session.is_hidden = True
        db.commit()
        db.refresh(session)
        return session

    # ==================== History ====================

    def get_patient_history(
        self,
        db: Session,
        user: User,
        limit: int = 50,
        offset: int = 0,
        lightweight: bool = False
    ) -> Dict[str, Any]:
        """Visible sessions, newest first; hidden NULL counts as visible"""
        q = db.query(DiagnosisSession).filter(
            DiagnosisSession.user_id == user.id,
            or_(DiagnosisSession.is_hidden == False, DiagnosisSession.is_hidden.is_(None))  # noqa: E712
        )
        total = q.count()
        rows = q.order_by(DiagnosisSession.created_at.desc()).offset(offset).limit(limit).all()
        return {
            "sessions": [session_to_dict(r, lightweight) for r in rows],
            "total": total,
        }

    def get_health_trends(self, db: Session, user: User, days: int = 30) -> Dict[str, Any]:
        threshold = datetime.utcnow() - timedelta(days=days)
        sessions = db.query(DiagnosisSession).filter(
            DiagnosisSession.user_id == user.id,
            DiagnosisSession.created_at >= threshold
        ).order_by(DiagnosisSession.created_at.asc()).all()

        scores = [s.overall_score for s in sessions if s.overall_score is not None]
        diagnosis_counts: Dict[str, int] = {}
        for s in sessions:
            diagnosis_counts[s.primary_diagnosis] = diagnosis_counts.get(s.primary_diagnosis, 0) + 1

        return {
            "sessionCount": len(sessions),
            "averageScore": round(sum(scores) / len(scores)) if scores else None,
            "improvement": scores[-1] - scores[0] if len(scores) >= 2 else None,
            "diagnosisCounts": diagnosis_counts,
            "sessions": [
                {
                    "score": s.overall_score,
                    "date": s.created_at.isoformat(),
                    "diagnosis": s.primary_diagnosis,
                }
                for s in sessions
            ],
        }

    def _latest_session(self, db: Session, user: User) -> Optional[DiagnosisSession]:
        return db.query(DiagnosisSession).filter(
            DiagnosisSession.user_id == user.id
        ).order_by(DiagnosisSession.created_at.desc()).first()

    def get_last_symptoms(self, db: Session, user: User) -> List[str]:
        """Symptoms from the latest session, falling back to its report"""
        session = self._latest_session(db, user)
        if not session:
            raise LookupError("No previous symptoms found.")
        return session.symptoms or extract_symptoms_from_report(session.full_report) or []

    def get_last_medicines(self, db: Session, user: User) -> List[str]:
        """Active profile medicines, else those of the latest session"""
        active = db.query(PatientMedicine).filter(
            PatientMedicine.user_id == user.id,
            PatientMedicine.is_active == True  # noqa: E712
        ).all()
        if active:
            return [m.name for m in active]

        session = self._latest_session(db, user)
        if not session:
            raise LookupError("No previous medicines found.")
        return session.medicines or extract_medicines_from_report(session.full_report) or []

    # ==================== Demo data ====================

    def seed_patient_history(self, db: Session, user: User) -> List[DiagnosisSession]:
        """Insert three demo sessions spread over the last two weeks"""
        now = datetime.utcnow()
        created = []
        for entry in SEED_SESSIONS:
            symptoms = generate_mock_symptoms(entry["primary_diagnosis"])
            medicines = generate_mock_medicines(entry["primary_diagnosis"])
            session = DiagnosisSession(
                user_id=user.id,
                primary_diagnosis=entry["primary_diagnosis"],
                constitution=entry["constitution"],
                overall_score=entry["overall_score"],
                full_report=entry["full_report"],
                notes=entry["notes"],
                symptoms=symptoms,
                medicines=medicines,
                vital_signs={"bpm": 70 + random.randint(0, 19)},
                treatment_plan="Dietary adjustments | Lifestyle modifications | Herbal support",
                created_at=now - timedelta(days=entry["days_ago"]),
            )
            db.add(session)
            created.append(session)

        db.commit()
        logger.info(f"Seeded {len(created)} demo sessions for user {user.id}")
        return created


diagnosis_service = DiagnosisService()
