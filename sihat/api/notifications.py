"""
Notification API Routes
"""
from typing import Optional, Dict
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel

from sihat.database.connection import get_db
from sihat.database.models import User
from sihat.services.auth_service import get_current_user
from sihat.services.notification_service import notification_service, preferences_to_dict


router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


class PreferencesUpdate(BaseModel):
    enabled: Optional[bool] = None
    health_reminders: Optional[bool] = None
    medication_alerts: Optional[bool] = None
    appointment_reminders: Optional[bool] = None
    exercise_reminders: Optional[bool] = None
    sleep_reminders: Optional[bool] = None
    quiet_hours_enabled: Optional[bool] = None
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    frequency_daily: Optional[bool] = None
    frequency_weekly: Optional[bool] = None
    frequency_monthly: Optional[bool] = None
    categories: Optional[Dict[str, bool]] = None


@router.get("/preferences")
async def get_preferences(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return preferences_to_dict(notification_service.get_preferences(db, current_user))


@router.put("/preferences")
async def update_preferences(
    body: PreferencesUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        prefs = notification_service.update_preferences(db, current_user, body.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return preferences_to_dict(prefs)


@router.get("/should-notify/{category}")
async def should_notify(
    category: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Whether a reminder in this category may be delivered right now"""
    prefs = notification_service.get_preferences(db, current_user)
    return {
        "category": category,
        "should_notify": notification_service.should_notify(prefs, category),
        "in_quiet_hours": notification_service.is_in_quiet_hours(prefs),
    }
