"""
Notification Preference Service
Per-user reminder settings, quiet hours and category switches
"""
import re
import logging
from datetime import datetime, time
from typing import Dict, Any, Optional

from sqlalchemy.orm import Session

from sihat.database.models import NotificationPreference, User

logger = logging.getLogger(__name__)

CATEGORY_KEYS = ("health", "medication", "exercise", "diet", "sleep", "appointments")

# Category -> the boolean column that also has to be on
CATEGORY_FLAGS = {
    "health": "health_reminders",
    "medication": "medication_alerts",
    "appointments": "appointment_reminders",
    "exercise": "exercise_reminders",
    "sleep": "sleep_reminders",
}

BOOLEAN_FIELDS = (
    "enabled", "health_reminders", "medication_alerts", "appointment_reminders",
    "exercise_reminders", "sleep_reminders", "quiet_hours_enabled",
    "frequency_daily", "frequency_weekly", "frequency_monthly",
)

TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')


def default_categories() -> Dict[str, bool]:
    return {key: True for key in CATEGORY_KEYS}


def parse_hhmm(value: str) -> time:
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


def preferences_to_dict(prefs: NotificationPreference) -> Dict[str, Any]:
    data = {name: getattr(prefs, name) for name in BOOLEAN_FIELDS}
    data.update({
        "user_id": prefs.user_id,
        "quiet_hours_start": prefs.quiet_hours_start,
        "quiet_hours_end": prefs.quiet_hours_end,
        "categories": prefs.categories or default_categories(),
        "updated_at": prefs.updated_at.isoformat() if prefs.updated_at else None,
    })
    return data


class NotificationService:
    """Notification preferences and delivery decisions"""

    def get_preferences(self, db: Session, user: User) -> NotificationPreference:
        """The user's preferences, created with defaults on first access"""
        prefs = db.query(NotificationPreference).filter(NotificationPreference.user_id == user.id).first()
        if prefs is None:
            prefs = NotificationPreference(user_id=user.id, categories=default_categories())
            db.add(prefs)
            db.commit()
            db.refresh(prefs)
            logger.info(f"Created default notification preferences for user {user.id}")
        return prefs

    def update_preferences(self, db: Session, user: User, updates: Dict[str, Any]) -> NotificationPreference:
        """
        Apply a partial update

        Raises:
            ValueError: bad HH:MM time or unknown category key
        """
        for key in ("quiet_hours_start", "quiet_hours_end"):
            if updates.get(key) is not None:
                parse_hhmm(updates[key])

        categories = updates.get("categories")
        if categories is not None:
            unknown = set(categories) - set(CATEGORY_KEYS)
            if unknown:
                raise ValueError(f"Unknown notification categories: {', '.join(sorted(unknown))}")

        prefs = self.get_preferences(db, user)
        for name in BOOLEAN_FIELDS:
            if updates.get(name) is not None:
                setattr(prefs, name, bool(updates[name]))
        for key in ("quiet_hours_start", "quiet_hours_end"):
            if updates.get(key) is not None:
                setattr(prefs, key, updates[key])
        if categories is not None:
            merged = dict(prefs.categories or default_categories())
            merged.update({k: bool(v) for k, v in categories.items()})
            prefs.categories = merged

        db.commit()
        db.refresh(prefs)
        return prefs

    @staticmethod
    def is_in_quiet_hours(prefs: NotificationPreference, now: Optional[datetime] = None) -> bool:
        """True when now falls in the quiet window; windows may wrap past midnight"""
        if not prefs.quiet_hours_enabled:
            return False
        current = (now or datetime.now()).time().replace(second=0, microsecond=0)
        start = parse_hhmm(prefs.quiet_hours_start or "22:00")
        end = parse_hhmm(prefs.quiet_hours_end or "07:00")

        if start == end:
            return False
        if start < end:
            return start <= current < end
        return current >= start or current < end

    def should_notify(self, prefs: NotificationPreference, category: str, now: Optional[datetime] = None) -> bool:
        if not prefs.enabled:
            return False
        categories = prefs.categories or default_categories()
        if not categories.get(category, False):
            return False
        flag = CATEGORY_FLAGS.get(category)
        if flag and not getattr(prefs, flag):
            return False
        return not self.is_in_quiet_hours(prefs, now)


notification_service = NotificationService()
