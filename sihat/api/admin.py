"""
Admin API Routes
System health, prompts, settings, logs, alerts and user management.
Every mutating call is written to the audit log.
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel

from sihat.database.connection import get_db
from sihat.database.models import User, UserRole, SystemSetting
from sihat.services.auth_service import require_admin, get_optional_user, audit_service
from sihat.services.alert_manager import alert_manager
from sihat.services.monitoring_service import monitoring_service, error_to_dict, log_to_dict
from sihat.services.prompt_service import prompt_service
from sihat.api.auth import user_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


# ==================== Pydantic Models ====================

class ErrorReport(BaseModel):
    error_type: Optional[str] = None
    message: Optional[str] = None
    stack_trace: Optional[str] = None
    component: Optional[str] = None
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    url: Optional[str] = None
    user_agent: Optional[str] = None
    severity: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class LogEventRequest(BaseModel):
    level: str = "info"
    category: str = "system"
    message: str
    metadata: Optional[Dict[str, Any]] = None


class PromptUpdate(BaseModel):
    prompt_text: str


class DoctorConfigUpdate(BaseModel):
    default_level: str


class SettingUpdate(BaseModel):
    value: str
    description: Optional[str] = None


class RoleUpdate(BaseModel):
    role: str


def mask_secret(value: Optional[str]) -> str:
    if not value:
        return ""
    if len(value) <= 4:
        return "****"
    return "*" * 8 + value[-4:]


def setting_to_dict(setting: SystemSetting) -> Dict[str, Any]:
    return {
        "key": setting.key,
        "value": mask_secret(setting.value) if setting.is_secret else setting.value,
        "description": setting.description,
        "is_secret": bool(setting.is_secret),
        "updated_at": setting.updated_at.isoformat() if setting.updated_at else None,
    }


# ==================== System health ====================

@router.get("/system-health")
async def get_system_health(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Error statistics, database and memory metrics, and recent errors"""
    return monitoring_service.system_health(db)


@router.post("/system-health")
async def report_error(
    request: Request,
    body: ErrorReport,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    """Clients report errors here; critical ones raise an alert"""
    try:
        error = monitoring_service.record_error(
            db,
            error_type=body.error_type,
            message=body.message,
            severity=body.severity,
            stack_trace=body.stack_trace,
            component=body.component,
            user_id=body.user_id or (current_user.id if current_user else None),
            session_id=body.session_id,
            url=body.url,
            user_agent=body.user_agent or request.headers.get("user-agent"),
            metadata=body.metadata
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "error_id": error.id}


@router.post("/errors/{error_id}/resolve")
async def resolve_error(
    request: Request,
    error_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        error = monitoring_service.resolve_error(db, error_id, current_user.id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    audit_service.log(
        db=db,
        action="resolve",
        resource_type="system_error",
        resource_id=error_id,
        user=current_user,
        request=request
    )
    return error_to_dict(error)


# ==================== Prompts ====================

@router.get("/prompts")
async def list_prompts(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return prompt_service.list_prompts(db)


@router.get("/prompts/status")
async def prompt_status(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return prompt_service.get_prompt_status(db)


@router.put("/prompts/{role}")
async def save_prompt(
    request: Request,
    role: str,
    body: PromptUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        row = prompt_service.save_prompt(db, role, body.prompt_text, current_user.id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]))

    audit_service.log(
        db=db,
        action="update",
        resource_type="prompt",
        resource_id=role,
        description=f"System prompt for {role} updated",
        new_values={"length": len(body.prompt_text)},
        user=current_user,
        request=request
    )
    return {"role": row.role, "prompt_text": row.prompt_text, "is_custom": True}


@router.delete("/prompts/{role}")
async def reset_prompt(
    request: Request,
    role: str,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Drop the override so the built-in prompt applies again"""
    reset = prompt_service.reset_prompt(db, role)
    audit_service.log(
        db=db,
        action="reset",
        resource_type="prompt",
        resource_id=role,
        user=current_user,
        request=request
    )
    return {"success": True, "reset": reset}


@router.get("/doctor-config")
async def get_doctor_config(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return prompt_service.get_doctor_config(db)


@router.put("/doctor-config")
async def save_doctor_config(
    request: Request,
    body: DoctorConfigUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        config = prompt_service.save_doctor_config(db, body.default_level, current_user.id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    audit_service.log(
        db=db,
        action="update",
        resource_type="doctor_config",
        new_values=config,
        user=current_user,
        request=request
    )
    return config


# ==================== Settings ====================

@router.get("/settings")
async def list_settings(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """System settings; secret values are masked"""
    settings_rows = db.query(SystemSetting).order_by(SystemSetting.key).all()
    return [setting_to_dict(s) for s in settings_rows]


@router.put("/settings/{key}")
async def update_setting(
    request: Request,
    key: str,
    body: SettingUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    if setting:
        setting.value = body.value
        if body.description is not None:
            setting.description = body.description
        setting.updated_by = current_user.id
    else:
        setting = SystemSetting(
            key=key,
            value=body.value,
            description=body.description,
            is_secret=key.endswith("_api_key"),
            updated_by=current_user.id
        )
        db.add(setting)
    db.commit()
    db.refresh(setting)

    audit_service.log(
        db=db,
        action="update",
        resource_type="setting",
        resource_id=key,
        new_values={"value": mask_secret(body.value) if setting.is_secret else body.value},
        user=current_user,
        request=request
    )
    return setting_to_dict(setting)


@router.delete("/settings/{key}")
async def delete_setting(
    request: Request,
    key: str,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    if not setting:
        raise HTTPException(status_code=404, detail="Setting not found")
    db.delete(setting)
    db.commit()

    audit_service.log(
        db=db,
        action="delete",
        resource_type="setting",
        resource_id=key,
        user=current_user,
        request=request
    )
    return {"success": True}


# ==================== Logs ====================

@router.get("/logs")
async def query_logs(
    level: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return monitoring_service.query_logs(db, level, category, search, start, end, limit, offset)


@router.get("/logs/stats")
async def log_stats(
    hours: int = Query(24, ge=1, le=24 * 30),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return monitoring_service.log_stats(db, hours)


@router.post("/logs", status_code=201)
async def create_log(
    body: LogEventRequest,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    """Clients forward notable events for the admin log viewer"""
    try:
        entry = monitoring_service.log_event(
            db,
            body.level,
            body.category,
            body.message,
            metadata=body.metadata,
            user_id=current_user.id if current_user else None
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return log_to_dict(entry)


@router.delete("/logs")
async def clear_logs(
    request: Request,
    before: Optional[datetime] = None,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    count = monitoring_service.clear_logs(db, before)
    audit_service.log(
        db=db,
        action="delete",
        resource_type="system_log",
        description=f"Cleared {count} logs" + (f" before {before.isoformat()}" if before else ""),
        user=current_user,
        request=request
    )
    return {"deleted": count}


# ==================== Alerts ====================

@router.get("/alerts")
async def list_alerts(
    active_only: bool = True,
    current_user: User = Depends(require_admin)
):
    alerts = alert_manager.get_active_alerts() if active_only else alert_manager.get_all_alerts()
    return [a.to_dict() for a in sorted(alerts, key=lambda a: a.timestamp, reverse=True)]


@router.get("/alerts/statistics")
async def alert_statistics(current_user: User = Depends(require_admin)):
    return alert_manager.get_alert_statistics()


@router.post("/alerts/{alert_id}/resolve")
async def resolve_alert(
    request: Request,
    alert_id: str,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    if not alert_manager.resolve_alert(alert_id, current_user.email):
        raise HTTPException(status_code=404, detail="Alert not found or already resolved")

    audit_service.log(
        db=db,
        action="resolve",
        resource_type="alert",
        resource_id=alert_id,
        user=current_user,
        request=request
    )
    return {"success": True}


# ==================== Users ====================

@router.get("/users")
async def list_users(
    role: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    q = db.query(User)
    if role:
        try:
            q = q.filter(User.role == UserRole(role))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid role: {role}")
    total = q.count()
    users = q.order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(limit).all()
    return {"users": [user_to_dict(u) for u in users], "total": total}


@router.put("/users/{user_id}/role")
async def change_role(
    request: Request,
    user_id: int,
    body: RoleUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        new_role = UserRole(body.role)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid role: {body.role}")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    old_role = user.role.value
    user.role = new_role
    db.commit()
    db.refresh(user)

    audit_service.log(
        db=db,
        action="update",
        resource_type="user",
        resource_id=user_id,
        description=f"Role changed from {old_role} to {new_role.value}",
        new_values={"role": new_role.value},
        user=current_user,
        request=request
    )
    monitoring_service.log_event(
        db,
        "info",
        "admin",
        f"User {user.email} role changed to {new_role.value}",
        metadata={"old_role": old_role},
        user_id=current_user.id
    )
    return user_to_dict(user)
