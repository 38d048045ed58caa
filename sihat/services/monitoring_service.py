"""
Monitoring Service
Persisted system logs and error reports, error statistics and the
system health summary shown on the admin dashboard.
"""
import time
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any

import psutil
from sqlalchemy import func
from sqlalchemy.orm import Session

from sihat.database.connection import db_manager
from sihat.database.models import SystemLog, SystemErrorRecord
from sihat.services.alert_manager import alert_manager

logger = logging.getLogger(__name__)

LOG_LEVELS = ("debug", "info", "warn", "error")
ERROR_SEVERITIES = ("low", "medium", "high", "critical")


def log_to_dict(entry: SystemLog) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": entry.timestamp.isoformat() if entry.timestamp else None,
        "level": entry.level,
        "category": entry.category,
        "message": entry.message,
        "metadata": entry.log_metadata or {},
        "user_id": entry.user_id,
    }


def error_to_dict(error: SystemErrorRecord) -> Dict[str, Any]:
    return {
        "id": error.id,
        "timestamp": error.timestamp.isoformat() if error.timestamp else None,
        "error_type": error.error_type,
        "message": error.message,
        "stack_trace": error.stack_trace,
        "component": error.component,
        "user_id": error.user_id,
        "session_id": error.session_id,
        "url": error.url,
        "user_agent": error.user_agent,
        "severity": error.severity,
        "metadata": error.error_metadata or {},
        "resolved": bool(error.resolved),
        "resolved_at": error.resolved_at.isoformat() if error.resolved_at else None,
        "resolved_by": error.resolved_by,
    }


def determine_overall_status(error_stats: Dict[str, Any], health_metrics: Dict[str, Any]) -> str:
    """healthy / degraded / unhealthy from error counts, database and memory"""
    db_status = health_metrics["database"]["status"]
    memory = health_metrics["memory"]["usage_percentage"]
    critical = error_stats["critical_errors"]
    high = error_stats["high_errors"]

    if db_status == "unhealthy" or critical > 5 or memory > 90:
        return "unhealthy"
    if db_status == "degraded" or critical > 0 or high > 10 or memory > 75:
        return "degraded"
    return "healthy"


class MonitoringService:
    """System logs, error reports and health metrics"""

    # ==================== System logs ====================

    def log_event(
        self,
        db: Session,
        level: str,
        category: str,
        message: str,
        metadata: Dict[str, Any] = None,
        user_id: int = None
    ) -> SystemLog:
        """Persist an application event for the admin log viewer"""
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {level}")
        if not message:
            raise ValueError("Log message is required")

        entry = SystemLog(
            level=level,
            category=category or "system",
            message=message,
            log_metadata=metadata or {},
            user_id=user_id
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry

    def query_logs(
        self,
        db: Session,
        level: str = None,
        category: str = None,
        search: str = None,
        start: datetime = None,
        end: datetime = None,
        limit: int = 100,
        offset: int = 0
    ) -> Dict[str, Any]:
        q = db.query(SystemLog)
        if level:
            q = q.filter(SystemLog.level == level)
        if category:
            q = q.filter(SystemLog.category == category)
        if search:
            q = q.filter(SystemLog.message.ilike(f"%{search}%"))
        if start:
            q = q.filter(SystemLog.timestamp >= start)
        if end:
            q = q.filter(SystemLog.timestamp <= end)

        total = q.count()
        logs = q.order_by(SystemLog.timestamp.desc(), SystemLog.id.desc()).offset(offset).limit(limit).all()
        return {"logs": [log_to_dict(entry) for entry in logs], "total": total}

    def log_stats(self, db: Session, hours: int = 24) -> Dict[str, Any]:
        since = datetime.utcnow() - timedelta(hours=hours)
        by_level = db.query(SystemLog.level, func.count(SystemLog.id)).filter(
            SystemLog.timestamp >= since
        ).group_by(SystemLog.level).all()
        by_category = db.query(SystemLog.category, func.count(SystemLog.id)).filter(
            SystemLog.timestamp >= since
        ).group_by(SystemLog.category).all()

        levels = {level: 0 for level in LOG_LEVELS}
        levels.update({level: count for level, count in by_level})
        return {
            "hours": hours,
            "total": sum(levels.values()),
            "by_level": levels,
            "by_category": {category: count for category, count in by_category},
        }

    def clear_logs(self, db: Session, before: datetime = None) -> int:
        """Delete logs older than `before`, or all logs; returns the count"""
        q = db.query(SystemLog)
        if before:
            q = q.filter(SystemLog.timestamp < before)
        count = q.delete(synchronize_session=False)
        db.commit()
        logger.info(f"Cleared {count} system logs")
        return count

    # ==================== Errors ====================

    def record_error(
        self,
        db: Session,
        error_type: str,
        message: str,
        severity: str = None,
        stack_trace: str = None,
        component: str = None,
        user_id: int = None,
        session_id: str = None,
        url: str = None,
        user_agent: str = None,
        metadata: Dict[str, Any] = None
    ) -> SystemErrorRecord:
        """
        Store a reported error

        Critical errors also raise a manual alert.

        Raises:
            ValueError: error_type or message missing, or unknown severity
        """
        if not error_type or not message:
            raise ValueError("Missing required fields: error_type, message")
        severity = severity or "medium"
        if severity not in ERROR_SEVERITIES:
            raise ValueError(f"Invalid severity: {severity}")

        error = SystemErrorRecord(
            error_type=error_type,
            message=message,
            stack_trace=stack_trace,
            component=component,
            user_id=user_id,
            session_id=session_id,
            url=url,
            user_agent=user_agent,
            severity=severity,
            error_metadata=metadata or {},
            timestamp=datetime.utcnow()
        )
        db.add(error)
        db.commit()
        db.refresh(error)

        if severity == "critical":
            alert_manager.send_alert(
                "critical_error",
                f"Critical error logged: {message}",
                "critical",
                {
                    "component": component,
                    "error_id": error.id,
                    "error_type": error_type,
                    "user_id": user_id,
                }
            )
        logger.info(f"Recorded {severity} error {error.id}: {error_type}")
        return error

    def resolve_error(self, db: Session, error_id: int, resolved_by: int = None) -> SystemErrorRecord:
        error = db.query(SystemErrorRecord).filter(SystemErrorRecord.id == error_id).first()
        if not error:
            raise LookupError("Error not found")
        error.resolved = True
        error.resolved_at = datetime.utcnow()
        error.resolved_by = resolved_by
        db.commit()
        db.refresh(error)
        return error

    def recent_errors(self, db: Session, limit: int = 20) -> List[Dict[str, Any]]:
        errors = db.query(SystemErrorRecord).order_by(
            SystemErrorRecord.timestamp.desc(), SystemErrorRecord.id.desc()
        ).limit(limit).all()
        return [error_to_dict(e) for e in errors]

    def error_statistics(self, db: Session, now: datetime = None) -> Dict[str, Any]:
        """Aggregate the errors reported over the last 24 hours"""
        now = now or datetime.utcnow()
        errors = db.query(SystemErrorRecord).filter(
            SystemErrorRecord.timestamp >= now - timedelta(hours=24)
        ).all()
        total = len(errors)

        by_severity = {severity: 0 for severity in ERROR_SEVERITIES}
        for e in errors:
            by_severity[e.severity] = by_severity.get(e.severity, 0) + 1
        resolved = len([e for e in errors if e.resolved])

        type_counts: Dict[str, int] = {}
        for e in errors:
            type_counts[e.error_type] = type_counts.get(e.error_type, 0) + 1
        most_common = sorted(type_counts.items(), key=lambda item: item[1], reverse=True)[:5]

        components: Dict[str, Dict[str, int]] = {}
        for e in errors:
            if not e.component:
                continue
            entry = components.setdefault(e.component, {"count": 0, "critical_count": 0})
            entry["count"] += 1
            if e.severity == "critical":
                entry["critical_count"] += 1
        top_components = sorted(components.items(), key=lambda item: item[1]["count"], reverse=True)[:10]

        hourly: Dict[str, Dict[str, int]] = {}
        for e in errors:
            hour = e.timestamp.strftime("%Y-%m-%dT%H:00:00Z")
            entry = hourly.setdefault(hour, {"count": 0, "critical_count": 0})
            entry["count"] += 1
            if e.severity == "critical":
                entry["critical_count"] += 1

        return {
            "total_errors": total,
            "critical_errors": by_severity["critical"],
            "high_errors": by_severity["high"],
            "medium_errors": by_severity["medium"],
            "low_errors": by_severity["low"],
            "resolved_errors": resolved,
            "unresolved_errors": total - resolved,
            "error_rate_24h": total,
            "most_common_errors": [
                {
                    "error_type": error_type,
                    "count": count,
                    "percentage": round(count / total * 100, 2) if total else 0,
                }
                for error_type, count in most_common
            ],
            "errors_by_component": [
                {"component": component, **counts}
                for component, counts in top_components
            ],
            "hourly_error_trend": [
                {"hour": hour, **counts}
                for hour, counts in sorted(hourly.items())
            ],
        }

    # ==================== Health ====================

    def database_health(self, db: Session) -> Dict[str, Any]:
        start = time.monotonic()
        try:
            db_manager.ping(db)
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            alert_manager.record_metric("database_health", "unhealthy")
            return {"status": "unhealthy", "response_time": None, "error": str(e)}

        elapsed_ms = round((time.monotonic() - start) * 1000)
        if elapsed_ms < 1000:
            status = "healthy"
        elif elapsed_ms < 3000:
            status = "degraded"
        else:
            status = "unhealthy"
        alert_manager.record_metric("database_health", status)
        return {"status": status, "response_time": elapsed_ms}

    @staticmethod
    def memory_usage() -> Dict[str, Any]:
        memory = psutil.virtual_memory()
        return {
            "used_mb": round(memory.used / (1024 * 1024)),
            "total_mb": round(memory.total / (1024 * 1024)),
            "usage_percentage": round(memory.percent, 1),
        }

    def system_health_metrics(self, db: Session) -> Dict[str, Any]:
        alert_manager.cleanup()
        stats = alert_manager.get_alert_statistics()
        return {
            "database": self.database_health(db),
            "memory": self.memory_usage(),
            "alerts": {
                "active_count": stats["activeAlerts"],
                "critical_count": stats["criticalAlerts"],
            },
        }

    def system_health(self, db: Session) -> Dict[str, Any]:
        """Dashboard payload for GET /api/admin/system-health"""
        error_stats = self.error_statistics(db)
        health_metrics = self.system_health_metrics(db)
        return {
            "status": determine_overall_status(error_stats, health_metrics),
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "error_statistics": error_stats,
            "health_metrics": health_metrics,
            "recent_errors": self.recent_errors(db, limit=20),
        }


monitoring_service = MonitoringService()
