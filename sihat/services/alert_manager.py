"""
Alert Manager
In-process alert rules over recorded metrics, plus manual alerts raised by
services (for example when a critical error is reported).
"""
import time
import random
import string
import logging
import threading
from collections import deque
from dataclasses import dataclass, field, asdict
from typing import Deque, Dict, List, Optional, Any, Tuple, Union

from sihat.config import settings

logger = logging.getLogger(__name__)

Threshold = Union[float, str]

# Samples kept per metric are bounded by the longest rule window and this cap
DEFAULT_METRIC_WINDOW = 300  # seconds
MAX_METRIC_SAMPLES = 1000


@dataclass
class AlertCondition:
    metric: str
    operator: str  # gt, lt, gte, lte, eq, contains, not_contains
    threshold: Threshold
    time_window: int = 300  # seconds
    consecutive_failures: int = 1


@dataclass
class AlertRule:
    id: str
    name: str
    description: str
    category: str
    severity: str  # info, warning, error, critical
    condition: AlertCondition
    cooldown_period: int = 600  # seconds
    enabled: bool = True


@dataclass
class Alert:
    id: str
    title: str
    description: str
    severity: str
    category: str
    source: str
    timestamp: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    resolved: bool = False
    resolved_at: Optional[float] = None
    resolved_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def default_rules() -> List[AlertRule]:
    return [
        AlertRule(
            id="high_api_response_time",
            name="High API Response Time",
            description="API response time exceeds acceptable threshold",
            category="api_performance",
            severity="warning",
            condition=AlertCondition("api_response_time", "gt", 5000, time_window=300, consecutive_failures=3),
            cooldown_period=600
        ),
        AlertRule(
            id="critical_api_response_time",
            name="Critical API Response Time",
            description="API response time is critically high",
            category="api_performance",
            severity="critical",
            condition=AlertCondition("api_response_time", "gt", 15000, time_window=180, consecutive_failures=2),
            cooldown_period=300
        ),
        AlertRule(
            id="high_error_rate",
            name="High Error Rate",
            description="API error rate exceeds acceptable threshold",
            category="system_health",
            severity="error",
            condition=AlertCondition("error_rate", "gt", 5, time_window=300, consecutive_failures=2),
            cooldown_period=600
        ),
        AlertRule(
            id="database_connection_failure",
            name="Database Connection Failure",
            description="Unable to connect to database",
            category="database",
            severity="critical",
            condition=AlertCondition("database_health", "contains", "unhealthy", time_window=60, consecutive_failures=1),
            cooldown_period=180
        ),
        AlertRule(
            id="ai_service_failure",
            name="AI Service Failure",
            description="Gemini AI service is failing",
            category="ai_service",
            severity="error",
            condition=AlertCondition("ai_success_rate", "lt", 90, time_window=600, consecutive_failures=2),
            cooldown_period=900
        ),
        AlertRule(
            id="security_breach_attempt",
            name="Security Breach Attempt",
            description="Potential security breach detected",
            category="security",
            severity="critical",
            condition=AlertCondition("failed_login_attempts", "gt", 10, time_window=300, consecutive_failures=1),
            cooldown_period=600
        ),
    ]


def check_operator(operator: str, value: Any, threshold: Threshold) -> bool:
    if operator == "contains":
        return str(threshold) in str(value)
    if operator == "not_contains":
        return str(threshold) not in str(value)
    try:
        value = float(value)
        threshold = float(threshold)
    except (TypeError, ValueError):
        return False
    if operator == "gt":
        return value > threshold
    if operator == "lt":
        return value < threshold
    if operator == "gte":
        return value >= threshold
    if operator == "lte":
        return value <= threshold
    if operator == "eq":
        return value == threshold
    return False


class AlertManager:
    """
    Evaluates alert rules as metrics are recorded

    A rule fires when the last `consecutive_failures` values recorded for its
    metric inside the time window all satisfy the condition, and the rule is
    not in its cooldown period.
    """

    def __init__(self, enabled: bool = None, rules: List[AlertRule] = None):
        self.enabled = settings.ENABLE_ALERTING if enabled is None else enabled
        self.rules: Dict[str, AlertRule] = {r.id: r for r in (rules if rules is not None else default_rules())}
        self.alerts: Dict[str, Alert] = {}
        self._metrics: Dict[str, Deque[Tuple[float, Any]]] = {}
        self._outcomes: Dict[str, Deque[Tuple[float, bool]]] = {}
        self._last_alert_time: Dict[str, float] = {}
        self._lock = threading.Lock()

    # ==================== Rules ====================

    def add_rule(self, rule: AlertRule):
        self.rules[rule.id] = rule

    def remove_rule(self, rule_id: str) -> bool:
        return self.rules.pop(rule_id, None) is not None

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> bool:
        rule = self.rules.get(rule_id)
        if not rule:
            return False
        rule.enabled = enabled
        return True

    # ==================== Metrics ====================

    def metric_window(self, name: str) -> int:
        """Seconds of history the rules on this metric look at"""
        windows = [r.condition.time_window for r in self.rules.values() if r.condition.metric == name]
        return max(windows, default=DEFAULT_METRIC_WINDOW)

    def _append(self, store: Dict[str, Deque], name: str, ts: float, item: Any) -> Deque:
        """Add a sample and drop those older than the metric's window; caller holds the lock"""
        history = store.get(name)
        if history is None:
            history = store[name] = deque(maxlen=MAX_METRIC_SAMPLES)
        history.append((ts, item))
        cutoff = ts - self.metric_window(name)
        while history and history[0][0] < cutoff:
            history.popleft()
        return history

    def record_event(self, name: str, timestamp: float = None) -> List[Alert]:
        """Count one occurrence; the metric value is the count inside the window"""
        if not self.enabled:
            return []
        ts = time.time() if timestamp is None else timestamp
        with self._lock:
            count = len(self._append(self._outcomes, name, ts, True))
        return self.record_metric(name, count, ts)

    def record_ratio(self, name: str, hit: bool, timestamp: float = None) -> List[Alert]:
        """Record an outcome; the metric value is the percentage of hits inside the window"""
        if not self.enabled:
            return []
        ts = time.time() if timestamp is None else timestamp
        with self._lock:
            outcomes = self._append(self._outcomes, name, ts, bool(hit))
            percent = round(100.0 * sum(1 for _, h in outcomes if h) / len(outcomes), 2)
        return self.record_metric(name, percent, ts)

    def record_metric(self, name: str, value: Any, timestamp: float = None) -> List[Alert]:
        """Store a metric value and return any alerts it triggered"""
        if not self.enabled:
            return []
        ts = time.time() if timestamp is None else timestamp

        with self._lock:
            history = self._append(self._metrics, name, ts, value)
            triggered = []
            for rule in self.rules.values():
                if not rule.enabled or rule.condition.metric != name:
                    continue
                last = self._last_alert_time.get(rule.id)
                if last is not None and ts - last < rule.cooldown_period:
                    continue
                if self._evaluate(rule.condition, history, ts):
                    alert = Alert(
                        id=f"{rule.id}_{int(ts * 1000)}",
                        title=rule.name,
                        description=f"{rule.description} (value: {value}, threshold: {rule.condition.threshold})",
                        severity=rule.severity,
                        category=rule.category,
                        source="AlertRuleEngine",
                        timestamp=ts,
                        metadata={"ruleId": rule.id, "metric": name, "value": value}
                    )
                    self._last_alert_time[rule.id] = ts
                    self.alerts[alert.id] = alert
                    triggered.append(alert)

        for alert in triggered:
            logger.warning(f"Alert triggered: {alert.title} [{alert.severity}]")
        return triggered

    @staticmethod
    def _evaluate(condition: AlertCondition, history: Deque[Tuple[float, Any]], now: float) -> bool:
        window = [v for ts, v in history if ts >= now - condition.time_window]
        needed = max(1, condition.consecutive_failures)
        if len(window) < needed:
            return False
        return all(check_operator(condition.operator, v, condition.threshold) for v in window[-needed:])

    # ==================== Alerts ====================

    def send_alert(self, alert_type: str, message: str, severity: str = "warning", metadata: Dict[str, Any] = None) -> Optional[Alert]:
        """Raise an alert directly, bypassing the rules"""
        if not self.enabled:
            return None
        ts = time.time()
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        alert = Alert(
            id=f"manual_{int(ts * 1000)}_{suffix}",
            title=alert_type.replace("_", " ").upper(),
            description=message,
            severity=severity,
            category="system_health",
            source="Manual",
            timestamp=ts,
            metadata=metadata or {}
        )
        with self._lock:
            self.alerts[alert.id] = alert
        logger.warning(f"Alert triggered: {alert.title} [{severity}]: {message}")
        return alert

    def resolve_alert(self, alert_id: str, resolved_by: str = None) -> bool:
        with self._lock:
            alert = self.alerts.get(alert_id)
            if not alert or alert.resolved:
                return False
            alert.resolved = True
            alert.resolved_at = time.time()
            alert.resolved_by = resolved_by
        logger.info(f"Alert resolved: {alert_id} by {resolved_by}")
        return True

    def get_active_alerts(self) -> List[Alert]:
        return [a for a in self.alerts.values() if not a.resolved]

    def get_all_alerts(self) -> List[Alert]:
        return list(self.alerts.values())

    def get_alert_statistics(self) -> Dict[str, Any]:
        all_alerts = list(self.alerts.values())
        active = [a for a in all_alerts if not a.resolved]
        by_category: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        for alert in all_alerts:
            by_category[alert.category] = by_category.get(alert.category, 0) + 1
            by_severity[alert.severity] = by_severity.get(alert.severity, 0) + 1

        return {
            "totalAlerts": len(all_alerts),
            "activeAlerts": len(active),
            "resolvedAlerts": len(all_alerts) - len(active),
            "criticalAlerts": len([a for a in active if a.severity == "critical"]),
            "alertsByCategory": by_category,
            "alertsBySeverity": by_severity,
        }

    def cleanup(self, max_age_hours: int = 24) -> int:
        """Drop alerts and metric samples older than max_age_hours"""
        cutoff = time.time() - max_age_hours * 3600
        with self._lock:
            old = [alert_id for alert_id, a in self.alerts.items() if a.timestamp < cutoff]
            for alert_id in old:
                del self.alerts[alert_id]
            for store in (self._metrics, self._outcomes):
                for name, history in store.items():
                    store[name] = deque(((ts, v) for ts, v in history if ts >= cutoff), maxlen=MAX_METRIC_SAMPLES)
        if old:
            logger.info(f"Cleaned up {len(old)} old alerts")
        return len(old)


alert_manager = AlertManager()
