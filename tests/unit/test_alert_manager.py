"""
Unit tests for sihat.services.alert_manager
"""
import pytest

from sihat.services.alert_manager import (
    AlertCondition,
    AlertManager,
    AlertRule,
    DEFAULT_METRIC_WINDOW,
    MAX_METRIC_SAMPLES,
    check_operator,
    default_rules,
)


@pytest.fixture
def manager():
    return AlertManager(enabled=True)


class TestOperators:
    @pytest.mark.parametrize("operator,value,threshold,expected", [
        ("gt", 6, 5, True),
        ("gt", 5, 5, False),
        ("lt", 80, 90, True),
        ("gte", 5, 5, True),
        ("lte", 6, 5, False),
        ("eq", "5", 5, True),
        ("contains", "status: unhealthy", "unhealthy", True),
        ("not_contains", "healthy", "unhealthy", True),
        ("gt", "not a number", 5, False),
        ("between", 1, 2, False),
    ])
    def test_check_operator(self, operator, value, threshold, expected):
        assert check_operator(operator, value, threshold) is expected


class TestRuleEvaluation:
    def test_default_rules_loaded(self, manager):
        assert {r.id for r in default_rules()} == set(manager.rules)
        assert len(manager.rules) == 6

    def test_needs_consecutive_failures(self, manager):
        assert manager.record_metric("api_response_time", 6000, timestamp=1000) == []
        assert manager.record_metric("api_response_time", 6000, timestamp=1001) == []
        alerts = manager.record_metric("api_response_time", 6000, timestamp=1002)
        assert [a.id for a in alerts] == ["high_api_response_time_1002000"]
        assert alerts[0].severity == "warning"
        assert alerts[0].metadata == {"ruleId": "high_api_response_time", "metric": "api_response_time", "value": 6000}

    def test_good_value_breaks_the_streak(self, manager):
        manager.record_metric("api_response_time", 6000, timestamp=1000)
        manager.record_metric("api_response_time", 100, timestamp=1001)
        assert manager.record_metric("api_response_time", 6000, timestamp=1002) == []

    def test_old_samples_outside_window_ignored(self, manager):
        manager.record_metric("api_response_time", 6000, timestamp=1000)
        manager.record_metric("api_response_time", 6000, timestamp=1001)
        assert manager.record_metric("api_response_time", 6000, timestamp=1000 + 400) == []

    def test_cooldown(self, manager):
        first = manager.record_metric("database_health", "unhealthy", timestamp=1000)
        assert len(first) == 1
        assert manager.record_metric("database_health", "unhealthy", timestamp=1100) == []
        assert len(manager.record_metric("database_health", "unhealthy", timestamp=1000 + 180)) == 1

    def test_both_rules_can_fire(self, manager):
        manager.record_metric("api_response_time", 20000, timestamp=1000)
        manager.record_metric("api_response_time", 20000, timestamp=1001)
        alerts = manager.record_metric("api_response_time", 20000, timestamp=1002)
        # critical fired on the second sample, high on the third
        assert [a.title for a in alerts] == ["High API Response Time"]
        assert len(manager.get_active_alerts()) == 2

    def test_disabled_rule(self, manager):
        assert manager.set_rule_enabled("database_connection_failure", False) is True
        assert manager.record_metric("database_health", "unhealthy", timestamp=1000) == []
        assert manager.set_rule_enabled("missing", False) is False

    def test_custom_rules(self):
        rule = AlertRule(
            id="low_disk",
            name="Low Disk",
            description="Disk almost full",
            category="system_health",
            severity="error",
            condition=AlertCondition("disk_free", "lt", 10),
        )
        manager = AlertManager(enabled=True, rules=[rule])
        assert len(manager.record_metric("disk_free", 5, timestamp=50)) == 1
        assert manager.remove_rule("low_disk") is True
        assert manager.remove_rule("low_disk") is False

    def test_disabled_manager_records_nothing(self):
        manager = AlertManager(enabled=False)
        assert manager.record_metric("database_health", "unhealthy") == []
        assert manager.send_alert("critical_error", "boom", "critical") is None
        assert manager.get_all_alerts() == []


class TestMetricHistory:
    def test_window_per_metric(self, manager):
        assert manager.metric_window("api_response_time") == 300
        assert manager.metric_window("database_health") == 60
        assert manager.metric_window("ai_success_rate") == 600
        assert manager.metric_window("queue_depth") == DEFAULT_METRIC_WINDOW

    def test_old_samples_dropped(self, manager):
        for ts in range(1000, 1005):
            manager.record_metric("api_response_time", 100, timestamp=ts)
        manager.record_metric("api_response_time", 100, timestamp=2000)
        assert list(manager._metrics["api_response_time"]) == [(2000, 100)]

    def test_history_capped(self, manager):
        for _ in range(MAX_METRIC_SAMPLES + 50):
            manager.record_metric("api_response_time", 100, timestamp=1000)
        assert len(manager._metrics["api_response_time"]) == MAX_METRIC_SAMPLES

    def test_failed_logins_counted_in_window(self, manager):
        for i in range(10):
            assert manager.record_event("failed_login_attempts", timestamp=1000 + i) == []
        alerts = manager.record_event("failed_login_attempts", timestamp=1010)
        assert [a.metadata["ruleId"] for a in alerts] == ["security_breach_attempt"]
        assert alerts[0].metadata["value"] == 11

    def test_failed_logins_expire(self, manager):
        for i in range(10):
            manager.record_event("failed_login_attempts", timestamp=1000 + i)
        assert manager.record_event("failed_login_attempts", timestamp=1400) == []
        assert manager._metrics["failed_login_attempts"][-1] == (1400, 1)

    def test_ai_success_rate(self, manager):
        assert manager.record_ratio("ai_success_rate", True, timestamp=1000) == []
        assert manager.record_ratio("ai_success_rate", False, timestamp=1001) == []
        alerts = manager.record_ratio("ai_success_rate", False, timestamp=1002)
        assert [a.metadata["ruleId"] for a in alerts] == ["ai_service_failure"]
        assert alerts[0].metadata["value"] == 33.33

    def test_error_rate(self, manager):
        for ts in range(1000, 1018):
            manager.record_ratio("error_rate", False, timestamp=ts)
        assert manager.record_ratio("error_rate", True, timestamp=1018) == []
        alerts = manager.record_ratio("error_rate", True, timestamp=1019)
        assert [a.metadata["ruleId"] for a in alerts] == ["high_error_rate"]
        assert alerts[0].metadata["value"] == 10.0

    def test_disabled_manager_ignores_outcomes(self):
        manager = AlertManager(enabled=False)
        assert manager.record_event("failed_login_attempts") == []
        assert manager.record_ratio("ai_success_rate", False) == []
        assert manager._outcomes == {}


class TestAlerts:
    def test_send_alert(self, manager):
        alert = manager.send_alert("critical_error", "Critical error logged: boom", "critical", {"component": "chat"})
        assert alert.id.startswith("manual_")
        assert alert.title == "CRITICAL ERROR"
        assert alert.source == "Manual"
        assert alert.metadata == {"component": "chat"}

    def test_resolve(self, manager):
        alert = manager.send_alert("test", "message")
        assert manager.resolve_alert(alert.id, "admin@example.com") is True
        assert manager.resolve_alert(alert.id, "admin@example.com") is False
        assert manager.resolve_alert("unknown") is False
        assert manager.alerts[alert.id].resolved_by == "admin@example.com"
        assert manager.get_active_alerts() == []

    def test_statistics(self, manager):
        manager.send_alert("a", "one", "critical")
        resolved = manager.send_alert("b", "two", "warning")
        manager.resolve_alert(resolved.id)
        stats = manager.get_alert_statistics()
        assert stats["totalAlerts"] == 2
        assert stats["activeAlerts"] == 1
        assert stats["resolvedAlerts"] == 1
        assert stats["criticalAlerts"] == 1
        assert stats["alertsBySeverity"] == {"critical": 1, "warning": 1}
        assert stats["alertsByCategory"] == {"system_health": 2}

    def test_cleanup(self, manager):
        manager.record_metric("database_health", "unhealthy", timestamp=1000)
        manager.send_alert("recent", "still here")
        assert manager.cleanup(max_age_hours=1) == 1
        assert len(manager.get_all_alerts()) == 1
