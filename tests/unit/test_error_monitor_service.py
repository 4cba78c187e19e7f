"""
Unit tests for ErrorMonitorService.

Run: pytest tests/unit/test_error_monitor_service.py -v
"""

import pytest

from config import settings
from services.error_monitor_service import ErrorMonitorService, HealthCheck, get_error_monitor


class FakeClock:
    """Seconds clock that only moves when told to."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor(clock, monkeypatch):
    monitor = ErrorMonitorService(clock=clock)
    monkeypatch.setattr(monitor, "check_memory", lambda: HealthCheck("pass", 0.1, "Memory usage normal"))
    return monitor


# ===================
# ERRORS
# ===================

class TestErrors:
    """Tests for record_error() and error_rate()"""

    def test_tallies(self, monitor):
        monitor.record_error(ValueError("valor inválido"), "/api/migration/upload")
        monitor.record_error(ValueError("outro"), "/api/migration/upload")
        monitor.record_error(KeyError("x"))

        metrics = monitor.error_metrics()

        assert metrics["total_errors"] == 3
        assert metrics["errors_by_type"] == {"ValueError": 2, "KeyError": 1}
        assert metrics["errors_by_endpoint"] == {"/api/migration/upload": 2}
        assert metrics["recent_errors"][0]["message"] == "valor inválido"
        assert metrics["last_error"] is not None

    def test_context_is_kept(self, monitor):
        monitor.record_error(RuntimeError("falha"), context={"request_id": "abc"})

        assert monitor.error_metrics()["recent_errors"][0]["context"] == {"request_id": "abc"}

    def test_rate_floors_uptime_at_one_minute(self, monitor, clock):
        for _ in range(3):
            monitor.record_error(ValueError("x"))

        clock.now = 30
        assert monitor.error_rate() == 3.0

        clock.now = 120
        assert monitor.error_rate() == 1.5


class TestResponseTimes:
    """Tests for record_response_time()"""

    def test_slow_requests(self, monitor):
        monitor.record_response_time("/a", 100)
        monitor.record_response_time("/a", settings.slow_request_ms + 1)

        perf = monitor.performance_metrics()

        assert perf["slow_requests"] == 1
        assert perf["average_response_time"] == round((100 + settings.slow_request_ms + 1) / 2, 2)

    def test_reset(self, monitor):
        monitor.record_response_time("/a", 10_000)

        monitor.reset()

        assert monitor.performance_metrics()["slow_requests"] == 0
        assert monitor.average_response_time() == 0.0


# ===================
# HEALTH
# ===================

class TestHealth:
    """Tests for check_health() and the individual checks"""

    def test_degraded_without_ai_key(self, monitor):
        report = monitor.check_health()

        assert report["status"] == "degraded"
        assert report["checks"]["ai_service"]["status"] == "warn"
        assert report["version"] == settings.app_version

    def test_healthy(self, monitor, monkeypatch):
        monkeypatch.setattr(settings, "anthropic_api_key", "sk-ant-test")

        report = monitor.check_health()

        assert report["status"] == "healthy"
        assert set(report["checks"]) == {"file_system", "ai_service", "memory"}
        assert set(report["metrics"]) == {"memory", "errors", "performance"}

    def test_high_error_rate_degrades(self, monitor, monkeypatch):
        monkeypatch.setattr(settings, "anthropic_api_key", "sk-ant-test")
        for _ in range(6):
            monitor.record_error(ValueError("x"))

        assert monitor.check_health()["status"] == "degraded"

    def test_failed_check_is_unhealthy(self, monitor, monkeypatch):
        monkeypatch.setattr(monitor, "check_memory", lambda: HealthCheck("fail", 0.1, "Memory almost exhausted"))

        assert monitor.check_health()["status"] == "unhealthy"

    def test_uptime_in_ms(self, monitor, clock):
        clock.now = 2.5

        assert monitor.check_health()["uptime"] == 2500

    def test_filesystem_check(self):
        assert ErrorMonitorService().check_filesystem().status == "pass"

    def test_health_check_to_dict(self):
        check = HealthCheck("warn", 1.234, "Memory usage high", {"percentage": 90})

        assert check.to_dict() == {
            "status": "warn",
            "duration": 1.23,
            "message": "Memory usage high",
            "details": {"percentage": 90},
        }

    def test_singleton(self):
        assert get_error_monitor() is get_error_monitor()
