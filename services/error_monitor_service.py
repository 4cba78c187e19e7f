"""
Error monitor and health checks.

Tallies errors by type and endpoint, tracks response times and builds
the report served by /api/health-check.
"""

import os
import tempfile
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional
import psutil
import structlog

from config import settings

logger = structlog.get_logger(__name__)

RECENT_ERRORS_LIMIT = 100
RESPONSE_TIME_WINDOW = 1000

# Error rate (per minute) above which the service reports degraded
DEGRADED_ERROR_RATE = 5
CRITICAL_ERROR_RATE = 10
HIGH_AVG_RESPONSE_MS = 3000

MEMORY_WARN_PERCENT = 85
MEMORY_FAIL_PERCENT = 95


@dataclass
class HealthCheck:
    status: str  # pass | warn | fail
    duration: float
    message: str
    details: Optional[dict] = None

    def to_dict(self) -> dict:
        result = {"status": self.status, "duration": round(self.duration, 2), "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


@dataclass
class ErrorRecord:
    type: str
    message: str
    endpoint: Optional[str]
    timestamp: str
    context: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "message": self.message,
            "endpoint": self.endpoint,
            "timestamp": self.timestamp,
            "context": self.context,
        }


class ErrorMonitorService:
    """
    Error statistics and the application health report.

    Args:
        clock: Time source in seconds, injectable for tests
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.started_at = clock()
        self._lock = threading.Lock()
        self.total_errors = 0
        self.errors_by_type: dict[str, int] = {}
        self.errors_by_endpoint: dict[str, int] = {}
        self.last_error: Optional[str] = None
        self.recent_errors: deque[ErrorRecord] = deque(maxlen=RECENT_ERRORS_LIMIT)
        self.response_times: deque[float] = deque(maxlen=RESPONSE_TIME_WINDOW)
        self.request_count = 0
        self.slow_requests = 0

    # ===================
    # RECORDING
    # ===================

    def record_error(
        self,
        error: BaseException,
        endpoint: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> None:
        """Count an error by type and endpoint and keep it in the recent list."""
        error_type = type(error).__name__
        now = datetime.now(timezone.utc).isoformat()

        with self._lock:
            self.total_errors += 1
            self.last_error = now
            self.errors_by_type[error_type] = self.errors_by_type.get(error_type, 0) + 1
            if endpoint:
                self.errors_by_endpoint[endpoint] = self.errors_by_endpoint.get(endpoint, 0) + 1
            self.recent_errors.append(
                ErrorRecord(type=error_type, message=str(error), endpoint=endpoint, timestamp=now, context=context or {})
            )
            total = self.total_errors

        logger.error(
            "error_recorded",
            error_type=error_type,
            error=str(error),
            endpoint=endpoint,
            total_errors=total,
        )

        rate = self.error_rate()
        if rate > CRITICAL_ERROR_RATE:
            logger.critical("critical_error_rate_exceeded", current_rate=round(rate, 2), threshold=CRITICAL_ERROR_RATE)

    def record_response_time(self, endpoint: Optional[str], duration_ms: float) -> None:
        """Track one response time; requests over SLOW_REQUEST_MS are counted as slow."""
        with self._lock:
            self.response_times.append(duration_ms)
            self.request_count += 1
            slow = duration_ms > settings.slow_request_ms
            if slow:
                self.slow_requests += 1

        if slow:
            logger.warning("slow_request_detected", endpoint=endpoint, duration_ms=round(duration_ms, 2))

        avg = self.average_response_time()
        if avg > HIGH_AVG_RESPONSE_MS:
            logger.warning("high_average_response_time", current_ms=round(avg, 2), threshold=HIGH_AVG_RESPONSE_MS)

    # ===================
    # STATISTICS
    # ===================

    def uptime_seconds(self) -> float:
        return self._clock() - self.started_at

    def error_rate(self) -> float:
        """Errors per minute of uptime, with uptime floored at one minute."""
        minutes = max(1.0, self.uptime_seconds() / 60)
        return self.total_errors / minutes

    def average_response_time(self) -> float:
        with self._lock:
            times = list(self.response_times)
        return sum(times) / len(times) if times else 0.0

    def error_metrics(self) -> dict:
        with self._lock:
            return {
                "total_errors": self.total_errors,
                "errors_by_type": dict(self.errors_by_type),
                "errors_by_endpoint": dict(self.errors_by_endpoint),
                "last_error": self.last_error,
                "error_rate": round(self.error_rate(), 4),
                "recent_errors": [e.to_dict() for e in list(self.recent_errors)[-10:]],
            }

    def performance_metrics(self) -> dict:
        minutes = max(1.0, self.uptime_seconds() / 60)
        return {
            "average_response_time": round(self.average_response_time(), 2),
            "requests_per_minute": round(self.request_count / minutes, 4),
            "slow_requests": self.slow_requests,
        }

    @staticmethod
    def memory_metrics() -> dict:
        memory = psutil.virtual_memory()
        process = psutil.Process().memory_info()
        return {
            "used": memory.used,
            "total": memory.total,
            "percentage": memory.percent,
            "process_rss": process.rss,
        }

    def reset(self) -> None:
        """Drop response times and the slow request count."""
        with self._lock:
            self.response_times.clear()
            self.slow_requests = 0
        logger.info("error_monitor_reset")

    # ===================
    # HEALTH CHECKS
    # ===================

    def check_filesystem(self) -> HealthCheck:
        """Write and read back a temporary file."""
        start = time.perf_counter()
        try:
            with tempfile.NamedTemporaryFile(mode="w+", suffix=".health", delete=True) as handle:
                handle.write("ok")
                handle.flush()
                handle.seek(0)
                if handle.read() != "ok":
                    raise OSError("read back mismatch")
            if settings.output_dir and not os.access(settings.output_dir, os.W_OK) and os.path.exists(settings.output_dir):
                return HealthCheck(
                    status="warn",
                    duration=_elapsed_ms(start),
                    message="Output directory is not writable",
                    details={"output_dir": settings.output_dir},
                )
            return HealthCheck(status="pass", duration=_elapsed_ms(start), message="File system accessible")
        except OSError as e:
            return HealthCheck(
                status="fail",
                duration=_elapsed_ms(start),
                message="File system access failed",
                details={"error": str(e)},
            )

    def check_ai_service(self) -> HealthCheck:
        """The AI provider is optional; a missing key only warns."""
        start = time.perf_counter()
        if settings.ai_configured:
            return HealthCheck(
                status="pass",
                duration=_elapsed_ms(start),
                message="AI provider configured",
                details={"model": settings.ai_model},
            )
        return HealthCheck(
            status="warn",
            duration=_elapsed_ms(start),
            message="ANTHROPIC_API_KEY not set, using fallback mappings",
        )

    def check_memory(self) -> HealthCheck:
        start = time.perf_counter()
        percent = psutil.virtual_memory().percent
        if percent >= MEMORY_FAIL_PERCENT:
            status, message = "fail", "Memory almost exhausted"
        elif percent >= MEMORY_WARN_PERCENT:
            status, message = "warn", "Memory usage high"
        else:
            status, message = "pass", "Memory usage normal"
        return HealthCheck(status=status, duration=_elapsed_ms(start), message=message, details={"percentage": percent})

    def check_health(self) -> dict:
        """
        Full health report.

        Status is unhealthy when any check fails, degraded when any check
        warns or the error rate is above DEGRADED_ERROR_RATE, else healthy.
        """
        checks = {
            "file_system": self.check_filesystem(),
            "ai_service": self.check_ai_service(),
            "memory": self.check_memory(),
        }

        statuses = [c.status for c in checks.values()]
        if "fail" in statuses:
            overall = "unhealthy"
        elif "warn" in statuses or self.error_rate() > DEGRADED_ERROR_RATE:
            overall = "degraded"
        else:
            overall = "healthy"

        return {
            "status": overall,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(self.uptime_seconds() * 1000),
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": {name: check.to_dict() for name, check in checks.items()},
            "metrics": {
                "memory": self.memory_metrics(),
                "errors": self.error_metrics(),
                "performance": self.performance_metrics(),
            },
        }


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


# Singleton instance
_error_monitor: Optional[ErrorMonitorService] = None


def get_error_monitor() -> ErrorMonitorService:
    """Get or create error monitor instance."""
    global _error_monitor
    if _error_monitor is None:
        _error_monitor = ErrorMonitorService()
    return _error_monitor
