"""
Performance metrics collector.

Keeps timestamped metric points in memory, raises alerts when a metric
crosses its threshold, aggregates request statistics and renders
everything in the Prometheus text format through prometheus_client.
"""

import os
import re
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional
import psutil
import structlog
from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily

from config import settings
from services.cache_service import get_cache_manager

logger = structlog.get_logger(__name__)

# metric -> (threshold, direction). "above" alerts when value > threshold.
ALERT_THRESHOLDS: dict[str, tuple[float, str]] = {
    "cpu.usage": (80, "above"),
    "memory.percentage": (85, "above"),
    "disk.percentage": (90, "above"),
    "response.time": (5000, "above"),
    "error.rate": (5, "above"),
    "cache.hit_rate": (70, "below"),
}

RESPONSE_TIME_WINDOW = 1000
REQUEST_STATS_RESET_MS = 60_000

# Points kept per metric; older ones are dropped first
MAX_POINTS_PER_METRIC = 1000
CLEANUP_INTERVAL_MS = 60_000

PROMETHEUS_NAME = re.compile(r"[^a-zA-Z0-9_]")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class MetricPoint:
    name: str
    value: float
    unit: str
    timestamp: int
    tags: Optional[dict[str, str]] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "value": self.value,
            "unit": self.unit,
            "timestamp": self.timestamp,
            "tags": self.tags,
        }


@dataclass
class PerformanceAlert:
    id: str
    metric: str
    threshold: float
    current_value: float
    severity: str
    message: str
    timestamp: int
    resolved: bool = False
    resolved_at: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "metric": self.metric,
            "threshold": self.threshold,
            "current_value": self.current_value,
            "severity": self.severity,
            "message": self.message,
            "timestamp": self.timestamp,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at,
        }


@dataclass
class _RequestStats:
    total: int = 0
    errors: int = 0
    response_times: deque = field(default_factory=lambda: deque(maxlen=RESPONSE_TIME_WINDOW))
    last_reset: int = field(default_factory=_now_ms)


def alert_severity(value: float, threshold: float, direction: str = "above") -> str:
    """
    Severity from how far the value is past the threshold.

    ratio >= 2 critical, >= 1.5 high, >= 1.2 medium, else low.
    For "below" metrics the ratio is threshold / value.
    """
    if direction == "below":
        ratio = threshold / value if value > 0 else float("inf")
    else:
        ratio = value / threshold if threshold else float("inf")

    if ratio >= 2:
        return "critical"
    if ratio >= 1.5:
        return "high"
    if ratio >= 1.2:
        return "medium"
    return "low"


class PerformanceMetricsService:
    """
    In-memory metrics store with threshold alerts.

    Args:
        retention_hours: How long points and resolved alerts are kept
        clock: Time source in milliseconds, injectable for tests
    """

    def __init__(
        self,
        retention_hours: Optional[int] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        hours = retention_hours if retention_hours is not None else settings.metrics_retention_hours
        self.retention_ms = hours * 3600 * 1000
        self._clock = clock
        self._metrics: dict[str, deque[MetricPoint]] = {}
        self._alerts: dict[str, PerformanceAlert] = {}
        self._requests = _RequestStats(last_reset=clock())
        self._lock = threading.RLock()
        self._alert_seq = 0
        self._last_cleanup = clock()
        self.started_at = time.time()

    # ===================
    # RECORDING
    # ===================

    def add_metric(self, name: str, value: float, unit: str, tags: Optional[dict[str, str]] = None) -> MetricPoint:
        """
        Append one point. Metrics with a threshold are checked for alerts.

        Each metric keeps at most MAX_POINTS_PER_METRIC points, and expired
        points are dropped every CLEANUP_INTERVAL_MS.
        """
        now = self._clock()
        point = MetricPoint(name=name, value=float(value), unit=unit, timestamp=now, tags=tags)
        with self._lock:
            points = self._metrics.get(name)
            if points is None:
                points = self._metrics[name] = deque(maxlen=MAX_POINTS_PER_METRIC)
            points.append(point)
            if name in ALERT_THRESHOLDS:
                self._check_alert(name, point.value)
            due = now - self._last_cleanup >= CLEANUP_INTERVAL_MS
        if due:
            self.cleanup()
        return point

    def record_request(self, path: str, method: str, status: int, duration_ms: float) -> None:
        """Feed one finished request into the request statistics."""
        with self._lock:
            stats = self._requests
            stats.total += 1
            if status >= 500:
                stats.errors += 1
            stats.response_times.append(duration_ms)

        self.add_metric(
            "http.request.duration",
            duration_ms,
            "ms",
            {"method": method, "path": path, "status": str(status)},
        )

    def collect_system_metrics(self) -> dict:
        """Sample CPU, memory and disk usage via psutil."""
        cpu = psutil.cpu_percent(interval=None)
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage(os.path.abspath(os.sep))
        process = psutil.Process().memory_info()

        self.add_metric("cpu.usage", cpu, "%")
        self.add_metric("memory.used", memory.used, "bytes")
        self.add_metric("memory.percentage", memory.percent, "%")
        self.add_metric("memory.process_rss", process.rss, "bytes")
        self.add_metric("disk.used", disk.used, "bytes")
        self.add_metric("disk.percentage", disk.percent, "%")

        if hasattr(os, "getloadavg"):
            self.add_metric("cpu.load_average_1m", os.getloadavg()[0], "load")

        return {
            "cpu": {"usage": cpu},
            "memory": {
                "used": memory.used,
                "total": memory.total,
                "percentage": memory.percent,
                "process_rss": process.rss,
            },
            "disk": {"used": disk.used, "total": disk.total, "percentage": disk.percent},
        }

    def collect_application_metrics(self) -> dict:
        """Derive request rate, error rate and cache metrics."""
        now = self._clock()
        with self._lock:
            stats = self._requests
            elapsed_s = max((now - stats.last_reset) / 1000, 0.001)
            per_second = stats.total / elapsed_s
            error_rate = (stats.errors / stats.total) * 100 if stats.total else 0.0
            times = list(stats.response_times)
            avg_response = sum(times) / len(times) if times else 0.0
            total = stats.total

        self.add_metric("requests.total", total, "count")
        self.add_metric("requests.per_second", per_second, "req/s")
        self.add_metric("requests.error_rate", error_rate, "%")
        self.add_metric("requests.avg_response_time", avg_response, "ms")
        if times:
            self.add_metric("response.time", avg_response, "ms")
        if total:
            self.add_metric("error.rate", error_rate, "%")

        cache_stats = get_cache_manager().get_all_stats()
        for cache_name, cstats in cache_stats.items():
            tags = {"cache_type": cache_name}
            self.add_metric(f"cache.{cache_name}.hit_rate", cstats["hit_rate"] * 100, "%", tags)
            self.add_metric(f"cache.{cache_name}.size", cstats["size"], "count", tags)
            self.add_metric(f"cache.{cache_name}.evictions", cstats["evictions"], "count", tags)

        api_stats = cache_stats.get("api", {})
        if api_stats.get("hits", 0) + api_stats.get("misses", 0) > 0:
            self.add_metric("cache.hit_rate", api_stats["hit_rate"] * 100, "%")

        if now - stats.last_reset > REQUEST_STATS_RESET_MS:
            with self._lock:
                self._requests = _RequestStats(last_reset=now)

        return {
            "requests": {
                "total": total,
                "per_second": per_second,
                "error_rate": error_rate,
                "average_response_time": avg_response,
            },
            "cache": cache_stats,
        }

    # ===================
    # QUERIES
    # ===================

    def get_metrics(self, name: str, since_ms: Optional[int] = None) -> list[MetricPoint]:
        with self._lock:
            points = list(self._metrics.get(name, []))
        if since_ms is not None:
            points = [p for p in points if p.timestamp > since_ms]
        return points

    def get_all_metrics(self, since_ms: Optional[int] = None) -> dict[str, list[MetricPoint]]:
        with self._lock:
            names = list(self._metrics)
        return {name: self.get_metrics(name, since_ms) for name in names}

    def get_active_alerts(self) -> list[PerformanceAlert]:
        with self._lock:
            return [a for a in self._alerts.values() if not a.resolved]

    def get_all_alerts(self, since_ms: Optional[int] = None) -> list[PerformanceAlert]:
        with self._lock:
            alerts = list(self._alerts.values())
        if since_ms is not None:
            alerts = [a for a in alerts if a.timestamp > since_ms]
        return alerts

    def get_summary(self) -> dict[str, dict]:
        """Per metric: current, unit, min, max, avg, count, last_updated."""
        summary = {}
        with self._lock:
            for name, points in self._metrics.items():
                if not points:
                    continue
                values = [p.value for p in points]
                latest = points[-1]
                summary[name] = {
                    "current": latest.value,
                    "unit": latest.unit,
                    "min": min(values),
                    "max": max(values),
                    "avg": sum(values) / len(values),
                    "count": len(values),
                    "last_updated": latest.timestamp,
                }
        return summary

    def uptime_seconds(self) -> float:
        return time.time() - self.started_at

    # ===================
    # MAINTENANCE
    # ===================

    def cleanup(self) -> int:
        """Drop points and resolved alerts older than the retention period."""
        now = self._clock()
        cutoff = now - self.retention_ms
        removed = 0
        with self._lock:
            self._last_cleanup = now
            for name, points in self._metrics.items():
                while points and points[0].timestamp <= cutoff:
                    points.popleft()
                    removed += 1
            stale = [k for k, a in self._alerts.items() if a.resolved and a.timestamp < cutoff]
            for k in stale:
                del self._alerts[k]
        if removed or stale:
            logger.debug("metrics_cleaned_up", points=removed, alerts=len(stale))
        return removed

    def clear(self, name: Optional[str] = None) -> None:
        """Drop one metric, or every metric and alert."""
        with self._lock:
            if name is not None:
                self._metrics.pop(name, None)
            else:
                self._metrics.clear()
                self._alerts.clear()
                self._requests = _RequestStats(last_reset=self._clock())
        logger.info("metrics_cleared", metric=name)

    # ===================
    # EXPORT
    # ===================

    def to_prometheus(self, since_ms: Optional[int] = None) -> str:
        """Prometheus text exposition of the latest value of each metric."""
        registry = CollectorRegistry(auto_describe=False)
        registry.register(PrometheusExporter(self, since_ms))
        return generate_latest(registry).decode("utf-8")

    # ===================
    # ALERTS
    # ===================

    def _check_alert(self, metric: str, value: float) -> None:
        """Open or resolve the alert for metric. Caller holds the lock."""
        threshold, direction = ALERT_THRESHOLDS[metric]
        breached = value < threshold if direction == "below" else value > threshold
        existing = next((a for a in self._alerts.values() if a.metric == metric and not a.resolved), None)

        if breached and existing is None:
            now = self._clock()
            self._alert_seq += 1
            alert = PerformanceAlert(
                id=f"alert_{metric}_{now}_{self._alert_seq}",
                metric=metric,
                threshold=threshold,
                current_value=value,
                severity=alert_severity(value, threshold, direction),
                message=f"{metric} is {value:.2f} (threshold: {threshold})",
                timestamp=now,
            )
            self._alerts[alert.id] = alert
            logger.warning(
                "performance_alert_triggered",
                alert_id=alert.id,
                metric=metric,
                current_value=value,
                threshold=threshold,
                severity=alert.severity,
            )
        elif breached and existing is not None:
            existing.current_value = value
        elif not breached and existing is not None:
            existing.resolved = True
            existing.resolved_at = self._clock()
            logger.info("performance_alert_resolved", alert_id=existing.id, metric=metric)


class PrometheusExporter:
    """
    Custom prometheus_client collector over a PerformanceMetricsService.

    Every metric becomes an app_<name> gauge carrying its latest point,
    with the point's tags as labels and its timestamp.
    """

    def __init__(self, service: PerformanceMetricsService, since_ms: Optional[int] = None):
        self.service = service
        self.since_ms = since_ms

    def collect(self):
        series = {n: p for n, p in self.service.get_all_metrics(self.since_ms).items() if p}
        now_s = self.service._clock() / 1000

        yield _gauge("app_metrics", "Application performance metrics", len(series), now_s)

        for name, points in series.items():
            latest = points[-1]
            tags = {PROMETHEUS_NAME.sub("_", k): str(v) for k, v in (latest.tags or {}).items()}
            family = GaugeMetricFamily(
                f"app_{PROMETHEUS_NAME.sub('_', name)}",
                f"{name} ({latest.unit})",
                labels=list(tags),
            )
            family.add_metric(list(tags.values()), latest.value, timestamp=latest.timestamp / 1000)
            yield family

        yield _gauge("app_uptime_seconds", "Process uptime", self.service.uptime_seconds(), now_s)
        yield _gauge("app_memory_usage_bytes", "Process resident memory", psutil.Process().memory_info().rss, now_s)
        yield _gauge("app_active_alerts_total", "Unresolved performance alerts", len(self.service.get_active_alerts()), now_s)


def _gauge(name: str, documentation: str, value: float, timestamp: float) -> GaugeMetricFamily:
    family = GaugeMetricFamily(name, documentation)
    family.add_metric([], value, timestamp=timestamp)
    return family


# Singleton instance
_metrics_service: Optional[PerformanceMetricsService] = None


def get_metrics_service() -> PerformanceMetricsService:
    """Get or create metrics service instance."""
    global _metrics_service
    if _metrics_service is None:
        _metrics_service = PerformanceMetricsService()
    return _metrics_service
