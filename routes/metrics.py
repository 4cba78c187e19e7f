"""
Metrics API routes.

Read, add and clear performance metrics. Access needs METRICS_TOKEN
unless ENABLE_PUBLIC_METRICS is set; each verb has its own rate limit.
"""

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from typing import Literal, Optional
import json
import platform
import time
import psutil
import structlog
from prometheus_client import CONTENT_TYPE_LATEST

from config import settings
from services.cache_service import get_cache_manager
from services.error_monitor_service import get_error_monitor
from services.performance_metrics_service import get_metrics_service
from utils.request_utils import rate_limit_response, request_token

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/metrics", tags=["Metrics"])

DEFAULT_TIME_RANGE_MS = 3_600_000

NO_CACHE = {"Cache-Control": "no-cache"}

INVALID_METRIC = "Invalid metric data. Required: name, value (number), unit"


def verify_metrics_token(request: Request) -> bool:
    if settings.enable_public_metrics:
        return True
    return request_token(request) == settings.metrics_token


def _guard(request: Request, limiter_name: str) -> Optional[JSONResponse]:
    """Rate limit then auth. Returns the error response, if any."""
    limited = rate_limit_response(request, limiter_name)
    if limited is not None:
        return limited
    if not verify_metrics_token(request):
        logger.warning(
            "unauthorized_metrics_access",
            method=request.method,
            client=request.client.host if request.client else None,
        )
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    return None


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _system_info() -> dict:
    collector = get_metrics_service()
    return {
        "uptime": round(collector.uptime_seconds(), 3),
        "memory": {"rss": psutil.Process().memory_info().rss},
        "version": platform.python_version(),
        "platform": platform.system().lower(),
    }


# ===================
# ROUTES
# ===================

@router.get("")
async def get_metrics(
    request: Request,
    format: Literal["json", "prometheus"] = Query("json"),
    metric: Optional[str] = Query(None),
    time_range: int = Query(DEFAULT_TIME_RANGE_MS, alias="timeRange", ge=0),
    alerts: str = Query("true"),
    summary: str = Query("true"),
):
    """
    Metric points of the last timeRange milliseconds.

    Query:
        format: json or prometheus
        metric: Only this metric
        timeRange: Window in ms (default one hour)
        alerts / summary: "false" to leave them out
    """
    start = time.perf_counter()
    denied = _guard(request, "metrics_read")
    if denied is not None:
        return denied

    collector = get_metrics_service()
    collector.collect_system_metrics()
    collector.collect_application_metrics()
    collector.cleanup()

    now_ms = int(time.time() * 1000)
    cutoff = now_ms - time_range

    if format == "prometheus":
        return PlainTextResponse(
            collector.to_prometheus(since_ms=cutoff),
            media_type=CONTENT_TYPE_LATEST,
            headers=NO_CACHE,
        )

    if metric:
        points = {metric: collector.get_metrics(metric, since_ms=cutoff)}
    else:
        points = collector.get_all_metrics(since_ms=cutoff)

    data = {
        "timestamp": now_ms,
        "time_range": time_range,
        "metrics": {name: [p.to_dict() for p in values] for name, values in points.items()},
    }

    if alerts != "false":
        data["alerts"] = {
            "active": [a.to_dict() for a in collector.get_active_alerts()],
            "all": [a.to_dict() for a in collector.get_all_alerts(since_ms=cutoff)],
        }

    if summary != "false":
        data["summary"] = {
            "performance": collector.get_summary(),
            "cache": get_cache_manager().get_all_stats(),
            "health": get_error_monitor().check_health(),
            "system": _system_info(),
        }

    processing_time = _elapsed_ms(start)
    logger.info("metrics_accessed", format=format, metric=metric, time_range=time_range, metrics=len(points))
    return JSONResponse(
        content=data,
        headers={**NO_CACHE, "X-Processing-Time": str(processing_time)},
    )


@router.post("")
async def add_metric(request: Request):
    """
    Add a custom metric point.

    Body:
        {"name": str, "value": number, "unit": str, "tags": {str: str}}
    """
    start = time.perf_counter()
    denied = _guard(request, "metrics_write")
    if denied is not None:
        return denied

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse(status_code=400, content={"error": INVALID_METRIC})

    if not isinstance(body, dict):
        return JSONResponse(status_code=400, content={"error": INVALID_METRIC})

    name = body.get("name")
    value = body.get("value")
    unit = body.get("unit")
    tags = body.get("tags")

    if (
        not name
        or not isinstance(name, str)
        or isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not unit
        or (tags is not None and not isinstance(tags, dict))
    ):
        return JSONResponse(status_code=400, content={"error": INVALID_METRIC})

    tags = {str(k): str(v) for k, v in tags.items()} if tags else None
    point = get_metrics_service().add_metric(name, value, str(unit), tags)

    logger.info("custom_metric_added", name=name, value=value, unit=unit)
    return {
        "success": True,
        "metric": point.to_dict(),
        "processing_time": _elapsed_ms(start),
    }


@router.delete("")
async def clear_metrics(request: Request, metric: Optional[str] = Query(None)):
    """Clear one metric, or every metric and all caches."""
    start = time.perf_counter()
    denied = _guard(request, "metrics_delete")
    if denied is not None:
        return denied

    collector = get_metrics_service()
    if metric:
        collector.clear(metric)
        action = f"Cleared metric: {metric}"
    else:
        collector.clear()
        get_cache_manager().clear_all()
        action = "Cleared metrics and cache"

    logger.info("metrics_cleared_via_api", metric=metric)
    return {
        "success": True,
        "action": action,
        "processing_time": _elapsed_ms(start),
    }
