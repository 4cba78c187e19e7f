"""
Health check API routes.

GET returns the full monitor report, HEAD only the status headers.
Both require HEALTH_CHECK_TOKEN when it is configured.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from datetime import datetime, timezone
import structlog

from config import settings
from services.error_monitor_service import get_error_monitor
from utils.request_utils import rate_limit_response, request_token

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/health-check", tags=["Health"])

STATUS_CODES = {
    "healthy": 200,
    "degraded": 200,
    "unhealthy": 503,
}


def verify_health_token(request: Request) -> bool:
    """
    Token must equal HEALTH_CHECK_TOKEN.

    Without a configured token access is allowed outside production only.
    """
    expected = settings.health_check_token
    if not expected:
        return not settings.is_production
    return request_token(request) == expected


# ===================
# ROUTES
# ===================

@router.get("")
async def health_check(request: Request):
    """
    Full health report.

    Returns:
        200 when healthy or degraded, 503 when unhealthy
    """
    limited = rate_limit_response(request, "health")
    if limited is not None:
        return limited

    if not verify_health_token(request):
        logger.warning(
            "unauthorized_health_check",
            client=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    monitor = get_error_monitor()
    try:
        report = monitor.check_health()
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        monitor.record_error(e, endpoint="/api/health-check", context={"method": "GET"})
        return JSONResponse(
            status_code=500,
            content={
                "status": "unhealthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "error": "Health check failed",
                "message": str(e),
            },
        )

    logger.info("health_check_completed", status=report["status"], checks=len(report["checks"]))
    return JSONResponse(status_code=STATUS_CODES.get(report["status"], 500), content=report)


@router.head("")
async def health_check_head(request: Request):
    """Status only: X-Health-Status, X-Uptime and X-Version headers, no body."""
    limited = rate_limit_response(request, "health")
    if limited is not None:
        headers = {k: v for k, v in limited.headers.items() if not k.startswith("content-")}
        return Response(status_code=limited.status_code, headers=headers)

    if not verify_health_token(request):
        return Response(status_code=401)

    try:
        report = get_error_monitor().check_health()
    except Exception as e:
        logger.error("simple_health_check_failed", error=str(e))
        return Response(status_code=500)

    return Response(
        status_code=STATUS_CODES.get(report["status"], 500),
        headers={
            "X-Health-Status": report["status"],
            "X-Uptime": str(report["uptime"]),
            "X-Version": report["version"],
        },
    )
