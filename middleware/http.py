"""
HTTP middleware.

Registered by register_middleware() in this order, outermost first:
request logging, security headers, request size limit, rate limit,
cache headers, response compression.
"""

import itertools
import time
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from config import settings
from exceptions import PayloadTooLargeError, RateLimitError
from services.compression_service import ResponseCompressor
from services.error_monitor_service import get_error_monitor
from services.input_validator_service import validate_request_size
from services.performance_metrics_service import get_metrics_service
from services.rate_limiter import get_rate_limiter

logger = structlog.get_logger(__name__)

# Paths with their own auth and rate limiting
EXCLUDED_PATHS = ("/api/health-check", "/api/metrics")

COMPRESSIBLE_TYPES = (
    "application/json",
    "text/html",
    "text/css",
    "text/javascript",
    "application/javascript",
    "text/plain",
    "text/csv",
    "application/xml",
    "text/xml",
    "image/svg+xml",
)

API_CACHE_MAX_AGE = 300

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

_request_counter = itertools.count(1)


def _is_excluded(path: str) -> bool:
    return any(path.startswith(p) for p in EXCLUDED_PATHS)


def new_request_id() -> str:
    return f"req_{int(time.time() * 1000)}_{next(_request_counter)}"


def _vary_with_accept_encoding(vary: Optional[str]) -> str:
    if not vary:
        return "Accept-Encoding"
    if "accept-encoding" in vary.lower():
        return vary
    return f"{vary}, Accept-Encoding"


# ===================
# MIDDLEWARE
# ===================

async def request_logging(request: Request, call_next):
    """Request id, duration logging and request metrics."""
    start = time.perf_counter()
    request_id = request.headers.get("x-request-id") or new_request_id()
    request.state.request_id = request_id

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)

    path = request.url.path
    try:
        response = await call_next(request)
    except Exception as e:
        duration_ms = (time.perf_counter() - start) * 1000
        get_error_monitor().record_error(e, endpoint=path, context={"method": request.method})
        get_metrics_service().record_request(path, request.method, 500, duration_ms)
        logger.error("request_failed", method=request.method, path=path, duration_ms=round(duration_ms, 2))
        raise

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-Id"] = request_id

    get_metrics_service().record_request(path, request.method, response.status_code, duration_ms)
    get_error_monitor().record_response_time(path, duration_ms)

    logger.info(
        "request_completed",
        method=request.method,
        path=path,
        status=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    return response


async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if request.url.path.startswith("/api/"):
        response.headers.setdefault(
            "Content-Security-Policy",
            "default-src 'none'; script-src 'none'; object-src 'none';",
        )
    return response


async def limit_request_size(request: Request, call_next):
    """Reject bodies declared larger than MAX_REQUEST_SIZE with 413."""
    content_length = request.headers.get("content-length")
    if content_length is not None:
        try:
            size = int(content_length)
        except ValueError:
            return JSONResponse(
                status_code=400,
                content={"error": {"code": "INVALID_CONTENT_LENGTH", "message": "Invalid Content-Length"}},
            )
        if not validate_request_size(size):
            error = PayloadTooLargeError(size, settings.max_request_size)
            logger.warning("request_too_large", path=request.url.path, size=size, limit=settings.max_request_size)
            return JSONResponse(status_code=error.status_code, content=error.to_dict())
    return await call_next(request)


async def rate_limit(request: Request, call_next):
    """Global limit on /api routes; uploads get the upload limiter."""
    path = request.url.path
    if not settings.enable_rate_limit or not path.startswith("/api/") or _is_excluded(path):
        return await call_next(request)

    limiter = get_rate_limiter("upload" if "/upload" in path else "global")
    result = limiter.check_request(request)
    if not result.allowed:
        error = RateLimitError(result.limit, result.retry_after, int(result.reset_time))
        return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=result.headers())

    response = await call_next(request)
    for name, value in result.headers().items():
        response.headers[name] = value
    return response


async def cache_headers(request: Request, call_next):
    """Cache-Control for successful GET API responses without one."""
    response = await call_next(request)
    path = request.url.path
    if (
        settings.enable_cache
        and request.method == "GET"
        and path.startswith("/api/")
        and not _is_excluded(path)
        and response.status_code < 400
        and "cache-control" not in response.headers
    ):
        response.headers["Cache-Control"] = f"private, max-age={API_CACHE_MAX_AGE}"
    return response


async def compress_response(request: Request, call_next):
    """Compress text responses above COMPRESSION_THRESHOLD using Accept-Encoding."""
    response = await call_next(request)

    if not settings.enable_compression or _is_excluded(request.url.path):
        return response

    algorithm = ResponseCompressor.select_encoding(request.headers.get("accept-encoding"))
    content_type = response.headers.get("content-type", "")
    if (
        algorithm is None
        or "content-encoding" in response.headers
        or not any(t in content_type for t in COMPRESSIBLE_TYPES)
    ):
        return response

    body = b"".join([chunk async for chunk in response.body_iterator])
    headers = {k: v for k, v in response.headers.items() if k.lower() != "content-length"}

    if len(body) < settings.compression_threshold:
        return Response(content=body, status_code=response.status_code, headers=headers)

    compressed = ResponseCompressor().compress(body, algorithm)
    headers["Content-Encoding"] = ResponseCompressor.content_encoding(algorithm)
    headers["Vary"] = _vary_with_accept_encoding(headers.pop("vary", None))

    logger.debug(
        "response_compressed",
        algorithm=algorithm,
        original_size=len(body),
        compressed_size=len(compressed),
    )
    return Response(content=compressed, status_code=response.status_code, headers=headers)


def register_middleware(app: FastAPI) -> None:
    """Install the HTTP middleware. The last one added runs first."""
    app.middleware("http")(compress_response)
    app.middleware("http")(cache_headers)
    app.middleware("http")(rate_limit)
    app.middleware("http")(limit_request_size)
    app.middleware("http")(security_headers)
    app.middleware("http")(request_logging)
