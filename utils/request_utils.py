"""
Helpers for routes with token auth and per-route rate limits.
"""

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from exceptions import RateLimitError
from services.rate_limiter import get_rate_limiter


def request_token(request: Request) -> Optional[str]:
    """Bearer token from Authorization, else the ?token= query parameter."""
    auth = request.headers.get("authorization")
    if auth and auth.startswith("Bearer "):
        return auth[len("Bearer "):].strip()
    return request.query_params.get("token")


def rate_limit_response(request: Request, limiter_name: str) -> Optional[JSONResponse]:
    """429 response when the named limiter blocks this client, else None."""
    result = get_rate_limiter(limiter_name).check_request(request)
    if result.allowed:
        return None
    error = RateLimitError(result.limit, result.retry_after, int(result.reset_time))
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=result.headers())
