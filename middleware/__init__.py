"""
HTTP middleware module.

Import from here rather than from middleware.http.
"""

from middleware.http import register_middleware, new_request_id

__all__ = [
    "register_middleware",
    "new_request_id",
]
