"""
API route modules.

Each module defines routes for one area of the service.
"""

from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.migration import router as migration_router
from routes.feedback import router as feedback_router

__all__ = [
    "health_router",
    "metrics_router",
    "migration_router",
    "feedback_router",
]
