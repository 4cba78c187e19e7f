"""
Feedback and learning API routes.

User corrections of detected domains, types, mappings and rules, plus
the statistics of the mapping pattern learner.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
import structlog

from models.validation import FeedbackRequest
from services.feedback_service import get_feedback_service
from services.learning_service import get_learning_service
from exceptions import AppError, ValidationError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# FEEDBACK ROUTES
# ===================

@router.post("/feedback")
async def submit_feedback(request: FeedbackRequest):
    """
    Record a user correction.

    field_mapping feedback that names a learned pattern (pattern_id,
    source_field, success) also adjusts that pattern.
    """
    try:
        service = get_feedback_service()
        try:
            feedback_id = service.record_feedback(
                request.feedback_type,
                request.original,
                request.correction,
                context=request.context.model_dump(exclude_none=True),
                confidence=request.confidence,
                user_id=request.user_id,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        pattern_updated = False
        if request.pattern_id and request.source_field and request.success is not None:
            pattern_updated = get_learning_service().record_feedback(
                request.pattern_id,
                request.source_field,
                request.success,
                correction=request.corrected_mapping,
            )

        return {
            "success": True,
            "feedback_id": feedback_id,
            "pattern_updated": pattern_updated,
            "suggestions": service.get_suggestions(request.feedback_type),
        }

    except Exception as e:
        return handle_error(e)


@router.get("/feedback/metrics")
async def get_feedback_metrics():
    """Accuracy and satisfaction estimates from the recorded feedback."""
    try:
        return get_feedback_service().get_learning_metrics()
    except Exception as e:
        return handle_error(e)


@router.get("/feedback/analytics")
async def get_feedback_analytics(
    period: str = Query("30d", pattern=r"^\d+[dhw]$", description="Reporting period, e.g. 7d"),
):
    """Metrics plus top issues and recommendations."""
    try:
        return get_feedback_service().get_analytics(period)
    except Exception as e:
        return handle_error(e)


# ===================
# LEARNING ROUTES
# ===================

@router.get("/learning/statistics")
async def get_learning_statistics():
    """Pattern counts, average confidence and success rate, top domains."""
    try:
        return get_learning_service().get_statistics()
    except Exception as e:
        return handle_error(e)


@router.get("/learning/patterns")
async def export_learning_patterns():
    """Every learned pattern, in the form accepted by import."""
    try:
        patterns = get_learning_service().export_patterns()
        return {"total": len(patterns), "patterns": patterns}
    except Exception as e:
        return handle_error(e)


@router.post("/learning/patterns")
async def import_learning_patterns(patterns: list[dict]):
    """Load previously exported patterns, replacing any with the same id."""
    try:
        try:
            imported = get_learning_service().import_patterns(patterns)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError("Padrão de aprendizado inválido", details={"reason": str(e)}) from e
        logger.info("learning_patterns_imported_via_api", received=len(patterns), imported=imported)
        return {"success": True, "imported": imported}
    except Exception as e:
        return handle_error(e)
