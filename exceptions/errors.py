"""
Custom exception classes for the application.

Every error carries a stable code, an HTTP status and optional details,
and serializes to the standard error envelope via to_dict().
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "UPLOAD_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class RateLimitError(AppError):
    """Too many requests from one client (429)."""

    def __init__(self, limit: int, retry_after: int, reset_time: int):
        super().__init__(
            code="RATE_LIMIT_EXCEEDED",
            message="Too many requests, please try again later",
            status_code=429,
            details={
                "limit": limit,
                "retry_after": retry_after,
                "reset_time": reset_time,
            }
        )


class PayloadTooLargeError(AppError):
    """Request body above the configured limit (413)."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            code="PAYLOAD_TOO_LARGE",
            message=f"Request body of {size} bytes exceeds the {limit} byte limit",
            status_code=413,
            details={"size": size, "limit": limit}
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


# ===================
# CSV PARSING
# ===================

class CSVParseError(ValidationError):
    """CSV content could not be parsed."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            code="CSV_PARSE_ERROR",
            details=details
        )


class EmptyCSVError(CSVParseError):
    """CSV content is empty."""

    def __init__(self):
        super().__init__(message="Arquivo CSV vazio")
        self.code = "CSV_EMPTY"


# ===================
# UPLOADS
# ===================

class UploadNotFoundError(NotFoundError):
    """Upload session missing or expired."""

    def __init__(self, upload_id: str):
        super().__init__(
            resource="Upload",
            identifier=upload_id,
            code="UPLOAD_NOT_FOUND"
        )


class InvalidUploadError(ValidationError):
    """Uploaded file rejected by the input rules."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(
            message=message,
            code="INVALID_UPLOAD",
            details={"errors": errors or []}
        )


# ===================
# TRANSFORM / PUBLISH
# ===================

class TransformationError(ValidationError):
    """Mappings could not be applied."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            code="TRANSFORMATION_ERROR",
            details=details
        )


class PublishError(ExternalServiceError):
    """Publishing to the output target failed."""

    def __init__(self, target: str, message: str, details: Optional[dict] = None):
        super().__init__(
            service="publish",
            message=message,
            details={"target": target, **(details or {})}
        )


# ===================
# DATABASE TARGET
# ===================

class InvalidConnectionStringError(ValidationError):
    """Connection string does not match any supported format."""

    def __init__(self, reason: str = "Formato de string de conexão inválido"):
        super().__init__(
            message=reason,
            code="INVALID_CONNECTION_STRING"
        )


class UnsupportedDatabaseError(ValidationError):
    """Database dialect is not supported."""

    def __init__(self, dialect: str):
        super().__init__(
            message=f"Tipo de banco não suportado: {dialect}",
            code="UNSUPPORTED_DATABASE",
            details={"dialect": dialect}
        )
