"""
Custom exceptions module.

Import from here rather than from exceptions.errors.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    RateLimitError,
    PayloadTooLargeError,
    ExternalServiceError,

    # CSV parsing
    CSVParseError,
    EmptyCSVError,

    # Uploads
    UploadNotFoundError,
    InvalidUploadError,

    # Transform / publish
    TransformationError,
    PublishError,

    # Database target
    InvalidConnectionStringError,
    UnsupportedDatabaseError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "RateLimitError",
    "PayloadTooLargeError",
    "ExternalServiceError",

    # CSV parsing
    "CSVParseError",
    "EmptyCSVError",

    # Uploads
    "UploadNotFoundError",
    "InvalidUploadError",

    # Transform / publish
    "TransformationError",
    "PublishError",

    # Database target
    "InvalidConnectionStringError",
    "UnsupportedDatabaseError",
]
