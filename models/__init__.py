"""
Pydantic models for validation and serialization.

Enums and column profiles for analysis, request bodies for the
migration flow and the input validation models.
"""

from models.base import BaseSchema
from models.analysis import (
    ColumnKind,
    ColumnProfile,
    DataType,
    Domain,
)
from models.migration import (
    AnalyzeRequest,
    FieldMapping,
    FieldSchema,
    PublishRequest,
    SchemaExportRequest,
    SimpleType,
    TransformRequest,
)
from models.validation import (
    ApiKeyConfig,
    DatabaseConnectionRequest,
    FeedbackContext,
    FeedbackRequest,
    FeedbackType,
)

__all__ = [
    "BaseSchema",
    "ColumnKind",
    "ColumnProfile",
    "DataType",
    "Domain",
    "AnalyzeRequest",
    "FieldMapping",
    "FieldSchema",
    "PublishRequest",
    "SchemaExportRequest",
    "SimpleType",
    "TransformRequest",
    "ApiKeyConfig",
    "DatabaseConnectionRequest",
    "FeedbackContext",
    "FeedbackRequest",
    "FeedbackType",
]
