"""
Request models checked by the input validator.

See services/input_validator_service.py for the upload and CSV limits.
"""

from typing import Any, Literal, Optional
from pydantic import BaseModel, Field, field_validator

from models.base import BaseSchema
from models.migration import FieldMapping

FeedbackType = Literal[
    "domain_detection",
    "field_type_inference",
    "field_mapping",
    "validation_rule",
    "schema_generation",
]

CONNECTION_SCHEME = r"(?i)^(postgresql|mysql|sqlite|sqlserver)://"
TABLE_NAME = r"^[a-zA-Z_][a-zA-Z0-9_]*$"


class DatabaseConnectionRequest(BaseSchema):
    """Connection string (and optional table) for the database target."""
    connection_string: str = Field(
        ...,
        min_length=10,
        max_length=1000,
        pattern=CONNECTION_SCHEME,
        description="postgresql://, mysql://, sqlite:/// or sqlserver:// URL",
    )
    table_name: Optional[str] = Field(None, min_length=1, max_length=64, pattern=TABLE_NAME)

    @field_validator("connection_string", mode="before")
    @classmethod
    def strip_control_chars(cls, v: Any) -> Any:
        """Remove CR/LF/TAB before the pattern check."""
        if isinstance(v, str):
            return v.replace("\r", "").replace("\n", "").replace("\t", "").strip()
        return v


class ApiKeyConfig(BaseSchema):
    """AI provider credentials."""
    key: str = Field(..., min_length=10, max_length=500)
    provider: Literal["anthropic", "openai", "gemini", "groq"] = "anthropic"


class FeedbackContext(BaseModel):
    """Where the corrected prediction came from."""
    file_name: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)
    record_count: Optional[int] = Field(None, ge=0)
    field_count: Optional[int] = Field(None, ge=0)
    detected_domain: Optional[str] = None
    detected_fields: list[str] = Field(default_factory=list)
    processing_time: Optional[float] = Field(None, ge=0)
    upload_id: Optional[str] = None


class FeedbackRequest(BaseModel):
    """
    User correction of a prediction.

    When pattern_id and source_field are given the matching learned
    mapping pattern is updated as well.
    """
    feedback_type: FeedbackType
    original: Any = None
    correction: Any = None
    confidence: Optional[float] = Field(None, ge=0, le=1)
    context: FeedbackContext = Field(default_factory=FeedbackContext)
    user_id: Optional[str] = Field(None, max_length=100)

    # Learning hooks (field_mapping feedback)
    pattern_id: Optional[str] = None
    source_field: Optional[str] = Field(None, max_length=100)
    success: Optional[bool] = None
    corrected_mapping: Optional[FieldMapping] = None
