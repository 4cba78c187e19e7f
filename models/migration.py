"""
Migration flow models.

Field mappings travel between the analyze, transform and publish steps;
the request bodies below are what the migration routes accept.
"""

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from models.base import BaseSchema

# Simple value types used by mappings and target schemas
SimpleType = Literal["string", "number", "boolean", "date", "email", "phone", "id"]


class FieldSchema(BaseSchema):
    """One field of a source or target schema."""
    name: str
    type: SimpleType = "string"
    nullable: bool = True
    description: Optional[str] = None
    examples: list[str] = Field(default_factory=list)


class FieldMapping(BaseSchema):
    """Suggested correspondence between a source column and a target field."""
    source_field: str = Field(..., min_length=1)
    target_field: str = Field(..., min_length=1)
    source_type: SimpleType = "string"
    target_type: SimpleType = "string"
    transformation: Optional[str] = None
    confidence: float = Field(50, ge=0, le=100, description="0-100")
    reasoning: Optional[str] = None


class AnalyzeRequest(BaseModel):
    """Options for the analyze step."""
    use_ai: bool = True
    target_schema: Optional[list[FieldSchema]] = None


class TransformRequest(BaseModel):
    """Mappings to apply. The ones suggested by analyze are used when omitted."""
    mappings: Optional[list[FieldMapping]] = None


class PublishRequest(BaseModel):
    """Where and how to publish transformed data."""
    target: Literal["rest-api", "database", "file"] = "file"
    format: Literal["json", "csv", "xml"] = "json"

    # rest-api
    endpoint: Optional[str] = None
    api_key: Optional[str] = None

    # database
    connection_string: Optional[str] = None
    table_name: Optional[str] = Field(None, pattern=r"^[a-zA-Z_][a-zA-Z0-9_]*$")

    # file
    write_file: bool = False


class SchemaExportRequest(BaseModel):
    """JSON Schema to render in another format."""
    model_config = ConfigDict(populate_by_name=True)

    json_schema: dict = Field(..., alias="schema")
    format: Literal["json", "typescript", "documentation"] = "json"
