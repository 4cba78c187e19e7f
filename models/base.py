"""
Base schema for field, mapping and connection models.
"""

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base for models built from CSV headers and user input.

    Strings are trimmed, so " nome " and "nome" name the same field,
    and assignments are validated like construction.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )
