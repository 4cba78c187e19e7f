"""
Mapping application.

Applies field mappings row by row: renames fields to normalized target
names and converts values to the target type.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence
import structlog

import pandas as pd

from exceptions import TransformationError
from models.migration import FieldMapping, FieldSchema
from utils.text_utils import normalize_field_name, parse_number

logger = structlog.get_logger(__name__)

TRUE_VALUES = {"true", "yes", "1", "sim"}

# Accepted input layouts for date conversion, tried in order
DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d-%m-%Y",
    "%Y/%m/%d",
)

PREVIEW_ROWS = 10


@dataclass
class TransformationRule:
    field: str
    operation: str
    parameters: dict

    def to_dict(self) -> dict:
        return {"field": self.field, "operation": self.operation, "parameters": self.parameters}


@dataclass
class RowError:
    row: int
    field: str
    value: Any
    error: str

    def to_dict(self) -> dict:
        return {"row": self.row, "field": self.field, "value": self.value, "error": self.error}


@dataclass
class TransformationResult:
    """Transformed rows plus the target schema they follow."""
    transformed_data: list[dict[str, Any]]
    target_schema: list[FieldSchema]
    rules: list[TransformationRule] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    @property
    def summary(self) -> dict:
        return {
            "total_rows": len(self.transformed_data),
            "fields": len(self.target_schema),
            "conversions": sum(1 for r in self.rules if r.operation == "convert"),
            "error_count": len(self.errors),
            "rows_with_errors": len({e.row for e in self.errors}),
        }

    def to_dict(self, preview_only: bool = False) -> dict:
        """Convert to dictionary for API response."""
        data = self.transformed_data[:PREVIEW_ROWS] if preview_only else self.transformed_data
        return {
            "transformed_data": data,
            "target_schema": [f.model_dump() for f in self.target_schema],
            "transformation_rules": [r.to_dict() for r in self.rules],
            "errors": [e.to_dict() for e in self.errors],
            "summary": self.summary,
        }


def operation_for(mapping: FieldMapping) -> str:
    """rename, convert or validate."""
    if mapping.transformation and "rename" in mapping.transformation.lower():
        return "rename"
    if mapping.source_type != mapping.target_type:
        return "convert"
    return "validate"


def convert_value(value: Optional[str], target_type: str) -> Any:
    """
    Convert one cell to the target type.

    Raises:
        ValueError: If a date value cannot be parsed
    """
    if target_type == "number":
        number = parse_number(value)
        return number if number is not None else 0.0
    if target_type == "boolean":
        return (value or "").strip().lower() in TRUE_VALUES
    if target_type == "date":
        return to_iso_date(value)
    return "" if value is None else str(value)


def to_iso_date(value: Optional[str]) -> str:
    text = (value or "").strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    raise ValueError(f"Data inválida: {value!r}")


class TransformerService:
    """Applies mappings to parsed CSV records."""

    def transform_data(
        self,
        records: list[dict[str, str]],
        mappings: Sequence[FieldMapping],
    ) -> TransformationResult:
        """
        Apply mappings to every record.

        Unparseable dates keep their raw value and add a row error.

        Args:
            records: Parsed rows keyed by source column
            mappings: Source to target mappings

        Returns:
            TransformationResult

        Raises:
            TransformationError: If no mappings are given
        """
        if not mappings:
            raise TransformationError("Nenhum mapeamento informado")

        rules = [
            TransformationRule(
                field=m.source_field,
                operation=operation_for(m),
                parameters={
                    "target_field": m.target_field,
                    "source_type": m.source_type,
                    "target_type": m.target_type,
                    "transformation": m.transformation,
                },
            )
            for m in mappings
        ]

        targets = [normalize_field_name(m.target_field) for m in mappings]
        transformed: list[dict[str, Any]] = []
        errors: list[RowError] = []

        for row_index, record in enumerate(records):
            row: dict[str, Any] = {}
            for mapping, target in zip(mappings, targets):
                value = record.get(mapping.source_field)
                try:
                    row[target] = convert_value(value, mapping.target_type)
                except ValueError as e:
                    row[target] = value
                    errors.append(RowError(
                        row=row_index,
                        field=mapping.source_field,
                        value=value,
                        error=f"Erro na transformação: {e}",
                    ))
            transformed.append(row)

        target_schema = [
            FieldSchema(
                name=target,
                type=mapping.target_type,
                nullable=True,
                description=f"Transformado de {mapping.source_field}",
            )
            for mapping, target in zip(mappings, targets)
        ]

        result = TransformationResult(
            transformed_data=transformed,
            target_schema=target_schema,
            rules=rules,
            errors=errors,
        )

        logger.info("data_transformed", **result.summary)
        return result

    @staticmethod
    def to_csv(result: TransformationResult) -> str:
        """CSV text with one column per target schema field."""
        columns = [f.name for f in result.target_schema]
        frame = pd.DataFrame(result.transformed_data, columns=columns)
        return frame.fillna("").to_csv(index=False)


# Singleton instance
_transformer_service: Optional[TransformerService] = None


def get_transformer_service() -> TransformerService:
    """Get or create transformer service instance."""
    global _transformer_service
    if _transformer_service is None:
        _transformer_service = TransformerService()
    return _transformer_service
