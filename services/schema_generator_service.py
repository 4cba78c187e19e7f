"""
JSON Schema generation for migrated datasets.

Builds a draft 2020-12 schema from the parsed records, the inferred
column types and the detected domain, validates records against it and
exports it as JSON, a TypeScript interface or Markdown documentation.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Optional, Sequence
import structlog

from exceptions import ValidationError
from models.analysis import ColumnProfile, DataType, Domain
from models.migration import FieldMapping
from services.domain_analyzer_service import DomainAnalysisResult
from utils.text_utils import parse_number

logger = structlog.get_logger(__name__)

SCHEMA_DIALECT = "https://json-schema.org/draft/2020-12/schema"
GENERATED_BY = "Orquestrador de Dados v1.0"
SCHEMA_VERSION = "1.0.0"

PREVIEW_RECORDS = 50
REQUIRED_PRESENCE_RATE = 0.8
REQUIRED_NAME_HINTS = ("id", "cpf", "cnpj", "nome", "valor", "data_transacao")
ENUM_MAX_VALUES = 10
ENUM_MAX_UNIQUE_RATIO = 0.5

EXPORT_FORMATS = ("json", "typescript", "documentation")

TRUE_VALUES = {"true", "sim", "s", "yes", "y", "1", "verdadeiro", "v"}
FALSE_VALUES = {"false", "não", "nao", "n", "no", "0", "falso", "f"}

JSON_TYPES: dict[DataType, str] = {
    DataType.NUMERO_INTEIRO: "integer",
    DataType.NUMERO_DECIMAL: "number",
    DataType.MOEDA_REAL: "number",
    DataType.PERCENTUAL: "number",
    DataType.BOOLEAN_PTBR: "boolean",
    DataType.BOOLEAN_EN: "boolean",
}

JSON_FORMATS: dict[DataType, str] = {
    DataType.EMAIL: "email",
    DataType.URL: "uri",
    DataType.UUID: "uuid",
    DataType.DATA_ISO: "date",
    DataType.DATETIME: "date-time",
    DataType.HORA: "time",
}

TS_TYPES = {
    "string": "string",
    "number": "number",
    "integer": "number",
    "boolean": "boolean",
    "array": "any[]",
    "object": "Record<string, any>",
    "null": "null",
}

# Per domain: title, description, known properties and business rules
DOMAIN_TEMPLATES: dict[Domain, dict] = {
    Domain.FINANCEIRO: {
        "title": "Esquema de Dados Financeiros",
        "description": "Estrutura padronizada para dados financeiros e transacionais",
        "properties": {
            "cpf": {
                "type": "string",
                "pattern": r"^\d{3}\.\d{3}\.\d{3}-\d{2}$",
                "description": "CPF no formato 123.456.789-00",
                "validation": [{
                    "type": "custom",
                    "rule": "validateCPF",
                    "message": "CPF deve ser válido",
                    "severity": "error",
                }],
            },
            "cnpj": {
                "type": "string",
                "pattern": r"^\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}$",
                "description": "CNPJ no formato 12.345.678/0001-00",
            },
            "valor": {
                "type": "number",
                "minimum": -999999999.99,
                "maximum": 999999999.99,
                "description": "Valor monetário em reais",
            },
            "data_transacao": {
                "type": "string",
                "format": "date-time",
                "description": "Data e hora da transação",
            },
            "tipo_transacao": {
                "type": "string",
                "enum": ["PIX", "TED", "DOC", "DEPOSITO", "SAQUE", "TRANSFERENCIA"],
                "description": "Tipo da transação bancária",
            },
            "id_transacao": {
                "type": "string",
                "pattern": r"^TX-\d{8}-\d{4}$",
                "description": "Identificador único da transação",
            },
        },
        "business_rules": [
            {
                "name": "valor_positivo_deposito",
                "description": "Depósitos devem ter valor positivo",
                "condition": 'tipo_transacao == "DEPOSITO"',
                "action": "valor > 0",
                "severity": "error",
            },
            {
                "name": "cpf_ou_cnpj_obrigatorio",
                "description": "CPF ou CNPJ deve estar presente",
                "condition": "true",
                "action": "cpf or cnpj",
                "severity": "error",
            },
        ],
    },
    Domain.CADASTRAL: {
        "title": "Esquema de Dados Cadastrais",
        "description": "Estrutura padronizada para informações pessoais e de contato",
        "properties": {
            "nome_completo": {
                "type": "string",
                "minLength": 2,
                "maxLength": 100,
                "description": "Nome completo da pessoa",
            },
            "cpf": {
                "type": "string",
                "pattern": r"^\d{3}\.\d{3}\.\d{3}-\d{2}$",
                "description": "CPF no formato 123.456.789-00",
            },
            "rg": {
                "type": "string",
                "pattern": r"^\d{1,2}\.\d{3}\.\d{3}-[\dX]$",
                "description": "RG no formato 12.345.678-9",
            },
            "email": {
                "type": "string",
                "format": "email",
                "description": "Endereço de email válido",
            },
            "telefone": {
                "type": "string",
                "pattern": r"^\(\d{2}\)\s\d{4,5}-\d{4}$",
                "description": "Telefone no formato (11) 99999-9999",
            },
            "data_nascimento": {
                "type": "string",
                "format": "date",
                "description": "Data de nascimento",
            },
        },
        "business_rules": [
            {
                "name": "idade_minima",
                "description": "Pessoa deve ter pelo menos 18 anos",
                "condition": "data_nascimento",
                "action": "age >= 18",
                "severity": "warning",
            },
        ],
    },
    Domain.TRANSACIONAL: {
        "title": "Esquema de Dados Transacionais",
        "description": "Estrutura para histórico de operações e movimentações",
        "properties": {
            "id_transacao": {"type": "string", "description": "Identificador único da transação"},
            "timestamp": {"type": "string", "format": "date-time", "description": "Data e hora da operação"},
            "valor": {"type": "number", "description": "Valor da operação"},
            "status": {
                "type": "string",
                "enum": ["PENDENTE", "PROCESSANDO", "CONCLUIDA", "CANCELADA", "ERRO"],
                "description": "Status da transação",
            },
            "origem": {"type": "string", "description": "Sistema ou canal de origem"},
            "destino": {"type": "string", "description": "Sistema ou conta de destino"},
        },
        "business_rules": [],
    },
    Domain.ECOMMERCE: {
        "title": "Esquema de Dados de E-commerce",
        "description": "Estrutura para produtos, vendas e informações comerciais",
        "properties": {
            "produto_id": {"type": "string", "description": "Identificador único do produto"},
            "nome_produto": {
                "type": "string",
                "minLength": 1,
                "maxLength": 200,
                "description": "Nome do produto",
            },
            "preco": {"type": "number", "minimum": 0, "description": "Preço do produto em reais"},
            "categoria": {"type": "string", "description": "Categoria do produto"},
            "estoque": {"type": "integer", "minimum": 0, "description": "Quantidade em estoque"},
            "ativo": {"type": "boolean", "description": "Se o produto está ativo para venda"},
        },
        "business_rules": [
            {
                "name": "preco_positivo",
                "description": "Preço deve ser positivo",
                "condition": "true",
                "action": "preco > 0",
                "severity": "error",
            },
        ],
    },
    Domain.GENERICO: {
        "title": "Esquema de Dados Genéricos",
        "description": "Estrutura flexível para dados diversos",
        "properties": {
            "id": {"type": "string", "description": "Identificador único"},
            "nome": {"type": "string", "description": "Nome ou descrição"},
            "valor": {"type": "number", "description": "Valor numérico"},
            "data": {"type": "string", "format": "date", "description": "Data relevante"},
            "ativo": {"type": "boolean", "description": "Status ativo/inativo"},
        },
        "business_rules": [],
    },
}


def json_type_for(data_type: DataType) -> str:
    return JSON_TYPES.get(data_type, "string")


class SchemaGenerator:
    """
    Generates and checks JSON Schemas for CSV records.

    Records are the parsed CSV rows as dicts of strings, so numeric and
    boolean checks look at what the text would convert to.
    """

    def __init__(
        self,
        include_examples: bool = True,
        max_examples: int = 3,
        infer_constraints: bool = True,
        strict_mode: bool = False,
        include_validation: bool = True,
        include_transformations: bool = True,
    ):
        self.include_examples = include_examples
        self.max_examples = max_examples
        self.infer_constraints = infer_constraints
        self.strict_mode = strict_mode
        self.include_validation = include_validation
        self.include_transformations = include_transformations

    # ===================
    # GENERATION
    # ===================

    def generate_schema(
        self,
        records: list[dict[str, Any]],
        columns: Sequence[ColumnProfile],
        domain_result: DomainAnalysisResult,
        title: Optional[str] = None,
        mappings: Optional[Sequence[FieldMapping]] = None,
    ) -> dict:
        """
        Build a JSON Schema for the records.

        Args:
            records: Parsed rows keyed by source column
            columns: Column profiles with inferred types
            domain_result: Domain analysis for the same columns
            title: Overrides the domain template title
            mappings: Source to target field mappings; targets become
                the property names

        Returns:
            JSON Schema dict with a "metadata" block
        """
        template = self._template(domain_result.domain)
        by_name = {col.name: col for col in columns}
        mapping_by_source = {m.source_field: m for m in mappings or []}
        source_fields = self._source_fields(records, columns)

        properties: dict[str, dict] = {}
        required: list[str] = []

        for source in source_fields:
            mapping = mapping_by_source.get(source)
            target = mapping.target_field if mapping else source
            column = by_name.get(source)
            data_type = column.type if column else DataType.TEXTO_LIVRE
            template_property = template["properties"].get(target) or template["properties"].get(source)

            prop = self._base_property(data_type, target, template_property)

            if self.include_examples:
                prop["examples"] = self._examples(records, source)

            if self.include_transformations and mapping and mapping.transformation:
                prop["transformation"] = {
                    "operation": mapping.transformation,
                    "parameters": {},
                    "description": f"Transformação: {mapping.transformation}",
                }

            if self.infer_constraints:
                self._infer_constraints(prop, records, source)

            properties[target] = prop

            if self._is_required(records, source, target):
                required.append(target)

        schema = {
            "$schema": SCHEMA_DIALECT,
            "type": "object",
            "title": title or template["title"],
            "description": template["description"],
            "properties": properties,
            "required": required,
            "additionalProperties": not self.strict_mode,
            "metadata": {
                "version": SCHEMA_VERSION,
                "created_at": datetime.now(timezone.utc).isoformat(),
                "domain": domain_result.domain.value,
                "confidence": domain_result.confidence,
                "source_fields": source_fields,
                "generated_by": GENERATED_BY,
                "statistics": self._statistics(properties, required),
                "business_rules": list(template["business_rules"]),
            },
        }

        logger.info(
            "schema_generated",
            domain=domain_result.domain.value,
            fields=len(properties),
            required=len(required),
            strict=self.strict_mode,
        )
        return schema

    def generate_preview_schema(
        self,
        records: list[dict[str, Any]],
        columns: Sequence[ColumnProfile],
        domain_result: Optional[DomainAnalysisResult] = None,
    ) -> dict:
        """Lightweight schema over the first records, without constraints."""
        domain = domain_result.domain if domain_result else Domain.GENERICO
        template = self._template(domain)
        sample = records[:PREVIEW_RECORDS]
        by_name = {col.name: col for col in columns}

        properties = {}
        for source in self._source_fields(sample, columns):
            column = by_name.get(source)
            template_property = template["properties"].get(source) or {}
            properties[source] = {
                "type": json_type_for(column.type if column else DataType.TEXTO_LIVRE),
                "description": template_property.get("description", f"Campo {source}"),
                "examples": self._examples(sample, source),
            }

        return {
            "type": "object",
            "title": f"Preview - {template['title']}",
            "properties": properties,
            "metadata": {
                "domain": domain.value,
                "confidence": domain_result.confidence if domain_result else 0.0,
                "source_fields": list(properties),
                "sample_size": len(sample),
            },
        }

    # ===================
    # VALIDATION
    # ===================

    def validate_against_schema(self, records: list[dict[str, Any]], schema: dict) -> dict:
        """
        Check records against a generated schema.

        Returns:
            Dict with is_valid, errors, warnings and statistics
        """
        properties = schema.get("properties", {})
        required = schema.get("required", [])
        allow_extra = schema.get("additionalProperties", True)
        errors: list[dict] = []
        warnings: list[dict] = []

        for row, record in enumerate(records):
            for name in required:
                if _is_blank(record.get(name)):
                    errors.append({
                        "row": row,
                        "field": name,
                        "type": "required",
                        "message": f"Campo obrigatório '{name}' está ausente",
                        "value": record.get(name),
                    })

            for name, value in record.items():
                prop = properties.get(name)
                if prop is None:
                    if not allow_extra:
                        warnings.append({
                            "row": row,
                            "field": name,
                            "type": "additional_property",
                            "message": f"Campo '{name}' não está definido no esquema",
                            "suggestion": "Considere remover ou adicionar ao esquema",
                        })
                    continue
                if _is_blank(value):
                    continue
                errors.extend(self._validate_field_value(value, prop, name, row))

        rows_missing_required = {e["row"] for e in errors if e["type"] == "required"}
        return {
            "is_valid": not errors,
            "errors": errors,
            "warnings": warnings,
            "statistics": {
                "total_rows": len(records),
                "valid_rows": len(records) - len(rows_missing_required),
                "error_count": len(errors),
                "warning_count": len(warnings),
            },
        }

    # ===================
    # EXPORT
    # ===================

    def export_schema(self, schema: dict, format: str = "json") -> str:
        """
        Render the schema as "json", "typescript" or "documentation".

        Raises:
            ValidationError: For any other format
        """
        if format == "json":
            return json.dumps(schema, indent=2, ensure_ascii=False)
        if format == "typescript":
            return self._typescript_interface(schema)
        if format == "documentation":
            return self._documentation(schema)
        raise ValidationError(
            f"Formato não suportado: {format}",
            details={"supported": list(EXPORT_FORMATS)},
        )

    # ===================
    # HELPERS
    # ===================

    @staticmethod
    def _template(domain: Domain) -> dict:
        return DOMAIN_TEMPLATES.get(domain, DOMAIN_TEMPLATES[Domain.GENERICO])

    @staticmethod
    def _source_fields(records: list[dict[str, Any]], columns: Sequence[ColumnProfile]) -> list[str]:
        if records:
            return list(records[0].keys())
        return [col.name for col in columns]

    def _base_property(self, data_type: DataType, target: str, template_property: Optional[dict]) -> dict:
        prop: dict[str, Any] = {
            "type": json_type_for(data_type),
            "description": f"Campo {target}",
        }
        if data_type in JSON_FORMATS:
            prop["format"] = JSON_FORMATS[data_type]

        if template_property:
            # Template wins over inference
            prop.update({k: v for k, v in template_property.items() if k != "validation"})
            if self.include_validation and template_property.get("validation"):
                prop["validation"] = list(template_property["validation"])
        return prop

    def _examples(self, records: list[dict[str, Any]], source: str) -> list:
        examples = []
        for record in records:
            value = record.get(source)
            if _is_blank(value):
                continue
            if value not in examples:
                examples.append(value)
            if len(examples) >= self.max_examples:
                break
        return examples

    @staticmethod
    def _infer_constraints(prop: dict, records: list[dict[str, Any]], source: str) -> None:
        values = [r.get(source) for r in records if r.get(source) is not None]
        if not values:
            return

        if prop["type"] == "string":
            lengths = [len(str(v)) for v in values]
            prop["minLength"] = min(lengths)
            prop["maxLength"] = max(lengths)

        if prop["type"] in ("number", "integer"):
            numbers = [n for n in (parse_number(str(v)) for v in values) if n is not None]
            if numbers:
                prop["minimum"] = min(numbers)
                prop["maximum"] = max(numbers)

        unique = list(dict.fromkeys(values))
        if len(unique) <= ENUM_MAX_VALUES and len(unique) < len(values) * ENUM_MAX_UNIQUE_RATIO:
            prop["enum"] = unique

    @staticmethod
    def _is_required(records: list[dict[str, Any]], source: str, target: str) -> bool:
        if any(hint in target.lower() for hint in REQUIRED_NAME_HINTS):
            return True
        if not records:
            return False
        present = sum(1 for r in records if not _is_blank(r.get(source)))
        return present / len(records) > REQUIRED_PRESENCE_RATE

    @staticmethod
    def _statistics(properties: dict[str, dict], required: list[str]) -> dict:
        total = len(properties)
        return {
            "total_fields": total,
            "required_fields": len(required),
            "optional_fields": total - len(required),
            "validation_rules": sum(len(p.get("validation", [])) for p in properties.values()),
            "transformations": sum(1 for p in properties.values() if p.get("transformation")),
        }

    def _validate_field_value(self, value: Any, prop: dict, name: str, row: int) -> list[dict]:
        errors = []
        expected = prop.get("type", "string")

        if not _matches_type(value, expected):
            errors.append({
                "row": row,
                "field": name,
                "type": "type",
                "message": f"Valor '{value}' não é do tipo {expected}",
                "value": value,
            })

        pattern = prop.get("pattern")
        if pattern and isinstance(value, str) and not re.search(pattern, value):
            errors.append({
                "row": row,
                "field": name,
                "type": "pattern",
                "message": f"Valor '{value}' não atende ao padrão {pattern}",
                "value": value,
            })

        if expected in ("number", "integer"):
            number = value if isinstance(value, (int, float)) and not isinstance(value, bool) else parse_number(str(value))
            if number is not None:
                if prop.get("minimum") is not None and number < prop["minimum"]:
                    errors.append({
                        "row": row,
                        "field": name,
                        "type": "range",
                        "message": f"Valor {value} é menor que o mínimo {prop['minimum']}",
                        "value": value,
                    })
                if prop.get("maximum") is not None and number > prop["maximum"]:
                    errors.append({
                        "row": row,
                        "field": name,
                        "type": "range",
                        "message": f"Valor {value} é maior que o máximo {prop['maximum']}",
                        "value": value,
                    })

        return errors

    @staticmethod
    def _typescript_interface(schema: dict) -> str:
        required = set(schema.get("required", []))
        lines = [
            "// Gerado automaticamente pelo Orquestrador de Dados",
            f"// {schema.get('description', '')}",
            "",
            f"export interface {_pascal_case(schema.get('title', 'Schema'))} {{",
        ]
        for name, prop in schema.get("properties", {}).items():
            optional = "" if name in required else "?"
            lines.append(f"  /** {prop.get('description', '')} */")
            lines.append(f"  {name}{optional}: {_ts_type(prop.get('type', 'string'))};")
            lines.append("")
        lines.append("}")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _documentation(schema: dict) -> str:
        metadata = schema.get("metadata", {})
        required = set(schema.get("required", []))
        parts = [
            f"# {schema.get('title', 'Esquema de Dados')}\n",
            f"{schema.get('description', '')}\n",
            f"**Domínio:** {metadata.get('domain', Domain.GENERICO.value)}",
            f"**Confiança:** {round(metadata.get('confidence', 0) * 100)}%\n",
            "## Campos\n",
        ]
        for name, prop in schema.get("properties", {}).items():
            status = "**Obrigatório**" if name in required else "Opcional"
            parts.append(f"### {name}\n")
            parts.append(f"- **Tipo:** {prop.get('type')}")
            parts.append(f"- **Status:** {status}")
            parts.append(f"- **Descrição:** {prop.get('description', '')}")
            if prop.get("examples"):
                parts.append(f"- **Exemplos:** {', '.join(str(e) for e in prop['examples'])}")
            parts.append("")
        return "\n".join(parts)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _matches_type(value: Any, expected: Any) -> bool:
    """Type check that also accepts the text form of numbers and booleans."""
    types = expected if isinstance(expected, list) else [expected]
    for t in types:
        if t == "string" and isinstance(value, str):
            return True
        if t in ("number", "integer"):
            if isinstance(value, bool):
                continue
            number = value if isinstance(value, (int, float)) else parse_number(str(value))
            if number is not None and (t == "number" or float(number).is_integer()):
                return True
        if t == "boolean":
            if isinstance(value, bool) or str(value).strip().lower() in TRUE_VALUES | FALSE_VALUES:
                return True
        if t == "object" and isinstance(value, dict):
            return True
        if t == "array" and isinstance(value, list):
            return True
        if t == "null" and value is None:
            return True
    return False


def _pascal_case(text: str) -> str:
    return "".join(word[:1].upper() + word[1:].lower() for word in re.findall(r"\w+", text))


def _ts_type(json_type: Any) -> str:
    if isinstance(json_type, list):
        return " | ".join(_ts_type(t) for t in json_type)
    return TS_TYPES.get(json_type, "any")


# Singleton instance
_schema_generator: Optional[SchemaGenerator] = None


def get_schema_generator() -> SchemaGenerator:
    """Get or create schema generator instance."""
    global _schema_generator
    if _schema_generator is None:
        _schema_generator = SchemaGenerator()
    return _schema_generator
