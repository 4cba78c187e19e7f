"""
Value validation and normalization by inferred data type.

Validates Brazilian documents (CPF, CNPJ, CEP), phones, emails, dates,
currency, plates, PIX keys, numbers and booleans, and returns a
normalized value plus errors, warnings and suggestions.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Optional
import structlog

from models.analysis import DataType
from services.cache_service import get_cache_manager
from services.type_inference_service import validate_cpf, validate_cnpj

logger = structlog.get_logger(__name__)

VALID_DDDS = {
    "11", "12", "13", "14", "15", "16", "17", "18", "19", "21", "22", "24", "27", "28",
    "31", "32", "33", "34", "35", "37", "38", "41", "42", "43", "44", "45", "46", "47",
    "48", "49", "51", "53", "54", "55", "61", "62", "63", "64", "65", "66", "67", "68",
    "69", "71", "73", "74", "75", "77", "79", "81", "82", "83", "84", "85", "86", "87",
    "88", "89", "91", "92", "93", "94", "95", "96", "97", "98", "99",
}

COMMON_EMAIL_DOMAINS = {
    "gmail.com", "hotmail.com", "yahoo.com.br", "outlook.com", "uol.com.br", "terra.com.br",
}

BOOLEAN_VALUES = {
    DataType.BOOLEAN_PTBR: (
        ["sim", "não", "s", "n", "verdadeiro", "falso", "ativo", "inativo"],
        {"sim", "s", "verdadeiro", "ativo"},
    ),
    DataType.BOOLEAN_EN: (
        ["true", "false", "yes", "no", "y", "n", "1", "0"],
        {"true", "yes", "y", "1"},
    ),
}

UUID_PATTERN = re.compile(r"^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$", re.IGNORECASE)
BR_CURRENCY = re.compile(r"^-?\d{1,3}(\.\d{3})*(,\d{2})?$")
INTL_CURRENCY = re.compile(r"^-?\d+(\.\d{2})?$")
OLD_PLATE = re.compile(r"^[A-Z]{3}\d{4}$")
MERCOSUL_PLATE = re.compile(r"^[A-Z]{3}\d[A-Z]\d{2}$")


@dataclass
class ValidationIssue:
    """Single validation error."""
    field: str
    type: str  # format | range | required | pattern | checksum | business_rule
    message: str
    severity: str  # critical | high | medium | low
    original_value: str
    expected_format: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "type": self.type,
            "message": self.message,
            "severity": self.severity,
            "original_value": self.original_value,
            "expected_format": self.expected_format,
        }


@dataclass
class ValidationWarning:
    """Non-blocking data quality note."""
    field: str
    type: str  # format_suggestion | data_quality | inconsistency
    message: str
    suggestion: str

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "type": self.type,
            "message": self.message,
            "suggestion": self.suggestion,
        }


@dataclass
class ValidationResult:
    """Outcome of validating one value."""
    is_valid: bool = True
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    normalized_value: Optional[str] = None
    confidence: float = 1.0

    def fail(self, field_name: str, kind: str, message: str, severity: str,
             original: str, expected: Optional[str] = None) -> "ValidationResult":
        self.is_valid = False
        self.errors.append(ValidationIssue(field_name, kind, message, severity, original, expected))
        return self

    def warn(self, field_name: str, kind: str, message: str, suggestion: str) -> "ValidationResult":
        self.warnings.append(ValidationWarning(field_name, kind, message, suggestion))
        return self

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "suggestions": self.suggestions,
            "normalized_value": self.normalized_value,
            "confidence": self.confidence,
        }


@dataclass
class CustomRule:
    """Extra per-field rule applied after the type checks."""
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    validator: Optional[Callable[[str], bool]] = None
    message: str = "Valor não atende à regra personalizada"


@dataclass
class BusinessRule:
    """Record level rule: condition(record) must hold."""
    name: str
    condition: Callable[[dict[str, Any]], bool]
    message: str
    severity: str = "error"  # error | warning


class DataValidator:
    """
    Validate and normalize values by data type.

    Args:
        strict_mode: Empty values are errors instead of warnings
        custom_rules: Field name -> CustomRule
        business_rules: Rules evaluated by validate_record
        use_cache: Memoize results in the validation cache
    """

    def __init__(
        self,
        strict_mode: bool = False,
        custom_rules: Optional[dict[str, CustomRule]] = None,
        business_rules: Optional[list[BusinessRule]] = None,
        use_cache: bool = True,
    ):
        self.strict_mode = strict_mode
        self.custom_rules = custom_rules or {}
        self.business_rules = business_rules or []
        self.use_cache = use_cache and not custom_rules

    def validate_value(self, value: Optional[str], data_type: DataType, field_name: Optional[str] = None) -> ValidationResult:
        """
        Validate one value.

        Args:
            value: Raw value
            data_type: Type the value should conform to
            field_name: Column name used in messages

        Returns:
            ValidationResult with normalized value when valid
        """
        field_name = field_name or "unknown"

        if value is None or str(value).strip() == "":
            return self._handle_empty(field_name)

        raw = str(value)
        trimmed = raw.strip()

        cache = get_cache_manager().validation if self.use_cache else None
        cache_key = f"{field_name}\x1f{raw}"
        if cache is not None:
            cached = cache.get_validation_result(data_type.value, cache_key)
            if cached is not None:
                return cached

        result = ValidationResult()
        try:
            self._dispatch(trimmed, data_type, field_name, result)
        except (ValueError, TypeError, IndexError) as e:
            result.is_valid = False
            result.errors.append(ValidationIssue(
                field_name, "format", f"Erro na validação: {e}", "high", raw
            ))
            result.confidence = 0
            logger.warning("value_validation_crashed", field=field_name, type=data_type.value, error=str(e))

        self._apply_custom_rule(trimmed, field_name, result)

        if cache is not None:
            cache.cache_validation_result(data_type.value, cache_key, result)
        return result

    def validate_column(self, values: list[Optional[str]], data_type: DataType, field_name: str) -> dict:
        """Validate every value of a column and summarize."""
        results = [self.validate_value(v, data_type, field_name) for v in values]
        valid = sum(1 for r in results if r.is_valid)
        total = len(results)
        return {
            "field": field_name,
            "type": data_type.value,
            "total": total,
            "valid": valid,
            "invalid": total - valid,
            "warnings": sum(len(r.warnings) for r in results),
            "validity_rate": valid / total if total else 1.0,
            "results": [r.to_dict() for r in results],
        }

    def validate_record(self, record: dict[str, Any], types: dict[str, DataType]) -> ValidationResult:
        """Validate every typed field of a record and then the business rules."""
        combined = ValidationResult()
        for name, data_type in types.items():
            result = self.validate_value(record.get(name), data_type, name)
            combined.errors.extend(result.errors)
            combined.warnings.extend(result.warnings)
            if not result.is_valid:
                combined.is_valid = False

        for rule in self.business_rules:
            try:
                holds = rule.condition(record)
            except (KeyError, ValueError, TypeError):
                holds = False
            if holds:
                continue
            if rule.severity == "error":
                combined.fail(rule.name, "business_rule", rule.message, "high", "")
            else:
                combined.warn(rule.name, "inconsistency", rule.message, "Revise o registro")
        return combined

    # ===================
    # DISPATCH
    # ===================

    def _dispatch(self, value: str, data_type: DataType, field_name: str, result: ValidationResult) -> None:
        handlers = {
            DataType.CPF: self._validate_cpf,
            DataType.CNPJ: self._validate_cnpj,
            DataType.RG: self._validate_rg,
            DataType.CEP: self._validate_cep,
            DataType.EMAIL: self._validate_email,
            DataType.DATA_BRASILEIRA: self._validate_brazilian_date,
            DataType.DATA_ISO: self._validate_iso_date,
            DataType.DATETIME: self._validate_datetime,
            DataType.MOEDA_REAL: self._validate_currency,
            DataType.NUMERO_DECIMAL: self._validate_decimal,
            DataType.NUMERO_INTEIRO: self._validate_integer,
            DataType.PERCENTUAL: self._validate_percentage,
            DataType.PLACA_VEICULO: self._validate_plate,
            DataType.PIX_KEY: self._validate_pix_key,
            DataType.TRANSACTION_ID: self._validate_transaction_id,
            DataType.UUID: self._validate_uuid,
        }

        if data_type in (DataType.TELEFONE, DataType.CELULAR):
            self._validate_phone(value, field_name, result, data_type)
        elif data_type in BOOLEAN_VALUES:
            self._validate_boolean(value, field_name, result, data_type)
        elif data_type in handlers:
            handlers[data_type](value, field_name, result)
        else:
            self._validate_generic(value, field_name, result)

    def _handle_empty(self, field_name: str) -> ValidationResult:
        result = ValidationResult(confidence=0.5)
        if self.strict_mode:
            result.fail(field_name, "required", "Campo obrigatório não pode estar vazio", "critical", "")
        else:
            result.warn(field_name, "data_quality", "Campo vazio detectado", "Considere preencher este campo")
        return result

    def _apply_custom_rule(self, value: str, field_name: str, result: ValidationResult) -> None:
        rule = self.custom_rules.get(field_name)
        if rule is None:
            return
        broken = (
            (rule.pattern is not None and not re.search(rule.pattern, value))
            or (rule.min_length is not None and len(value) < rule.min_length)
            or (rule.max_length is not None and len(value) > rule.max_length)
            or (rule.validator is not None and not rule.validator(value))
        )
        if broken:
            result.fail(field_name, "business_rule", rule.message, "medium", value)

    @staticmethod
    def _note_normalized(value: str, result: ValidationResult) -> None:
        if value != result.normalized_value:
            result.suggestions.append(f"Formato normalizado: {result.normalized_value}")

    # ===================
    # DOCUMENTS
    # ===================

    def _validate_cpf(self, value: str, field_name: str, result: ValidationResult) -> None:
        numbers = re.sub(r"\D", "", value)

        if not re.search(r"^\d{3}\.\d{3}\.\d{3}-\d{2}$|^\d{11}$", value):
            result.fail(field_name, "format", "CPF deve estar no formato 123.456.789-00 ou 12345678900",
                        "high", value, "123.456.789-00")

        if len(numbers) != 11:
            result.fail(field_name, "format", "CPF deve ter exatamente 11 dígitos", "critical", value)
            return
        if len(set(numbers)) == 1:
            result.fail(field_name, "pattern", "CPF não pode ter todos os dígitos iguais", "critical", value)
            return
        if not validate_cpf(numbers):
            result.fail(field_name, "checksum", "CPF possui dígitos verificadores inválidos", "critical", value)
            return

        result.normalized_value = f"{numbers[:3]}.{numbers[3:6]}.{numbers[6:9]}-{numbers[9:]}"
        self._note_normalized(value, result)

    def _validate_cnpj(self, value: str, field_name: str, result: ValidationResult) -> None:
        numbers = re.sub(r"\D", "", value)

        if not re.search(r"^\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}$|^\d{14}$", value):
            result.fail(field_name, "format", "CNPJ deve estar no formato 12.345.678/0001-00 ou 12345678000100",
                        "high", value, "12.345.678/0001-00")

        if len(numbers) != 14:
            result.fail(field_name, "format", "CNPJ deve ter exatamente 14 dígitos", "critical", value)
            return
        if len(set(numbers)) == 1:
            result.fail(field_name, "pattern", "CNPJ não pode ter todos os dígitos iguais", "critical", value)
            return
        if not validate_cnpj(numbers):
            result.fail(field_name, "checksum", "CNPJ possui dígitos verificadores inválidos", "critical", value)
            return

        result.normalized_value = f"{numbers[:2]}.{numbers[2:5]}.{numbers[5:8]}/{numbers[8:12]}-{numbers[12:]}"
        self._note_normalized(value, result)

    def _validate_rg(self, value: str, field_name: str, result: ValidationResult) -> None:
        numbers = re.sub(r"\D", "", value)
        if not 7 <= len(numbers) <= 9:
            result.fail(field_name, "format", "RG deve ter entre 7 e 9 dígitos", "medium", value)

    def _validate_cep(self, value: str, field_name: str, result: ValidationResult) -> None:
        numbers = re.sub(r"\D", "", value)

        if not re.match(r"^\d{5}-?\d{3}$", value):
            result.fail(field_name, "format", "CEP deve estar no formato 12345-678 ou 12345678",
                        "medium", value, "12345-678")

        if len(numbers) != 8:
            result.fail(field_name, "format", "CEP deve ter exatamente 8 dígitos", "high", value)
            return

        result.normalized_value = f"{numbers[:5]}-{numbers[5:]}"
        self._note_normalized(value, result)

    # ===================
    # CONTACTS
    # ===================

    def _validate_phone(self, value: str, field_name: str, result: ValidationResult, data_type: DataType) -> None:
        numbers = re.sub(r"\D", "", value)

        if not 10 <= len(numbers) <= 11:
            result.fail(field_name, "format", "Telefone deve ter 10 ou 11 dígitos", "medium", value)
            return

        ddd = numbers[:2]
        if ddd not in VALID_DDDS:
            result.warn(field_name, "data_quality", f"DDD {ddd} pode não ser válido",
                        "Verifique se o DDD está correto")

        if data_type == DataType.CELULAR and len(numbers) == 11 and numbers[2] != "9":
            result.warn(field_name, "format_suggestion", "Celular deve começar com 9 após o DDD",
                        "Formato esperado: (11) 91234-5678")

        if len(numbers) == 10:
            result.normalized_value = f"({numbers[:2]}) {numbers[2:6]}-{numbers[6:]}"
        else:
            result.normalized_value = f"({numbers[:2]}) {numbers[2:7]}-{numbers[7:]}"
        self._note_normalized(value, result)

    def _validate_email(self, value: str, field_name: str, result: ValidationResult) -> None:
        if not re.match(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$", value):
            result.fail(field_name, "format", "Email deve ter formato válido (usuario@dominio.com)",
                        "medium", value, "usuario@dominio.com")
            return

        domain = value.split("@")[1].lower()
        if domain not in COMMON_EMAIL_DOMAINS:
            result.warn(field_name, "data_quality", f"Domínio {domain} é menos comum",
                        "Verifique se o email está correto")

        result.normalized_value = value.lower()

    # ===================
    # DATES
    # ===================

    def _validate_brazilian_date(self, value: str, field_name: str, result: ValidationResult) -> None:
        match = re.match(r"^(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})$", value)
        if not match:
            result.fail(field_name, "format", "Data deve estar no formato DD/MM/AAAA ou DD-MM-AAAA",
                        "medium", value, "DD/MM/AAAA")
            return

        day, month, year = (int(part) for part in match.groups())
        try:
            parsed = date(year, month, day)
        except ValueError:
            result.fail(field_name, "range", "Data inválida", "high", value)
            return

        current_year = datetime.now().year
        if year < 1900 or year > current_year + 10:
            result.warn(field_name, "data_quality", f"Ano {year} parece incomum",
                        "Verifique se o ano está correto")

        result.normalized_value = parsed.isoformat()
        result.suggestions.append(f"Formato ISO: {result.normalized_value}")

    def _validate_iso_date(self, value: str, field_name: str, result: ValidationResult) -> None:
        try:
            result.normalized_value = date.fromisoformat(value).isoformat()
        except ValueError:
            result.fail(field_name, "format", "Data deve estar no formato AAAA-MM-DD", "medium", value)

    def _validate_datetime(self, value: str, field_name: str, result: ValidationResult) -> None:
        for fmt in ("%Y-%m-%d %H:%M:%S", "%d/%m/%Y %H:%M:%S", "%d/%m/%Y %H:%M"):
            try:
                result.normalized_value = datetime.strptime(value, fmt).isoformat()
                return
            except ValueError:
                continue
        try:
            result.normalized_value = datetime.fromisoformat(value).isoformat()
        except ValueError:
            result.fail(field_name, "format", "Data/hora inválida", "medium", value)

    # ===================
    # NUMBERS
    # ===================

    def _validate_currency(self, value: str, field_name: str, result: ValidationResult) -> None:
        clean = re.sub(r"[R$\s]", "", value)

        if BR_CURRENCY.match(clean):
            amount = float(clean.replace(".", "").replace(",", "."))
        elif INTL_CURRENCY.match(clean):
            amount = float(clean)
        else:
            result.fail(field_name, "format", "Valor monetário deve estar no formato 1.234,56 ou 1234.56",
                        "medium", value, "1.234,56")
            return

        result.normalized_value = f"{amount:.2f}"

        if amount > 1_000_000:
            result.warn(field_name, "data_quality", "Valor muito alto detectado",
                        "Verifique se o valor está correto")
        if amount < 0:
            result.suggestions.append("Valor negativo detectado (débito/saída)")

    def _validate_decimal(self, value: str, field_name: str, result: ValidationResult) -> None:
        match = re.match(r"^[+-]?\d+(\.\d*)?|^[+-]?\.\d+", value.replace(",", ".", 1))
        if not match:
            result.fail(field_name, "format", "Valor deve ser um número decimal válido", "medium", value)
            return
        number = float(match.group(0))
        result.normalized_value = str(int(number)) if number.is_integer() else repr(number)

    def _validate_integer(self, value: str, field_name: str, result: ValidationResult) -> None:
        if not re.match(r"^-?\d+$", value):
            result.fail(field_name, "format", "Valor deve ser um número inteiro", "medium", value)

    def _validate_percentage(self, value: str, field_name: str, result: ValidationResult) -> None:
        clean = value.replace("%", "", 1).replace(",", ".", 1)
        match = re.match(r"^[+-]?(\d+(\.\d*)?|\.\d+)", clean)
        number = float(match.group(0)) if match else None
        if number is None or number < 0 or number > 100:
            result.fail(field_name, "range", "Percentual deve estar entre 0% e 100%", "medium", value)

    # ===================
    # OTHER FORMATS
    # ===================

    def _validate_plate(self, value: str, field_name: str, result: ValidationResult) -> None:
        clean = re.sub(r"[\s-]", "", value).upper()

        if MERCOSUL_PLATE.match(clean):
            result.normalized_value = clean
            result.suggestions.append("Placa no formato Mercosul detectada")
        elif OLD_PLATE.match(clean):
            result.normalized_value = f"{clean[:3]}-{clean[3:]}"
        else:
            result.fail(field_name, "format", "Placa deve estar no formato ABC-1234 ou ABC1D23 (Mercosul)",
                        "medium", value, "ABC-1234")

    def _validate_pix_key(self, value: str, field_name: str, result: ValidationResult) -> None:
        digits = re.sub(r"\D", "", value)

        if value.startswith("+55") and len(digits) in (12, 13):
            self._validate_phone(digits[2:], field_name, result, DataType.CELULAR)
        elif len(digits) == 11 and "@" not in value:
            self._validate_cpf(value, field_name, result)
        elif len(digits) == 14 and "@" not in value:
            self._validate_cnpj(value, field_name, result)
        elif "@" in value:
            self._validate_email(value, field_name, result)
        elif UUID_PATTERN.match(value):
            result.normalized_value = value.lower()
            result.suggestions.append("Chave PIX aleatória detectada")
        else:
            result.fail(field_name, "format", "Chave PIX deve ser CPF, CNPJ, email, telefone ou chave aleatória",
                        "medium", value)

    def _validate_transaction_id(self, value: str, field_name: str, result: ValidationResult) -> None:
        if not re.match(r"^[A-Z]{2,4}-\d+$|^TX-\d{8}-\d{4}$", value):
            result.warn(field_name, "format_suggestion", "Formato de ID de transação não reconhecido",
                        "Formato comum: TX-20250101-1234")

    def _validate_uuid(self, value: str, field_name: str, result: ValidationResult) -> None:
        if not UUID_PATTERN.match(value):
            result.fail(field_name, "format", "UUID deve estar no formato xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx",
                        "medium", value)
            return
        result.normalized_value = value.lower()

    def _validate_boolean(self, value: str, field_name: str, result: ValidationResult, data_type: DataType) -> None:
        valid_values, true_values = BOOLEAN_VALUES[data_type]
        lower = value.lower()
        if lower not in valid_values:
            result.fail(field_name, "format", f"Valor booleano deve ser um dos: {', '.join(valid_values)}",
                        "medium", value)
            return
        result.normalized_value = "true" if lower in true_values else "false"

    def _validate_generic(self, value: str, field_name: str, result: ValidationResult) -> None:
        if len(value) < 2:
            result.warn(field_name, "data_quality", "Valor muito curto", "Considere valores mais descritivos")
        if re.search(r"[<>\"'&]", value):
            result.warn(field_name, "data_quality", "Caracteres especiais detectados",
                        "Verifique se os caracteres são necessários")
        result.normalized_value = value.strip()


# Singleton instance
_data_validator: Optional[DataValidator] = None


def get_data_validator() -> DataValidator:
    """Get or create the default (non strict) validator instance."""
    global _data_validator
    if _data_validator is None:
        _data_validator = DataValidator()
    return _data_validator
