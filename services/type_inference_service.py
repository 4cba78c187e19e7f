"""
Data type inference for CSV columns.

Recognizes Brazilian document, contact, date and currency formats by
combining column name keywords with regex matching over sample values.
"""

import re
from dataclasses import dataclass, field
from typing import Optional
import structlog

from models.analysis import DataType
from services.cache_service import get_cache_manager

logger = structlog.get_logger(__name__)


TYPE_PATTERNS: dict[DataType, re.Pattern] = {
    # Brazilian documents
    DataType.CPF: re.compile(r"^\d{3}\.\d{3}\.\d{3}-\d{2}$|^\d{11}$"),
    DataType.CNPJ: re.compile(r"^\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}$|^\d{14}$"),
    DataType.RG: re.compile(r"^\d{1,2}\.\d{3}\.\d{3}-[\dX]$|^\d{7,9}$"),
    DataType.CEP: re.compile(r"^\d{5}-\d{3}$|^\d{8}$"),

    # Contacts
    DataType.TELEFONE: re.compile(r"^\(?\d{2}\)?\s?\d{4}-?\d{4}$"),
    DataType.CELULAR: re.compile(r"^\(?\d{2}\)?\s?9?\d{4}-?\d{4}$"),
    DataType.EMAIL: re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"),
    DataType.URL: re.compile(
        r"^https?://(www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b([-a-zA-Z0-9()@:%_+.~#?&/=]*)$"
    ),

    # Dates and times
    DataType.DATA_BRASILEIRA: re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$|^\d{1,2}-\d{1,2}-\d{4}$"),
    DataType.DATA_ISO: re.compile(r"^\d{4}-\d{2}-\d{2}$"),
    DataType.DATETIME: re.compile(
        r"^\d{4}-\d{2}-\d{2}\s\d{2}:\d{2}:\d{2}$|^\d{1,2}/\d{1,2}/\d{4}\s\d{1,2}:\d{2}(:\d{2})?$"
    ),
    DataType.HORA: re.compile(r"^\d{1,2}:\d{2}(:\d{2})?$"),

    # Money and numbers
    DataType.MOEDA_REAL: re.compile(r"^R?\$?\s?-?\d{1,3}(\.\d{3})*(,\d{2})?$|^-?\d+[.,]\d{2}$"),
    DataType.NUMERO_DECIMAL: re.compile(r"^-?\d+[.,]\d+$"),
    DataType.NUMERO_INTEIRO: re.compile(r"^-?\d+$"),
    DataType.PERCENTUAL: re.compile(r"^\d+([.,]\d+)?%$"),

    # Banking
    DataType.CODIGO_BANCO: re.compile(r"^\d{3}$"),
    DataType.AGENCIA: re.compile(r"^\d{4}-?\d?$"),
    DataType.CONTA_CORRENTE: re.compile(r"^\d{5,}-?\d$"),
    DataType.PIX_KEY: re.compile(
        r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$|^\d{11}$|^\d{14}$"
        r"|^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$"
    ),

    # Ids and codes
    DataType.TRANSACTION_ID: re.compile(r"^TX-\d{8}-\d{4}$|^[A-Z]{2,4}-\d+$"),
    DataType.UUID: re.compile(r"^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$", re.IGNORECASE),
    DataType.CODIGO_PRODUTO: re.compile(r"^[A-Z0-9]{3,}-?[A-Z0-9]*$"),

    # Booleans
    DataType.BOOLEAN_PTBR: re.compile(r"^(sim|não|s|n|verdadeiro|falso|ativo|inativo)$", re.IGNORECASE),
    DataType.BOOLEAN_EN: re.compile(r"^(true|false|yes|no|y|n|1|0)$", re.IGNORECASE),

    # Others
    DataType.PLACA_VEICULO: re.compile(r"^[A-Z]{3}-?\d{4}$|^[A-Z]{3}\d[A-Z]\d{2}$"),
    DataType.ENUM: re.compile(r"^[A-Z_]+$"),
    DataType.TEXTO_LIVRE: re.compile(r".*"),
}

# Column name keyword -> candidate types
TYPE_KEYWORDS: dict[str, list[str]] = {
    "cpf": ["cpf"],
    "cnpj": ["cnpj"],
    "rg": ["rg", "identidade"],
    "cep": ["cep", "codigo_postal"],
    "telefone": ["telefone", "fone", "phone"],
    "celular": ["celular", "mobile", "cell"],
    "email": ["email", "e-mail", "mail"],
    "data": ["data", "date", "dt"],
    "hora": ["hora", "time", "hr"],
    "valor": ["valor", "preco", "price", "vlr"],
    "moeda": ["moeda", "currency", "real", "dinheiro"],
    "banco": ["banco", "bank"],
    "agencia": ["agencia", "agency"],
    "conta": ["conta", "account"],
    "transacao": ["transacao", "transaction", "tx"],
    "id": ["id", "codigo", "code"],
    "status": ["status", "situacao"],
    "tipo": ["tipo", "type", "categoria"],
    "descricao": ["descricao", "description", "desc"],
    "nome": ["nome", "name"],
    "endereco": ["endereco", "address"],
    "placa": ["placa", "plate"],
}

FORMAT_EXAMPLES: dict[DataType, str] = {
    DataType.CPF: "123.456.789-00",
    DataType.CNPJ: "12.345.678/0001-00",
    DataType.RG: "12.345.678-9",
    DataType.CEP: "12345-678",
    DataType.TELEFONE: "(11) 1234-5678",
    DataType.CELULAR: "(11) 91234-5678",
    DataType.EMAIL: "usuario@exemplo.com",
    DataType.DATA_BRASILEIRA: "DD/MM/AAAA",
    DataType.DATA_ISO: "AAAA-MM-DD",
    DataType.DATETIME: "AAAA-MM-DD HH:MM:SS",
    DataType.HORA: "HH:MM:SS",
    DataType.MOEDA_REAL: "R$ 1.234,56",
    DataType.NUMERO_DECIMAL: "123,45",
    DataType.NUMERO_INTEIRO: "123",
    DataType.PERCENTUAL: "12,5%",
    DataType.TRANSACTION_ID: "TX-20250101-1234",
    DataType.UUID: "123e4567-e89b-12d3-a456-426614174000",
    DataType.BOOLEAN_PTBR: "Sim/Não",
    DataType.BOOLEAN_EN: "true/false",
    DataType.PLACA_VEICULO: "ABC-1234",
}

# (required, error message) for types that carry a validation rule
VALIDATION_RULES: dict[DataType, tuple[bool, str]] = {
    DataType.CPF: (True, "CPF inválido"),
    DataType.CNPJ: (True, "CNPJ inválido"),
    DataType.EMAIL: (True, "Email inválido"),
    DataType.CEP: (True, "CEP inválido"),
    DataType.TELEFONE: (False, "Telefone inválido"),
    DataType.MOEDA_REAL: (False, "Valor monetário inválido"),
    DataType.DATA_BRASILEIRA: (False, "Data inválida (use DD/MM/AAAA)"),
    DataType.DATA_ISO: (False, "Data inválida (use AAAA-MM-DD)"),
}


@dataclass
class ValidationRule:
    """Validation hints attached to an inferred type."""
    required: bool = False
    pattern: Optional[str] = None
    check_digits: bool = False
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "required": self.required,
            "pattern": self.pattern,
            "check_digits": self.check_digits,
            "error_message": self.error_message,
        }


@dataclass
class TypeInferenceResult:
    """Inferred type for one column."""
    type: DataType
    confidence: float
    pattern: Optional[str] = None
    format: Optional[str] = None
    validation: Optional[ValidationRule] = None
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "confidence": round(self.confidence, 4),
            "pattern": self.pattern,
            "format": self.format,
            "validation": self.validation.to_dict() if self.validation else None,
            "suggestions": self.suggestions,
        }


# ===================
# CHECK DIGITS
# ===================

def _only_digits(value: str) -> str:
    return re.sub(r"\D", "", value)


def _check_digit(digits: str, weights: list[int]) -> int:
    total = sum(int(d) * w for d, w in zip(digits, weights))
    digit = 11 - (total % 11)
    return 0 if digit > 9 else digit


def validate_cpf(value: str) -> bool:
    """Validate CPF check digits (modulo 11)."""
    numbers = _only_digits(value)
    if len(numbers) != 11:
        return False
    if len(set(numbers)) == 1:
        return False

    digit1 = _check_digit(numbers[:9], list(range(10, 1, -1)))
    digit2 = _check_digit(numbers[:10], list(range(11, 1, -1)))
    return int(numbers[9]) == digit1 and int(numbers[10]) == digit2


def validate_cnpj(value: str) -> bool:
    """Validate CNPJ check digits (modulo 11)."""
    numbers = _only_digits(value)
    if len(numbers) != 14:
        return False
    if len(set(numbers)) == 1:
        return False

    digit1 = _check_digit(numbers[:12], [5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2])
    digit2 = _check_digit(numbers[:13], [6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2])
    return int(numbers[12]) == digit1 and int(numbers[13]) == digit2


# ===================
# INFERENCE
# ===================

class TypeInferenceService:
    """
    Infer column types from sample values.

    Name keywords and value patterns are combined: a keyword candidate
    backed by more than 80% matching values wins, otherwise the strongest
    pattern above 70%, otherwise an upper case enum, otherwise free text.
    """

    def __init__(self, use_cache: bool = True):
        self.use_cache = use_cache

    def infer_type(self, samples: list[str], column_name: Optional[str] = None) -> TypeInferenceResult:
        """
        Infer the data type of a column.

        Args:
            samples: Raw column values
            column_name: Header name, used for keyword hints

        Returns:
            TypeInferenceResult with format example and suggestions
        """
        if not samples:
            return TypeInferenceResult(
                type=DataType.TEXTO_LIVRE,
                confidence=0,
                suggestions=["Adicione dados para análise automática"],
            )

        clean = [s.strip() for s in samples if s and s.strip()]
        if not clean:
            return TypeInferenceResult(
                type=DataType.TEXTO_LIVRE,
                confidence=0,
                suggestions=["Coluna contém apenas valores vazios"],
            )

        cache = get_cache_manager().data_type if self.use_cache else None
        cache_key = f"{column_name or ''}\x1f" + "\x1e".join(clean)
        if cache is not None:
            cached = cache.get_inference_result(cache_key)
            if cached is not None:
                return cached

        name_types = self.infer_by_column_name(column_name)
        pattern_types = self.infer_by_pattern(clean)
        result = self._combine(name_types, pattern_types, clean)

        result.validation = self._validation_rule(result.type)
        result.format = FORMAT_EXAMPLES.get(result.type, "Texto livre")
        result.suggestions = self._suggestions(result.type, clean)

        logger.debug(
            "type_inferred",
            column=column_name,
            type=result.type.value,
            confidence=round(result.confidence, 3),
        )

        if cache is not None:
            cache.cache_inference_result(cache_key, result)
        return result

    def infer_columns(self, records: list[dict[str, str]], headers: list[str]) -> dict[str, TypeInferenceResult]:
        """Infer every column of a parsed upload."""
        return {
            header: self.infer_type([str(r.get(header, "") or "") for r in records], header)
            for header in headers
        }

    @staticmethod
    def infer_by_column_name(column_name: Optional[str]) -> list[DataType]:
        """Candidate types from keywords found in the column name."""
        if not column_name:
            return []

        name = re.sub(r"[_-]", "", column_name.lower())
        candidates: list[DataType] = []
        for keyword, types in TYPE_KEYWORDS.items():
            if keyword in name:
                for t in types:
                    try:
                        candidates.append(DataType(t))
                    except ValueError:
                        # Keyword aliases like "phone" are not data types
                        continue
        return candidates

    @staticmethod
    def infer_by_pattern(samples: list[str]) -> list[tuple[DataType, float]]:
        """Types whose pattern matches more than 10% of samples, best first."""
        results = []
        for data_type, pattern in TYPE_PATTERNS.items():
            matches = sum(1 for s in samples if pattern.search(s))
            confidence = matches / len(samples)
            if confidence > 0.1:
                results.append((data_type, confidence))
        return sorted(results, key=lambda item: item[1], reverse=True)

    @staticmethod
    def _combine(
        name_types: list[DataType],
        pattern_types: list[tuple[DataType, float]],
        samples: list[str],
    ) -> TypeInferenceResult:
        pattern_confidence = dict(pattern_types)

        for name_type in name_types:
            confidence = pattern_confidence.get(name_type)
            if confidence is not None and confidence > 0.8:
                return TypeInferenceResult(
                    type=name_type,
                    confidence=min(0.95, confidence + 0.1),
                    pattern=TYPE_PATTERNS[name_type].pattern,
                )

        if pattern_types and pattern_types[0][1] > 0.7:
            best_type, confidence = pattern_types[0]
            return TypeInferenceResult(
                type=best_type,
                confidence=confidence,
                pattern=TYPE_PATTERNS[best_type].pattern,
            )

        unique_values = list(dict.fromkeys(samples))
        if 1 < len(unique_values) <= 10 and all(v == v.upper() for v in unique_values):
            return TypeInferenceResult(
                type=DataType.ENUM,
                confidence=0.8,
            )

        return TypeInferenceResult(
            type=DataType.TEXTO_LIVRE,
            confidence=0.5,
        )

    @staticmethod
    def _validation_rule(data_type: DataType) -> ValidationRule:
        if data_type not in VALIDATION_RULES:
            return ValidationRule(required=False)
        required, message = VALIDATION_RULES[data_type]
        return ValidationRule(
            required=required,
            pattern=TYPE_PATTERNS[data_type].pattern,
            check_digits=data_type in (DataType.CPF, DataType.CNPJ),
            error_message=message,
        )

    @staticmethod
    def _suggestions(data_type: DataType, samples: list[str]) -> list[str]:
        if data_type == DataType.CPF:
            return [
                "Validação automática de CPF ativada",
                "Formato aceito: 123.456.789-00 ou 12345678900",
            ]
        if data_type == DataType.CNPJ:
            return [
                "Validação automática de CNPJ ativada",
                "Formato aceito: 12.345.678/0001-00 ou 12345678000100",
            ]
        if data_type == DataType.MOEDA_REAL:
            return [
                "Conversão automática para formato numérico",
                "Aceita: R$ 1.234,56 ou 1234.56",
            ]
        if data_type == DataType.DATA_BRASILEIRA:
            return [
                "Conversão automática para formato ISO",
                "Aceita: DD/MM/AAAA ou DD-MM-AAAA",
            ]
        if data_type == DataType.ENUM:
            unique_values = list(dict.fromkeys(samples))
            return [
                f"Valores detectados: {', '.join(unique_values)}",
                "Validação automática de valores permitidos",
            ]
        return ["Processamento como texto livre"]


# Singleton instance
_type_inference_service: Optional[TypeInferenceService] = None


def get_type_inference_service() -> TypeInferenceService:
    """Get or create type inference service instance."""
    global _type_inference_service
    if _type_inference_service is None:
        _type_inference_service = TypeInferenceService()
    return _type_inference_service
