"""
Domain classification for analyzed CSV uploads.

Scores column names and inferred types against keyword, type and regex
profiles of each business domain, then derives a suggested schema and
the transformation / validation rules that domain usually needs.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Sequence
import structlog

from models.analysis import ColumnProfile, DataType, Domain

logger = structlog.get_logger(__name__)

REQUIRED_TYPE_WEIGHT = 2.0
OPTIONAL_TYPE_WEIGHT = 0.5
GENERIC_CONFIDENCE = 0.1


@dataclass(frozen=True)
class DomainPattern:
    keywords: tuple[str, ...]
    required_types: tuple[DataType, ...]
    optional_types: tuple[DataType, ...]
    patterns: tuple[re.Pattern, ...]
    min_confidence: float


def _rx(*patterns: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


DOMAIN_PATTERNS: dict[Domain, DomainPattern] = {
    Domain.FINANCEIRO: DomainPattern(
        keywords=("valor", "saldo", "credito", "debito", "juros", "taxa", "moeda", "banco", "conta", "agencia"),
        required_types=(DataType.MOEDA_REAL, DataType.NUMERO_DECIMAL),
        optional_types=(DataType.DATA_BRASILEIRA, DataType.CODIGO_BANCO, DataType.AGENCIA, DataType.CONTA_CORRENTE),
        patterns=_rx(r"transac[aã]o", r"financ", r"banc[ao]", r"pagamento", r"recebimento"),
        min_confidence=0.6,
    ),
    Domain.TRANSACIONAL: DomainPattern(
        keywords=("transacao", "tx", "operacao", "movimento", "historico", "log", "evento"),
        required_types=(DataType.TRANSACTION_ID, DataType.DATETIME),
        optional_types=(DataType.MOEDA_REAL, DataType.ENUM, DataType.TEXTO_LIVRE),
        patterns=_rx(r"^tx[_-]", r"transac[aã]o", r"operac[aã]o", r"movimento"),
        min_confidence=0.7,
    ),
    Domain.CADASTRAL: DomainPattern(
        keywords=("nome", "cpf", "cnpj", "endereco", "telefone", "email", "nascimento", "cliente"),
        required_types=(DataType.CPF, DataType.TEXTO_LIVRE),
        optional_types=(DataType.CNPJ, DataType.EMAIL, DataType.TELEFONE, DataType.CEP, DataType.DATA_BRASILEIRA),
        patterns=_rx(r"cliente", r"pessoa", r"cadastro", r"usuario"),
        min_confidence=0.5,
    ),
    Domain.ECOMMERCE: DomainPattern(
        keywords=("produto", "preco", "categoria", "estoque", "pedido", "venda", "compra", "carrinho"),
        required_types=(DataType.CODIGO_PRODUTO, DataType.MOEDA_REAL),
        optional_types=(DataType.NUMERO_INTEIRO, DataType.ENUM, DataType.DATA_ISO),
        patterns=_rx(r"produto", r"pedido", r"venda", r"estoque", r"categoria"),
        min_confidence=0.6,
    ),
    Domain.LOGISTICO: DomainPattern(
        keywords=("entrega", "frete", "transportadora", "rastreamento", "endereco", "cep", "peso"),
        required_types=(DataType.CEP, DataType.TEXTO_LIVRE),
        optional_types=(DataType.DATA_ISO, DataType.NUMERO_DECIMAL, DataType.ENUM),
        patterns=_rx(r"entrega", r"frete", r"transport", r"rastreamento"),
        min_confidence=0.6,
    ),
    Domain.RH_PESSOAL: DomainPattern(
        keywords=("funcionario", "salario", "cargo", "departamento", "admissao", "demissao", "cpf"),
        required_types=(DataType.CPF, DataType.TEXTO_LIVRE),
        optional_types=(DataType.MOEDA_REAL, DataType.DATA_BRASILEIRA, DataType.ENUM),
        patterns=_rx(r"funcionario", r"colaborador", r"salario", r"cargo"),
        min_confidence=0.6,
    ),
    Domain.MARKETING: DomainPattern(
        keywords=("campanha", "lead", "conversao", "clique", "impressao", "email", "segmento"),
        required_types=(DataType.EMAIL, DataType.NUMERO_INTEIRO),
        optional_types=(DataType.PERCENTUAL, DataType.DATA_ISO, DataType.ENUM),
        patterns=_rx(r"campanha", r"marketing", r"lead", r"conversao"),
        min_confidence=0.6,
    ),
    Domain.SAUDE: DomainPattern(
        keywords=("paciente", "medico", "consulta", "exame", "diagnostico", "medicamento", "crm"),
        required_types=(DataType.CPF, DataType.DATA_BRASILEIRA),
        optional_types=(DataType.TEXTO_LIVRE, DataType.NUMERO_INTEIRO),
        patterns=_rx(r"paciente", r"medico", r"consulta", r"saude"),
        min_confidence=0.7,
    ),
    Domain.EDUCACIONAL: DomainPattern(
        keywords=("aluno", "professor", "curso", "disciplina", "nota", "frequencia", "matricula"),
        required_types=(DataType.TEXTO_LIVRE, DataType.NUMERO_DECIMAL),
        optional_types=(DataType.CPF, DataType.DATA_BRASILEIRA, DataType.ENUM),
        patterns=_rx(r"aluno", r"estudante", r"curso", r"escola", r"universidade"),
        min_confidence=0.6,
    ),
    Domain.IMOBILIARIO: DomainPattern(
        keywords=("imovel", "endereco", "valor", "area", "quarto", "banheiro", "garagem", "cep"),
        required_types=(DataType.CEP, DataType.MOEDA_REAL),
        optional_types=(DataType.NUMERO_DECIMAL, DataType.NUMERO_INTEIRO, DataType.TEXTO_LIVRE),
        patterns=_rx(r"imovel", r"casa", r"apartamento", r"terreno"),
        min_confidence=0.6,
    ),
    Domain.AUTOMOTIVO: DomainPattern(
        keywords=("veiculo", "placa", "modelo", "marca", "ano", "cor", "chassi", "renavam"),
        required_types=(DataType.PLACA_VEICULO, DataType.TEXTO_LIVRE),
        optional_types=(DataType.NUMERO_INTEIRO, DataType.ENUM),
        patterns=_rx(r"veiculo", r"carro", r"moto", r"placa"),
        min_confidence=0.7,
    ),
    Domain.GOVERNO: DomainPattern(
        keywords=("cidadao", "documento", "processo", "protocolo", "orgao", "servico", "cpf"),
        required_types=(DataType.CPF, DataType.TEXTO_LIVRE),
        optional_types=(DataType.DATA_BRASILEIRA, DataType.ENUM),
        patterns=_rx(r"governo", r"publico", r"cidadao", r"processo"),
        min_confidence=0.6,
    ),
    Domain.GENERICO: DomainPattern(
        keywords=(),
        required_types=(),
        optional_types=(),
        patterns=(),
        min_confidence=GENERIC_CONFIDENCE,
    ),
}

# Template metadata; fields are always rebuilt from the real columns
SCHEMA_TEMPLATES: dict[Domain, dict] = {
    Domain.FINANCEIRO: {
        "name": "Transações Financeiras",
        "description": "Schema para dados de transações bancárias e financeiras",
        "indexes": ["cpf", "data", "tipo"],
    },
    Domain.CADASTRAL: {
        "name": "Cadastro de Pessoas",
        "description": "Schema para dados cadastrais de pessoas físicas e jurídicas",
        "indexes": ["cpf", "cnpj", "email"],
    },
    Domain.ECOMMERCE: {
        "name": "E-commerce",
        "description": "Schema para dados de produtos e vendas online",
        "indexes": ["categoria", "ativo"],
    },
    Domain.TRANSACIONAL: {
        "name": "Log de Transações",
        "description": "Schema para logs e histórico de operações",
        "indexes": ["timestamp", "tipo", "status"],
    },
}

GENERIC_TEMPLATE = {
    "name": "Dados Genéricos",
    "description": "Schema gerado a partir das colunas detectadas",
    "indexes": [],
}

CHARACTERISTICS: dict[Domain, list[tuple[str, str, str, str]]] = {
    # (type, field, description, importance)
    Domain.FINANCEIRO: [
        ("required_field", "valor", "Valor monetário da transação", "critical"),
        ("required_field", "data", "Data da transação", "critical"),
        ("optional_field", "cpf", "Identificação do titular", "high"),
        ("calculated_field", "saldo", "Saldo calculado", "medium"),
    ],
    Domain.CADASTRAL: [
        ("required_field", "nome", "Nome da pessoa/empresa", "critical"),
        ("required_field", "documento", "CPF ou CNPJ", "critical"),
        ("optional_field", "contato", "Email ou telefone", "high"),
    ],
    Domain.TRANSACIONAL: [
        ("required_field", "id", "Identificador único", "critical"),
        ("required_field", "timestamp", "Data e hora da operação", "critical"),
        ("required_field", "tipo", "Tipo da operação", "high"),
    ],
}

# First matching sub domain wins
SUB_DOMAINS: dict[Domain, list[tuple[str, tuple[str, ...]]]] = {
    Domain.FINANCEIRO: [
        ("Transações Bancárias", ("pix", "ted", "doc", "transferencia")),
        ("Cartão de Crédito", ("cartao", "credito", "fatura")),
        ("Investimentos", ("investimento", "aplicacao", "rendimento")),
    ],
    Domain.ECOMMERCE: [
        ("Produtos", ("produto", "categoria", "estoque")),
        ("Pedidos", ("pedido", "venda", "compra")),
        ("Clientes", ("cliente", "usuario", "comprador")),
    ],
}

JSON_SCHEMA_TYPES: dict[DataType, str] = {
    DataType.MOEDA_REAL: "number",
    DataType.NUMERO_DECIMAL: "number",
    DataType.NUMERO_INTEIRO: "integer",
    DataType.BOOLEAN_PTBR: "boolean",
    DataType.BOOLEAN_EN: "boolean",
}


def json_schema_type(data_type: DataType) -> str:
    """JSON Schema primitive for an inferred type. Defaults to string."""
    return JSON_SCHEMA_TYPES.get(data_type, "string")


@dataclass
class DomainCharacteristic:
    type: str
    field: str
    description: str
    importance: str

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "field": self.field,
            "description": self.description,
            "importance": self.importance,
        }


@dataclass
class TransformationRule:
    field: str
    operation: str
    parameters: dict
    description: str

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "operation": self.operation,
            "parameters": self.parameters,
            "description": self.description,
        }


@dataclass
class DomainValidationRule:
    field: str
    rule: str
    message: str
    severity: str = "error"

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "rule": self.rule,
            "message": self.message,
            "severity": self.severity,
        }


@dataclass
class DomainAnalysisResult:
    """Best domain for a set of columns plus derived rules."""
    domain: Domain
    confidence: float
    characteristics: list[DomainCharacteristic] = field(default_factory=list)
    suggested_schema: dict = field(default_factory=dict)
    transformation_rules: list[TransformationRule] = field(default_factory=list)
    validation_rules: list[DomainValidationRule] = field(default_factory=list)
    sub_domain: Optional[str] = None
    scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "domain": self.domain.value,
            "confidence": round(self.confidence, 4),
            "sub_domain": self.sub_domain,
            "characteristics": [c.to_dict() for c in self.characteristics],
            "suggested_schema": self.suggested_schema,
            "transformation_rules": [r.to_dict() for r in self.transformation_rules],
            "validation_rules": [r.to_dict() for r in self.validation_rules],
            "scores": {k: round(v, 4) for k, v in self.scores.items()},
        }


class DomainAnalyzerService:
    """
    Classifies uploads into business domains.

    Scoring per domain:
        +1 per (column, keyword) pair where the name contains the keyword
        +2 per required type present in any column
        +0.5 per optional type present in any column
        +1 per (column, regex) pair where the name matches

    confidence = score / max_score. Domains below their minimum
    confidence are discarded; with none left the result is generico.
    """

    def analyze_domain(
        self,
        columns: Sequence[ColumnProfile],
        sample_data: Optional[list[list[str]]] = None,
    ) -> DomainAnalysisResult:
        """
        Pick the best domain for the columns.

        Args:
            columns: Column profiles with inferred types
            sample_data: Sample rows, accepted for callers that have them

        Returns:
            DomainAnalysisResult
        """
        scores = self.calculate_domain_scores(columns)

        if scores:
            domain, confidence = scores[0]
        else:
            domain, confidence = Domain.GENERICO, GENERIC_CONFIDENCE

        result = DomainAnalysisResult(
            domain=domain,
            confidence=confidence,
            characteristics=self.identify_characteristics(domain),
            suggested_schema=self.suggest_schema(domain, columns),
            transformation_rules=self.transformation_rules(columns),
            validation_rules=self.validation_rules(domain, columns),
            sub_domain=self.identify_sub_domain(domain, columns),
            scores={d.value: c for d, c in scores},
        )

        logger.info(
            "domain_analyzed",
            domain=domain.value,
            confidence=round(confidence, 3),
            sub_domain=result.sub_domain,
            columns=len(columns),
            sample_rows=len(sample_data) if sample_data else 0,
        )
        return result

    def calculate_domain_scores(self, columns: Sequence[ColumnProfile]) -> list[tuple[Domain, float]]:
        """Eligible domains sorted by confidence, highest first."""
        present_types = {col.type for col in columns}
        scores = []

        for domain, pattern in DOMAIN_PATTERNS.items():
            score = 0.0
            max_score = 0.0

            for col in columns:
                name = col.name.lower()
                for keyword in pattern.keywords:
                    max_score += 1
                    if keyword in name:
                        score += 1

            for data_type in pattern.required_types:
                max_score += REQUIRED_TYPE_WEIGHT
                if data_type in present_types:
                    score += REQUIRED_TYPE_WEIGHT

            for data_type in pattern.optional_types:
                max_score += OPTIONAL_TYPE_WEIGHT
                if data_type in present_types:
                    score += OPTIONAL_TYPE_WEIGHT

            for regex in pattern.patterns:
                for col in columns:
                    max_score += 1
                    if regex.search(col.name):
                        score += 1

            confidence = score / max_score if max_score > 0 else 0.0
            if confidence >= pattern.min_confidence:
                scores.append((domain, confidence))

        # Stable sort keeps declaration order on ties
        scores.sort(key=lambda item: item[1], reverse=True)
        return scores

    @staticmethod
    def identify_characteristics(domain: Domain) -> list[DomainCharacteristic]:
        return [DomainCharacteristic(*c) for c in CHARACTERISTICS.get(domain, [])]

    @staticmethod
    def suggest_schema(domain: Domain, columns: Sequence[ColumnProfile]) -> dict:
        """Domain template metadata with fields built from the actual columns."""
        template = SCHEMA_TEMPLATES.get(domain, GENERIC_TEMPLATE)
        fields = []
        for col in columns:
            entry = {
                "name": col.name,
                "type": json_schema_type(col.type),
                "required": not col.nullable,
                "description": f"Campo {col.name} ({col.type.value})",
            }
            if col.type != DataType.TEXTO_LIVRE:
                entry["validation"] = {"pattern": col.type.value}
            fields.append(entry)

        return {
            "name": template["name"],
            "description": template["description"],
            "fields": fields,
            "indexes": list(template["indexes"]),
        }

    @staticmethod
    def transformation_rules(columns: Sequence[ColumnProfile]) -> list[TransformationRule]:
        rules = []
        for col in columns:
            if col.type == DataType.CPF:
                rules.append(TransformationRule(
                    field=col.name,
                    operation="normalize",
                    parameters={"format": "numbers_only", "validate": True},
                    description="Remove formatação e valida CPF",
                ))
            elif col.type == DataType.MOEDA_REAL:
                rules.append(TransformationRule(
                    field=col.name,
                    operation="normalize",
                    parameters={"type": "currency", "currency": "BRL"},
                    description="Converte para valor numérico",
                ))
            elif col.type == DataType.DATA_BRASILEIRA:
                rules.append(TransformationRule(
                    field=col.name,
                    operation="format",
                    parameters={"from": "DD/MM/YYYY", "to": "YYYY-MM-DD"},
                    description="Converte data para formato ISO",
                ))
        return rules

    @staticmethod
    def validation_rules(domain: Domain, columns: Sequence[ColumnProfile]) -> list[DomainValidationRule]:
        rules = []

        if domain == Domain.FINANCEIRO:
            valor = next((c for c in columns if "valor" in c.name.lower()), None)
            if valor is not None:
                rules.append(DomainValidationRule(
                    field=valor.name,
                    rule="not_zero",
                    message="Valor da transação não pode ser zero",
                ))

        if domain == Domain.CADASTRAL:
            cpf = next((c for c in columns if c.type == DataType.CPF), None)
            if cpf is not None:
                rules.append(DomainValidationRule(
                    field=cpf.name,
                    rule="valid_cpf",
                    message="CPF deve ser válido",
                ))

        return rules

    @staticmethod
    def identify_sub_domain(domain: Domain, columns: Sequence[ColumnProfile]) -> Optional[str]:
        names = " ".join(col.name.lower() for col in columns)
        for sub_domain, keywords in SUB_DOMAINS.get(domain, []):
            if any(keyword in names for keyword in keywords):
                return sub_domain
        return None


# Singleton instance
_domain_analyzer_service: Optional[DomainAnalyzerService] = None


def get_domain_analyzer_service() -> DomainAnalyzerService:
    """Get or create domain analyzer service instance."""
    global _domain_analyzer_service
    if _domain_analyzer_service is None:
        _domain_analyzer_service = DomainAnalyzerService()
    return _domain_analyzer_service
