"""
Unit tests for DomainAnalyzerService.

Run: pytest tests/unit/test_domain_analyzer_service.py -v
"""

from dataclasses import replace

import pytest

from services.domain_analyzer_service import (
    DOMAIN_PATTERNS,
    DomainAnalyzerService,
    get_domain_analyzer_service,
    json_schema_type,
)
from models.analysis import ColumnProfile, DataType, Domain


@pytest.fixture
def customer_columns():
    return [
        ColumnProfile(name="nome", type=DataType.TEXTO_LIVRE),
        ColumnProfile(name="cpf", type=DataType.CPF),
        ColumnProfile(name="email", type=DataType.EMAIL, nullable=True),
        ColumnProfile(name="telefone", type=DataType.TELEFONE),
    ]


# ===================
# SCORING
# ===================

class TestAnalyzeDomain:
    """Tests for analyze_domain() and calculate_domain_scores()"""

    def test_falls_back_to_generic(self, customer_columns):
        """Keyword slots grow with the column count, so small files rarely qualify."""
        result = DomainAnalyzerService().analyze_domain(customer_columns)

        assert result.domain == Domain.GENERICO
        assert result.confidence == 0.1
        assert result.scores == {}
        assert result.suggested_schema["name"] == "Dados Genéricos"

    def test_score_formula(self, customer_columns, monkeypatch):
        """
        cadastral: 4 keyword hits + 2 required types (4) + email and
        telefone optional (1) over 32 + 4 + 2.5 + 16.
        """
        lowered = replace(DOMAIN_PATTERNS[Domain.CADASTRAL], min_confidence=0.1)
        monkeypatch.setitem(DOMAIN_PATTERNS, Domain.CADASTRAL, lowered)

        scores = DomainAnalyzerService().calculate_domain_scores(customer_columns)

        assert scores == [(Domain.CADASTRAL, pytest.approx(9 / 54.5))]

    def test_eligible_domain_result(self, customer_columns, monkeypatch):
        lowered = replace(DOMAIN_PATTERNS[Domain.CADASTRAL], min_confidence=0.1)
        monkeypatch.setitem(DOMAIN_PATTERNS, Domain.CADASTRAL, lowered)

        result = DomainAnalyzerService().analyze_domain(customer_columns, sample_data=[["Ana", "529.982.247-25"]])

        assert result.domain == Domain.CADASTRAL
        assert result.suggested_schema["name"] == "Cadastro de Pessoas"
        assert result.suggested_schema["indexes"] == ["cpf", "cnpj", "email"]
        assert [c.field for c in result.characteristics] == ["nome", "documento", "contato"]
        assert result.validation_rules[0].rule == "valid_cpf"
        assert result.to_dict()["domain"] == "cadastral"

    def test_no_columns(self):
        result = DomainAnalyzerService().analyze_domain([])

        assert result.domain == Domain.GENERICO
        assert result.suggested_schema["fields"] == []


# ===================
# DERIVED RULES
# ===================

class TestDerivedRules:
    """Tests for schema suggestion, rules and sub domains"""

    def test_suggested_fields_follow_columns(self, customer_columns):
        schema = DomainAnalyzerService.suggest_schema(Domain.GENERICO, customer_columns)
        fields = {f["name"]: f for f in schema["fields"]}

        assert fields["cpf"]["validation"] == {"pattern": "cpf"}
        assert "validation" not in fields["nome"]
        assert fields["email"]["required"] is False
        assert fields["nome"]["description"] == "Campo nome (texto_livre)"

    def test_transformation_rules(self):
        columns = [
            ColumnProfile(name="cpf", type=DataType.CPF),
            ColumnProfile(name="valor", type=DataType.MOEDA_REAL),
            ColumnProfile(name="nascimento", type=DataType.DATA_BRASILEIRA),
            ColumnProfile(name="obs", type=DataType.TEXTO_LIVRE),
        ]

        rules = DomainAnalyzerService.transformation_rules(columns)

        assert [(r.field, r.operation) for r in rules] == [
            ("cpf", "normalize"),
            ("valor", "normalize"),
            ("nascimento", "format"),
        ]
        assert rules[2].parameters == {"from": "DD/MM/YYYY", "to": "YYYY-MM-DD"}

    def test_financial_value_rule(self):
        columns = [ColumnProfile(name="Valor_Total", type=DataType.MOEDA_REAL)]

        rules = DomainAnalyzerService.validation_rules(Domain.FINANCEIRO, columns)

        assert rules[0].field == "Valor_Total"
        assert rules[0].rule == "not_zero"

    def test_no_rules_for_other_domains(self, customer_columns):
        assert DomainAnalyzerService.validation_rules(Domain.MARKETING, customer_columns) == []

    def test_sub_domain(self):
        pix = [ColumnProfile(name="chave_pix")]
        pedido = [ColumnProfile(name="pedido_id")]

        assert DomainAnalyzerService.identify_sub_domain(Domain.FINANCEIRO, pix) == "Transações Bancárias"
        assert DomainAnalyzerService.identify_sub_domain(Domain.ECOMMERCE, pedido) == "Pedidos"
        assert DomainAnalyzerService.identify_sub_domain(Domain.SAUDE, pix) is None

    def test_json_schema_type(self):
        assert json_schema_type(DataType.NUMERO_INTEIRO) == "integer"
        assert json_schema_type(DataType.MOEDA_REAL) == "number"
        assert json_schema_type(DataType.CPF) == "string"

    def test_singleton(self):
        assert get_domain_analyzer_service() is get_domain_analyzer_service()
