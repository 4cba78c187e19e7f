"""
Unit tests for TypeInferenceService and the check digit validators.

Run: pytest tests/unit/test_type_inference_service.py -v
"""

import pytest

from services.type_inference_service import (
    TypeInferenceService,
    get_type_inference_service,
    validate_cnpj,
    validate_cpf,
)
from services.cache_service import get_cache_manager
from models.analysis import DataType


# ===================
# CHECK DIGITS
# ===================

class TestValidateCpf:
    """Tests for validate_cpf()"""

    @pytest.mark.parametrize("value", ["529.982.247-25", "52998224725", "111.444.777-35"])
    def test_valid(self, value):
        assert validate_cpf(value) is True

    def test_wrong_check_digit(self):
        assert validate_cpf("529.982.247-26") is False

    def test_repeated_digits(self):
        """All-equal digits pass the arithmetic but are not valid CPFs."""
        assert validate_cpf("111.111.111-11") is False

    def test_wrong_length(self):
        assert validate_cpf("1234567890") is False


class TestValidateCnpj:
    """Tests for validate_cnpj()"""

    def test_valid(self):
        assert validate_cnpj("11.222.333/0001-81") is True

    def test_valid_digits_only(self):
        assert validate_cnpj("11222333000181") is True

    def test_wrong_check_digit(self):
        assert validate_cnpj("11.222.333/0001-82") is False

    def test_repeated_digits(self):
        assert validate_cnpj("00.000.000/0000-00") is False


# ===================
# INFERENCE
# ===================

class TestInferType:
    """Tests for TypeInferenceService.infer_type()"""

    def test_cpf_with_name_hint(self):
        """Keyword candidate backed by matching values gets a confidence boost."""
        service = TypeInferenceService()

        result = service.infer_type(["529.982.247-25", "111.444.777-35"], "cpf_cliente")

        assert result.type == DataType.CPF
        assert result.confidence == 0.95
        assert result.validation.check_digits is True
        assert result.format == "123.456.789-00"

    def test_name_hint_decides_between_patterns(self):
        """Eight digits match both RG and CEP; the column name settles it."""
        service = TypeInferenceService()

        assert service.infer_type(["01310100", "04567000"], "cep").type == DataType.CEP
        assert service.infer_type(["01310100", "04567000"]).type == DataType.RG

    def test_email(self):
        service = TypeInferenceService()

        result = service.infer_type(["ana@example.com", "bia@example.org"])

        assert result.type == DataType.EMAIL
        assert result.validation.required is True

    def test_brazilian_date(self):
        service = TypeInferenceService()

        result = service.infer_type(["15/03/1985", "2/11/1990"])

        assert result.type == DataType.DATA_BRASILEIRA
        assert "Conversão automática para formato ISO" in result.suggestions

    def test_integer(self):
        service = TypeInferenceService()

        result = service.infer_type(["123456", "7654321"])

        assert result.type == DataType.NUMERO_INTEIRO

    def test_upper_case_values_are_enum(self):
        service = TypeInferenceService()

        result = service.infer_type(["EM_ANDAMENTO", "CONCLUIDO_OK", "EM_ANDAMENTO"])

        assert result.type == DataType.ENUM
        assert result.suggestions[0] == "Valores detectados: EM_ANDAMENTO, CONCLUIDO_OK"

    def test_free_text(self):
        service = TypeInferenceService()

        result = service.infer_type(["Maria Silva", "João de Souza"])

        assert result.type == DataType.TEXTO_LIVRE
        assert result.suggestions == ["Processamento como texto livre"]

    def test_no_samples(self):
        result = TypeInferenceService().infer_type([])

        assert result.type == DataType.TEXTO_LIVRE
        assert result.confidence == 0

    def test_only_blank_samples(self):
        result = TypeInferenceService().infer_type(["", "  "])

        assert result.confidence == 0
        assert result.suggestions == ["Coluna contém apenas valores vazios"]

    def test_blank_values_are_ignored(self):
        result = TypeInferenceService().infer_type(["ana@example.com", "", "bia@example.org"])

        assert result.type == DataType.EMAIL


class TestInferenceHelpers:
    """Tests for column name hints, infer_columns() and caching"""

    def test_column_name_keywords(self):
        candidates = TypeInferenceService.infer_by_column_name("CNPJ_Empresa")

        assert DataType.CNPJ in candidates

    def test_keyword_aliases_are_skipped(self):
        """Aliases like "fone" and "phone" are not data types."""
        candidates = TypeInferenceService.infer_by_column_name("telefone")

        assert candidates == [DataType.TELEFONE]

    def test_no_column_name(self):
        assert TypeInferenceService.infer_by_column_name(None) == []

    def test_infer_columns(self):
        records = [
            {"email": "ana@example.com", "nome": "Ana"},
            {"email": "bia@example.com", "nome": "Bia"},
        ]

        results = TypeInferenceService().infer_columns(records, ["email", "nome"])

        assert results["email"].type == DataType.EMAIL
        assert set(results) == {"email", "nome"}

    def test_results_are_cached(self):
        service = TypeInferenceService()

        first = service.infer_type(["ana@example.com"], "email")
        second = service.infer_type(["ana@example.com"], "email")

        assert first is second
        assert get_cache_manager().data_type.stats()["hits"] == 1

    def test_cache_can_be_disabled(self):
        service = TypeInferenceService(use_cache=False)

        first = service.infer_type(["ana@example.com"], "email")
        second = service.infer_type(["ana@example.com"], "email")

        assert first is not second

    def test_singleton(self):
        assert get_type_inference_service() is get_type_inference_service()
