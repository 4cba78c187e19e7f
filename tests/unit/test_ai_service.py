"""
Unit tests for AIService.

The Anthropic client is replaced with a MagicMock; no network calls.

Run: pytest tests/unit/test_ai_service.py -v
"""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from services.ai_service import (
    FALLBACK_REASONING,
    AIService,
    get_ai_service,
    infer_value_type,
)
from models.migration import FieldSchema


def reply(payload) -> SimpleNamespace:
    """Messages API response carrying one text block."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(content=[SimpleNamespace(text=text)])


@pytest.fixture
def client():
    return MagicMock()


MAPPING_REPLY = {
    "suggestedMappings": [
        {
            "sourceField": "Nome",
            "targetField": "nome_completo",
            "sourceType": "string",
            "targetType": "string",
            "transformation": "Renomear campo",
            "confidence": 92,
        },
        {
            "sourceField": "Idade",
            "targetField": "idade",
            "sourceType": "number",
            "targetType": "inteiro",
            "confidence": 150,
        },
        {"sourceField": "Ativo"},
    ],
    "confidence": 85,
    "reasoning": "Nomes em snake_case",
}


# ===================
# SOURCE SCHEMA
# ===================

class TestSourceSchema:
    """Tests for infer_value_type() and infer_source_schema()"""

    @pytest.mark.parametrize("value,expected", [
        ("1", "boolean"),
        ("False", "boolean"),
        ("3.5", "number"),
        ("NaN", "string"),
        ("15/03/1985", "date"),
        ("2024-01-31", "date"),
        ("ana@example.com", "email"),
        ("Maria", "string"),
        ("", "string"),
        (None, "string"),
    ])
    def test_infer_value_type(self, value, expected):
        assert infer_value_type(value) == expected

    def test_infer_source_schema(self, sample_records):
        fields = {f.name: f for f in AIService().infer_source_schema(sample_records)}

        assert list(fields) == ["Nome", "Idade", "Ativo", "Nascimento"]
        assert fields["Nome"].type == "string"
        assert fields["Nome"].nullable is False
        assert fields["Idade"].type == "number"
        assert fields["Idade"].nullable is True
        assert fields["Idade"].examples == ["34", "41"]
        assert fields["Nascimento"].type == "date"

    def test_header_order_is_respected(self, sample_records):
        fields = AIService().infer_source_schema(sample_records, headers=["Ativo", "Nome"])

        assert [f.name for f in fields] == ["Ativo", "Nome"]

    def test_no_records(self):
        assert AIService().infer_source_schema([]) == []


# ===================
# FALLBACK
# ===================

class TestFallback:
    """Without an API key the basic mappings are used."""

    def test_not_available_without_key(self):
        assert AIService().available is False

    def test_fallback_mappings(self, sample_records):
        analysis = AIService().analyze_schema(sample_records)

        assert analysis.used_ai is False
        assert analysis.confidence == 30
        assert analysis.reasoning == FALLBACK_REASONING
        assert [m.target_field for m in analysis.suggested_mappings] == ["nome", "idade", "ativo", "nascimento"]
        assert analysis.target_schema[0].description == "Campo migrado de Nome"

    def test_use_ai_false_skips_client(self, client, sample_records):
        analysis = AIService(client=client).analyze_schema(sample_records, use_ai=False)

        client.messages.create.assert_not_called()
        assert analysis.used_ai is False

    def test_given_target_schema_is_kept(self, sample_records):
        target = [FieldSchema(name="nome_completo")]

        analysis = AIService().analyze_schema(sample_records, target_schema=target)

        assert analysis.target_schema == target


# ===================
# MODEL REPLIES
# ===================

class TestModelReplies:
    """Parsing of Claude replies"""

    def test_mappings_from_reply(self, client):
        client.messages.create.return_value = reply(MAPPING_REPLY)
        source = [FieldSchema(name="Nome"), FieldSchema(name="Idade", type="number")]

        analysis = AIService(client=client).generate_field_mappings(source)

        assert analysis.used_ai is True
        assert analysis.confidence == 85
        assert analysis.reasoning == "Nomes em snake_case"
        assert len(analysis.suggested_mappings) == 2
        nome, idade = analysis.suggested_mappings
        assert nome.target_field == "nome_completo"
        assert nome.confidence == 92
        assert idade.target_type == "string"
        assert idade.confidence == 100

    def test_prompt_describes_source(self, client):
        client.messages.create.return_value = reply(MAPPING_REPLY)
        source = [FieldSchema(name="Nome", examples=["Ana", "Bia"])]

        AIService(client=client).generate_field_mappings(source)

        prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "Nome: string (exemplos: Ana, Bia)" in prompt
        assert "Schema de destino não fornecido" in prompt

    def test_fenced_reply(self, client):
        client.messages.create.return_value = reply("```json\n" + json.dumps(MAPPING_REPLY) + "\n```")

        analysis = AIService(client=client).generate_field_mappings([FieldSchema(name="Nome")])

        assert analysis.used_ai is True

    def test_missing_confidence_defaults_to_50(self, client):
        client.messages.create.return_value = reply({
            "suggestedMappings": [{"sourceField": "Nome", "targetField": "nome"}],
        })

        analysis = AIService(client=client).generate_field_mappings([FieldSchema(name="Nome")])

        assert analysis.confidence == 50
        assert analysis.suggested_mappings[0].confidence == 50

    def test_non_numeric_confidence_defaults_to_50(self, client):
        client.messages.create.return_value = reply({
            "suggestedMappings": [{"sourceField": "Nome", "targetField": "nome", "confidence": "NaN"}],
            "confidence": "alta",
        })

        analysis = AIService(client=client).generate_field_mappings([FieldSchema(name="Nome")])

        assert analysis.confidence == 50
        assert analysis.suggested_mappings[0].confidence == 50

    def test_reply_without_json_falls_back(self, client):
        client.messages.create.return_value = reply("Não consegui analisar.")

        analysis = AIService(client=client).generate_field_mappings([FieldSchema(name="Nome Cliente")])

        assert analysis.used_ai is False
        assert analysis.suggested_mappings[0].target_field == "nome_cliente"

    def test_target_schema_from_reply(self, client):
        client.messages.create.return_value = reply({
            "fields": [
                {"name": "nome_completo", "type": "string", "nullable": False, "description": "Nome"},
                {"type": "number"},
            ],
        })

        fields = AIService(client=client).generate_target_schema([FieldSchema(name="Nome")])

        assert [f.name for f in fields] == ["nome_completo"]
        assert fields[0].nullable is False

    def test_empty_target_schema_falls_back(self, client):
        client.messages.create.return_value = reply({"fields": []})

        fields = AIService(client=client).generate_target_schema([FieldSchema(name="Valor (R$)")])

        assert fields[0].name == "valor__r__"

    def test_replies_are_cached(self, client):
        client.messages.create.return_value = reply(MAPPING_REPLY)
        source = [FieldSchema(name="Nome")]

        AIService(client=client).generate_field_mappings(source)
        AIService(client=client).generate_field_mappings(source)

        assert client.messages.create.call_count == 1

    def test_cache_can_be_disabled(self, client):
        client.messages.create.return_value = reply(MAPPING_REPLY)
        service = AIService(client=client, use_cache=False)

        service.generate_field_mappings([FieldSchema(name="Nome")])
        service.generate_field_mappings([FieldSchema(name="Nome")])

        assert client.messages.create.call_count == 2

    def test_singleton(self):
        assert get_ai_service() is get_ai_service()
