"""
Unit tests for LearningService.

Run: pytest tests/unit/test_learning_service.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from models.migration import FieldMapping
from services.learning_service import (
    LearningService,
    MappingSuggestion,
    StructureSignature,
    SuggestionResult,
    apply_suggestions,
    column_similarity,
    get_learning_service,
    type_similarity,
)


class FakeClock:
    """UTC datetime clock that only moves when told to."""

    def __init__(self):
        self.now = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(clock):
    return LearningService(clock=clock)


@pytest.fixture
def structure():
    return StructureSignature(column_count=4, has_header=True, delimiter=";", encoding="utf-8", row_count=3)


@pytest.fixture
def mappings():
    return [
        FieldMapping(source_field="Nome", target_field="nome", confidence=80),
        FieldMapping(source_field="Idade", target_field="idade", target_type="number", confidence=60),
    ]


# ===================
# SIMILARITY
# ===================

class TestSimilarity:
    """Tests for the similarity helpers"""

    def test_column_similarity_ignores_case(self):
        assert column_similarity(["Nome", "CPF"], ["nome", "cpf"]) == 1.0

    def test_column_similarity_jaccard(self):
        assert column_similarity(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)

    def test_column_similarity_empty(self):
        assert column_similarity([], []) == 0.0

    def test_type_similarity_over_longer_list(self):
        assert type_similarity(["string", "integer"], ["string", "integer", "date", "boolean"]) == 0.5

    def test_structure_similarity(self, structure):
        other = StructureSignature(column_count=4, has_header=False, delimiter=",", encoding="utf-8", row_count=9)

        assert structure.similarity(other) == pytest.approx(1 / 3)


# ===================
# LEARNING
# ===================

class TestLearnPattern:
    """Tests for learn_pattern()"""

    def test_new_pattern(self, service, sample_records, structure, mappings):
        pattern_id = service.learn_pattern(sample_records, structure, mappings, "cadastral")

        pattern = service.get_pattern(pattern_id)
        assert len(pattern_id) == 12
        assert pattern.confidence == 0.7
        assert pattern.usage_count == 1
        assert pattern.source.column_names == ["Nome", "Idade", "Ativo", "Nascimento"]
        assert len(pattern.source.data_types) == 4

    def test_same_shape_is_reinforced(self, service, sample_records, structure, mappings):
        first = service.learn_pattern(sample_records, structure, mappings, "cadastral")
        second = service.learn_pattern(sample_records, structure, mappings, "cadastral")

        pattern = service.get_pattern(first)
        assert second == first
        assert pattern.usage_count == 2
        assert pattern.confidence == pytest.approx(0.8)
        assert pattern.mappings[0].confidence == 90

    def test_changed_target_is_merged(self, service, sample_records, structure, mappings):
        pattern_id = service.learn_pattern(sample_records, structure, mappings, "cadastral")

        service.learn_pattern(
            sample_records,
            structure,
            [FieldMapping(source_field="Nome", target_field="nome_completo", confidence=70)],
            "cadastral",
        )

        mapping = service.get_pattern(pattern_id).mappings[0]
        assert mapping.target_field == "nome_completo"
        assert mapping.reasoning == "Atualizado baseado em feedback do usuário"

    def test_different_domain_is_new_pattern(self, service, sample_records, structure, mappings):
        first = service.learn_pattern(sample_records, structure, mappings, "cadastral")
        second = service.learn_pattern(sample_records, structure, mappings, "rh")

        assert first != second
        assert service.get_statistics()["total_patterns"] == 2

    def test_capacity_drops_oldest(self, clock, sample_records, structure, mappings):
        service = LearningService(max_patterns=1, clock=clock)
        service.learn_pattern(sample_records, structure, mappings, "cadastral")
        clock.now += timedelta(days=1)

        newest = service.learn_pattern(sample_records, structure, mappings, "rh")

        assert [p["id"] for p in service.export_patterns()] == [newest]


class TestSuggestMappings:
    """Tests for suggest_mappings()"""

    def test_empty_history(self, service, sample_records, structure):
        result = service.suggest_mappings(sample_records, structure, "cadastral")

        assert result.suggestions == []
        assert result.confidence == 0.0
        assert result.reasoning == "Nenhum padrão similar encontrado no histórico"

    def test_identical_file(self, service, sample_records, structure, mappings):
        pattern_id = service.learn_pattern(sample_records, structure, mappings, "cadastral")

        result = service.suggest_mappings(sample_records, structure, "cadastral")

        assert result.pattern_id == pattern_id
        assert result.confidence == pytest.approx(1.0)
        assert [s.target_field for s in result.suggestions] == ["nome", "idade"]
        assert result.suggestions[0].confidence == pytest.approx(56.0)
        assert result.suggestions[0].examples == ["Maria Silva", "João Souza", "Ana Lima"]
        assert result.suggestions[1].examples == ["34", "41"]
        assert "100% de similaridade" in result.reasoning
        assert "Domínio: cadastral." in result.reasoning

    def test_column_case_differences(self, service, sample_records, structure, mappings):
        service.learn_pattern(sample_records, structure, mappings, "cadastral")
        lowered = [{k.lower(): v for k, v in row.items()} for row in sample_records]

        result = service.suggest_mappings(lowered, structure, "cadastral")

        assert [s.source_field for s in result.suggestions] == ["nome", "idade"]

    def test_unrelated_file(self, service, sample_records, structure, mappings):
        service.learn_pattern(sample_records, structure, mappings, "cadastral")
        other = StructureSignature(column_count=1, has_header=False, delimiter=",", encoding="utf-8", row_count=1)

        result = service.suggest_mappings([{"produto": "Piso 60x60"}], other, "estoque")

        assert result.suggestions == []
        assert result.pattern_id is None

    def test_to_dict(self, service, sample_records, structure, mappings):
        service.learn_pattern(sample_records, structure, mappings, "cadastral")

        data = service.suggest_mappings(sample_records, structure, "cadastral").to_dict()

        assert set(data) == {"pattern_id", "suggestions", "confidence", "reasoning", "alternatives"}
        assert data["suggestions"][0]["confidence"] == 56.0


class TestRecordFeedback:
    """Tests for record_feedback()"""

    def test_unknown_pattern(self, service):
        assert service.record_feedback("nao-existe", "Nome", True) is False

    def test_success(self, service, sample_records, structure, mappings):
        pattern_id = service.learn_pattern(sample_records, structure, mappings, "cadastral")

        assert service.record_feedback(pattern_id, "Nome", True) is True

        pattern = service.get_pattern(pattern_id)
        assert pattern.confidence == pytest.approx(0.75)
        assert pattern.success_rate == 1.0

    def test_failure_with_correction(self, service, sample_records, structure, mappings):
        pattern_id = service.learn_pattern(sample_records, structure, mappings, "cadastral")
        correction = FieldMapping(source_field="Nome", target_field="razao_social", confidence=20)

        service.record_feedback(pattern_id, "Nome", False, correction)

        pattern = service.get_pattern(pattern_id)
        assert pattern.confidence == pytest.approx(0.6)
        assert pattern.success_rate == 0.0
        assert pattern.mappings[0].target_field == "razao_social"
        assert pattern.mappings[0].confidence == 50.0
        assert pattern.mappings[0].reasoning == "Corrigido pelo usuário"


# ===================
# MAINTENANCE
# ===================

class TestMaintenance:
    """Tests for statistics, export/import and cleanup"""

    def test_empty_statistics(self, service):
        stats = service.get_statistics()

        assert stats["total_patterns"] == 0
        assert stats["most_used_patterns"] == []

    def test_statistics(self, service, sample_records, structure, mappings):
        pattern_id = service.learn_pattern(sample_records, structure, mappings, "cadastral")

        stats = service.get_statistics()

        assert stats["total_patterns"] == 1
        assert stats["average_confidence"] == 0.7
        assert stats["domain_distribution"] == {"cadastral": 1}
        assert stats["most_used_patterns"][0]["id"] == pattern_id
        assert stats["recent_activity"] == 1

    def test_export_import(self, service, clock, sample_records, structure, mappings):
        pattern_id = service.learn_pattern(sample_records, structure, mappings, "cadastral")
        exported = service.export_patterns()

        other = LearningService(clock=clock)
        assert other.import_patterns(exported) == 1

        restored = other.get_pattern(pattern_id)
        assert restored.mappings == service.get_pattern(pattern_id).mappings
        assert restored.source.structure == structure
        assert restored.last_used == clock.now

    def test_cleanup_unused(self, service, clock, sample_records, structure, mappings):
        service.learn_pattern(sample_records, structure, mappings, "cadastral")
        clock.now += timedelta(days=91)

        assert service.cleanup_patterns() == 1
        assert service.export_patterns() == []

    def test_cleanup_low_confidence(self, service, sample_records, structure, mappings):
        pattern_id = service.learn_pattern(sample_records, structure, mappings, "cadastral")
        service.get_pattern(pattern_id).confidence = 0.2

        assert service.cleanup_patterns() == 1

    def test_cleanup_keeps_good_patterns(self, service, sample_records, structure, mappings):
        service.learn_pattern(sample_records, structure, mappings, "cadastral")

        assert service.cleanup_patterns() == 0

    def test_clear(self, service, sample_records, structure, mappings):
        service.learn_pattern(sample_records, structure, mappings, "cadastral")

        service.clear()

        assert service.export_patterns() == []

    def test_singleton(self):
        assert get_learning_service() is get_learning_service()


# ===================
# MERGING
# ===================

class TestApplySuggestions:
    """Tests for apply_suggestions()"""

    def suggestion(self, source, target, confidence):
        return MappingSuggestion(
            source_field=source,
            target_field=target,
            target_type="string",
            transformation=None,
            confidence=confidence,
            reasoning=None,
            examples=[],
        )

    def test_merge(self):
        mappings = [
            FieldMapping(source_field="Nome", target_field="nome", confidence=50),
            FieldMapping(source_field="Idade", target_field="idade", target_type="number", confidence=90),
        ]
        learned = SuggestionResult(
            suggestions=[
                self.suggestion("Nome", "nome_completo", 56),
                self.suggestion("Idade", "anos", 42),
                self.suggestion("Cidade", "cidade", 70),
            ],
            confidence=0.9,
            reasoning="Padrão aprendido",
        )

        merged = apply_suggestions(mappings, learned)

        assert [m.target_field for m in merged] == ["nome_completo", "idade", "cidade"]
        assert merged[0].reasoning == "Padrão aprendido"
        assert merged[1].target_type == "number"

    def test_no_suggestions(self):
        mappings = [FieldMapping(source_field="Nome", target_field="nome")]

        merged = apply_suggestions(mappings, SuggestionResult(suggestions=[], confidence=0.0, reasoning=""))

        assert merged == mappings
