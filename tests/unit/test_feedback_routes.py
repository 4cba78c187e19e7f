"""
Unit tests for the feedback and learning routes.

Run: pytest tests/unit/test_feedback_routes.py -v
"""

import pytest

from models.migration import FieldMapping
from services.learning_service import StructureSignature, get_learning_service


@pytest.fixture
def pattern_id(sample_records) -> str:
    """One learned pattern for the sample records."""
    structure = StructureSignature(column_count=4, has_header=True, delimiter=";", encoding="utf-8", row_count=3)
    return get_learning_service().learn_pattern(
        sample_records,
        structure,
        [FieldMapping(source_field="Nome", target_field="nome", confidence=80)],
        "cadastral",
    )


# ===================
# FEEDBACK
# ===================

class TestSubmitFeedback:
    """Tests for POST /api/feedback"""

    def test_submit(self, test_client):
        response = test_client.post("/api/feedback", json={
            "feedback_type": "domain_detection",
            "original": "cadastral",
            "correction": {"corrected_domain": "financeiro"},
            "context": {"file_name": "dados.csv", "detected_fields": ["valor"]},
        })

        data = response.json()
        assert response.status_code == 200
        assert data["success"] is True
        assert data["feedback_id"].startswith("feedback_")
        assert data["pattern_updated"] is False
        assert data["suggestions"] == []

    def test_unknown_type(self, test_client):
        response = test_client.post("/api/feedback", json={"feedback_type": "desconhecido"})

        assert response.status_code == 422

    def test_confidence_out_of_range(self, test_client):
        response = test_client.post("/api/feedback", json={"feedback_type": "field_mapping", "confidence": 2})

        assert response.status_code == 422

    def test_updates_learned_pattern(self, test_client, pattern_id):
        response = test_client.post("/api/feedback", json={
            "feedback_type": "field_mapping",
            "pattern_id": pattern_id,
            "source_field": "Nome",
            "success": False,
            "corrected_mapping": {"source_field": "Nome", "target_field": "razao_social"},
        })

        assert response.json()["pattern_updated"] is True
        assert get_learning_service().get_pattern(pattern_id).mappings[0].target_field == "razao_social"

    def test_unknown_pattern(self, test_client):
        response = test_client.post("/api/feedback", json={
            "feedback_type": "field_mapping",
            "pattern_id": "nao-existe",
            "source_field": "Nome",
            "success": True,
        })

        assert response.json()["pattern_updated"] is False


class TestFeedbackReports:
    """Tests for GET /api/feedback/metrics and /analytics"""

    def test_metrics(self, test_client):
        test_client.post("/api/feedback", json={"feedback_type": "validation_rule", "correction": {"rule": "cpf"}})

        assert test_client.get("/api/feedback/metrics").json()["total_feedback"] == 1

    def test_analytics(self, test_client):
        test_client.post("/api/feedback", json={"feedback_type": "validation_rule", "correction": {"rule": "cpf"}})

        data = test_client.get("/api/feedback/analytics?period=7d").json()

        assert data["period"] == "7d"
        assert data["top_issues"][0]["type"] == "validation_rule"

    def test_bad_period(self, test_client):
        assert test_client.get("/api/feedback/analytics?period=semana").status_code == 422


# ===================
# LEARNING
# ===================

class TestLearningRoutes:
    """Tests for /api/learning"""

    def test_statistics(self, test_client, pattern_id):
        data = test_client.get("/api/learning/statistics").json()

        assert data["total_patterns"] == 1
        assert data["domain_distribution"] == {"cadastral": 1}

    def test_export_and_import(self, test_client, pattern_id):
        exported = test_client.get("/api/learning/patterns").json()
        assert exported["total"] == 1

        get_learning_service().clear()
        response = test_client.post("/api/learning/patterns", json=exported["patterns"])

        assert response.json() == {"success": True, "imported": 1}
        assert get_learning_service().get_pattern(pattern_id) is not None

    def test_import_invalid(self, test_client):
        response = test_client.post("/api/learning/patterns", json=[{"id": "x"}])

        assert response.status_code == 422
        assert response.json()["error"]["message"] == "Padrão de aprendizado inválido"
