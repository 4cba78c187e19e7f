"""
Shared test fixtures.

Every test starts with fresh service singletons, empty caches, no
stored uploads and no AI key configured.
"""

import sys
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest

from config import settings

import services.ai_service as ai_service
import services.cache_service as cache_service
import services.data_validator_service as data_validator_service
import services.domain_analyzer_service as domain_analyzer_service
import services.error_monitor_service as error_monitor_service
import services.feedback_service as feedback_service
import services.learning_service as learning_service
import services.performance_metrics_service as performance_metrics_service
import services.publisher_service as publisher_service
import services.schema_generator_service as schema_generator_service
import services.transformer_service as transformer_service
import services.type_inference_service as type_inference_service
from services.rate_limiter import reset_rate_limiters
from services.upload_session_service import clear_uploads

SINGLETONS = [
    (ai_service, "_ai_service"),
    (cache_service, "_cache_manager"),
    (data_validator_service, "_data_validator"),
    (domain_analyzer_service, "_domain_analyzer_service"),
    (error_monitor_service, "_error_monitor"),
    (feedback_service, "_feedback_service"),
    (learning_service, "_learning_service"),
    (performance_metrics_service, "_metrics_service"),
    (publisher_service, "_publisher_service"),
    (schema_generator_service, "_schema_generator"),
    (transformer_service, "_transformer_service"),
    (type_inference_service, "_type_inference_service"),
]


# ===================
# ISOLATION
# ===================

@pytest.fixture(autouse=True)
def reset_state(monkeypatch):
    """Fresh singletons and in-memory stores for every test."""
    monkeypatch.setattr(settings, "anthropic_api_key", None)
    monkeypatch.setattr(settings, "output_dir", None)
    for module, attr in SINGLETONS:
        monkeypatch.setattr(module, attr, None)
    reset_rate_limiters()
    clear_uploads()
    yield
    reset_rate_limiters()
    clear_uploads()


# ===================
# SAMPLE DATA
# ===================

@pytest.fixture
def sample_csv() -> str:
    """Semicolon separated customer file with Brazilian formats."""
    return (
        "nome;cpf;email;telefone;data_nascimento;valor\n"
        "Maria Silva;529.982.247-25;maria@example.com;(11) 98765-4321;15/03/1985;R$ 1.234,56\n"
        "João Souza;111.444.777-35;joao@example.com;(21) 91234-5678;02/11/1990;R$ 980,00\n"
        "Ana Lima;390.533.447-05;ana@example.com;(31) 99876-5432;28/07/1978;R$ 15,90\n"
    )


@pytest.fixture
def sample_csv_bytes(sample_csv) -> bytes:
    return sample_csv.encode("utf-8")


@pytest.fixture
def sample_records() -> list[dict]:
    return [
        {"Nome": "Maria Silva", "Idade": "34", "Ativo": "sim", "Nascimento": "15/03/1985"},
        {"Nome": "João Souza", "Idade": "41", "Ativo": "não", "Nascimento": "02/11/1990"},
        {"Nome": "Ana Lima", "Idade": "", "Ativo": "1", "Nascimento": "28/07/1978"},
    ]


@pytest.fixture
def test_client():
    """
    FastAPI test client.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/api/health-check")
    """
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
