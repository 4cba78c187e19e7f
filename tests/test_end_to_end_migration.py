"""
End-to-end migration flow tests.

Drives one semicolon separated customer file through every step of the
API: upload -> analyze -> validate -> transform -> download -> publish,
then checks that a second upload of the same shape gets the published
mappings suggested back.

No AI key is configured, so analysis uses the basic mappings.
"""

import json

import pytest

# =====================
# HELPERS
# =====================


def upload(client, content: bytes, filename: str = "dados.csv", content_type: str = "text/csv"):
    return client.post(
        "/api/migration/upload",
        files={"file": (filename, content, content_type)},
    )


@pytest.fixture
def upload_id(test_client, sample_csv_bytes) -> str:
    response = upload(test_client, sample_csv_bytes)
    assert response.status_code == 200
    return response.json()["upload_id"]


@pytest.fixture
def analyzed(test_client, upload_id) -> str:
    response = test_client.post(f"/api/migration/uploads/{upload_id}/analyze", json={"use_ai": False})
    assert response.status_code == 200
    return upload_id


@pytest.fixture
def transformed(test_client, analyzed) -> str:
    response = test_client.post(f"/api/migration/uploads/{analyzed}/transform")
    assert response.status_code == 200
    return analyzed


# =====================
# UPLOAD
# =====================

class TestUpload:
    """POST /upload and the upload session routes"""

    def test_structure_is_detected(self, test_client, sample_csv_bytes):
        data = upload(test_client, sample_csv_bytes).json()

        assert data["filename"] == "dados.csv"
        assert data["structure"]["delimiter"] == ";"
        assert data["structure"]["has_header"] is True
        assert data["structure"]["headers"] == ["nome", "cpf", "email", "telefone", "data_nascimento", "valor"]
        assert data["structure"]["total_rows"] == 3
        assert len(data["columns"]) == 6
        assert data["preview"][0]["nome"] == "Maria Silva"
        assert data["analyzed"] is False

    def test_latin1_file(self, test_client, sample_csv):
        data = upload(test_client, sample_csv.encode("latin-1")).json()

        assert data["preview"][1]["nome"] == "João Souza"

    def test_rejected_file(self, test_client):
        response = upload(test_client, b"a,b\n1,2\n", filename="dados.txt", content_type="text/plain")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_UPLOAD"
        assert "Apenas arquivos .csv são aceitos" in response.json()["error"]["details"]["errors"]

    def test_empty_file(self, test_client):
        response = upload(test_client, b"")

        assert response.status_code == 422
        assert response.json()["error"]["details"]["errors"] == ["Arquivo vazio"]

    def test_get_upload(self, test_client, upload_id):
        response = test_client.get(f"/api/migration/uploads/{upload_id}")

        assert response.status_code == 200
        assert response.json()["upload_id"] == upload_id

    def test_unknown_upload(self, test_client):
        response = test_client.get("/api/migration/uploads/nao-existe")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "UPLOAD_NOT_FOUND"

    def test_delete_upload(self, test_client, upload_id):
        assert test_client.delete(f"/api/migration/uploads/{upload_id}").json()["success"] is True
        assert test_client.delete(f"/api/migration/uploads/{upload_id}").status_code == 404


# =====================
# ANALYZE & VALIDATE
# =====================

class TestAnalyze:
    """POST /uploads/{id}/analyze and /validate"""

    def test_analyze(self, test_client, upload_id):
        response = test_client.post(f"/api/migration/uploads/{upload_id}/analyze", json={"use_ai": False})

        data = response.json()
        mappings = data["analysis"]["suggested_mappings"]
        assert response.status_code == 200
        assert set(data["types"]) == {"nome", "cpf", "email", "telefone", "data_nascimento", "valor"}
        assert data["types"]["email"]["type"] == "email"
        assert "domain" in data["domain"]
        assert data["analysis"]["used_ai"] is False
        assert [m["target_field"] for m in mappings] == [
            "nome", "cpf", "email", "telefone", "data_nascimento", "valor",
        ]
        assert data["learned"]["suggestions"] == []
        assert data["schema"]["type"] == "object"

    def test_analyze_without_body(self, test_client, upload_id):
        response = test_client.post(f"/api/migration/uploads/{upload_id}/analyze")

        assert response.status_code == 200
        assert response.json()["analysis"]["used_ai"] is False

    def test_upload_is_marked_analyzed(self, test_client, analyzed):
        assert test_client.get(f"/api/migration/uploads/{analyzed}").json()["analyzed"] is True

    def test_validate(self, test_client, analyzed):
        response = test_client.post(f"/api/migration/uploads/{analyzed}/validate")

        data = response.json()
        assert response.status_code == 200
        assert data["summary"]["columns"] == 6
        assert data["summary"]["values"] == 18
        assert data["schema_validation"] is not None

    def test_validate_before_analyze(self, test_client, upload_id):
        response = test_client.post(f"/api/migration/uploads/{upload_id}/validate")

        assert response.status_code == 200
        assert response.json()["schema_validation"] is None


# =====================
# TRANSFORM & DOWNLOAD
# =====================

class TestTransform:
    """POST /uploads/{id}/transform and GET /download"""

    def test_transform_needs_mappings(self, test_client, upload_id):
        response = test_client.post(f"/api/migration/uploads/{upload_id}/transform")

        assert response.status_code == 422
        assert response.json()["error"]["details"]["next_step"] == "analyze"

    def test_transform_with_analyzed_mappings(self, test_client, analyzed):
        response = test_client.post(f"/api/migration/uploads/{analyzed}/transform")

        data = response.json()
        assert data["summary"]["total_rows"] == 3
        assert data["transformed_data"][0]["nome"] == "Maria Silva"

    def test_transform_with_given_mappings(self, test_client, upload_id):
        response = test_client.post(
            f"/api/migration/uploads/{upload_id}/transform",
            json={"mappings": [
                {"source_field": "nome", "target_field": "nome_completo"},
                {"source_field": "data_nascimento", "target_field": "nascimento", "target_type": "date"},
            ]},
        )

        row = response.json()["transformed_data"][0]
        assert row == {"nome_completo": "Maria Silva", "nascimento": "1985-03-15"}

    def test_non_finite_numbers_become_zero(self, test_client):
        upload_id = upload(test_client, b"nome;quantidade\nAna;NaN\nBia;12\nCris;inf\n").json()["upload_id"]

        response = test_client.post(
            f"/api/migration/uploads/{upload_id}/transform",
            json={"mappings": [{"source_field": "quantidade", "target_field": "quantidade", "target_type": "number"}]},
        )

        assert response.status_code == 200
        assert [r["quantidade"] for r in response.json()["transformed_data"]] == [0.0, 12.0, 0.0]

    def test_download_before_transform(self, test_client, analyzed):
        response = test_client.get(f"/api/migration/uploads/{analyzed}/download")

        assert response.status_code == 422
        assert response.json()["error"]["details"]["next_step"] == "transform"

    def test_download_csv(self, test_client, transformed):
        response = test_client.get(f"/api/migration/uploads/{transformed}/download")

        lines = response.text.splitlines()
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"].startswith('attachment; filename="dados_transformados_')
        assert lines[0].split(",")[0] == "nome"
        assert len(lines) == 4

    def test_download_json(self, test_client, transformed):
        response = test_client.get(f"/api/migration/uploads/{transformed}/download?format=json")

        assert len(json.loads(response.text)) == 3


# =====================
# PUBLISH & LEARN
# =====================

class TestPublish:
    """POST /uploads/{id}/publish and the learning loop"""

    def test_publish_file(self, test_client, transformed):
        response = test_client.post(
            f"/api/migration/uploads/{transformed}/publish",
            json={"target": "file", "format": "json"},
        )

        data = response.json()
        assert response.status_code == 200
        assert data["success"] is True
        assert data["records_published"] == 3
        assert data["details"]["file_name"].endswith(".json")
        assert data["pattern_id"] is not None

    def test_publish_rest_simulated(self, test_client, transformed):
        response = test_client.post(
            f"/api/migration/uploads/{transformed}/publish",
            json={"target": "rest-api"},
        )

        assert response.json()["details"]["simulated"] is True

    def test_publish_database(self, test_client, transformed):
        response = test_client.post(
            f"/api/migration/uploads/{transformed}/publish",
            json={
                "target": "database",
                "connection_string": "postgresql://u:p@localhost:5432/crm",
                "table_name": "clientes",
            },
        )

        data = response.json()
        assert data["success"] is True
        assert data["details"]["table_name"] == "clientes"

    def test_publish_database_without_connection(self, test_client, transformed):
        response = test_client.post(
            f"/api/migration/uploads/{transformed}/publish",
            json={"target": "database"},
        )

        assert response.status_code == 503
        assert response.json()["error"]["details"]["target"] == "database"

    def test_publish_before_transform(self, test_client, analyzed):
        response = test_client.post(f"/api/migration/uploads/{analyzed}/publish", json={"target": "file"})

        assert response.status_code == 422

    def test_published_mappings_are_suggested_again(self, test_client, transformed, sample_csv_bytes):
        published = test_client.post(
            f"/api/migration/uploads/{transformed}/publish",
            json={"target": "file"},
        ).json()

        second_id = upload(test_client, sample_csv_bytes).json()["upload_id"]
        analysis = test_client.post(
            f"/api/migration/uploads/{second_id}/analyze", json={"use_ai": False}
        ).json()

        assert analysis["learned"]["pattern_id"] == published["pattern_id"]
        assert len(analysis["learned"]["suggestions"]) == 6
        assert test_client.get("/api/learning/statistics").json()["total_patterns"] == 1


# =====================
# TOOLS
# =====================

class TestTools:
    """Schema export and database connection check"""

    def test_schema_export(self, test_client):
        schema = {"title": "Clientes", "type": "object", "properties": {"nome": {"type": "string"}}}

        response = test_client.post("/api/migration/schema/export", json={"schema": schema, "format": "json"})

        assert response.json()["format"] == "json"
        assert json.loads(response.json()["content"]) == schema

    def test_database_test(self, test_client):
        response = test_client.post(
            "/api/migration/database/test",
            json={"connection_string": "postgresql://u:p@localhost:5432/crm"},
        )

        data = response.json()
        assert data["success"] is True
        assert data["details"]["type"] == "postgresql"

    def test_database_test_bad_scheme(self, test_client):
        response = test_client.post(
            "/api/migration/database/test",
            json={"connection_string": "oracle://u:p@localhost:1521/crm"},
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
