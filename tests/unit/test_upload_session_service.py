"""
Unit tests for the upload session store.

Run: pytest tests/unit/test_upload_session_service.py -v
"""

from datetime import datetime, timedelta

import pytest

from services import upload_session_service
from services.upload_session_service import (
    active_uploads,
    delete_upload,
    require_upload,
    retrieve_upload,
    store_upload,
    update_upload,
)
from exceptions import UploadNotFoundError


def expire(upload_id: str) -> None:
    """Move an upload's expiry into the past."""
    _, data = upload_session_service._cache[upload_id]
    upload_session_service._cache[upload_id] = (datetime.now() - timedelta(seconds=1), data)


class TestUploadSessions:
    """Tests for store/retrieve/update/delete"""

    def test_store_and_retrieve(self):
        upload_id = store_upload({"filename": "dados.csv"})

        data = retrieve_upload(upload_id)

        assert data["filename"] == "dados.csv"
        assert data["upload_id"] == upload_id

    def test_unknown_id(self):
        assert retrieve_upload("nao-existe") is None

    def test_require_raises(self):
        with pytest.raises(UploadNotFoundError) as exc_info:
            require_upload("nao-existe")

        assert exc_info.value.status_code == 404
        assert exc_info.value.code == "UPLOAD_NOT_FOUND"

    def test_update_merges_fields(self):
        upload_id = store_upload({"filename": "dados.csv"})

        update_upload(upload_id, mappings=["m"])

        assert retrieve_upload(upload_id)["mappings"] == ["m"]
        assert retrieve_upload(upload_id)["filename"] == "dados.csv"

    def test_update_unknown_raises(self):
        with pytest.raises(UploadNotFoundError):
            update_upload("nao-existe", mappings=[])

    def test_delete(self):
        upload_id = store_upload({})

        assert delete_upload(upload_id) is True
        assert delete_upload(upload_id) is False
        assert retrieve_upload(upload_id) is None

    def test_expired_upload_is_gone(self):
        upload_id = store_upload({})
        expire(upload_id)

        assert retrieve_upload(upload_id) is None
        with pytest.raises(UploadNotFoundError):
            update_upload(upload_id, mappings=[])

    def test_active_uploads_skips_expired(self):
        store_upload({})
        expired_id = store_upload({})
        expire(expired_id)

        assert active_uploads() == 1
