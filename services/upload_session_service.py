"""
Temporary storage for uploaded CSV files.
Stores parsed uploads in memory with TTL expiration between the
analyze, transform and publish steps.
Single process only.
"""
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from config import settings
from exceptions import UploadNotFoundError

_cache: dict[str, tuple[datetime, dict[str, Any]]] = {}
_lock = threading.Lock()


def store_upload(data: dict[str, Any], ttl_minutes: Optional[int] = None) -> str:
    """Store parsed upload, return upload_id."""
    upload_id = str(uuid.uuid4())
    expires_at = datetime.now() + timedelta(minutes=ttl_minutes or settings.upload_ttl_minutes)
    with _lock:
        _cache[upload_id] = (expires_at, dict(data, upload_id=upload_id))
        _cleanup_expired()
    return upload_id


def retrieve_upload(upload_id: str) -> Optional[dict[str, Any]]:
    """Retrieve upload by id. Returns None if expired/not found."""
    with _lock:
        entry = _cache.get(upload_id)
        if entry is None:
            return None
        expires_at, data = entry
        if datetime.now() > expires_at:
            del _cache[upload_id]
            return None
        return data


def require_upload(upload_id: str) -> dict[str, Any]:
    """Like retrieve_upload but raises UploadNotFoundError."""
    data = retrieve_upload(upload_id)
    if data is None:
        raise UploadNotFoundError(upload_id)
    return data


def update_upload(upload_id: str, **fields: Any) -> dict[str, Any]:
    """Merge fields into a stored upload. Expiry is unchanged."""
    with _lock:
        entry = _cache.get(upload_id)
        if entry is None or datetime.now() > entry[0]:
            _cache.pop(upload_id, None)
            raise UploadNotFoundError(upload_id)
        entry[1].update(fields)
        return entry[1]


def delete_upload(upload_id: str) -> bool:
    """Remove upload. Returns False if it was not stored."""
    with _lock:
        return _cache.pop(upload_id, None) is not None


def active_uploads() -> int:
    with _lock:
        _cleanup_expired()
        return len(_cache)


def clear_uploads() -> None:
    with _lock:
        _cache.clear()


def _cleanup_expired() -> None:
    """Remove all expired entries. Caller holds the lock."""
    now = datetime.now()
    expired = [k for k, (exp, _) in _cache.items() if now > exp]
    for k in expired:
        del _cache[k]
