"""
Input validation and sanitization.

Upload checks (name, extension, size, content type), CSV size limits,
request model validation and the sanitizers used before values reach
logs, file names or SQL identifiers.
"""

import html
import re
from pathlib import PurePath
from typing import Any, Optional
import structlog
from pydantic import ValidationError as PydanticValidationError

from config import settings
from exceptions import InvalidUploadError, ValidationError
from models.validation import ApiKeyConfig, DatabaseConnectionRequest, FeedbackRequest

logger = structlog.get_logger(__name__)

FILE_NAME = re.compile(r"^[a-zA-Z0-9._\- ]+$")
MAX_FILE_NAME = 255

# Browsers often send these for .csv files
CSV_FALLBACK_TYPES = {"application/vnd.ms-excel", "application/octet-stream"}

MAX_HEADERS = 100
MAX_HEADER_LENGTH = 100
MAX_ROWS = 10000
MAX_CELL_LENGTH = 10000

MAX_CONNECTION_STRING = 1000
MAX_TABLE_NAME = 64

CREDENTIALS = re.compile(r"(://[^:/@]+:)([^@]+)(@)")


# ===================
# UPLOADS
# ===================

def upload_errors(filename: Optional[str], size: int, content_type: Optional[str]) -> list[str]:
    """Every rule the upload breaks, in Portuguese. Empty when valid."""
    errors = []
    name = filename or ""

    if not name:
        errors.append("Nome do arquivo é obrigatório")
    elif len(name) > MAX_FILE_NAME or not FILE_NAME.match(name):
        errors.append("Nome do arquivo contém caracteres inválidos")

    is_csv = PurePath(name).suffix.lower() == ".csv"
    if name and not is_csv:
        errors.append("Apenas arquivos .csv são aceitos")

    if size <= 0:
        errors.append("Arquivo vazio")
    elif size > settings.max_file_size:
        errors.append(f"Arquivo excede o tamanho máximo de {settings.max_file_size} bytes")

    media_type = (content_type or "").split(";")[0].strip().lower()
    allowed = {t.lower() for t in settings.allowed_file_types_list}
    if media_type not in allowed and not (is_csv and media_type in CSV_FALLBACK_TYPES):
        errors.append("Tipo de arquivo não permitido")

    return errors


def validate_upload(filename: Optional[str], size: int, content_type: Optional[str]) -> None:
    """
    Raises:
        InvalidUploadError: With every broken rule listed in details
    """
    errors = upload_errors(filename, size, content_type)
    if errors:
        logger.warning("upload_rejected", filename=sanitize_filename(filename or ""), size=size, errors=errors)
        raise InvalidUploadError("Arquivo inválido", errors=errors)


def validate_csv_data(headers: list[str], rows: list[list[str]]) -> None:
    """
    Limits on parsed CSV content.

    Raises:
        InvalidUploadError: Too many headers or rows, or an oversized cell
    """
    errors = []
    if not headers:
        errors.append("Arquivo sem colunas")
    if len(headers) > MAX_HEADERS:
        errors.append(f"Máximo de {MAX_HEADERS} colunas permitido")
    if any(len(h) > MAX_HEADER_LENGTH for h in headers):
        errors.append(f"Nome de coluna excede {MAX_HEADER_LENGTH} caracteres")
    if len(rows) > MAX_ROWS:
        errors.append(f"Máximo de {MAX_ROWS} linhas permitido")

    for row_index, row in enumerate(rows):
        oversized = next((i for i, cell in enumerate(row) if len(cell) > MAX_CELL_LENGTH), None)
        if oversized is not None:
            errors.append(f"Célula [{row_index}][{oversized}] excede o tamanho máximo")
            break

    if errors:
        raise InvalidUploadError("Dados CSV inválidos", errors=errors)


def validate_request_size(content_length: Optional[int]) -> bool:
    return content_length is None or content_length <= settings.max_request_size


# ===================
# MODELS
# ===================

def _parse(model, data: dict):
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"], "code": err["type"]}
            for err in e.errors()
        ]
        raise ValidationError("Dados de entrada inválidos", details={"errors": errors}) from e


def validate_database_connection(data: dict[str, Any]) -> DatabaseConnectionRequest:
    """Sanitize then validate a connection request."""
    data = dict(data)
    if isinstance(data.get("connection_string"), str):
        data["connection_string"] = sanitize_connection_string(data["connection_string"], mask_password=False)
    if isinstance(data.get("table_name"), str):
        data["table_name"] = sanitize_table_name(data["table_name"]) or None
    return _parse(DatabaseConnectionRequest, data)


def validate_api_key(data: dict[str, Any]) -> ApiKeyConfig:
    return _parse(ApiKeyConfig, data)


def validate_feedback(data: dict[str, Any]) -> FeedbackRequest:
    return _parse(FeedbackRequest, data)


# ===================
# SANITIZERS
# ===================

def sanitize_html(value: str, max_length: int = 1000) -> str:
    """Trim, truncate and escape <>"'& as HTML entities."""
    return html.escape(str(value).strip()[:max_length], quote=True)


def sanitize_filename(filename: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", filename)
    cleaned = re.sub(r"_{2,}", "_", cleaned)
    return cleaned[:MAX_FILE_NAME]


def sanitize_table_name(table_name: str) -> str:
    """Lowercase SQL identifier: letters, digits and underscores, no leading digit."""
    cleaned = re.sub(r"[^a-z0-9_]", "_", table_name.lower())
    cleaned = re.sub(r"^[0-9_]+", "", cleaned)
    cleaned = re.sub(r"_{2,}", "_", cleaned)
    return cleaned[:MAX_TABLE_NAME]


def sanitize_connection_string(connection_string: str, mask_password: bool = True) -> str:
    """
    Strip control characters and truncate. With mask_password the
    password is replaced by **** so the result is safe to log.
    """
    cleaned = re.sub(r"[\r\n\t]", "", connection_string.strip())[:MAX_CONNECTION_STRING]
    if mask_password:
        cleaned = CREDENTIALS.sub(r"\1****\3", cleaned)
    return cleaned

