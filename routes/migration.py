"""
Migration API routes.

The guided flow over one uploaded CSV:
upload -> analyze -> validate -> transform -> download / publish.
Uploads live in the in-memory session store until they expire.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional
from fastapi import APIRouter, Body, File, Query, UploadFile
from fastapi.responses import JSONResponse, Response
import structlog

from models.analysis import ColumnProfile, DataType
from models.migration import AnalyzeRequest, PublishRequest, SchemaExportRequest, TransformRequest
from parsers.csv_detector import analyze_columns, decode_csv_bytes, detect_csv_structure
from services import database_service
from services.ai_service import get_ai_service
from services.data_validator_service import get_data_validator
from services.domain_analyzer_service import get_domain_analyzer_service
from services.input_validator_service import (
    sanitize_connection_string,
    sanitize_filename,
    validate_csv_data,
    validate_database_connection,
    validate_upload,
)
from services.learning_service import StructureSignature, apply_suggestions, get_learning_service
from services.publisher_service import get_publisher_service, render
from services.schema_generator_service import get_schema_generator
from services.transformer_service import get_transformer_service
from services.type_inference_service import get_type_inference_service
from services.upload_session_service import delete_upload, require_upload, store_upload, update_upload
from exceptions import AppError, UploadNotFoundError, ValidationError

logger = structlog.get_logger(__name__)

router = APIRouter()

PREVIEW_ROWS = 5

DOWNLOAD_MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
}


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# HELPERS
# ===================

def _upload_summary(upload: dict[str, Any]) -> dict:
    structure = upload["structure"]
    return {
        "upload_id": upload["upload_id"],
        "filename": upload["filename"],
        "size": upload["size"],
        "created_at": upload["created_at"],
        "structure": structure.to_dict(),
        "columns": [c.to_dict() for c in upload["columns"]],
        "preview": upload["records"][:PREVIEW_ROWS],
        "analyzed": "analysis" in upload,
        "transformed": "transformation" in upload,
    }


def _column_types(upload: dict[str, Any]) -> dict:
    """Inferred types per header, computed once per upload."""
    types = upload.get("types")
    if types is None:
        structure = upload["structure"]
        types = get_type_inference_service().infer_columns(upload["records"], structure.headers)
        update_upload(upload["upload_id"], types=types)
    return types


def _column_profiles(upload: dict[str, Any], types: dict) -> list[ColumnProfile]:
    profiles = []
    for column in upload["columns"]:
        inferred = types.get(column.name)
        profiles.append(ColumnProfile(
            name=column.name,
            type=inferred.type if inferred else DataType.TEXTO_LIVRE,
            nullable=column.nullable,
            unique=column.unique,
            confidence=min(1.0, inferred.confidence) if inferred else 0.0,
            sample_values=column.sample_values,
        ))
    return profiles


def _require_transformation(upload: dict[str, Any]):
    result = upload.get("transformation")
    if result is None:
        raise ValidationError(
            "Nenhum dado transformado para este upload",
            details={"upload_id": upload["upload_id"], "next_step": "transform"},
        )
    return result


# ===================
# UPLOAD ROUTES
# ===================

@router.post("/upload")
async def upload_csv(file: UploadFile = File(...)):
    """
    Upload a CSV file.

    Detects delimiter, header and encoding, parses the rows and keeps
    them for the following steps.

    Returns:
        upload_id, detected structure, column summary and first rows
    """
    try:
        contents = await file.read()
        validate_upload(file.filename, len(contents), file.content_type)

        structure = detect_csv_structure(decode_csv_bytes(contents))
        validate_csv_data(structure.headers, structure.rows)
        columns = analyze_columns(structure)

        upload_id = store_upload({
            "filename": sanitize_filename(file.filename or ""),
            "size": len(contents),
            "structure": structure,
            "records": structure.to_records(),
            "columns": columns,
            "created_at": datetime.now(timezone.utc).isoformat(),
        })

        logger.info(
            "csv_uploaded",
            upload_id=upload_id,
            size=len(contents),
            rows=structure.total_rows,
            columns=structure.column_count,
            delimiter=structure.delimiter,
        )
        return _upload_summary(require_upload(upload_id))

    except Exception as e:
        return handle_error(e)


@router.get("/uploads/{upload_id}")
async def get_upload(upload_id: str):
    """Stored upload summary."""
    try:
        return _upload_summary(require_upload(upload_id))
    except Exception as e:
        return handle_error(e)


@router.delete("/uploads/{upload_id}")
async def remove_upload(upload_id: str):
    """Discard an upload before it expires."""
    try:
        if not delete_upload(upload_id):
            raise UploadNotFoundError(upload_id)
        logger.info("upload_deleted", upload_id=upload_id)
        return {"success": True, "upload_id": upload_id}
    except Exception as e:
        return handle_error(e)


# ===================
# ANALYSIS ROUTES
# ===================

@router.post("/uploads/{upload_id}/analyze")
async def analyze_upload(upload_id: str, request: Optional[AnalyzeRequest] = None):
    """
    Analyze an upload.

    Runs type inference per column, domain classification, AI mapping
    suggestions (or the basic mappings when use_ai is false), learned
    suggestions from similar uploads and JSON Schema generation.
    """
    request = request or AnalyzeRequest()
    try:
        upload = require_upload(upload_id)
        structure = upload["structure"]
        records = upload["records"]

        types = _column_types(upload)
        profiles = _column_profiles(upload, types)
        domain_result = get_domain_analyzer_service().analyze_domain(profiles, structure.sample)
        domain = domain_result.domain.value

        analysis = get_ai_service().analyze_schema(
            records,
            structure.headers,
            target_schema=request.target_schema,
            use_ai=request.use_ai,
        )

        learned = get_learning_service().suggest_mappings(
            records, StructureSignature.from_structure(structure), domain
        )
        mappings = apply_suggestions(analysis.suggested_mappings, learned)

        schema = get_schema_generator().generate_schema(records, profiles, domain_result, mappings=mappings)

        update_upload(
            upload_id,
            analysis=analysis,
            mappings=mappings,
            domain=domain,
            profiles=profiles,
            schema=schema,
        )

        logger.info(
            "upload_analyzed",
            upload_id=upload_id,
            domain=domain,
            mappings=len(mappings),
            learned=len(learned.suggestions),
            used_ai=analysis.used_ai,
        )
        return {
            "upload_id": upload_id,
            "types": {name: result.to_dict() for name, result in types.items()},
            "domain": domain_result.to_dict(),
            "analysis": {
                **analysis.to_dict(),
                "suggested_mappings": [m.model_dump() for m in mappings],
            },
            "learned": learned.to_dict(),
            "schema": schema,
        }

    except Exception as e:
        return handle_error(e)


@router.post("/uploads/{upload_id}/validate")
async def validate_upload_data(upload_id: str):
    """Validate every column against its inferred type."""
    try:
        upload = require_upload(upload_id)
        records = upload["records"]
        types = _column_types(upload)
        validator = get_data_validator()

        columns = []
        for name, inferred in types.items():
            report = validator.validate_column([r.get(name) for r in records], inferred.type, name)
            report.pop("results")
            columns.append(report)

        total = sum(c["total"] for c in columns)
        valid = sum(c["valid"] for c in columns)
        summary = {
            "columns": len(columns),
            "values": total,
            "valid": valid,
            "invalid": total - valid,
            "validity_rate": valid / total if total else 1.0,
        }

        schema = upload.get("schema")
        schema_report = get_schema_generator().validate_against_schema(records, schema) if schema else None

        logger.info("upload_validated", upload_id=upload_id, **summary)
        return {
            "upload_id": upload_id,
            "summary": summary,
            "columns": columns,
            "schema_validation": schema_report,
        }

    except Exception as e:
        return handle_error(e)


# ===================
# TRANSFORM ROUTES
# ===================

@router.post("/uploads/{upload_id}/transform")
async def transform_upload(upload_id: str, request: Optional[TransformRequest] = None):
    """
    Apply mappings to the upload.

    Uses the mappings in the body, else the ones suggested by analyze.
    """
    request = request or TransformRequest()
    try:
        upload = require_upload(upload_id)
        mappings = request.mappings if request.mappings is not None else upload.get("mappings")
        if mappings is None:
            raise ValidationError(
                "Nenhum mapeamento disponível; analise o upload primeiro",
                details={"upload_id": upload_id, "next_step": "analyze"},
            )

        result = get_transformer_service().transform_data(upload["records"], mappings)
        update_upload(upload_id, transformation=result, mappings=list(mappings))

        return {"upload_id": upload_id, **result.to_dict(preview_only=True)}

    except Exception as e:
        return handle_error(e)


@router.get("/uploads/{upload_id}/download")
async def download_upload(upload_id: str, format: Literal["csv", "json"] = Query("csv")):
    """Transformed data as a file attachment."""
    try:
        result = _require_transformation(require_upload(upload_id))
        content = render(result, format)
        filename = f"dados_transformados_{upload_id[:8]}.{format}"
        return Response(
            content=content,
            media_type=DOWNLOAD_MEDIA_TYPES[format],
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    except Exception as e:
        return handle_error(e)


@router.post("/uploads/{upload_id}/publish")
async def publish_upload(upload_id: str, request: PublishRequest):
    """
    Publish transformed data to a REST API, a database or a file.

    A successful publish teaches the learning service the mappings used,
    so similar uploads get them suggested.
    """
    try:
        upload = require_upload(upload_id)
        result = _require_transformation(upload)

        published = get_publisher_service().publish(result, request)

        pattern_id = None
        if published.success and upload.get("mappings"):
            pattern_id = get_learning_service().learn_pattern(
                upload["records"],
                StructureSignature.from_structure(upload["structure"]),
                upload["mappings"],
                upload.get("domain") or "generico",
            )

        return {**published.to_dict(), "pattern_id": pattern_id}

    except Exception as e:
        return handle_error(e)


# ===================
# TOOL ROUTES
# ===================

@router.post("/schema/export")
async def export_schema(request: SchemaExportRequest):
    """Render a JSON Schema as json, typescript or markdown documentation."""
    try:
        content = get_schema_generator().export_schema(request.json_schema, request.format)
        return {"format": request.format, "content": content}
    except Exception as e:
        return handle_error(e)


@router.post("/database/test")
async def test_database_connection(payload: dict = Body(...)):
    """
    Check a database connection string.

    Only the format is verified; the response names the driver needed.
    """
    try:
        connection = validate_database_connection(payload)
        result = database_service.test_connection(connection.connection_string)
        logger.info(
            "database_connection_tested",
            connection=sanitize_connection_string(connection.connection_string),
            success=result["success"],
        )
        return result
    except Exception as e:
        return handle_error(e)
