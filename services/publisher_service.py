"""
Output publishing for transformed data.

Targets:
    rest-api  POST the rows as one JSON batch
    database  CREATE TABLE + batched INSERT statements
    file      JSON, CSV or XML document, optionally written to disk
"""

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from xml.sax.saxutils import escape
import requests
import structlog

from config import settings
from exceptions import PublishError, ValidationError
from models.migration import PublishRequest
from services import database_service
from services.transformer_service import TransformationResult, get_transformer_service

logger = structlog.get_logger(__name__)

PREVIEW_ROWS = 3
REQUEST_TIMEOUT = 30


@dataclass
class PublishResult:
    success: bool
    target: str
    records_published: int
    message: str
    details: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "success": self.success,
            "target": self.target,
            "records_published": self.records_published,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


def _batch_id() -> str:
    return f"batch_{int(time.time() * 1000)}"


def render(result: TransformationResult, fmt: str, limit: Optional[int] = None) -> str:
    """Render rows as json, csv or xml. limit keeps only the first rows."""
    rows = result.transformed_data if limit is None else result.transformed_data[:limit]
    fields = [f.name for f in result.target_schema]

    if fmt == "json":
        return json.dumps(rows, indent=2, ensure_ascii=False, default=str)

    if fmt == "csv":
        partial = TransformationResult(transformed_data=rows, target_schema=result.target_schema)
        return get_transformer_service().to_csv(partial)

    if fmt == "xml":
        lines = ['<?xml version="1.0" encoding="UTF-8"?>', "<data>"]
        for row in rows:
            lines.append("  <record>")
            for name in fields:
                value = row.get(name)
                text = "" if value is None else escape(str(value))
                lines.append(f"    <{name}>{text}</{name}>")
            lines.append("  </record>")
        lines.append("</data>")
        return "\n".join(lines)

    raise ValidationError(f"Formato não suportado: {fmt}", details={"supported": ["json", "csv", "xml"]})


class PublisherService:
    """Publishes a transformation result to the configured target."""

    def __init__(self, output_dir: Optional[str] = None):
        self.output_dir = output_dir if output_dir is not None else settings.output_dir

    def publish(self, result: TransformationResult, config: PublishRequest) -> PublishResult:
        """
        Send transformed data to a target.

        Raises:
            PublishError: If the REST endpoint rejects the batch or the
                database target has no connection string
            InvalidConnectionStringError: If the connection string does not parse
        """
        logger.info("publish_started", target=config.target, rows=len(result.transformed_data))

        if config.target == "rest-api":
            published = self._publish_rest(result, config)
        elif config.target == "database":
            published = self._publish_database(result, config)
        else:
            published = self._publish_file(result, config)

        logger.info(
            "publish_completed",
            target=config.target,
            records=published.records_published,
            success=published.success,
        )
        return published

    def _publish_rest(self, result: TransformationResult, config: PublishRequest) -> PublishResult:
        rows = result.transformed_data
        batch_id = _batch_id()

        if not config.endpoint:
            # No endpoint configured: report what would have been sent
            return PublishResult(
                success=True,
                target="rest-api",
                records_published=len(rows),
                message="Dados enviados com sucesso (simulação)",
                details={"status_code": 201, "batch_id": batch_id, "simulated": True},
            )

        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        payload = {
            "batch_id": batch_id,
            "schema": [f.model_dump() for f in result.target_schema],
            "records": rows,
        }

        try:
            response = requests.post(
                config.endpoint,
                data=json.dumps(payload, default=str),
                headers=headers,
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error("rest_publish_failed", endpoint=config.endpoint, error=str(e))
            raise PublishError("rest-api", f"Falha ao enviar dados: {e}", details={"endpoint": config.endpoint})

        return PublishResult(
            success=True,
            target="rest-api",
            records_published=len(rows),
            message="Dados enviados com sucesso",
            details={
                "endpoint": config.endpoint,
                "status_code": response.status_code,
                "batch_id": batch_id,
            },
        )

    @staticmethod
    def _publish_database(result: TransformationResult, config: PublishRequest) -> PublishResult:
        if not config.connection_string or not config.connection_string.strip():
            raise PublishError(
                "database",
                "String de conexão é obrigatória para publicação no banco de dados",
            )

        inserted = database_service.insert_data(
            config.connection_string,
            result.transformed_data,
            result.target_schema,
            table_name=config.table_name,
        )
        return PublishResult(
            success=True,
            target="database",
            records_published=inserted.inserted_rows,
            message=f"Dados preparados para a tabela {inserted.table_name}",
            details=inserted.to_dict(),
        )

    def _publish_file(self, result: TransformationResult, config: PublishRequest) -> PublishResult:
        fmt = config.format
        content = render(result, fmt)
        file_name = f"dados_transformados_{int(time.time() * 1000)}.{fmt}"

        details: dict[str, Any] = {
            "file_name": file_name,
            "format": fmt,
            "file_size": len(content.encode("utf-8")),
            "preview": render(result, fmt, limit=PREVIEW_ROWS),
        }

        if config.write_file:
            if not self.output_dir:
                raise PublishError("file", "OUTPUT_DIR não configurado para gravação de arquivos")
            directory = Path(self.output_dir)
            directory.mkdir(parents=True, exist_ok=True)
            path = directory / file_name
            path.write_text(content, encoding="utf-8")
            details["path"] = str(path)
            logger.info("publish_file_written", path=str(path), size=details["file_size"])

        return PublishResult(
            success=True,
            target="file",
            records_published=len(result.transformed_data),
            message=f"Arquivo {file_name} gerado com sucesso",
            details=details,
        )


# Singleton instance
_publisher_service: Optional[PublisherService] = None


def get_publisher_service() -> PublisherService:
    """Get or create publisher service instance."""
    global _publisher_service
    if _publisher_service is None:
        _publisher_service = PublisherService()
    return _publisher_service
