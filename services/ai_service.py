"""
AI-assisted schema mapping.

Asks Claude to map legacy CSV columns onto a modern target schema.
Without ANTHROPIC_API_KEY, or when the reply cannot be used, a
deterministic name-normalizing fallback is returned instead.
"""

import json
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional
import structlog

import anthropic

from config import settings
from models.migration import FieldMapping, FieldSchema
from services.cache_service import get_cache_manager
from utils.text_utils import normalize_field_name

logger = structlog.get_logger(__name__)

SOURCE_SAMPLE_ROWS = 10
SOURCE_EXAMPLES = 3

DEFAULT_CONFIDENCE = 50
FALLBACK_CONFIDENCE = 30
FALLBACK_REASONING = "Mapeamento automático básico (falha na análise de IA)"
FALLBACK_TRANSFORMATION = "Normalização de nome"

JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
DATE_VALUE = re.compile(r"^\d{4}-\d{2}-\d{2}|\d{2}/\d{2}/\d{4}|\d{2}-\d{2}-\d{4}$")
EMAIL_VALUE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
BOOLEAN_VALUES = {"true", "false", "yes", "no", "1", "0"}

SIMPLE_TYPES = {"string", "number", "boolean", "date", "email", "phone", "id"}

ANALYSIS_PROMPT = """
Você é um especialista em transformação de dados entre sistemas legados e contemporâneos.

Analise o schema de origem e sugira mapeamentos para o schema de destino:

**SCHEMA DE ORIGEM (Sistema Legado):**
{source}

**SCHEMA DE DESTINO (Sistema Contemporâneo):**
{target}

**INSTRUÇÕES:**
1. Analise cada campo do schema de origem
2. Sugira mapeamentos para campos do schema de destino
3. Identifique transformações necessárias (renomeação, conversão de tipo, normalização)
4. Calcule um nível de confiança para cada mapeamento (0-100)
5. Forneça uma explicação clara do raciocínio

Tipos permitidos: string, number, boolean, date, email, phone, id.

**RESPONDA EM FORMATO JSON:**
{{
  "suggestedMappings": [
    {{
      "sourceField": "nome_do_campo_origem",
      "targetField": "nome_do_campo_destino",
      "sourceType": "tipo_origem",
      "targetType": "tipo_destino",
      "transformation": "descrição_da_transformação",
      "confidence": 95
    }}
  ],
  "confidence": 85,
  "reasoning": "Explicação detalhada da análise e sugestões"
}}

Seja preciso e considere boas práticas de nomenclatura e tipos de dados modernos.
"""

TARGET_SCHEMA_PROMPT = """
Com base no schema de origem abaixo, gere um schema de destino moderno e padronizado:

{source}

Retorne um JSON com o schema sugerido:
{{
  "fields": [
    {{
      "name": "nome_campo",
      "type": "tipo",
      "nullable": true,
      "description": "descrição"
    }}
  ]
}}

Use convenções modernas: snake_case, tipos padronizados, nomes descritivos.
"""

NO_TARGET_SCHEMA = "Schema de destino não fornecido - sugira um schema moderno e padronizado"


def infer_value_type(value: Optional[str]) -> str:
    """
    Simple type of one cell: boolean, number, date, email or string.

    Booleans are checked first, so "1" and "0" count as boolean.
    """
    if value is None or value.strip() == "":
        return "string"

    text = value.strip()
    if text.lower() in BOOLEAN_VALUES:
        return "boolean"

    try:
        if math.isfinite(float(text)):
            return "number"
    except ValueError:
        pass

    if DATE_VALUE.search(text):
        return "date"
    if EMAIL_VALUE.match(text):
        return "email"
    return "string"


@dataclass
class SchemaAnalysis:
    """Source schema plus the suggested mapping onto a target schema."""
    source_schema: list[FieldSchema]
    suggested_mappings: list[FieldMapping]
    confidence: float
    reasoning: str
    target_schema: list[FieldSchema] = field(default_factory=list)
    used_ai: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "source_schema": [f.model_dump() for f in self.source_schema],
            "suggested_mappings": [m.model_dump() for m in self.suggested_mappings],
            "target_schema": [f.model_dump() for f in self.target_schema],
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "used_ai": self.used_ai,
        }


class AIService:
    """
    Claude-backed mapping suggestions.

    Responses are cached in the API cache keyed by prompt, so analyzing
    the same upload twice does not call the API again.
    """

    def __init__(self, client: Optional[Any] = None, use_cache: bool = True):
        """
        Args:
            client: Anthropic client; built from ANTHROPIC_API_KEY when omitted
            use_cache: Reuse cached replies for identical prompts
        """
        if client is not None:
            self.client = client
        elif settings.ai_configured:
            self.client = anthropic.Anthropic(api_key=settings.anthropic_api_key)
        else:
            self.client = None
        self.use_cache = use_cache

    @property
    def available(self) -> bool:
        return self.client is not None

    # ===================
    # PUBLIC API
    # ===================

    def infer_source_schema(self, records: list[dict[str, str]], headers: Optional[list[str]] = None) -> list[FieldSchema]:
        """
        Source schema from the first rows.

        Each field gets the most common per-value type, a nullable flag
        when some sampled value is blank, and up to 3 examples.
        """
        sample = records[:SOURCE_SAMPLE_ROWS]
        if headers is None:
            headers = list(records[0].keys()) if records else []

        fields = []
        for header in headers:
            values = [
                str(row.get(header)).strip()
                for row in sample
                if row.get(header) is not None and str(row.get(header)).strip() != ""
            ]
            types = Counter(infer_value_type(v) for v in values)
            most_common = types.most_common(1)[0][0] if types else "string"

            fields.append(FieldSchema(
                name=header,
                type=most_common,
                nullable=len(values) < len(sample),
                examples=values[:SOURCE_EXAMPLES],
            ))
        return fields

    def analyze_schema(
        self,
        records: list[dict[str, str]],
        headers: Optional[list[str]] = None,
        target_schema: Optional[list[FieldSchema]] = None,
        use_ai: bool = True,
    ) -> SchemaAnalysis:
        """
        Infer the source schema, suggest mappings and a target schema.

        Args:
            records: Parsed rows keyed by header
            headers: Column order; taken from the first record when omitted
            target_schema: Known destination schema, if any
            use_ai: False skips the model and uses the basic mappings

        Returns:
            SchemaAnalysis (fallback mappings when AI is unavailable)
        """
        source_schema = self.infer_source_schema(records, headers)
        if use_ai:
            analysis = self.generate_field_mappings(source_schema, target_schema)
            analysis.target_schema = target_schema or self.generate_target_schema(source_schema)
        else:
            analysis = self._fallback_analysis(source_schema)
            analysis.target_schema = target_schema or self._fallback_target_schema(source_schema)

        logger.info(
            "schema_analyzed",
            fields=len(source_schema),
            mappings=len(analysis.suggested_mappings),
            confidence=analysis.confidence,
            used_ai=analysis.used_ai,
        )
        return analysis

    def generate_field_mappings(
        self,
        source_schema: list[FieldSchema],
        target_schema: Optional[list[FieldSchema]] = None,
    ) -> SchemaAnalysis:
        """Ask the model for source to target mappings."""
        if not self.available:
            logger.info("ai_not_configured_using_fallback")
            return self._fallback_analysis(source_schema)

        prompt = ANALYSIS_PROMPT.format(
            source=self._describe_source(source_schema),
            target=self._describe_target(target_schema),
        )

        try:
            response_text = self._complete(prompt)
            return self._parse_analysis_response(response_text, source_schema)
        except (anthropic.APIError, ValueError) as e:
            logger.warning("ai_mapping_failed", error=str(e))
            return self._fallback_analysis(source_schema)

    def generate_target_schema(self, source_schema: list[FieldSchema]) -> list[FieldSchema]:
        """Modern snake_case schema for the source fields."""
        if self.available:
            prompt = TARGET_SCHEMA_PROMPT.format(
                source="\n".join(f"{f.name}: {f.type}" for f in source_schema)
            )
            try:
                data = self._extract_json(self._complete(prompt))
                fields = [self._to_field_schema(item) for item in data.get("fields", []) if isinstance(item, dict)]
                fields = [f for f in fields if f is not None]
                if fields:
                    return fields
            except (anthropic.APIError, ValueError) as e:
                logger.warning("ai_target_schema_failed", error=str(e))

        return self._fallback_target_schema(source_schema)

    @staticmethod
    def _fallback_target_schema(source_schema: list[FieldSchema]) -> list[FieldSchema]:
        return [
            FieldSchema(
                name=normalize_field_name(f.name),
                type=f.type,
                nullable=f.nullable,
                description=f"Campo migrado de {f.name}",
                examples=f.examples,
            )
            for f in source_schema
        ]

    # ===================
    # PROVIDER CALL
    # ===================

    def _complete(self, prompt: str) -> str:
        """Send one user message and return the text reply."""
        cache = get_cache_manager().api
        params = {"model": settings.ai_model, "prompt": prompt}
        if self.use_cache and settings.enable_cache:
            cached = cache.get_api_response("anthropic.messages", params)
            if cached is not None:
                logger.debug("ai_response_cache_hit")
                return cached

        response = self.client.messages.create(
            model=settings.ai_model,
            max_tokens=settings.ai_max_tokens,
            temperature=settings.ai_temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        response_text = response.content[0].text
        logger.debug("ai_response_received", response_length=len(response_text))

        if self.use_cache and settings.enable_cache:
            cache.cache_api_response("anthropic.messages", params, response_text)
        return response_text

    # ===================
    # RESPONSE PARSING
    # ===================

    @staticmethod
    def _extract_json(response_text: str) -> dict:
        """
        First {...} block of the reply.

        Raises:
            ValueError: If there is no JSON object or it does not parse
        """
        cleaned = response_text.strip()
        if cleaned.startswith("```"):
            cleaned = re.sub(r'^```(?:json)?\s*', '', cleaned)
            cleaned = re.sub(r'\s*```$', '', cleaned)

        match = JSON_OBJECT.search(cleaned)
        if not match:
            raise ValueError("Resposta da IA não contém JSON válido")

        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ValueError(f"JSON inválido na resposta da IA: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("Resposta da IA não é um objeto JSON")
        return data

    def _parse_analysis_response(self, response_text: str, source_schema: list[FieldSchema]) -> SchemaAnalysis:
        try:
            data = self._extract_json(response_text)
        except ValueError as e:
            logger.error("ai_response_parse_failed", response_preview=response_text[:500], error=str(e))
            return self._fallback_analysis(source_schema)

        mappings = []
        for item in data.get("suggestedMappings") or []:
            if not isinstance(item, dict) or not item.get("sourceField") or not item.get("targetField"):
                continue
            mappings.append(FieldMapping(
                source_field=str(item["sourceField"]),
                target_field=str(item["targetField"]),
                source_type=_simple_type(item.get("sourceType")),
                target_type=_simple_type(item.get("targetType")),
                transformation=item.get("transformation"),
                confidence=_clamp_confidence(item.get("confidence")),
            ))

        return SchemaAnalysis(
            source_schema=source_schema,
            suggested_mappings=mappings,
            confidence=_clamp_confidence(data.get("confidence")),
            reasoning=data.get("reasoning") or "Análise automática realizada",
            used_ai=True,
        )

    @staticmethod
    def _fallback_analysis(source_schema: list[FieldSchema]) -> SchemaAnalysis:
        mappings = [
            FieldMapping(
                source_field=f.name,
                target_field=normalize_field_name(f.name),
                source_type=f.type,
                target_type=f.type,
                transformation=FALLBACK_TRANSFORMATION,
                confidence=FALLBACK_CONFIDENCE,
                reasoning=FALLBACK_REASONING,
            )
            for f in source_schema
        ]
        return SchemaAnalysis(
            source_schema=source_schema,
            suggested_mappings=mappings,
            confidence=FALLBACK_CONFIDENCE,
            reasoning=FALLBACK_REASONING,
        )

    @staticmethod
    def _to_field_schema(item: dict) -> Optional[FieldSchema]:
        name = item.get("name")
        if not name:
            return None
        return FieldSchema(
            name=str(name),
            type=_simple_type(item.get("type")),
            nullable=bool(item.get("nullable", True)),
            description=item.get("description"),
        )

    @staticmethod
    def _describe_source(source_schema: list[FieldSchema]) -> str:
        return "\n".join(
            f"{f.name}: {f.type} (exemplos: {', '.join(f.examples)})"
            for f in source_schema
        )

    @staticmethod
    def _describe_target(target_schema: Optional[list[FieldSchema]]) -> str:
        if not target_schema:
            return NO_TARGET_SCHEMA
        return "\n".join(
            f"{f.name}: {f.type}" + (f" - {f.description}" if f.description else "")
            for f in target_schema
        )


def _simple_type(value: Any) -> str:
    text = str(value or "string").lower()
    return text if text in SIMPLE_TYPES else "string"


def _clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(confidence) or confidence <= 0:
        return DEFAULT_CONFIDENCE
    return min(confidence, 100.0)


# Singleton instance
_ai_service: Optional[AIService] = None


def get_ai_service() -> AIService:
    """Get or create AIService instance."""
    global _ai_service
    if _ai_service is None:
        _ai_service = AIService()
    return _ai_service
