"""
Mapping pattern learning.

Remembers which field mappings were published for a given CSV shape
(column names, column types, structure, domain) and suggests them again
when a similar file is uploaded.
"""

import hashlib
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
import structlog

from models.migration import FieldMapping
from parsers.csv_detector import CSVStructure
from services.type_inference_service import get_type_inference_service

logger = structlog.get_logger(__name__)

MAX_PATTERNS = 1000
MIN_CONFIDENCE = 0.3
MIN_SUCCESS_RATE = 0.3
SUGGEST_THRESHOLD = 0.5
UNUSED_DAYS = 90
RECENT_DAYS = 7

NEW_PATTERN_CONFIDENCE = 0.7
REUSE_BOOST = 0.1
SUCCESS_BOOST = 0.05
FAILURE_PENALTY = 0.1
CONFIDENCE_FLOOR = 0.1

SAMPLE_ROWS = 5
TYPE_SAMPLE_ROWS = 10
MAX_ALTERNATIVES = 5

# Similarity weights
COLUMN_WEIGHT = 0.4
TYPE_WEIGHT = 0.3
DOMAIN_WEIGHT = 0.2
STRUCTURE_WEIGHT = 0.1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StructureSignature:
    column_count: int
    has_header: bool
    delimiter: str
    encoding: str
    row_count: int

    @classmethod
    def from_structure(cls, structure: CSVStructure) -> "StructureSignature":
        return cls(
            column_count=structure.column_count,
            has_header=structure.has_header,
            delimiter=structure.delimiter,
            encoding=structure.encoding,
            row_count=structure.total_rows,
        )

    def similarity(self, other: "StructureSignature") -> float:
        """Share of column count, header flag and delimiter that agree."""
        matches = sum([
            self.column_count == other.column_count,
            self.has_header == other.has_header,
            self.delimiter == other.delimiter,
        ])
        return matches / 3

    def to_dict(self) -> dict:
        return {
            "column_count": self.column_count,
            "has_header": self.has_header,
            "delimiter": self.delimiter,
            "encoding": self.encoding,
            "row_count": self.row_count,
        }


@dataclass
class SourcePattern:
    column_names: list[str]
    data_types: list[str]
    sample_values: list[list[str]]
    structure: StructureSignature
    domain: str

    def signature(self) -> str:
        return "::".join([
            "|".join(self.column_names),
            "|".join(self.data_types),
            str(self.structure.column_count),
            self.domain,
        ])


@dataclass
class LearningPattern:
    id: str
    source: SourcePattern
    mappings: list[FieldMapping]
    domain: str
    confidence: float = NEW_PATTERN_CONFIDENCE
    usage_count: int = 1
    success_rate: float = 1.0
    last_used: datetime = field(default_factory=_utcnow)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "domain": self.domain,
            "confidence": round(self.confidence, 4),
            "usage_count": self.usage_count,
            "success_rate": round(self.success_rate, 4),
            "last_used": self.last_used.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "source": {
                "column_names": self.source.column_names,
                "data_types": self.source.data_types,
                "sample_values": self.source.sample_values,
                "structure": self.source.structure.to_dict(),
                "domain": self.source.domain,
            },
            "mappings": [m.model_dump() for m in self.mappings],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearningPattern":
        source = data["source"]
        return cls(
            id=data["id"],
            source=SourcePattern(
                column_names=list(source["column_names"]),
                data_types=list(source["data_types"]),
                sample_values=[list(r) for r in source.get("sample_values", [])],
                structure=StructureSignature(**source["structure"]),
                domain=source.get("domain", data.get("domain", "generico")),
            ),
            mappings=[FieldMapping(**m) for m in data.get("mappings", [])],
            domain=data.get("domain", "generico"),
            confidence=float(data.get("confidence", NEW_PATTERN_CONFIDENCE)),
            usage_count=int(data.get("usage_count", 1)),
            success_rate=float(data.get("success_rate", 1.0)),
            last_used=datetime.fromisoformat(data["last_used"]) if data.get("last_used") else _utcnow(),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else _utcnow(),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else _utcnow(),
        )


@dataclass
class MappingSuggestion:
    source_field: str
    target_field: str
    target_type: str
    transformation: Optional[str]
    confidence: float
    reasoning: Optional[str]
    examples: list[str]

    def to_dict(self) -> dict:
        return {
            "source_field": self.source_field,
            "target_field": self.target_field,
            "target_type": self.target_type,
            "transformation": self.transformation,
            "confidence": round(self.confidence, 2),
            "reasoning": self.reasoning,
            "examples": self.examples,
        }


@dataclass
class SuggestionResult:
    suggestions: list[MappingSuggestion]
    confidence: float
    reasoning: str
    pattern_id: Optional[str] = None
    alternatives: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "pattern_id": self.pattern_id,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "confidence": round(self.confidence, 4),
            "reasoning": self.reasoning,
            "alternatives": self.alternatives,
        }


def column_similarity(a: list[str], b: list[str]) -> float:
    """Jaccard index of the lowercased column names."""
    set_a = {c.lower() for c in a}
    set_b = {c.lower() for c in b}
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def type_similarity(a: list[str], b: list[str]) -> float:
    """Positional type matches over the longer list."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 0.0
    matches = sum(1 for x, y in zip(a, b) if x == y)
    return matches / longest


def pattern_similarity(a: SourcePattern, b: SourcePattern) -> float:
    return (
        column_similarity(a.column_names, b.column_names) * COLUMN_WEIGHT
        + type_similarity(a.data_types, b.data_types) * TYPE_WEIGHT
        + (1.0 if a.domain == b.domain else 0.0) * DOMAIN_WEIGHT
        + a.structure.similarity(b.structure) * STRUCTURE_WEIGHT
    )


class LearningService:
    """
    In-memory store of learned mapping patterns.

    Args:
        max_patterns: Capacity; lowest scoring patterns are dropped beyond it
        clock: Returns the current UTC datetime, injectable for tests
    """

    def __init__(self, max_patterns: int = MAX_PATTERNS, clock: Callable[[], datetime] = _utcnow):
        self.max_patterns = max_patterns
        self._clock = clock
        self._patterns: dict[str, LearningPattern] = {}
        self._lock = threading.Lock()

    # ===================
    # LEARNING
    # ===================

    def extract_source_pattern(
        self,
        records: list[dict[str, Any]],
        structure: StructureSignature,
        domain: Optional[str] = None,
    ) -> SourcePattern:
        headers = list(records[0].keys()) if records else []
        inference = get_type_inference_service()

        data_types = []
        for header in headers:
            values = [str(row.get(header) or "") for row in records[:TYPE_SAMPLE_ROWS]]
            data_types.append(inference.infer_type(values, header).type.value)

        return SourcePattern(
            column_names=headers,
            data_types=data_types,
            sample_values=[[str(row.get(h) or "") for h in headers] for row in records[:SAMPLE_ROWS]],
            structure=structure,
            domain=domain or "generico",
        )

    def learn_pattern(
        self,
        records: list[dict[str, Any]],
        structure: StructureSignature,
        mappings: list[FieldMapping],
        domain: str,
    ) -> str:
        """
        Remember the mappings used for this CSV shape.

        A known shape gains usage and confidence (+0.1, max 1.0) and its
        mappings are merged; a new shape starts at confidence 0.7.

        Returns:
            Pattern id
        """
        source = self.extract_source_pattern(records, structure, domain)
        pattern_id = hashlib.md5(source.signature().encode("utf-8")).hexdigest()[:12]
        now = self._clock()

        with self._lock:
            existing = self._patterns.get(pattern_id)
            if existing is not None:
                existing.usage_count += 1
                existing.last_used = now
                existing.updated_at = now
                existing.confidence = min(1.0, existing.confidence + REUSE_BOOST)
                self._merge_mappings(existing, mappings)
                logger.info("learning_pattern_reinforced", pattern_id=pattern_id, usage=existing.usage_count)
            else:
                self._patterns[pattern_id] = LearningPattern(
                    id=pattern_id,
                    source=source,
                    mappings=[m.model_copy() for m in mappings],
                    domain=domain,
                    last_used=now,
                    created_at=now,
                    updated_at=now,
                )
                logger.info("learning_pattern_created", pattern_id=pattern_id, domain=domain, fields=len(mappings))

            self._enforce_capacity()

        return pattern_id

    def suggest_mappings(
        self,
        records: list[dict[str, Any]],
        structure: StructureSignature,
        domain: Optional[str] = None,
    ) -> SuggestionResult:
        """Mappings from the best matching learned pattern, if any is similar enough."""
        source = self.extract_source_pattern(records, structure, domain)

        with self._lock:
            scored = []
            for pattern in self._patterns.values():
                similarity = pattern_similarity(pattern.source, source)
                if similarity >= SUGGEST_THRESHOLD:
                    scored.append((self._rank(pattern, similarity), similarity, pattern))

        if not scored:
            return SuggestionResult(
                suggestions=[],
                confidence=0.0,
                reasoning="Nenhum padrão similar encontrado no histórico",
            )

        scored.sort(key=lambda item: item[0], reverse=True)
        _, similarity, best = scored[0]

        columns = {c.lower(): i for i, c in enumerate(source.column_names)}
        suggestions = []
        for mapping in best.mappings:
            index = columns.get(mapping.source_field.lower())
            if index is None:
                continue
            examples = [row[index] for row in source.sample_values if row[index].strip()][:3]
            suggestions.append(MappingSuggestion(
                source_field=source.column_names[index],
                target_field=mapping.target_field,
                target_type=mapping.target_type,
                transformation=mapping.transformation,
                confidence=mapping.confidence * best.confidence,
                reasoning=mapping.reasoning,
                examples=examples,
            ))

        alternatives = []
        for _, alt_similarity, pattern in scored[1:4]:
            for mapping in pattern.mappings:
                if mapping.source_field in source.column_names:
                    alternatives.append({
                        "mapping": mapping.model_dump(),
                        "confidence": round(alt_similarity * pattern.confidence, 4),
                        "reasoning": f"Baseado em padrão similar ({round(alt_similarity * 100)}% de similaridade)",
                    })

        reasoning = (
            f"Sugestão baseada em padrão similar ({round(similarity * 100)}% de similaridade) "
            f"usado {best.usage_count} vezes com {round(best.success_rate * 100)}% de sucesso. "
            f"Domínio: {best.domain}."
        )
        return SuggestionResult(
            suggestions=suggestions,
            confidence=similarity,
            reasoning=reasoning,
            pattern_id=best.id,
            alternatives=alternatives[:MAX_ALTERNATIVES],
        )

    def record_feedback(
        self,
        pattern_id: str,
        source_field: str,
        success: bool,
        correction: Optional[FieldMapping] = None,
    ) -> bool:
        """
        Adjust a pattern after the user accepted or rejected one of its mappings.

        Returns:
            False when the pattern is unknown
        """
        with self._lock:
            pattern = self._patterns.get(pattern_id)
            if pattern is None:
                return False

            attempts = max(pattern.usage_count, 1)
            successes = pattern.success_rate * (attempts - 1) + (1 if success else 0)
            pattern.success_rate = min(1.0, successes / attempts)

            if success:
                pattern.confidence = min(1.0, pattern.confidence + SUCCESS_BOOST)
            else:
                pattern.confidence = max(CONFIDENCE_FLOOR, pattern.confidence - FAILURE_PENALTY)
                if correction is not None:
                    self._apply_correction(pattern, source_field, correction)

            pattern.updated_at = self._clock()

        logger.info("learning_feedback_recorded", pattern_id=pattern_id, field=source_field, success=success)
        return True

    # ===================
    # MAINTENANCE
    # ===================

    def get_statistics(self) -> dict:
        with self._lock:
            patterns = list(self._patterns.values())

        if not patterns:
            return {
                "total_patterns": 0,
                "average_confidence": 0.0,
                "average_success_rate": 0.0,
                "domain_distribution": {},
                "most_used_patterns": [],
                "recent_activity": 0,
            }

        recent_cutoff = self._clock() - timedelta(days=RECENT_DAYS)
        distribution: dict[str, int] = {}
        for p in patterns:
            distribution[p.domain] = distribution.get(p.domain, 0) + 1

        most_used = sorted(patterns, key=lambda p: p.usage_count, reverse=True)[:5]
        return {
            "total_patterns": len(patterns),
            "average_confidence": round(sum(p.confidence for p in patterns) / len(patterns), 4),
            "average_success_rate": round(sum(p.success_rate for p in patterns) / len(patterns), 4),
            "domain_distribution": distribution,
            "most_used_patterns": [
                {"id": p.id, "usage_count": p.usage_count, "confidence": round(p.confidence, 4)}
                for p in most_used
            ],
            "recent_activity": sum(1 for p in patterns if p.last_used > recent_cutoff),
        }

    def export_patterns(self) -> list[dict]:
        with self._lock:
            return [p.to_dict() for p in self._patterns.values()]

    def import_patterns(self, patterns: list[dict]) -> int:
        """Load exported patterns, replacing any with the same id."""
        loaded = [LearningPattern.from_dict(p) for p in patterns]
        with self._lock:
            for pattern in loaded:
                self._patterns[pattern.id] = pattern
            self._enforce_capacity()
        logger.info("learning_patterns_imported", count=len(loaded))
        return len(loaded)

    def cleanup_patterns(self) -> int:
        """Drop low confidence, low success or long unused patterns."""
        cutoff = self._clock() - timedelta(days=UNUSED_DAYS)
        with self._lock:
            stale = [
                pid for pid, p in self._patterns.items()
                if p.confidence < MIN_CONFIDENCE or p.success_rate < MIN_SUCCESS_RATE or p.last_used < cutoff
            ]
            for pid in stale:
                del self._patterns[pid]
        if stale:
            logger.info("learning_patterns_cleaned", removed=len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._patterns.clear()

    def get_pattern(self, pattern_id: str) -> Optional[LearningPattern]:
        with self._lock:
            return self._patterns.get(pattern_id)

    # ===================
    # HELPERS
    # ===================

    @staticmethod
    def _rank(pattern: LearningPattern, similarity: float) -> float:
        usage_bonus = min(pattern.usage_count / 10, 1.0)
        return similarity * 0.4 + pattern.confidence * 0.3 + pattern.success_rate * 0.2 + usage_bonus * 0.1

    @staticmethod
    def _merge_mappings(pattern: LearningPattern, mappings: list[FieldMapping]) -> None:
        by_source = {m.source_field: i for i, m in enumerate(pattern.mappings)}
        for mapping in mappings:
            index = by_source.get(mapping.source_field)
            if index is None:
                pattern.mappings.append(mapping.model_copy())
                continue
            current = pattern.mappings[index]
            updates: dict[str, Any] = {"confidence": min(100.0, current.confidence + 10)}
            if mapping.target_field != current.target_field:
                updates["target_field"] = mapping.target_field
                updates["target_type"] = mapping.target_type
                updates["reasoning"] = "Atualizado baseado em feedback do usuário"
            pattern.mappings[index] = current.model_copy(update=updates)

    @staticmethod
    def _apply_correction(pattern: LearningPattern, source_field: str, correction: FieldMapping) -> None:
        for i, mapping in enumerate(pattern.mappings):
            if mapping.source_field == source_field:
                pattern.mappings[i] = correction.model_copy(update={
                    "confidence": max(50.0, correction.confidence),
                    "reasoning": "Corrigido pelo usuário",
                })
                return

    def _enforce_capacity(self) -> None:
        """Drop the lowest scoring patterns beyond max_patterns. Caller holds the lock."""
        overflow = len(self._patterns) - self.max_patterns
        if overflow <= 0:
            return
        now = self._clock().timestamp()

        def score(p: LearningPattern) -> float:
            recency = p.last_used.timestamp() / now if now else 0
            return p.confidence * 0.4 + p.success_rate * 0.4 + recency * 0.2

        for pattern in sorted(self._patterns.values(), key=score)[:overflow]:
            del self._patterns[pattern.id]
        logger.info("learning_patterns_evicted", removed=overflow)


def apply_suggestions(mappings: list[FieldMapping], learned: SuggestionResult) -> list[FieldMapping]:
    """
    Replace mappings with learned ones where the learned confidence is
    at least as high. Learned fields missing from mappings are appended.
    """
    by_source = {s.source_field: s for s in learned.suggestions}
    merged = []
    for mapping in mappings:
        suggestion = by_source.pop(mapping.source_field, None)
        if suggestion is None or suggestion.confidence < mapping.confidence:
            merged.append(mapping)
            continue
        merged.append(FieldMapping(
            source_field=mapping.source_field,
            target_field=suggestion.target_field,
            source_type=mapping.source_type,
            target_type=suggestion.target_type,
            transformation=suggestion.transformation,
            confidence=min(100.0, suggestion.confidence),
            reasoning=suggestion.reasoning or learned.reasoning,
        ))

    for suggestion in by_source.values():
        merged.append(FieldMapping(
            source_field=suggestion.source_field,
            target_field=suggestion.target_field,
            target_type=suggestion.target_type,
            transformation=suggestion.transformation,
            confidence=min(100.0, suggestion.confidence),
            reasoning=suggestion.reasoning or learned.reasoning,
        ))
    return merged


# Singleton instance
_learning_service: Optional[LearningService] = None


def get_learning_service() -> LearningService:
    """Get or create learning service instance."""
    global _learning_service
    if _learning_service is None:
        _learning_service = LearningService()
    return _learning_service
