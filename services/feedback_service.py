"""
User feedback collection.

Stores corrections of domain, type, mapping, validation and schema
predictions, derives learning patterns from repeated corrections and
reports accuracy analytics.
"""

import hashlib
import json
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
import structlog

logger = structlog.get_logger(__name__)

FEEDBACK_TYPES = (
    "domain_detection",
    "field_type_inference",
    "field_mapping",
    "validation_rule",
    "schema_generation",
)

# Default confidence of the corrected prediction, per feedback type
DEFAULT_CONFIDENCE = {
    "domain_detection": 0.5,
    "field_type_inference": 0.5,
    "field_mapping": 0.7,
    "validation_rule": 0.6,
    "schema_generation": 0.5,
}

PATTERN_START_CONFIDENCE = 0.5
PATTERN_BOOST = 0.1
PATTERN_MAX_CONFIDENCE = 0.95
SUGGESTION_MIN_CONFIDENCE = 0.7
MAX_SUGGESTIONS = 5
MAX_ISSUES = 5
KEEP_PATTERNS_MIN_USAGE = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def pattern_kind(feedback_type: str) -> str:
    """domain_detection -> domain, field_type_inference -> field, ..."""
    return feedback_type.split("_")[0]


@dataclass
class FeedbackEntry:
    id: str
    timestamp: datetime
    session_id: str
    feedback_type: str
    original: Any
    correction: Any
    confidence: float
    context: dict
    user_id: Optional[str] = None
    status: str = "pending"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
            "feedback_type": self.feedback_type,
            "original": self.original,
            "correction": self.correction,
            "confidence": self.confidence,
            "context": self.context,
            "user_id": self.user_id,
            "status": self.status,
        }


@dataclass
class FeedbackPattern:
    id: str
    kind: str
    pattern: Any
    confidence: float = PATTERN_START_CONFIDENCE
    usage_count: int = 1
    success_rate: float = 1.0
    last_used: datetime = field(default_factory=_utcnow)
    created_from: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.kind,
            "pattern": self.pattern,
            "confidence": round(self.confidence, 4),
            "usage_count": self.usage_count,
            "success_rate": self.success_rate,
            "last_used": self.last_used.isoformat(),
            "created_from": list(self.created_from),
        }


class FeedbackService:
    """
    In-memory feedback store.

    Args:
        clock: Returns the current UTC datetime, injectable for tests
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self.session_id = f"session_{uuid.uuid4().hex[:12]}"
        self._feedback: dict[str, FeedbackEntry] = {}
        self._patterns: dict[str, FeedbackPattern] = {}
        self._lock = threading.Lock()

    def record_feedback(
        self,
        feedback_type: str,
        original: Any,
        correction: Any,
        context: Optional[dict] = None,
        confidence: Optional[float] = None,
        user_id: Optional[str] = None,
    ) -> str:
        """
        Store one correction and update the derived pattern.

        Raises:
            ValueError: If feedback_type is not one of FEEDBACK_TYPES
        """
        if feedback_type not in FEEDBACK_TYPES:
            raise ValueError(f"Unknown feedback type: {feedback_type}")

        now = self._clock()
        entry = FeedbackEntry(
            id=f"feedback_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
            timestamp=now,
            session_id=self.session_id,
            feedback_type=feedback_type,
            original=original,
            correction=correction,
            confidence=confidence if confidence is not None else DEFAULT_CONFIDENCE[feedback_type],
            context=context or {},
            user_id=user_id,
        )

        with self._lock:
            self._feedback[entry.id] = entry
            self._update_pattern(entry)
            entry.status = "processed"

        logger.info("feedback_recorded", feedback_id=entry.id, feedback_type=feedback_type)
        return entry.id

    def get_suggestions(self, feedback_type: str) -> list[dict]:
        """Confident patterns of the same kind, best success rate first."""
        kind = pattern_kind(feedback_type)
        with self._lock:
            relevant = [
                p for p in self._patterns.values()
                if p.kind == kind and p.confidence > SUGGESTION_MIN_CONFIDENCE
            ]
        relevant.sort(key=lambda p: p.success_rate, reverse=True)
        return [
            {
                "suggestion": p.pattern,
                "confidence": round(p.confidence, 4),
                "usage": p.usage_count,
                "success_rate": p.success_rate,
            }
            for p in relevant[:MAX_SUGGESTIONS]
        ]

    def get_learning_metrics(self) -> dict:
        with self._lock:
            entries = list(self._feedback.values())

        total = len(entries)
        if total == 0:
            return {
                "total_feedback": 0,
                "accuracy_improvement": 0.0,
                "domain_detection_accuracy": 0.0,
                "field_type_accuracy": 0.0,
                "validation_accuracy": 0.0,
                "user_satisfaction": 0.0,
                "processing_time_improvement": 0.0,
            }

        month_ago = self._clock() - timedelta(days=30)
        recent = sum(1 for e in entries if e.timestamp > month_ago)
        sessions = len({e.session_id for e in entries})

        return {
            "total_feedback": total,
            "accuracy_improvement": round(min(0.95, recent * 0.02), 4),
            "domain_detection_accuracy": self._type_accuracy(entries, "domain_detection"),
            "field_type_accuracy": self._type_accuracy(entries, "field_type_inference"),
            "validation_accuracy": self._type_accuracy(entries, "validation_rule"),
            "user_satisfaction": round(max(0.1, 1 - (total / sessions) * 0.2), 4),
            "processing_time_improvement": round(min(0.3, total * 0.01), 4),
        }

    def get_analytics(self, period: str = "30d") -> dict:
        metrics = self.get_learning_metrics()
        return {
            "period": period,
            "metrics": metrics,
            "top_issues": self._top_issues(),
            "recommendations": self._recommendations(metrics),
        }

    def export_data(self) -> dict:
        with self._lock:
            return {
                "feedback": [e.to_dict() for e in self._feedback.values()],
                "patterns": [p.to_dict() for p in self._patterns.values()],
            }

    def cleanup_old_data(self, days: int = 90) -> int:
        """Drop feedback older than days and old patterns used fewer than 5 times."""
        cutoff = self._clock() - timedelta(days=days)
        with self._lock:
            old_feedback = [fid for fid, e in self._feedback.items() if e.timestamp < cutoff]
            for fid in old_feedback:
                del self._feedback[fid]
            old_patterns = [
                pid for pid, p in self._patterns.items()
                if p.last_used < cutoff and p.usage_count < KEEP_PATTERNS_MIN_USAGE
            ]
            for pid in old_patterns:
                del self._patterns[pid]

        removed = len(old_feedback) + len(old_patterns)
        if removed:
            logger.info("feedback_cleaned_up", feedback=len(old_feedback), patterns=len(old_patterns))
        return removed

    def clear(self) -> None:
        with self._lock:
            self._feedback.clear()
            self._patterns.clear()

    # ===================
    # HELPERS
    # ===================

    def _update_pattern(self, entry: FeedbackEntry) -> None:
        """Caller holds the lock."""
        digest = hashlib.md5(
            json.dumps(entry.correction, sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()[:8]
        pattern_id = f"pattern_{entry.feedback_type}_{digest}"

        pattern = self._patterns.get(pattern_id)
        if pattern is None:
            self._patterns[pattern_id] = FeedbackPattern(
                id=pattern_id,
                kind=pattern_kind(entry.feedback_type),
                pattern=self._extract_pattern(entry),
                last_used=entry.timestamp,
                created_from=[entry.id],
            )
            return

        pattern.usage_count += 1
        pattern.last_used = entry.timestamp
        pattern.created_from.append(entry.id)
        pattern.confidence = min(PATTERN_MAX_CONFIDENCE, pattern.confidence + PATTERN_BOOST)

    @staticmethod
    def _extract_pattern(entry: FeedbackEntry) -> Any:
        correction = entry.correction if isinstance(entry.correction, dict) else {}
        if entry.feedback_type == "domain_detection":
            return {
                "field_names": entry.context.get("detected_fields", []),
                "domain": correction.get("corrected_domain", entry.correction),
                "evidence": correction.get("field_evidence", []),
            }
        if entry.feedback_type == "field_type_inference":
            return {
                "field_name": correction.get("field_name"),
                "correct_type": correction.get("corrected_type", entry.correction),
                "sample_values": correction.get("sample_values", []),
            }
        return entry.correction

    @staticmethod
    def _type_accuracy(entries: list[FeedbackEntry], feedback_type: str) -> float:
        count = sum(1 for e in entries if e.feedback_type == feedback_type)
        if count == 0:
            return 0.0
        return round(max(0.5, 1 - count * 0.1), 4)

    def _top_issues(self) -> list[dict]:
        with self._lock:
            counts: dict[str, int] = {}
            for entry in self._feedback.values():
                counts[entry.feedback_type] = counts.get(entry.feedback_type, 0) + 1

        issues = []
        for feedback_type, frequency in counts.items():
            label = feedback_type.replace("_", " ")
            if frequency > 10:
                impact = "high"
            elif frequency > 5:
                impact = "medium"
            else:
                impact = "low"
            issues.append({
                "type": feedback_type,
                "description": f"Problemas com {label}",
                "frequency": frequency,
                "impact": impact,
                "suggested_fix": f"Revisar algoritmo de {label}",
            })
        issues.sort(key=lambda i: i["frequency"], reverse=True)
        return issues[:MAX_ISSUES]

    @staticmethod
    def _recommendations(metrics: dict) -> list[str]:
        recommendations = []
        if metrics["domain_detection_accuracy"] < 0.8:
            recommendations.append("Considere adicionar mais palavras-chave para detecção de domínio")
        if metrics["field_type_accuracy"] < 0.8:
            recommendations.append("Revise os padrões de inferência de tipos de dados")
        if metrics["user_satisfaction"] < 0.7:
            recommendations.append("Implemente mais validações automáticas para reduzir correções manuais")
        if not recommendations:
            recommendations.append("Sistema funcionando bem! Continue coletando feedback para melhorias contínuas.")
        return recommendations


# Singleton instance
_feedback_service: Optional[FeedbackService] = None


def get_feedback_service() -> FeedbackService:
    """Get or create feedback service instance."""
    global _feedback_service
    if _feedback_service is None:
        _feedback_service = FeedbackService()
    return _feedback_service
