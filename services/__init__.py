"""
Business logic services.

Each service handles one step of the CSV migration flow or one
operational concern (caching, rate limiting, metrics, health).
"""

from services.type_inference_service import TypeInferenceService, get_type_inference_service
from services.data_validator_service import DataValidator, get_data_validator
from services.domain_analyzer_service import DomainAnalyzerService, get_domain_analyzer_service
from services.schema_generator_service import SchemaGenerator, get_schema_generator
from services.ai_service import AIService, SchemaAnalysis, get_ai_service
from services.transformer_service import TransformerService, TransformationResult, get_transformer_service
from services.publisher_service import PublisherService, PublishResult, get_publisher_service
from services.cache_service import CacheManager, MemoryCache, get_cache_manager
from services.rate_limiter import RateLimiter, get_rate_limiter
from services.performance_metrics_service import PerformanceMetricsService, get_metrics_service
from services.error_monitor_service import ErrorMonitorService, get_error_monitor
from services.learning_service import LearningService, get_learning_service
from services.feedback_service import FeedbackService, get_feedback_service

__all__ = [
    "TypeInferenceService",
    "get_type_inference_service",
    "DataValidator",
    "get_data_validator",
    "DomainAnalyzerService",
    "get_domain_analyzer_service",
    "SchemaGenerator",
    "get_schema_generator",
    "AIService",
    "SchemaAnalysis",
    "get_ai_service",
    "TransformerService",
    "TransformationResult",
    "get_transformer_service",
    "PublisherService",
    "PublishResult",
    "get_publisher_service",
    "CacheManager",
    "MemoryCache",
    "get_cache_manager",
    "RateLimiter",
    "get_rate_limiter",
    "PerformanceMetricsService",
    "get_metrics_service",
    "ErrorMonitorService",
    "get_error_monitor",
    "LearningService",
    "get_learning_service",
    "FeedbackService",
    "get_feedback_service",
]
