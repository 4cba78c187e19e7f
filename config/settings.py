"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
Variable names match the ones used by the deploy environment
(RATE_LIMIT_MAX, CACHE_TTL, COMPRESSION_LEVEL, ...).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # AI PROVIDER
    # ===================
    anthropic_api_key: Optional[str] = Field(
        None,
        description="Anthropic API key used for field mapping suggestions"
    )
    ai_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Model used for schema analysis"
    )
    ai_max_tokens: int = Field(
        default=4096,
        ge=256,
        le=16384,
        description="Maximum tokens for AI responses"
    )
    ai_temperature: float = Field(
        default=0.1,
        ge=0,
        le=1,
        description="Sampling temperature for AI responses"
    )

    # ===================
    # SECURITY
    # ===================
    health_check_token: Optional[str] = Field(
        None,
        description="Token required by /api/health-check (open outside production when unset)"
    )
    metrics_token: str = Field(
        default="default-metrics-token",
        description="Token required by /api/metrics"
    )
    enable_public_metrics: bool = Field(
        default=False,
        description="Serve /api/metrics without a token"
    )

    # ===================
    # RATE LIMITING
    # ===================
    enable_rate_limit: bool = Field(
        default=True,
        description="Apply the global rate limiter to API requests"
    )
    rate_limit_max: int = Field(
        default=1000,
        ge=1,
        description="Requests allowed per client per window"
    )
    rate_limit_window_ms: int = Field(
        default=60000,
        ge=1000,
        description="Rate limit window in milliseconds"
    )

    # ===================
    # CACHE & COMPRESSION
    # ===================
    enable_cache: bool = Field(
        default=True,
        description="Send cache headers and use in-memory caches"
    )
    cache_ttl: int = Field(
        default=3600,
        ge=1,
        description="Default cache TTL in seconds"
    )
    enable_compression: bool = Field(
        default=True,
        description="Compress API responses"
    )
    compression_level: int = Field(
        default=6,
        ge=1,
        le=9,
        description="gzip/deflate compression level"
    )
    compression_threshold: int = Field(
        default=1024,
        ge=0,
        description="Minimum body size in bytes before compressing"
    )
    compressed_output_dir: str = Field(
        default="./compressed",
        description="Output directory for compressed static assets"
    )

    # ===================
    # UPLOADS
    # ===================
    max_file_size: int = Field(
        default=10485760,
        ge=1,
        description="Maximum CSV upload size in bytes (10MB)"
    )
    allowed_file_types: str = Field(
        default="text/csv",
        description="Comma separated list of accepted upload content types"
    )
    max_request_size: int = Field(
        default=52428800,
        ge=1,
        description="Maximum request body size in bytes (50MB)"
    )
    upload_ttl_minutes: int = Field(
        default=30,
        ge=1,
        le=1440,
        description="Minutes an uploaded file stays available for analysis"
    )
    output_dir: Optional[str] = Field(
        None,
        description="Directory where file publish targets are written"
    )

    # ===================
    # MONITORING
    # ===================
    metrics_retention_hours: int = Field(
        default=24,
        ge=1,
        le=168,
        description="Hours metric points are kept in memory"
    )
    slow_request_ms: int = Field(
        default=5000,
        ge=100,
        description="Response time above which a request is flagged as slow"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production|test)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Version reported by health and metrics endpoints"
    )
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma separated list of allowed CORS origins"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def ai_configured(self) -> bool:
        """Check if an AI provider key is available."""
        return bool(self.anthropic_api_key)

    @property
    def allowed_file_types_list(self) -> list[str]:
        return [t.strip() for t in self.allowed_file_types.split(",") if t.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If env vars are invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
