"""
Configuration management for the statistics service
Environment-based settings with secure defaults
"""

from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "docstats"
    APP_ENV: str = "development"  # development, staging, production
    DEBUG: bool = False
    API_VERSION: str = "v1"
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database
    DATABASE_URL: str  # Required
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_KEY_PREFIX: str = "docstats"
    STATS_CACHE_TTL: int = 300  # 5 minutes
    GLOBAL_STATS_CACHE_TTL: int = 600  # 10 minutes
    SUMMARY_CACHE_TTL: int = 60  # 1 minute

    # Inter-service auth
    INTERNAL_SERVICE_TOKEN: str  # Required

    # Statistics behaviour
    STATISTICS_VALIDATION_MODE: str = "advisory"  # advisory, strict
    STATISTICS_RETENTION_DAYS: int = 90
    STATISTICS_UPSERT_MAX_RETRIES: int = 5
    BATCH_MAX_PROJECTS: int = 50

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    CLEANUP_SCHEDULE_SECONDS: float = 86400.0

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    @field_validator("STATISTICS_VALIDATION_MODE")
    @classmethod
    def validate_validation_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("advisory", "strict"):
            raise ValueError("STATISTICS_VALIDATION_MODE must be 'advisory' or 'strict'")
        return v

    @field_validator("STATISTICS_UPSERT_MAX_RETRIES", "BATCH_MAX_PROJECTS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    @property
    def strict_validation(self) -> bool:
        return self.STATISTICS_VALIDATION_MODE == "strict"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        frozen = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings loader"""
    return Settings()


# Phase thresholds (seconds) above which a phase is reported as a bottleneck
BOTTLENECK_THRESHOLDS = {
    "generation": 60,
    "processing": 30,
    "interview": 300,
    "export": 20,
    "queue_wait": 10,
}

# Per-document benchmarks for read-time efficiency scoring
EFFICIENCY_BENCHMARKS = {
    "cost_per_document": 5.0,  # USD
    "time_per_document": 120.0,  # seconds
    "tokens_per_document": 3000,
}

# Resource intensity scoring: one point per exceeded limit
RESOURCE_INTENSITY_LIMITS = {
    "tokens_used": 10000,
    "documents_generated": 5,
    "storage_size": 10 * 1024 * 1024,  # 10MB
    "api_calls_count": 20,
}

# Services allowed to report statistics
STATISTICS_SOURCES = [
    "cost-tracking-service",
    "monitoring-service",
    "orchestration-service",
    "generation-agent-service",
    "document-processing-service",
    "export-service",
]

STATISTICS_FORMAT_VERSION = "1.0.0"
