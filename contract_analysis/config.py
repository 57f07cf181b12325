"""
Configuration for Contract Analysis Service
===========================================

Environment variables:
- LLM_API_KEY: API key for the OpenAI-compatible completion endpoint
- LLM_MODEL: Model to use (default: gpt-4o)
- LLM_BASE_URL: Base URL of the completion API (default: https://api.openai.com/v1)
- LLM_TIMEOUT: Completion timeout in seconds (default: 60)
- DATABASE_URL: SQLAlchemy URL (default: sqlite:///./dev.db)
- STORAGE_BACKEND: local|s3 (default: local)
- REDIS_URL: Redis for shared rate-limit counters and the RQ queue
- RATE_LIMIT_STORE: memory|redis (default: memory; redis needs server >= 7.0)
- RATE_LIMIT_FAILURE_MODE: open|closed (default: open)
- ANALYSIS_BACKEND: inprocess|rq (default: inprocess)
- STALE_PROCESSING_MINUTES: Age after which a processing contract is re-queued
"""

from typing import Optional, List
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Completion API (OpenAI-compatible chat completions)
    llm_api_key: Optional[str] = None
    llm_model: str = "gpt-4o"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout: int = 60
    llm_max_tokens: int = 4096
    llm_max_input_chars: int = 120_000

    # Uploads
    max_upload_bytes: int = 10 * 1024 * 1024

    # Blob storage
    storage_backend: str = "local"  # local | s3
    storage_local_path: str = "./storage"
    s3_bucket_name: Optional[str] = None
    aws_region: str = "us-east-1"
    signed_url_ttl_seconds: int = 3600
    signed_url_secret: str = "dev-signing-key-change-in-production"
    public_base_url: str = "http://localhost:8000"

    # Database
    database_url: str = "sqlite:///./dev.db"

    # Redis (rate-limit counters, RQ)
    redis_url: str = "redis://localhost:6379/0"

    # Admission control
    rate_limit_store: str = "memory"  # memory | redis
    rate_limit_failure_mode: str = "open"  # open | closed
    trust_proxy_headers: bool = False

    # Analysis dispatch
    analysis_backend: str = "inprocess"  # inprocess | rq
    analysis_max_concurrency: int = 4
    analysis_queue_name: str = "analysis"

    # Stale processing sweep
    stale_processing_minutes: int = 30
    stale_sweep_interval_seconds: int = 300
    max_analysis_attempts: int = 3

    # Service info
    service_version: str = "1.0.0"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def validate_runtime_config(self) -> List[str]:
        """Validate runtime configuration, return list of warnings"""
        warnings = []

        if not self.llm_api_key:
            warnings.append("LLM_API_KEY not set - every analysis will fail")

        if self.storage_backend == "s3" and not self.s3_bucket_name:
            warnings.append("STORAGE_BACKEND=s3 but S3_BUCKET_NAME not set")

        if self.storage_backend not in ("local", "s3"):
            warnings.append(f"Unknown STORAGE_BACKEND={self.storage_backend}, using local")

        if self.rate_limit_failure_mode not in ("open", "closed"):
            warnings.append(
                f"Unknown RATE_LIMIT_FAILURE_MODE={self.rate_limit_failure_mode}, using open"
            )

        if self.analysis_backend not in ("inprocess", "rq"):
            warnings.append(f"Unknown ANALYSIS_BACKEND={self.analysis_backend}, using inprocess")

        if self.stale_processing_minutes * 60 <= self.llm_timeout:
            warnings.append(
                "STALE_PROCESSING_MINUTES is shorter than LLM_TIMEOUT; "
                "in-flight analyses may be re-queued"
            )

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
