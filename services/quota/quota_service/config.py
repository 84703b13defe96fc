"""
ABOUTME: Application configuration management using Pydantic settings
ABOUTME: Loads and validates environment variables for the quota service
"""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""

    # Quota store backend: "supabase" (Postgres functions) or "memory" (single process)
    quota_store_backend: str = "supabase"

    # AI provider key is passed through to the chat functions, never read by the core
    ai_provider_api_key: str = ""

    # Alpha tester program
    alpha_tester_code: str = ""

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    api_v1_prefix: str = "/api/v1"

    # Security
    allowed_origins: List[str] = ["*"]

    # Gem quota
    gem_window_hours: int = 3
    tokens_per_gem: int = 1000
    low_gem_warning_threshold: int = 5

    # Legacy token lockout
    token_limit: int = 4000
    token_timeout_minutes: int = 30
    token_lockout_enabled: bool = False

    # Client admission defaults (milliseconds)
    admission_cooldown_ms: int = 3000
    admission_max_concurrent_requests: int = 1
    circuit_failure_threshold: int = 5
    circuit_failure_window_ms: int = 5 * 60 * 1000
    circuit_block_duration_ms: int = 15 * 60 * 1000

    # Sentry Error Tracking
    sentry_dsn: str = ""  # Empty string disables Sentry
    sentry_environment: str = ""  # Auto-detected from environment if not set
    sentry_traces_sample_rate: float = 0.1
    sentry_profiles_sample_rate: float = 0.1


# Global settings instance
settings = Settings()
