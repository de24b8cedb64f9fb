"""
Centralized Configuration System
Environment-aware settings for the conversation engine and its collaborators.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal, Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow"
    )
    """
    Production-grade configuration management.
    Loads from environment variables with sensible defaults.
    """

    # ============================================
    # GENERATION SERVICE
    # ============================================
    openai_api_key: Optional[str] = None

    default_chat_model: str = "openai:gpt-4o"
    fast_model: str = "openai:gpt-4o-mini"
    generation_max_retries: int = 3
    retry_min_wait_seconds: int = 2
    retry_max_wait_seconds: int = 10

    # ============================================
    # PERSONA & BUSINESS RULES
    # ============================================
    persona_name: str = "F.B/c AI"
    booking_url: str = "https://cal.com/farzad/strategy-call"
    history_window_size: int = 20

    # ============================================
    # EXIT DETECTION
    # ============================================
    exit_cooldown_seconds: float = 30.0
    exit_force_threshold: int = 2
    exit_state_ttl_seconds: float = 3600.0

    # ============================================
    # TOOL EXECUTOR
    # ============================================
    tool_retry_max: int = 3
    tool_retry_initial_delay_seconds: float = 1.0
    tool_retry_backoff_multiplier: float = 2.0
    enable_tool_caching: bool = False
    tool_cache_ttl_seconds: float = 300.0
    tool_audit_max_payload_chars: int = 1000

    # ============================================
    # SEMANTIC MEMORY
    # ============================================
    fact_extraction_interval: int = 3
    fact_retrieval_limit: int = 50
    fact_min_confidence: float = 0.5

    # ============================================
    # CONVERSATION SIGNALS
    # ============================================
    signal_extraction_enabled: bool = True
    objection_min_confidence: float = 0.6
    closing_interest_threshold: float = 0.8

    # ============================================
    # RESPONSE GUARDRAILS
    # ============================================
    max_regenerations: int = 1

    # ============================================
    # MONGODB PERSISTENCE
    # ============================================
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "conversation_engine"
    mongodb_max_pool_size: int = 10
    mongodb_min_pool_size: int = 1
    mongodb_server_selection_timeout_ms: int = 5000
    persistence_version_attempts: int = 2
    persistence_version_backoff_seconds: float = 0.05

    # ============================================
    # OBSERVABILITY & AUDIT
    # ============================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_structured_logging: bool = False  # Set to True for production JSON logs
    enable_agent_audit: bool = False

    # ============================================
    # ENVIRONMENT
    # ============================================
    environment: Literal["development", "test", "staging", "production"] = "development"

    @property
    def audit_enabled(self) -> bool:
        """Audit records are always written in production."""
        return self.environment == "production" or self.enable_agent_audit


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton pattern for settings.
    Uses LRU cache to ensure only one Settings instance exists.
    """
    return Settings()


# Convenience accessor for common use
settings = get_settings()
