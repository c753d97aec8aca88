"""Application configuration."""

import logging
from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings."""

    # Environment
    environment: str = "development"  # development, staging, production

    # API Configuration
    backend_host: str = "0.0.0.0"
    backend_port: int = 8000
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() == "production"

    # Anthropic Claude
    anthropic_api_key: str = ""

    # LLM Model Configuration
    llm_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens_planning: int = 1024
    llm_temperature_planning: float = 0.0
    llm_max_tokens_synthesis: int = 2048
    llm_temperature_synthesis: float = 0.3

    # Chat sessions (in-memory only)
    session_ttl_minutes: int = 60
    max_sessions: int = 1000

    # JIRA (issues are read from a snapshot kept in memory)
    jira_snapshot_path: str = ""
    jira_stale_days: int = 5
    jira_require_estimates: bool = True

    # Confluence
    confluence_url: str = ""  # e.g. https://yourcompany.atlassian.net
    confluence_email: str = ""
    confluence_api_token: str = ""
    confluence_snapshot_path: str = ""

    # Slack
    slack_user_token: str = ""  # User token (xoxp-) - search.messages needs a user token
    slack_snapshot_path: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "development"  # "development" for readable, "json" for structured

    # Application version (for health checks)
    version: str = "1.0.0"

    @property
    def confluence_configured(self) -> bool:
        """Whether the Confluence REST API can be called."""
        return bool(self.confluence_url and self.confluence_email and self.confluence_api_token)

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise the log level and reject unknown names."""
        level = str(v or "INFO").strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("session_ttl_minutes", "max_sessions")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra fields in .env


settings = Settings()
