"""
VitalTrend Configuration Module

Centralized configuration management using Pydantic Settings.
Supports environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="VITALTREND_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    env: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_json: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000


class LLMSettings(BaseSettings):
    """Text-generation (Bedrock/Ollama/Mock) settings."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    # Provider selection: mock, bedrock, ollama
    llm_provider: Literal["mock", "bedrock", "ollama"] = "mock"

    # AWS Bedrock settings
    aws_region: str = "us-east-1"
    aws_access_key_id: str | None = None
    aws_secret_access_key: SecretStr | None = None
    bedrock_model_id: str = "anthropic.claude-3-sonnet-20240229-v1:0"

    # Ollama settings
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3"

    # Common settings
    max_tokens: int = 1024
    temperature: float = 0.0

    # Narrative enrichment of trend summaries
    narrative_enabled: bool = True


class RetrievalSettings(BaseSettings):
    """Observation retrieval (FHIR search) settings."""

    model_config = SettingsConfigDict(
        env_prefix="RETRIEVAL_",
        env_file=".env",
        extra="ignore",
    )

    # Provider: mock (in-memory), fhir (R4 server)
    provider: Literal["mock", "fhir"] = "mock"

    fhir_base_url: str = "http://localhost:8080/fhir"
    token: SecretStr | None = None
    timeout_seconds: float = 30.0

    # Page size is capped by the search contract; maxItems by deployment
    max_count: int = Field(default=200, le=200)
    max_items_cap: int = 500


class TrendSettings(BaseSettings):
    """Trend analytics settings."""

    model_config = SettingsConfigDict(
        env_prefix="TRENDS_",
        env_file=".env",
        extra="ignore",
    )

    frequency: Literal["auto", "hourly", "daily", "weekly"] = "auto"


class Settings:
    """
    Aggregated settings container.

    Usage:
        from vitaltrend.config import get_settings
        settings = get_settings()
        print(settings.app.api_port)
        print(settings.retrieval.fhir_base_url)
    """

    def __init__(self):
        self.app = AppSettings()
        self.llm = LLMSettings()
        self.retrieval = RetrievalSettings()
        self.trends = TrendSettings()

    @property
    def is_development(self) -> bool:
        return self.app.env == "development"

    @property
    def is_production(self) -> bool:
        return self.app.env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings
    """
    return Settings()
