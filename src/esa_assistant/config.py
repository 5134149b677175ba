"""Configuration for the assistant using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent  # src/esa_assistant/ → project root


class Settings(BaseSettings):
    """All settings, loaded from environment variables and the .env file."""

    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Slack
    # ------------------------------------------------------------------
    slack_bot_token: str = ""
    slack_app_token: str = ""
    slack_api_timeout_s: int = 10

    # ------------------------------------------------------------------
    # esa
    # ------------------------------------------------------------------
    esa_api_key: str = ""
    esa_team_name: str = ""
    esa_base_url: str = "https://api.esa.io"
    esa_archive_marker: str = "Archive"
    esa_create_as_wip: bool = True
    esa_autogen_trigger_reaction: str = "esa"

    # ------------------------------------------------------------------
    # Generation backend
    # ------------------------------------------------------------------
    generation_provider: Literal["google-vertex", "azure-openai"] = "google-vertex"

    google_cloud_project_id: str = ""
    google_cloud_location: str = "us-central1"
    google_gemini_model: str = "gemini-2.5-flash"

    azure_openai_api_key: str = ""
    azure_openai_endpoint: str = ""
    azure_openai_api_version: str = "2025-01-01-preview"
    azure_openai_chat_deployment: str = "gpt-4o-mini"

    generation_max_retries: int = 3
    generation_initial_delay_ms: int = 1000

    # Keyword / category bounds are backend-tunable
    keyword_count: int = 8
    keyword_min_length: int = 2
    max_categories: int = 3

    display_timezone: str = "Asia/Tokyo"

    # ------------------------------------------------------------------
    # Logging / HTTP / readiness
    # ------------------------------------------------------------------
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    port: int = 8080
    host: str = "0.0.0.0"
    readiness_grace_ms: int = 20000
    slack_ping_interval_ms: int = 5000

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------
    def validate_runtime(self) -> None:
        """Check that all required secrets are present.

        Call this at application startup (not at import time) so that
        tests can override settings before validation runs.
        """
        if not self.slack_bot_token:
            raise ValueError("SLACK_BOT_TOKEN not set")
        if not self.slack_app_token:
            raise ValueError("SLACK_APP_TOKEN not set")
        if not self.esa_api_key:
            raise ValueError("ESA_API_KEY not set")
        if not self.esa_team_name:
            raise ValueError("ESA_TEAM_NAME not set")
        if self.generation_provider == "google-vertex" and not self.google_cloud_project_id:
            raise ValueError("GOOGLE_CLOUD_PROJECT_ID not set (GENERATION_PROVIDER=google-vertex)")
        if self.generation_provider == "azure-openai" and not (
            self.azure_openai_api_key and self.azure_openai_endpoint
        ):
            raise ValueError(
                "AZURE_OPENAI_API_KEY and AZURE_OPENAI_ENDPOINT must be set (GENERATION_PROVIDER=azure-openai)"
            )
        if self.keyword_count < 1 or self.max_categories < 1:
            raise ValueError("KEYWORD_COUNT and MAX_CATEGORIES must be positive")


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings singleton."""
    return Settings()
