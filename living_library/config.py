"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Living Library configuration. All values come from environment variables."""

    # Anthropic (generation + follow-up rewriting)
    anthropic_api_key: str = Field(default="")
    claude_model: str = Field(default="claude-sonnet-4-5-20250929")
    generation_max_tokens: int = Field(default=2000)
    generation_temperature: float = Field(default=0.7)
    generation_timeout_seconds: float = Field(default=120.0)
    rewrite_model: str = Field(default="")
    rewrite_max_tokens: int = Field(default=60)
    rewrite_timeout_seconds: float = Field(default=10.0)

    # Voyage AI (query embeddings)
    voyage_api_key: str = Field(default="")
    voyage_api_url: str = Field(default="https://api.voyageai.com/v1/embeddings")
    voyage_model: str = Field(default="voyage-3-lite")
    embedding_timeout_seconds: float = Field(default=15.0)

    # Database
    database_path: Path = Field(default=Path("data/library.db"))

    # Turso (hosted libSQL); overrides database_path when set
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Persona
    knowledge_document_path: Path = Field(default=Path("config/KNOWLEDGE.md"))
    default_client_slug: str = Field(default="josh-galt")

    # Conversation
    history_limit: int = Field(default=40)
    followup_max_length: int = Field(default=120)
    rewrite_history_turns: int = Field(default=6)

    # Retrieval
    match_count: int = Field(default=5)
    match_threshold: float = Field(default=0.3)
    keyword_fallback_below: int = Field(default=2)
    keyword_limit: int = Field(default=5)

    # HTTP server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8080)
    api_key: str = Field(default="")
    cors_allow_origin: str = Field(default="*")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_rewrite_model(self) -> str:
        """Model used for follow-up rewriting; falls back to the chat model."""
        return self.rewrite_model.strip() or self.claude_model


settings = Settings()
