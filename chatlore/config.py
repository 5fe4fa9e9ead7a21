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
    """chatlore configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/chatlore.db"))

    # Turso (hosted libSQL); when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Chat bridge (HTTP sidecar)
    bridge_url: str = Field(default="http://localhost:3456")
    bridge_timeout_seconds: float = Field(default=30.0)

    # Embeddings (OpenAI-compatible endpoint; point base_url at Ollama's /v1 for local)
    openai_api_key: str = Field(default="")
    embedding_base_url: str = Field(default="")
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_dimensions: int = Field(default=1536)
    embedding_timeout_seconds: float = Field(default=30.0)
    embedding_batch_size: int = Field(default=10)
    embedding_queue_size: int = Field(default=100)
    embedding_workers: int = Field(default=2)

    # Retrieval
    retrieval_limit: int = Field(default=5)
    retrieval_threshold: float = Field(default=0.7)
    context_max_tokens: int = Field(default=2000)

    # Sources
    claude_projects_dir: Path = Field(default=Path("~/.claude/projects"))
    export_owner_name: str = Field(default="")
    import_user_only: bool = Field(default=True)

    # Import daemon
    import_daemon_enabled: bool = Field(default=True)
    import_poll_interval_seconds: float = Field(default=30.0)

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

    def get_claude_projects_dir(self) -> Path:
        """Expand ``~`` in CLAUDE_PROJECTS_DIR."""
        return self.claude_projects_dir.expanduser()

    def get_export_owner_name(self) -> str | None:
        """Return EXPORT_OWNER_NAME, or None when unset/blank."""
        name = self.export_owner_name.strip()
        return name or None


settings = Settings()
