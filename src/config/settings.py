"""Application settings loaded from environment variables via pydantic-settings.

Values are read from (highest priority first):

  1. Environment variables, e.g. ``EMBEDDING_API_KEY=sk-abc123``
  2. A ``.env`` file in the project root (local development only)

Field names map to upper-cased environment variables automatically.
Defaults apply when neither source defines a value.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ragstack application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Relational store ===
    database_path: str = "data/ragstack.db"

    # === Vector stores ===
    # Used by local-index stores that leave connection_string empty.
    local_index_dir: str = "./data/local_index"
    vector_store_timeout_seconds: float = 30.0

    # === Embeddings ===
    # openai | custom | ollama | gemini
    embedding_provider: str = "openai"
    embedding_api_key: str = ""
    openai_api_key: str = ""  # Fallback when embedding_api_key is empty
    embedding_base_url: str = ""
    ollama_base_url: str = "http://localhost:11434"
    embedding_dimensions: int = 0  # 0 = use the model's known dimension
    embedding_max_retries: int = 2  # Transport-level retries inside the SDK
    embedding_timeout_seconds: float = 60.0

    # === LLM-assisted cleansing ===
    llm_api_key: str = ""
    llm_base_url: str = ""
    llm_timeout_seconds: float = 60.0

    # === Search ===
    query_cache_ttl_seconds: int = 300
    query_cache_max_size: int = 512
    search_default_top_k: int = 10

    # === Processing ===
    processing_concurrency: int = 4
    max_upload_bytes: int = 20 * 1024 * 1024

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def resolved_embedding_api_key(self) -> str:
        """Return the embedding API key, falling back to ``OPENAI_API_KEY``."""
        return self.embedding_api_key or self.openai_api_key

    def resolved_llm_api_key(self) -> str:
        """Return the cleansing LLM API key, falling back to the embedding key."""
        return self.llm_api_key or self.resolved_embedding_api_key()
