"""Shared application configuration for QueryLift."""

from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings


DEFAULT_SYSTEM_PROMPT = (
    "You are an expert database performance engineer. You rewrite SQL "
    "statements so they return exactly the same result while executing "
    "faster. You never invent tables or columns that are not present in the "
    "query or in the supplied metadata."
)


class Settings(BaseSettings):
    """Application settings loaded from environment.

    Every field can be overridden with a ``QL_``-prefixed environment
    variable (``QL_LLM_MODEL``, ``QL_DATABASE_URL`` ...) or a ``.env`` file.
    """

    # Application database (chats, connections, optimization results)
    database_url: str = ""
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: str = "querylift"
    db_user: str = "querylift"
    db_password: str = ""
    db_echo: bool = False
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Target databases (the ones queries are measured against)
    target_pool_min_size: int = 1
    target_pool_max_size: int = 5
    db_statement_timeout_ms: int = 60_000
    db_command_timeout_seconds: float = 90.0
    metadata_query_timeout_seconds: float = 10.0

    # Cloud reasoning model (OAuth client-credentials + bearer token)
    llm_api_url: str = "https://gigachat.devices.sberbank.ru/api/v1"
    llm_auth_url: str = "https://ngw.devices.sberbank.ru:9443/api/v2/oauth"
    llm_client_id: str = ""
    llm_client_secret: str = ""
    llm_auth_scope: str = "GIGACHAT_API_PERS"
    llm_model: str = "GigaChat-Pro"
    llm_verify_ssl: bool = True
    llm_ca_bundle: Optional[str] = None

    # Local reasoning model (Ollama or any OpenAI-compatible endpoint)
    local_llm_url: str = "http://localhost:11434/v1"
    local_llm_model: str = "qwen2.5-coder:14b-instruct-q4_K_M"

    # Generation parameters
    llm_temperature: float = 0.1
    llm_max_tokens: int = 4096
    llm_system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # Resilience
    llm_timeout_seconds: float = 120.0
    llm_max_attempts: int = 3
    llm_backoff_initial_seconds: float = 1.0
    token_refresh_margin_seconds: int = 300
    auth_timeout_seconds: float = 30.0

    # CORS
    cors_origins: str = "http://localhost:5173"

    class Config:
        env_prefix = "QL_"
        env_file = ".env"

    @property
    def has_database(self) -> bool:
        """Check if the application database is configured."""
        return bool(self.database_url) or bool(self.db_password)

    @property
    def has_cloud_llm(self) -> bool:
        """Check if client credentials for the cloud model are configured."""
        return bool(self.llm_client_id) and bool(self.llm_client_secret)

    @property
    def tls_verify(self) -> bool | str:
        """Value for httpx's ``verify`` argument.

        A CA bundle path wins over the boolean switch.
        """
        if self.llm_ca_bundle:
            return self.llm_ca_bundle
        return self.llm_verify_ssl


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
