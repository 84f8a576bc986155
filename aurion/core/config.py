"""
Central configuration. Ollama, memory, search and API settings in one place.
"""

from functools import lru_cache
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = (
    "Tu es Aurion, un assistant personnel. "
    "Ne te présentes pas spontanément. "
    "Structure: commence par un résumé clair, puis détaille si utile. "
    "Termine tes explications, pas de coupure."
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # --- Environment ---
    env: str = Field(default="development", alias="ENV")
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    debug: bool = Field(default=False, alias="DEBUG")

    # --- Database ---
    database_url: str = Field(
        default="sqlite+aiosqlite:///./aurion.db",
        alias="DATABASE_URL",
    )
    migrate_legacy_facts: bool = Field(default=True, alias="MIGRATE_LEGACY_FACTS")

    # --- Ollama ---
    ollama_host: str = Field(default="http://localhost:11434", alias="OLLAMA_HOST")
    model_primary: str = Field(
        default="aurion-gemma",
        validation_alias=AliasChoices("AURION_MODEL_PRIMARY", "AURION_MODEL"),
    )
    model_secondary: str = Field(default="aurion-phi", alias="AURION_MODEL_SECONDARY")
    embed_model: str = Field(default="nomic-embed-text", alias="EMBED_MODEL")
    llm_num_ctx: int = Field(default=8192, alias="LLM_NUM_CTX")
    llm_num_predict: int = Field(default=1024, alias="LLM_NUM_PREDICT")
    llm_temperature: float = Field(default=0.5, alias="LLM_TEMPERATURE")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, alias="SYSTEM_PROMPT")

    # --- Fact memory ---
    fact_similarity_threshold: float = Field(
        default=0.85, ge=0.0, le=1.0, alias="FACT_SIMILARITY_THRESHOLD"
    )
    fact_default_source: str = Field(default="user-correction", alias="FACT_DEFAULT_SOURCE")

    # --- Web Search ---
    tavily_api_key: str = Field(default="", alias="TAVILY_API_KEY")
    search_cache_ttl_hours: float = Field(default=6.0, alias="SEARCH_CACHE_TTL_HOURS")

    # --- Conversation ---
    user_id: str = Field(default="rapido", alias="USER_ID")
    history_context_limit: int = Field(default=6, alias="HISTORY_CONTEXT_LIMIT")

    # --- API ---
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=3000, alias="PORT")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    @property
    def models(self) -> dict[str, str]:
        """Model aliases accepted in the `model` field of a request."""
        return {
            "primary": self.model_primary,
            "secondary": self.model_secondary,
            "gemma": self.model_primary,
            "phi": self.model_secondary,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
