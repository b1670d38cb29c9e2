"""
Central configuration. All API keys, timeouts and paths in one place.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    env: str = Field(default="development", alias="ENV")
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database (submission records)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./formdesk.db",
        alias="DATABASE_URL",
    )

    # LLM
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    aiml_api_key: str = Field(default="", alias="AIML_API_KEY")
    aiml_base_url: str = Field(default="https://api.aimlapi.com/v1", alias="AIML_BASE_URL")
    gemini_api_key: str = Field(default="", alias="GEMINI_API_KEY")
    default_llm_model: str = Field(default="gemini-2.5-flash", alias="DEFAULT_LLM_MODEL")
    default_llm_temperature: float = Field(default=0.3, alias="DEFAULT_LLM_TEMPERATURE")
    default_llm_max_tokens: int = Field(default=2048, alias="DEFAULT_LLM_MAX_TOKENS")

    # Capability timeouts (seconds)
    llm_timeout_seconds: float = Field(default=30.0, alias="LLM_TIMEOUT_SECONDS")
    retrieval_timeout_seconds: float = Field(default=10.0, alias="RETRIEVAL_TIMEOUT_SECONDS")
    render_timeout_seconds: float = Field(default=20.0, alias="RENDER_TIMEOUT_SECONDS")

    # Sessions
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    session_ttl_seconds: int = Field(default=24 * 60 * 60, alias="SESSION_TTL_SECONDS")
    session_lock_timeout_seconds: float = Field(default=90.0, alias="SESSION_LOCK_TIMEOUT_SECONDS")
    # Hard deadline for one whole turn; the Redis lock outlives it
    turn_timeout_seconds: float = Field(default=240.0, alias="TURN_TIMEOUT_SECONDS")
    max_history_turns: int = Field(default=200, alias="MAX_HISTORY_TURNS")

    # Forms, knowledge, rendering
    form_catalog_path: str = Field(default="./data/forms", alias="FORM_CATALOG_PATH")
    pdf_templates_path: str = Field(default="./data/templates", alias="PDF_TEMPLATES_PATH")
    knowledge_path: str = Field(default="./data/knowledge", alias="KNOWLEDGE_PATH")

    # Artifact storage
    local_storage_path: str = Field(default="./submitted-forms", alias="LOCAL_STORAGE_PATH")
    aws_access_key_id: str = Field(default="", alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str = Field(default="", alias="AWS_SECRET_ACCESS_KEY")
    aws_region: str = Field(default="us-east-1", alias="AWS_REGION")
    s3_bucket_name: str = Field(default="formdesk-submissions", alias="S3_BUCKET_NAME")

    # API
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")


@lru_cache
def get_settings() -> Settings:
    return Settings()
