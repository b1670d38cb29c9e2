"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Sessions / Realtime ──────────────────────────────────────────
    use_redis: bool = Field(default=True, alias="FF_USE_REDIS")
    # ON  → Sessions stored in Redis with TTL, per-session Redis lock,
    #       pub/sub notifications. Needs REDIS_URL.
    # OFF → In-process session store (single worker only). Notifications skipped.

    # ── Artifact storage ─────────────────────────────────────────────
    use_s3: bool = Field(default=False, alias="FF_USE_S3")
    # ON  → Rendered PDFs go to AWS S3. Needs AWS creds + S3_BUCKET_NAME.
    # OFF → Rendered PDFs saved to LOCAL_STORAGE_PATH.

    # ── Knowledge search ─────────────────────────────────────────────
    use_retrieval: bool = Field(default=True, alias="FF_USE_RETRIEVAL")
    # ON  → search_knowledge tool registered. Reads KNOWLEDGE_PATH.
    # OFF → Tool not registered. The assistant answers from the model alone.

    use_full_text_search: bool = Field(default=True, alias="FF_USE_FULL_TEXT_SEARCH")
    # ON  → Postgres ranks passages with tsvector/ts_rank. SQLite always uses ILIKE.
    # OFF → ILIKE term matching everywhere.

    # ── Document rendering ───────────────────────────────────────────
    use_pdf_render: bool = Field(default=True, alias="FF_USE_PDF_RENDER")
    # ON  → Submissions rendered to PDF (template if present, else summary).
    # OFF → Text-only confirmation.

    # ── Routing ──────────────────────────────────────────────────────
    llm_intent_routing: bool = Field(default=True, alias="FF_LLM_INTENT_ROUTING")
    # ON  → Idle turns are classified by the model (keyword pre-check first).
    # OFF → Keyword classification only.

    # ── LLM Provider ─────────────────────────────────────────────────
    llm_provider: str = Field(default="gemini", alias="FF_LLM_PROVIDER")
    # "gemini" → Google Gemini (OpenAI-compatible endpoint). Needs GEMINI_API_KEY.
    # "aiml"   → AIML API proxy. Needs AIML_API_KEY.
    # "openai" → Direct OpenAI. Needs OPENAI_API_KEY.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
