from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except ValueError:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")
    port: int = Field(default=3000, alias="PORT")
    base_url: str | None = Field(default=None, alias="BASE_URL")
    token_max_age_seconds: int = Field(default=7 * 24 * 3600, alias="TOKEN_MAX_AGE_SECONDS")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="imagegen", alias="MONGODB_DB_NAME")

    # Redis / job queue
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    job_queue: str = Field(default="arq", alias="JOB_QUEUE", description="arq | inline")
    generation_concurrency: int = Field(default=10, alias="GENERATION_CONCURRENCY")

    # Hugging Face inference
    huggingface_api_key: str = Field(default="", alias="HUGGINGFACE_API_KEY")
    huggingface_api_url: str = Field(
        default="https://api-inference.huggingface.co/models",
        alias="HUGGINGFACE_API_URL",
    )

    # Generation policy
    generation_max_attempts: int = Field(default=3, alias="GENERATION_MAX_ATTEMPTS")
    generation_timeout_seconds: float = Field(default=60.0, alias="GENERATION_TIMEOUT_SECONDS")
    generation_backoff_seconds: float = Field(default=2.0, alias="GENERATION_BACKOFF_SECONDS")
    stale_job_minutes: int = Field(default=15, alias="STALE_JOB_MINUTES")

    # Storage
    storage_backend: str = Field(default="local", alias="STORAGE_BACKEND")
    storage_local_path: str = Field(default="./generated-images", alias="STORAGE_LOCAL_PATH")
    gcs_bucket_name: str | None = Field(default=None, alias="GCS_BUCKET_NAME")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    @property
    def public_base_url(self) -> str:
        return (self.base_url or f"http://localhost:{self.port}").rstrip("/")

    # Credits
    signup_bonus_credits: int = 100
    credits_per_image: int = 1


@lru_cache
def get_settings() -> Settings:
    return Settings()
