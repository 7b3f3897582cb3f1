"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings

from healthtruth.pipeline.versions import PipelineVersions


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "healthtruth"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Storage ---
    database_url: str | None = None  # unset = in-memory store (dev / tests)
    database_pool_min: int = 2
    database_pool_max: int = 20

    # --- Identity provider (JWT verification only) ---
    jwt_issuer: str | None = None
    jwt_audience: str | None = None
    jwt_jwks_url: str | None = None  # RS256 via JWKS when set
    jwt_secret: str | None = None  # HS256 shared secret otherwise

    # --- Rate Limiting ---
    rate_limit_per_minute: int = 60
    rate_limit_window_seconds: int = 60

    # --- Idempotency ---
    idempotency_ttl_seconds: int = 24 * 60 * 60

    # --- Trigger topics ---
    topic_raw_events: str = "raw-events.created.v1"
    topic_canonical_events: str = "canonical-events.created.v1"
    topic_account_delete: str = "account.delete.v1"
    trigger_max_attempts: int = 5
    trigger_backoff_seconds: float = 0.5
    trigger_concurrency: int = 4
    dispatcher_autostart: bool = True  # background consumer in the app lifespan

    # --- Pipeline versions ---
    raw_schema_version: int = 1
    canonical_version: int = 1
    logic_version: int = 1
    pipeline_version: int = 1

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:8081"]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "HEALTHTRUTH_",
    }

    def pipeline_versions(self) -> PipelineVersions:
        return PipelineVersions(
            schema_version=self.raw_schema_version,
            canonical_version=self.canonical_version,
            logic_version=self.logic_version,
            pipeline_version=self.pipeline_version,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
