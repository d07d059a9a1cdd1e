"""Application settings loaded from environment variables.

Environment Configuration:
    PARLEY_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: SQLAlchemy connection string (required)
    DB_STATEMENT_TIMEOUT_MS: Upper bound for a single storage call
    PARLEY_INTERNAL_SECRET: Internal API secret (required in staging/prod)

Auth Configuration (required in all environments):
    AUTH_JWKS_URL: Full URL to the identity provider's JWKS endpoint
    AUTH_ISSUER: Expected JWT issuer (trailing slash stripped)
    AUTH_AUDIENCES: Comma-separated list of allowed audiences

Collaborators:
    CONNECTION_GATE_URL: Connection-graph service; the SQL gate is used when unset
    NOTIFICATION_SINK: "celery" (enqueue to worker) or "log"
    NOTIFICATION_WEBHOOK_URL: Where the worker delivers message notifications

Redis / Celery Configuration:
    REDIS_URL: Redis connection string
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Validation rules:
    - DATABASE_URL is always required
    - AUTH_JWKS_URL, AUTH_ISSUER, AUTH_AUDIENCES are required in all environments
    - PARLEY_INTERNAL_SECRET is required in staging and prod only
    - The celery notification sink needs a broker outside local/test
    """

    parley_env: Environment = Field(default=Environment.LOCAL, alias="PARLEY_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    db_statement_timeout_ms: int = Field(default=5000, alias="DB_STATEMENT_TIMEOUT_MS", ge=100)
    parley_internal_secret: str | None = Field(default=None, alias="PARLEY_INTERNAL_SECRET")

    # Identity provider
    auth_jwks_url: str | None = Field(default=None, alias="AUTH_JWKS_URL")
    auth_issuer: str | None = Field(default=None, alias="AUTH_ISSUER")
    auth_audiences: str | None = Field(default=None, alias="AUTH_AUDIENCES")

    # Redis / Celery
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # Notification collaborator
    notification_sink: Literal["celery", "log"] = Field(default="celery", alias="NOTIFICATION_SINK")
    notification_webhook_url: str | None = Field(default=None, alias="NOTIFICATION_WEBHOOK_URL")
    notification_timeout_s: float = Field(default=5.0, alias="NOTIFICATION_TIMEOUT_S", gt=0)

    # Connection-graph collaborator
    connection_gate_url: str | None = Field(default=None, alias="CONNECTION_GATE_URL")
    connection_gate_timeout_s: float = Field(default=2.0, alias="CONNECTION_GATE_TIMEOUT_S", gt=0)

    # Realtime hub
    hub_queue_size: int = Field(default=256, alias="HUB_QUEUE_SIZE", ge=1)
    hub_reorder_window_s: float = Field(default=1.0, alias="HUB_REORDER_WINDOW_S", gt=0)
    hub_sweep_interval_s: float = Field(default=0.5, alias="HUB_SWEEP_INTERVAL_S", gt=0)

    log_json: bool = Field(default=True, alias="LOG_JSON")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for the current environment."""
        missing_auth = []
        if not self.auth_jwks_url:
            missing_auth.append("AUTH_JWKS_URL")
        if not self.auth_issuer:
            missing_auth.append("AUTH_ISSUER")
        if not self.auth_audiences:
            missing_auth.append("AUTH_AUDIENCES")

        if missing_auth:
            raise ValueError(f"Missing required auth settings: {', '.join(missing_auth)}")

        if self.parley_env in (Environment.STAGING, Environment.PROD):
            if not self.parley_internal_secret:
                raise ValueError(
                    f"PARLEY_INTERNAL_SECRET is required for PARLEY_ENV={self.parley_env.value}"
                )
            if self.notification_sink == "celery" and not self.effective_celery_broker_url:
                raise ValueError(
                    "NOTIFICATION_SINK=celery requires CELERY_BROKER_URL or REDIS_URL "
                    f"for PARLEY_ENV={self.parley_env.value}"
                )

        return self

    @property
    def requires_internal_header(self) -> bool:
        """Whether requests must include the internal secret header."""
        return self.parley_env in (Environment.STAGING, Environment.PROD)

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.auth_audiences:
            return [a.strip() for a in self.auth_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.auth_issuer:
            return self.auth_issuer.rstrip("/")
        return None

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
