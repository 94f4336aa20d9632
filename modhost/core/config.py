# modhost/core/config.py
from __future__ import annotations

from typing import Annotated, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime settings, loaded from environment variables and/or .env file.

    These are process-wide defaults. A ``RuntimeConfig`` built from a config
    mapping may override every runtime flag and retry bucket below.
    """

    # Environment settings
    APP_NAME: str = "modhost"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Which side this process runs on ("server" or "client")
    RUNTIME_SIDE: str = "server"

    # Runtime flags
    STRICT_VALIDATION: bool = False
    RECOVERY_QUEUE_ENABLED: bool = False
    CRITICAL_BACKGROUND_RETRIES: bool = False
    REJECT_DUPLICATE_MODULES: bool = False

    # Folder roots (python packages) used for discovery when no source is given
    SERVER_MODULES_PACKAGE: Optional[str] = None
    CLIENT_MODULES_PACKAGE: Optional[str] = None
    SHARED_MODULES_PACKAGES: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Comma-delimited list of shared module packages",
    )

    # Retry defaults: "general" bucket
    RETRY_INITIAL_WAIT_SECONDS: float = 1.0
    RETRY_MAX_ATTEMPTS: int = 5
    RETRY_PRINT_WARNING: bool = True
    RETRY_USE_JITTER: bool = False

    # Retry defaults: "background" bucket
    BACKGROUND_RETRY_INITIAL_WAIT_SECONDS: float = 2.0
    BACKGROUND_RETRY_MAX_ATTEMPTS: int = 10
    BACKGROUND_RETRY_USE_JITTER: bool = True

    # Start/stop buckets retry a fixed number of times at a constant wait
    LIFECYCLE_RETRY_MAX_ATTEMPTS: int = 3

    RETRY_MIN_WAIT_SECONDS: float = 0.1
    RETRY_JITTER_RATIO: float = 0.1

    # Observability
    METRICS_ENABLED: bool = True

    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() in ("development", "dev", "local")

    @field_validator("RUNTIME_SIDE", mode="before")
    @classmethod
    def _normalize_side(cls, value: str) -> str:
        side = str(value).strip().lower()
        if side not in ("server", "client"):
            raise ValueError("RUNTIME_SIDE must be 'server' or 'client'")
        return side

    @field_validator("SHARED_MODULES_PACKAGES", mode="before")
    @classmethod
    def _split_packages(cls, value: str | List[str]) -> List[str]:
        """Allow comma-separated strings for the shared packages env var."""
        if isinstance(value, str):
            return [pkg.strip() for pkg in value.split(",") if pkg.strip()]
        return value

    @field_validator(
        "RETRY_INITIAL_WAIT_SECONDS",
        "BACKGROUND_RETRY_INITIAL_WAIT_SECONDS",
        "RETRY_MIN_WAIT_SECONDS",
    )
    @classmethod
    def _non_negative_wait(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Retry waits must be non-negative")
        return value

    @field_validator(
        "RETRY_MAX_ATTEMPTS",
        "BACKGROUND_RETRY_MAX_ATTEMPTS",
        "LIFECYCLE_RETRY_MAX_ATTEMPTS",
    )
    @classmethod
    def _positive_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Retry attempts must be at least 1")
        return value

    @model_validator(mode="after")
    def _check_jitter_ratio(self) -> "Settings":
        if not 0.0 <= self.RETRY_JITTER_RATIO < 1.0:
            raise ValueError("RETRY_JITTER_RATIO must be within [0, 1)")
        return self

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


settings = Settings()
