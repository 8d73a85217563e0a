from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal, Mapping

from pydantic import BaseModel, Field


_ENV_PREFIX = "BS_"


class Settings(BaseModel):
    env: Literal["dev", "test", "staging", "prod"] = Field(
        default="dev", description="Deployment environment label"
    )

    # Readiness checks: comma-separated list of checks to perform: db,s3
    ready_checks: str = Field(default="", description="Comma-separated readiness checks: db,s3")

    # Database
    db_url: str | None = Field(default=None, description="SQLAlchemy URL; sqlite file under ./db when unset")
    store_backend: Literal["sql", "memory"] = "sql"

    # Uploads
    storage_backend: Literal["local", "s3"] = "local"
    upload_dir: str = "uploads"
    upload_max_size: int = 10 * 1024 * 1024

    # Object storage (S3/MinIO)
    s3_endpoint: str | None = None
    s3_public_endpoint: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_region: str | None = None
    s3_bucket: str | None = None

    # Image provider
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    gemini_model: str = "gemini-2.5-flash-image-preview"
    proxy_url: str | None = None
    default_temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    max_output_tokens: int = Field(default=2048, gt=0)
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay_s: float = Field(default=1.0, ge=0.0)
    request_timeout_s: float = Field(default=60.0, gt=0)

    log_level: str = "INFO"

    # Metrics
    metrics_enabled: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from ``BS_*`` variables; unset or empty values keep their defaults."""
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for name in cls.model_fields:
            raw = env.get(f"{_ENV_PREFIX}{name.upper()}")
            if raw not in (None, ""):
                values[name] = raw
        if "gemini_api_key" not in values and env.get("GEMINI_API_KEY"):
            values["gemini_api_key"] = env["GEMINI_API_KEY"]
        return cls.model_validate(values)

    @property
    def is_production(self) -> bool:
        return self.env == "prod"

    def ready_check_set(self) -> set[str]:
        return {c.strip() for c in self.ready_checks.split(",") if c.strip()}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
