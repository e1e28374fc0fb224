"""
Configuration for the cancellation pipeline.

Settings have sensible local defaults and can be overridden through
environment variables (BIPRO_* prefix).
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, field_validator


# Environment variable -> settings field
_ENV_VARS: dict[str, str] = {
    "BIPRO_DOCUMENT_SERVICE_URL": "document_service_url",
    "BIPRO_MAPPING_SERVICE_URL": "mapping_service_url",
    "BIPRO_CONFIRMATION_SERVICE_URL": "confirmation_service_url",
    "BIPRO_TIMEOUT_SECONDS": "timeout_seconds",
    "BIPRO_TRACE_DIR": "trace_dir",
    "BIPRO_DOWNLOAD_DIR": "download_dir",
    "BIPRO_PREVIEW_TTL_SECONDS": "preview_ttl_seconds",
}


class ServiceSettings(BaseModel):
    """Endpoints and local directories used by a pipeline instance."""

    document_service_url: str = "http://localhost:8081"
    mapping_service_url: str = "http://localhost:8082"
    confirmation_service_url: str = "http://localhost:8083"
    timeout_seconds: float = 30.0
    trace_dir: Path = Path("traces")
    download_dir: Path = Path("downloads")
    preview_ttl_seconds: float = 60.0

    @field_validator(
        "document_service_url",
        "mapping_service_url",
        "confirmation_service_url",
    )
    @classmethod
    def url_must_be_http(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Service URL must start with http:// or https://, got {v!r}")
        return v.rstrip("/")

    @field_validator("timeout_seconds", "preview_ttl_seconds")
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Must be > 0, got {v}")
        return v

    def trace_path(self) -> Path:
        """Path to the trace.jsonl file."""
        return self.trace_dir / "trace.jsonl"


def load_settings(environ: dict[str, str] | None = None) -> ServiceSettings:
    """
    Build settings from environment variables.

    Args:
        environ: Mapping to read from. Defaults to os.environ.

    Returns:
        ServiceSettings with every set BIPRO_* variable applied.

    Raises:
        pydantic.ValidationError: If a variable holds an invalid value.
    """
    env = os.environ if environ is None else environ
    overrides = {
        field: env[var]
        for var, field in _ENV_VARS.items()
        if env.get(var)
    }
    return ServiceSettings.model_validate(overrides)
