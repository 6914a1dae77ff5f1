"""Controller settings.

Everything the controller would otherwise hard-code (requeue intervals,
the finalizer token, asset manifest naming, worker pool size) is read
once at startup from ``CONVERGE_*`` environment variables or a ``.env``
file.

Features:
    - **ControllerSettings:** pydantic-settings model with validated fields
    - **env_prefix:** ``CONVERGE_`` namespacing
    - **.env file support:** Automatic loading via pydantic-settings
    - **Extra ignore:** Unknown env vars don't cause startup failures

Examples:
    >>> from converge.core.settings import ControllerSettings
    >>> settings = ControllerSettings(workers=4)
    >>> settings.transport_wait_seconds
    10.0

Tags:
    settings, configuration, pydantic, environment
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ControllerSettings(BaseSettings):
    """Settings for one controller process.

    Fields
    ──────
    finalizer            : Token this controller places on objects it owns
    log_level / json_logs: structlog configuration
    workers              : Size of the reconcile worker pool
    *_seconds            : Requeue intervals for the waits in the pipeline
    backoff_*            : Per-key exponential backoff after a failed pass
    manifest_*/asset_*   : Asset upload manifest naming
    """

    model_config = SettingsConfigDict(
        env_prefix="CONVERGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Identity ─────────────────────────────────────────────────
    finalizer: str = Field(
        default="openstack.org/octavia",
        description="Finalizer token identifying this controller's cleanup obligation",
    )
    service_name: str = "converge"

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Worker pool ──────────────────────────────────────────────
    workers: int = Field(default=2, ge=1)

    # ── Requeue intervals (seconds) ──────────────────────────────
    input_wait_seconds: float = 10.0
    database_wait_seconds: float = 5.0
    migration_poll_seconds: float = 5.0
    transport_wait_seconds: float = 10.0
    network_attachment_wait_seconds: float = 10.0
    uploader_wait_seconds: float = 1.0
    asset_import_wait_seconds: float = 5.0
    barrier_poll_seconds: float = 10.0
    manifest_retry_seconds: float = 1.0

    # ── Backoff after a failed pass ──────────────────────────────
    backoff_base_seconds: float = Field(default=0.005, gt=0)
    backoff_max_seconds: float = Field(default=300.0, gt=0)

    # ── Asset upload ─────────────────────────────────────────────
    manifest_filename: str = "octavia-amphora-images.sha256sum"
    asset_suffix: str = ".qcow2"
    uploader_port: int = 8080
    http_timeout_seconds: float = 10.0

    # ── Database ─────────────────────────────────────────────────
    database_name: str = "octavia"
    persistence_database_name: str = "octavia_persistence"

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level


@lru_cache(maxsize=1)
def get_settings() -> ControllerSettings:
    """Return the process-wide settings, loaded once."""
    return ControllerSettings()
