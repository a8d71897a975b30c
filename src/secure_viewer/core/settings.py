"""Application settings and configuration.

This module defines all configuration options for the Secure Viewer service.
Settings are loaded from environment variables with sensible defaults; the
only mandatory value is the document encryption key.
"""

import re

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    A missing or malformed ``ENCRYPTION_MASTER_KEY`` fails validation, which
    aborts startup rather than surfacing later as a per-request error.
    """

    # Application metadata
    app_name: str = Field(default="Secure Viewer", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Document payload encryption (AES-256-GCM, hex-encoded 32-byte key)
    encryption_master_key: SecretStr = Field(alias="ENCRYPTION_MASTER_KEY")

    # Database configuration
    database_url: str = Field(default="sqlite:///./secure_viewer.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    documents_dir: str = Field(default="./data/documents", alias="DOCUMENTS_DIR")

    # Rate limiting
    rate_limit_backend: str = Field(default="memory", alias="RATE_LIMIT_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    rate_limit_max: int = Field(default=200, alias="RATE_LIMIT_MAX")
    rate_limit_window_ms: int = Field(default=60_000, alias="RATE_LIMIT_WINDOW_MS")
    rate_limit_sweep_interval_seconds: float = Field(
        default=300.0,
        alias="RATE_LIMIT_SWEEP_INTERVAL_SECONDS",
    )

    # Nonce retention
    nonce_retention_days: int = Field(default=7, alias="NONCE_RETENTION_DAYS")
    nonce_sweep_interval_seconds: float = Field(
        default=3600.0,
        alias="NONCE_SWEEP_INTERVAL_SECONDS",
    )
    maintenance_enabled: bool = Field(default=True, alias="MAINTENANCE_ENABLED")

    # Page rendering and watermarking
    render_scale: float = Field(default=2.0, alias="RENDER_SCALE")
    watermark_opacity: float = Field(default=0.15, alias="WATERMARK_OPACITY")
    watermark_font_size: int = Field(default=14, alias="WATERMARK_FONT_SIZE")
    watermark_color: str = Field(default="#888888", alias="WATERMARK_COLOR")
    watermark_angle: float = Field(default=30.0, alias="WATERMARK_ANGLE")

    # Suspicious activity reporting
    suspicious_window_minutes: int = Field(default=60, alias="SUSPICIOUS_WINDOW_MINUTES")
    suspicious_min_failures: int = Field(default=5, alias="SUSPICIOUS_MIN_FAILURES")

    # Peers whose X-Forwarded-For / X-Real-IP headers are honoured ("*" trusts all)
    trusted_proxies: list[str] = Field(default=["127.0.0.1", "::1"], alias="TRUSTED_PROXIES")

    # CORS configuration for the viewer frontend
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @field_validator("encryption_master_key")
    @classmethod
    def _check_master_key(cls, value: SecretStr) -> SecretStr:
        if not _HEX_KEY_RE.match(value.get_secret_value().strip()):
            raise ValueError("ENCRYPTION_MASTER_KEY must be a 64-character hex string (32 bytes)")
        return value

    @field_validator("rate_limit_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        backend = value.strip().lower()
        if backend not in {"memory", "redis"}:
            raise ValueError("RATE_LIMIT_BACKEND must be 'memory' or 'redis'")
        return backend

    @field_validator("watermark_opacity")
    @classmethod
    def _check_opacity(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ValueError("WATERMARK_OPACITY must be in (0, 1]")
        return value

    @property
    def master_key_hex(self) -> str:
        """Return the raw hex key; callers must not log or persist it."""
        return self.encryption_master_key.get_secret_value().strip()


settings = Settings()  # type: ignore[call-arg]
