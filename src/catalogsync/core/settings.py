"""Environment-driven settings for catalog-sync.

``SyncBaseSettings`` carries the process-wide knobs (log level and format,
service name). ``CatalogSettings`` configures the remote catalog
destination and validates its authentication options.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** type-checked at startup, not on first request
    - **Environment-driven:** reads from env vars and .env files
    - **Prefixed:** ``CATALOGSYNC_`` for the process, ``CATALOG_`` for the destination

Examples:
    >>> import os
    >>> os.environ["CATALOG_ENDPOINT"] = "https://catalog.example.com/items"
    >>> os.environ["CATALOG_TOKEN"] = "secret"
    >>> CatalogSettings.load().endpoint
    'https://catalog.example.com/items'

Tags:
    settings, configuration, pydantic, environment
"""

from __future__ import annotations

from typing import Any, Literal
from urllib.parse import urlsplit

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from catalogsync.core.errors import DestinationSetupError


class SyncBaseSettings(BaseSettings):
    """Process-wide settings.

    Fields
    ──────
    log_level    : Structlog log level
    log_format   : ``json``, ``console`` or ``auto`` (JSON when stdout is not a tty)
    service_name : Value of ``service.name`` in every log line
    """

    model_config = SettingsConfigDict(
        env_prefix="CATALOGSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: Literal["json", "console", "auto"] = "auto"
    service_name: str = "catalog-sync"


class CatalogSettings(BaseSettings):
    """Settings of the remote catalog destination.

    Either a static ``token`` or the ``client_id`` / ``client_secret`` pair
    is used for authentication, never both. ``auth_endpoint`` defaults to
    ``/oauth/token`` on the origin of ``endpoint``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CATALOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Endpoint ─────────────────────────────────────────────────
    endpoint: str
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")

    # ── Authentication ───────────────────────────────────────────
    token: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    auth_endpoint: str | None = None

    @field_validator("endpoint", "auth_endpoint")
    @classmethod
    def _absolute_url(cls, value: str | None) -> str | None:
        if value is None:
            return value
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"invalid URL: {value!r}")
        return value

    @model_validator(mode="after")
    def _check_credentials(self) -> CatalogSettings:
        if self.token and (self.client_id or self.client_secret):
            raise ValueError("token and client credentials are mutually exclusive")
        if bool(self.client_id) != bool(self.client_secret):
            raise ValueError("client id and client secret must be set together")
        return self

    @property
    def uses_client_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def token_url(self) -> str:
        """OAuth2 token endpoint, explicit or derived from ``endpoint``."""
        if self.auth_endpoint:
            return self.auth_endpoint
        parts = urlsplit(self.endpoint)
        return f"{parts.scheme}://{parts.netloc}/oauth/token"

    @classmethod
    def load(cls, **overrides: Any) -> CatalogSettings:
        """Build settings from the environment, raising :class:`DestinationSetupError`."""
        try:
            return cls(**overrides)
        except ValidationError as exc:
            problems = [
                f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
                for err in exc.errors()
            ]
            raise DestinationSetupError(
                "invalid catalog settings: " + "; ".join(problems),
                cause=exc,
            ) from exc


__all__ = ["SyncBaseSettings", "CatalogSettings"]
