"""Control plane configuration settings.

PlatformSettings is the single configuration object accepted by create_app().
It is a plain dataclass (not env-coupled) so tests can inject config without
touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .providers.base import DEFAULT_TIMEOUT_SECONDS
from .providers.repository_client import DEFAULT_GITHUB_API_URL
from .providers.stack_client import DEFAULT_STACK_API_URL
from .provisioning.tags import AUTO_DELETE_TAG
from .reclamation.scheduler import DEFAULT_INTERVAL_SECONDS, DEFAULT_PASS_TIMEOUT_SECONDS

DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:3000",
)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def _parse_bool(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _parse_float(raw: str | None, default: float, name: str) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class PlatformSettings:
    """Configuration for the control-plane FastAPI application.

    All fields have defaults for local development, where the app wires the
    in-memory clients. Non-local environments must supply the stack API token,
    the organization and the shared blueprint repository.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Stack / environment API ────────────────────────────────────
    stack_api_base_url: str = DEFAULT_STACK_API_URL
    stack_api_token: str = ""
    """Access token for the stack and environment APIs. Never log this."""

    organization: str = ""
    """Organization every stack lives under."""

    blueprint_repository: str = ""
    """``owner/repo`` of the shared blueprint repository on GitHub."""

    # ── Source control ─────────────────────────────────────────────
    github_token: str = ""
    """Server-side token for repository operations. Never log this."""

    github_client_id: str = ""
    github_client_secret: str = ""
    github_api_base_url: str = DEFAULT_GITHUB_API_URL

    # ── HTTP ───────────────────────────────────────────────────────
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS
    http_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    # ── Reclamation ────────────────────────────────────────────────
    reclamation_enabled: bool = True
    reclamation_interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    reclamation_timeout_seconds: float = DEFAULT_PASS_TIMEOUT_SECONDS
    reclamation_tag_key: str = AUTO_DELETE_TAG
    reclamation_tag_value: str = "true"

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not self.is_local:
            if not self.stack_api_token:
                errors.append(f"{self.environment}: stack_api_token is required")
            if not self.organization:
                errors.append(f"{self.environment}: organization is required")
            if not self.blueprint_repository:
                errors.append(f"{self.environment}: blueprint_repository is required")
        if self.http_timeout_seconds <= 0:
            errors.append("http_timeout_seconds must be positive")
        if self.reclamation_interval_seconds <= 0:
            errors.append("reclamation_interval_seconds must be positive")
        if self.reclamation_timeout_seconds <= 0:
            errors.append("reclamation_timeout_seconds must be positive")
        if not self.reclamation_tag_key:
            errors.append("reclamation_tag_key must not be empty")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> PlatformSettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct PlatformSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = (
            tuple(o.strip() for o in cors_raw.split(",") if o.strip())
            if cors_raw
            else DEFAULT_CORS_ORIGINS
        )

        tag_key, tag_value = AUTO_DELETE_TAG, "true"
        tag_raw = env.get("RECLAMATION_TAG", "")
        if tag_raw:
            key, _, value = tag_raw.partition("=")
            tag_key, tag_value = key.strip(), value.strip()

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            stack_api_base_url=env.get("PULUMI_BASE_URL", "") or DEFAULT_STACK_API_URL,
            stack_api_token=env.get("PULUMI_ACCESS_TOKEN", ""),
            organization=env.get("PULUMI_ORGANIZATION", ""),
            blueprint_repository=env.get("PULUMI_BLUEPRINT_GITHUB_LOCATION", ""),
            github_token=env.get("GITHUB_TOKEN", ""),
            github_client_id=env.get("GITHUB_CLIENT_ID", ""),
            github_client_secret=env.get("GITHUB_CLIENT_SECRET", ""),
            github_api_base_url=env.get("GITHUB_API_URL", "") or DEFAULT_GITHUB_API_URL,
            cors_origins=cors,
            http_timeout_seconds=_parse_float(
                env.get("HTTP_TIMEOUT_SECONDS"), DEFAULT_TIMEOUT_SECONDS, "HTTP_TIMEOUT_SECONDS",
            ),
            reclamation_enabled=_parse_bool(env.get("RECLAMATION_ENABLED"), True),
            reclamation_interval_seconds=_parse_float(
                env.get("RECLAMATION_INTERVAL_SECONDS"),
                DEFAULT_INTERVAL_SECONDS,
                "RECLAMATION_INTERVAL_SECONDS",
            ),
            reclamation_timeout_seconds=_parse_float(
                env.get("RECLAMATION_TIMEOUT_SECONDS"),
                DEFAULT_PASS_TIMEOUT_SECONDS,
                "RECLAMATION_TIMEOUT_SECONDS",
            ),
            reclamation_tag_key=tag_key,
            reclamation_tag_value=tag_value,
        )
