"""Error taxonomy shared by the clients, the orchestrator and the routes.

Every failure the platform reports derives from ``PlatformError`` so the
HTTP layer can render one consistent payload::

    {"code": "UPSTREAM_ERROR", "message": "...", "request_id": "..."}

Errors are kept small and free of ``httpx`` objects so they never carry
request headers (and therefore never carry tokens).
"""

from __future__ import annotations


class PlatformError(Exception):
    """Base class for all platform errors."""

    code = "PLATFORM_ERROR"
    http_status = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message

    def with_context(self, context: str) -> PlatformError:
        """Prefix the message with the step that failed and return self."""
        self.message = f"{context}: {self.message}"
        return self


class ValidationError(PlatformError):
    """A required identifier or field is missing. Raised before any remote call."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class ConfigurationError(PlatformError):
    """A required credential is not configured. Raised before any remote call."""

    code = "CONFIGURATION_ERROR"
    http_status = 500


class NotFoundError(PlatformError):
    """A lookup by derived tag (or environment key) found nothing."""

    code = "NOT_FOUND"
    http_status = 404


class ScaffoldError(PlatformError):
    """Rendering a blueprint template into a scratch directory failed."""

    code = "SCAFFOLD_FAILED"
    http_status = 500


class UpstreamError(PlatformError):
    """An external API answered with an unexpected status.

    ``status_code`` is 0 when no response was received at all.
    """

    code = "UPSTREAM_ERROR"
    http_status = 502

    def __init__(
        self,
        service: str,
        status_code: int,
        message: str = "",
        *,
        response_body: str = "",
    ) -> None:
        self.service = service
        self.status_code = status_code
        self.response_body = response_body
        if not message:
            detail = response_body[:200] if response_body else "no response body"
            message = f"{service} API returned HTTP {status_code}: {detail}"
        super().__init__(message)


class UpstreamNotFoundError(UpstreamError):
    """The external API answered 404."""

    code = "UPSTREAM_NOT_FOUND"
    http_status = 404

    def __init__(self, service: str, message: str = "", **kwargs: str) -> None:
        super().__init__(service, 404, message, **kwargs)


class UpstreamTimeoutError(UpstreamError):
    """The external API did not answer within the client timeout."""

    code = "UPSTREAM_TIMEOUT"
    http_status = 504

    def __init__(self, service: str, message: str = "request timed out") -> None:
        super().__init__(service, 0, f"{service} API {message}")


def require(value: str | None, field: str) -> str:
    """Return ``value`` stripped, or raise ValidationError when it is blank."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    return str(value).strip()
