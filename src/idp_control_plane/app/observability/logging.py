"""Structured logging for the control plane.

structlog renders both structlog loggers and the ``logging.getLogger``
records the providers, orchestrator and scheduler emit. Every entry carries:

- ``service`` and ``environment``, bound once by ``configure_logging``
- ``request_id`` while a request is being served
- the ``extra=`` fields of stdlib records, as top-level keys

Values under secret-looking keys (API tokens, OAuth secrets, kubeconfigs)
are replaced with ``[REDACTED]`` before rendering, including inside nested
mappings such as a logged stack configuration.

Usage::

    from idp_control_plane.app.observability.logging import configure_logging

    configure_logging(environment=settings.environment)
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from contextvars import ContextVar
from typing import Any

import structlog

SERVICE_NAME = "idp-control-plane"

# Key substrings (case-insensitive) whose values must never reach a log line
# or an API response.
SECRET_KEY_MARKERS = ("token", "kubeconfig")
_LOG_SECRET_MARKERS = (*SECRET_KEY_MARKERS, "secret", "authorization", "password")
REDACTED = "[REDACTED]"

# Keys structlog itself owns; never redacted.
_RESERVED_KEYS = frozenset({"event", "level", "logger", "timestamp", "request_id"})

# Libraries whose INFO output is per-request noise.
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

_configured = False


def is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _LOG_SECRET_MARKERS)


def _scrub(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if isinstance(k, str) and is_secret_key(k) else _scrub(v)
            for k, v in value.items()
        }
    return value


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Replace the values of secret-looking keys at any mapping depth."""
    for key in list(event_dict):
        if key in _RESERVED_KEYS:
            continue
        if is_secret_key(key):
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _scrub(event_dict[key])
    return event_dict


def _add_request_id(logger: Any, method_name: str, event_dict: dict) -> dict:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict.setdefault("request_id", rid)
    return event_dict


def _service_fields(environment: str) -> structlog.types.Processor:
    def add_service(logger: Any, method_name: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_service


def configure_logging(
    *,
    environment: str = "local",
    level: str | None = None,
    json_output: bool | None = None,
    force: bool = False,
) -> None:
    """Route structlog and stdlib logging through one redacting formatter.

    Args:
        environment: Deployment environment bound to every entry.
        level: Log level name. Defaults to LOG_LEVEL or INFO.
        json_output: JSON lines when True, console output when False.
            Defaults to JSON unless LOG_FORMAT is set to something else.
        force: Reconfigure even if already configured (tests).
    """
    global _configured
    if _configured and not force:
        return
    _configured = True

    level = level or os.environ.get("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") == "json"

    shared: list = [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        _service_fields(environment),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    # Redaction runs after ``extra=`` fields are lifted into the event dict.
    tail: list = [
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared,
            *tail,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*shared, structlog.stdlib.ExtraAdder(), *tail],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
