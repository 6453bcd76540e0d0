"""Structured logging, request correlation and Prometheus metrics."""

from .logging import configure_logging, get_logger, redact_secrets, request_id_ctx

__all__ = ["configure_logging", "get_logger", "redact_secrets", "request_id_ctx"]
