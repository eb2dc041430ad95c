"""Structured logging with structlog and per-request context."""

import logging
import uuid

import structlog


def get_correlation_id() -> str:
    return structlog.contextvars.get_contextvars().get("correlation_id", "")


def bind_request_context(cid: str | None = None) -> str:
    """Start a fresh log context for one request and return its correlation ID."""
    cid = cid or uuid.uuid4().hex[:16]
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(correlation_id=cid)
    return cid


def bind_org(org_id: uuid.UUID) -> None:
    structlog.contextvars.bind_contextvars(org_id=str(org_id))


def configure_logging(log_level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(log_level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
