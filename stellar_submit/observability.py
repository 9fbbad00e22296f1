"""
Structured logging configuration with structlog.

Production output is JSON, development output is a colored console.
The level comes from ``LOG_LEVEL`` (default INFO).

Secrets never reach a log line: the redaction processor masks any field
whose name marks it as key material or a credential, regardless of
which module logged it.

Usage:
    from stellar_submit.observability import configure_logging

    configure_logging(environment="development")

    import structlog
    log = structlog.get_logger(__name__)
    log.info("queue.enqueued", tx_id="tx_...")
"""

from __future__ import annotations

import logging
import os
from typing import Any, MutableMapping

import structlog
from structlog.typing import Processor

LOG_LEVEL_ENV = "LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"

REDACTED = "***"

# Field names that are always masked.
SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {"secret", "seed", "signing_secret_key", "token", "password"}
)


def _get_log_level() -> int:
    level_name = os.getenv(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def redact_sensitive_fields(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor: mask values of sensitive fields."""
    for key in list(event_dict.keys()):
        if key.lower() in SENSITIVE_FIELDS and event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(environment: str = "production") -> None:
    """Configure structlog for the process.

    Call once at startup (the composition root does this).

    Args:
        environment: "production" for JSON output, anything else for
            console output.
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_sensitive_fields,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "production":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def mask_key_id(key_id: str) -> str:
    """Shorten a public key for log lines: first 4 and last 4 chars."""
    if len(key_id) <= 8:
        return key_id
    return f"{key_id[:4]}...{key_id[-4:]}"
