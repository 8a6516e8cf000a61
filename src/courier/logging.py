"""Structured logging for Courier.

JSON lines in production, coloured console output in development. Every
event passes through `redact_secrets`, so a signing secret that ends up in
a log call (as a field or inside a message) is masked before rendering.

Delivery code binds `job_id` / `subscription_id` / `event_id` with
`job_context()` so every line logged while a job is processed carries them.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.typing import EventDict, Processor

_configured = False

REDACTED = "[redacted]"
_SECRET_KEYS = frozenset({"signing_secret", "secret", "qdrant_api_key", "api_key"})
_SECRET_PATTERN = re.compile(r"whsec_[A-Za-z0-9_\-]+")


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """structlog processor masking signing secrets and API keys."""
    for key, value in event_dict.items():
        if key in _SECRET_KEYS and value is not None:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "whsec_" in value:
            event_dict[key] = _SECRET_PATTERN.sub(REDACTED, value)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(level: str = "INFO", format: str = "json") -> None:
    """Configure structured logging for Courier.

    Args:
        level: Log level name. Unknown names fall back to INFO.
        format: "json" for production, "text" for development.

    Example:
        ```python
        from courier.logging import configure_logging, get_logger

        configure_logging(level="DEBUG", format="text")
        get_logger(__name__).info("Delivery coordinator started", poll_interval=1.0)
        ```
    """
    global _configured

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    if format.lower() == "json":
        renderer: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=[*_shared_processors(), *renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()

    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: object) -> None:
    """Bind key/values to every subsequent log line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def job_context(job_id: str, subscription_id: str, event_id: str) -> Iterator[None]:
    """Bind a delivery job's identifiers for the duration of the block.

    Context variables are per asyncio task, so concurrently processed jobs
    do not see each other's bindings.
    """
    with structlog.contextvars.bound_contextvars(
        job_id=job_id, subscription_id=subscription_id, event_id=event_id
    ):
        yield


logger = get_logger("courier")
