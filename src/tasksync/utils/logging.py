"""Structured logging on top of structlog and the stdlib logging tree."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from functools import lru_cache
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor

from tasksync.config import Settings, get_settings

# Substrings of keys whose values never reach the log stream
SENSITIVE_KEYS = frozenset({
    "password",
    "passwd",
    "token",
    "secret",
    "authorization",
    "cookie",
    "credential",
    "api_key",
})

REDACTED = "***REDACTED***"


def _mask(key: str, value: Any) -> Any:
    if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
        if isinstance(value, str) and len(value) > 8:
            return f"{value[:4]}...{value[-4:]}"
        return REDACTED
    if isinstance(value, dict):
        return {k: _mask(str(k), v) for k, v in value.items()}
    return value


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Processor masking credential-like values, including nested dicts.

    Long strings keep their first and last four characters so operators can
    still tell two tokens apart.
    """
    return {key: _mask(key, value) for key, value in event_dict.items()}


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_secrets,
    ]


def _handler(handler: logging.Handler, renderer: Processor) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=_shared_processors(),
        )
    )
    return handler


def setup_logging(settings: Settings | None = None, use_stderr: bool = False) -> None:
    """Route structlog and stdlib records through one set of handlers.

    Args:
        settings: Logging settings (cached settings if None)
        use_stderr: Log to stderr, keeping stdout free for command output
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[*_shared_processors(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    stream: TextIO = sys.stderr if use_stderr else sys.stdout

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_handler(logging.StreamHandler(stream), renderer))
    if settings.log_file:
        # Files always get JSON regardless of the console format
        root.addHandler(_handler(logging.FileHandler(settings.log_file), structlog.processors.JSONRenderer()))
    root.setLevel(settings.log_level)

    for noisy in ("uvicorn.access", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@contextmanager
def bound_context(**values: Any) -> Iterator[None]:
    """Attach key/values to every log event emitted inside the block.

    Used by the realtime endpoint so that everything logged while serving a
    connection carries its session and user ids.
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield


@lru_cache(maxsize=128)
def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a cached structured logger by name.

    Args:
        name: Logger name, typically __name__

    Returns:
        Bound structured logger
    """
    return structlog.get_logger(name)
