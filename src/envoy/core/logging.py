"""structlog setup shared by the CLI and the API server.

Every entry logged while a message is processed carries the conversation ID,
bound through a context variable by the orchestrator. Email bodies and chat
content are personal data: the content processor shortens any of those
fields before rendering, so a full draft never reaches the log stream.

Usage:
    from envoy.core.logging import conversation_scope, get_logger

    logger = get_logger(__name__)

    with conversation_scope(conversation_id):
        logger.info("action_queued", action_id="abc123", action_type="email.send")
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

import structlog

_conversation_id: ContextVar[str | None] = ContextVar("conversation_id", default=None)

# Event fields that may hold message or draft text
CONTENT_FIELDS = frozenset({"body", "content", "message", "draft", "prompt"})
MAX_CONTENT_CHARS = 80

# Chatty client libraries, kept at WARNING unless debugging
_QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "aiosqlite")


@contextmanager
def conversation_scope(conversation_id: str) -> Iterator[None]:
    """Bind a conversation ID for the duration of the block."""
    token = _conversation_id.set(conversation_id)
    try:
        yield
    finally:
        _conversation_id.reset(token)


def add_conversation_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    conversation_id = _conversation_id.get()
    if conversation_id is not None:
        event_dict.setdefault("conversation_id", conversation_id)
    return event_dict


def shorten_content(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Cut message/draft text fields down to MAX_CONTENT_CHARS."""
    for key in CONTENT_FIELDS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str) and len(value) > MAX_CONTENT_CHARS:
            event_dict[key] = f"{value[:MAX_CONTENT_CHARS]}... ({len(value)} chars)"
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: JSON lines (server) instead of colored console output (CLI)

    Raises:
        ValueError: If log_level is not a known level name
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level '{log_level}'")

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    if level > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_conversation_id,
        shorten_content,
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, usually with the calling module's __name__."""
    return structlog.get_logger(name)
