"""Deletion Guard — Structured logging configuration.

Every entry carries an ISO timestamp, the level and the logger name, plus
whichever of ``actor_id`` / ``operation_id`` / ``batch_id`` is bound for the
current task via :func:`bind_deletion_context`.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_CONTEXT_KEYS = ("actor_id", "operation_id", "batch_id")


def bind_deletion_context(**context: str | None) -> None:
    """Bind actor/operation/batch ids to the current async task.  None values are ignored."""
    unknown = set(context) - set(_CONTEXT_KEYS)
    if unknown:
        raise TypeError(f"Unknown deletion context keys: {sorted(unknown)}")
    structlog.contextvars.bind_contextvars(
        **{k: v for k, v in context.items() if v is not None}
    )


def clear_deletion_context() -> None:
    structlog.contextvars.unbind_contextvars(*_CONTEXT_KEYS)


def configure_logging(
    level: str = "info",
    format: str = "console",
    log_file: str | None = None,
) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level:    One of debug, info, warning, error, critical.
        format:   ``"console"`` or ``"json"``.
        log_file: Optional path written in addition to stdout.
    """
    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if format == "json"
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(level.upper())

    # httpx logs every request at INFO.
    for noisy in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
