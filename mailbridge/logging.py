"""Structured logging for the bridge: structlog over stdlib logging.

Every line carries the bridge's base context (instance name, target chat)
bound once at startup, and Bot API tokens are masked wherever they show
up, including the request URLs httpx logs on its own.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Mapping
from typing import Any

import structlog

_BOT_TOKEN_RE = re.compile(r"bot\d+:[A-Za-z0-9_-]+")
_NOISY_LOGGERS = ("weasyprint", "fontTools")


def redact_bot_tokens(
    _logger: Any, _method: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    for key, value in event_dict.items():
        if isinstance(value, str) and "bot" in value:
            event_dict[key] = _BOT_TOKEN_RE.sub("bot<redacted>", value)
    return event_dict


def setup_logging(
    *,
    json: bool = True,
    level: str = "INFO",
    context: Mapping[str, Any] | None = None,
) -> None:
    """Configure structlog for the bridge process.

    Parameters
    ----------
    json:
        If *True* (the default, suitable for containers), output JSON
        lines.  If *False*, use a human-friendly console renderer.
    level:
        Root log level name (e.g. ``"DEBUG"``, ``"INFO"``).
    context:
        Key/values bound into the contextvars of the calling task, so the
        task and everything it spawns log them.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            redact_bot_tokens,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    # CSS warnings for every email would drown the intake log
    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(logging.WARNING, root.level))

    if context:
        structlog.contextvars.bind_contextvars(**context)
