"""Structured logging configuration.

Governance log lines are keyed by team and caller. bind_caller() puts the
caller (and optionally the team) into the context of the current request or
CLI invocation, so every line the engine emits while serving it carries
them without each call site passing them along.
"""

import sys
import logging
from pathlib import Path
from typing import Optional
import structlog

# Chatty below WARNING: aiosqlite logs every statement, uvicorn every request
QUIET_LOGGERS = ("aiosqlite", "uvicorn.access")


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
):
    """Configure structured logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        json_format: If True, use JSON renderer; otherwise use colored console
    """

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    # Stdout belongs to CLI output
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        stream=sys.stderr,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))

        logging.getLogger().addHandler(file_handler)


def bind_caller(caller_id: str, team_id: Optional[str] = None) -> None:
    """Tag log lines emitted in the current context with the caller."""
    context = {"caller_id": caller_id}
    if team_id is not None:
        context["team_id"] = team_id
    structlog.contextvars.bind_contextvars(**context)


def clear_caller() -> None:
    structlog.contextvars.unbind_contextvars("caller_id", "team_id")


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)
