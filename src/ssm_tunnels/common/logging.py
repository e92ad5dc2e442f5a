"""Centralized logging configuration using structlog."""

import logging
import sys

import structlog
from structlog.typing import Processor

PACKAGE_LOGGER = "ssm_tunnels"


def _renderer(json_format: bool) -> Processor:
    if json_format:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
    logger_name: str = PACKAGE_LOGGER,
) -> None:
    """Configure structured logging for tunnel tracking.

    The package never calls this itself; applications embedding the
    tracker decide how and where logs go. Handlers are attached to the
    package logger so the application's root logger is left alone.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON formatted logs
        log_file: Optional file path to also write logs to
        logger_name: Stdlib logger receiving the handlers ("" for root)
    """
    log_level = getattr(logging, level.upper())

    target = logging.getLogger(logger_name or None)
    for handler in target.handlers[:]:
        target.removeHandler(handler)
        handler.close()
    target.setLevel(log_level)
    target.propagate = not logger_name

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter("%(message)s"))
    target.addHandler(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )
        target.addHandler(file_handler)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _renderer(json_format),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for a module.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]
