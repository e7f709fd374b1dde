"""
Structured logging for the ledger, built on structlog.

Every line carries the service name and, inside `log_context`, the
chain / tx / wallet being processed.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

SERVICE_NAME = "clawledger"

# Per-request chatter from HTTP clients and the access log
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "websockets")


def _add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_level: str = "INFO", json_logs: Optional[bool] = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Standard level name.
        json_logs: Force JSON lines on or off. By default JSON is used
            unless stderr is a terminal.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    if json_logs is None:
        json_logs = not sys.stderr.isatty()

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.dev.set_exc_info, structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Logger bound to a component name (module path or class name)."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(component=name)
    return logger


class LoggerMixin:
    """Adds a lazily created `log` bound to the class name."""

    @property
    def log(self) -> structlog.BoundLogger:
        try:
            return self._logger
        except AttributeError:
            self._logger = get_logger(type(self).__name__)
            return self._logger


def log_context(**kwargs: Any) -> structlog.contextvars.bound_contextvars:
    """Bind keys (chain, tx, wallet...) to every log line inside the block."""
    return structlog.contextvars.bound_contextvars(**kwargs)
