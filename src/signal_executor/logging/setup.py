"""structlog over stdlib logging, plus per-signal logger binding."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from signal_executor.models import Signal

# chatty at INFO: one line per exchange request
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(level: str = "INFO", log_format: str = "json") -> None:
    """Route structlog and stdlib records through one stderr handler.

    ``log_format`` is "json" or "console". Records carry the ``pass_name``
    bound by the scheduler, a UTC timestamp and any exception traceback.
    """
    chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]
    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.dev.ConsoleRenderer() if log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def signal_logger(
    logger: structlog.stdlib.BoundLogger,
    signal: Signal,
) -> structlog.stdlib.BoundLogger:
    """Bind the identifying fields of a signal onto *logger*."""
    return logger.bind(
        signal_id=signal.id,
        symbol=signal.symbol,
        side=signal.side.value,
        status=signal.status.value,
    )
