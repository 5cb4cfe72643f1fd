"""Structured logging for backtest runs (structlog over stdlib logging).

Every record carries the run context bound by run_context(): the date
range, allocation policy and basket size of the run that emitted it. A
parameter sweep binds the combination under test on top of that, so
interleaved JSON lines from a batch can be grouped per run.
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from btcdom.backtest.models import StrategyParameters


def stringify_decimals(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Render Decimal values as plain strings so JSON output keeps full precision."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Configure structlog with JSON or console rendering.

    Args:
        log_level: Root level name; unknown names fall back to INFO.
        log_format: "json" or "console". Defaults to the LOG_FORMAT
            environment variable, then "console".
    """
    log_format = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        stringify_decimals,
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
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

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def run_fields(params: "StrategyParameters") -> dict[str, object]:
    """Context fields identifying one backtest run."""
    return {
        "run_start": params.start.isoformat() if params.start else None,
        "run_end": params.end.isoformat() if params.end else None,
        "allocation_policy": params.allocation_policy.value,
        "max_short_positions": params.max_short_positions,
    }


@contextmanager
def run_context(params: "StrategyParameters", **extra: object) -> Iterator[None]:
    """Bind the run's identifying fields to every log record inside the block.

    Previously bound values are restored on exit, so nested contexts (a
    sweep around single runs) compose.
    """
    with structlog.contextvars.bound_contextvars(**run_fields(params), **extra):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
