"""Process-wide ``logger`` used by every osintrix module.

The starting level comes from ``OSINTRIX_LOG_LEVEL`` (or ``LOG_LEVEL``) so
that a broken config.toml can still be reported.  ``apply_level()`` switches
to the configured ``[logging].level`` after settings load.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def _level_from_env() -> int:
    level_name = os.environ.get("OSINTRIX_LOG_LEVEL") or os.environ.get("LOG_LEVEL", "INFO")
    return getattr(logging, level_name.upper(), logging.INFO)


def _setup_logging() -> structlog.stdlib.BoundLogger:
    logging.basicConfig(level=_level_from_env(), format="%(message)s", stream=sys.stderr)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


logger = _setup_logging()


def apply_level(level_name: str) -> None:
    """Re-level the root logger after config.toml has been read."""
    logging.getLogger().setLevel(getattr(logging, level_name.upper(), logging.INFO))


def _uncaught_exception_handler(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _uncaught_exception_handler
