"""Application logging utilities."""

import logging

from strim.middleware.correlation import CorrelationIdFilter

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s"

# Libraries that log every query / request at INFO
NOISY_LOGGERS = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.engine.Engine",
    "sqlalchemy.pool",
    "sqlalchemy.dialects",
    "httpcore",
    "httpx",
    "asyncio",
    "apscheduler",
    "watchfiles",
)


def configure_logging(level: int = logging.INFO) -> None:
    """Root logging with correlation IDs on every record. Safe to call twice."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S")

    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdFilter())

    # Suppress noisy loggers - SQLAlchemy is especially chatty
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["LOG_FORMAT", "configure_logging"]
