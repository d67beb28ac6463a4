"""Structured logging via structlog: JSON lines to stderr, optionally an hourly rotating file."""

from __future__ import annotations

import logging
import os
from logging.handlers import TimedRotatingFileHandler

import structlog


def setup_logging(log_dir: str | None = None, log_level: str = "INFO") -> None:
    """Configure structlog to render JSON through stdlib logging handlers.

    Lines go to stderr and, when ``log_dir`` is set, to ``sselink.jsonl``
    in that directory with hourly rotation.
    """
    log_level = log_level.upper()
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            TimedRotatingFileHandler(
                filename=os.path.join(log_dir, "sselink.jsonl"),
                when="H",
                interval=1,
                backupCount=168,  # 7 days of hourly logs
                utc=True,
            )
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(logging.WARNING, root_logger.level))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
