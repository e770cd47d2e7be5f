"""Structured logging configuration with structlog."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from gamify.config import Settings

# Chatty at INFO; only surfaced when debugging
NOISY_LOGGERS = ("sqlalchemy.engine", "arq.jobs", "asyncio")


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON or console output, tagged with the environment."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service="gamify", environment=settings.environment)

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if settings.debug else logging.WARNING)


@contextmanager
def job_context(job: str, period: str) -> Iterator[None]:
    """Bind job and period to every structlog record emitted inside the block."""
    tokens = structlog.contextvars.bind_contextvars(job=job, period=period)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
