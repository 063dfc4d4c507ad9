"""structlog configuration.

Learn: Every module does `logger = structlog.get_logger()` and logs
dotted event names with keyword context:

    logger.info("auth.login_succeeded", user_id=str(user.id))

merge_contextvars picks up the request_id bound by RequestIdMiddleware,
so every line logged while handling a request carries it. Development
gets colored console output, everything else gets one JSON object per line.
"""

import logging

import structlog

from warden.config import settings


def configure_logging() -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.environment == "development":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
