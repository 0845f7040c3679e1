import structlog
import logging
from budgetdesk.config import settings


def setup_logging():
    """Console output in development, one JSON object per line elsewhere."""
    if settings.ENVIRONMENT == "development":
        renderer = structlog.dev.ConsoleRenderer()
        processors = []
    else:
        renderer = structlog.processors.JSONRenderer()
        processors = [structlog.processors.format_exc_info]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *processors,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
