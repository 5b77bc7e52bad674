"""Main application entry point."""

import logging
import sys

import structlog

from image_pipeline.config import settings


def configure_logging(log_level: str = "INFO"):
    """Route structlog through stdlib logging as one JSON line per event."""
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level.upper())
    logging.getLogger().setLevel(log_level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def main():
    """Create the schema against DATABASE_URL."""
    from image_pipeline.database import create_tables, get_engine

    configure_logging(settings.log_level)
    logger.info("Starting Item Image Pipeline", version="1.0.0", environment=settings.environment)

    if not settings.database_url:
        logger.error("DATABASE_URL is not set")
        sys.exit(1)

    create_tables(get_engine(settings.database_url))
    logger.info("Application initialized successfully")


if __name__ == "__main__":
    main()
