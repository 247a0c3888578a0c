import logging
import sys
from typing import Optional
import structlog
from bond_directory.core.config import settings

def setup_logging(level: Optional[str] = None) -> None:
    """Configure structured logging for the ingestion core."""

    log_level = (level or settings.LOG_LEVEL).upper()

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level, logging.INFO),
    )

    # Configure structlog
    structlog.configure(
        processors=[
            # Drop events below the configured level
            structlog.stdlib.filter_by_level,
            # Add timestamp
            structlog.processors.TimeStamper(fmt="ISO"),
            # Add log level
            structlog.processors.add_log_level,
            # Add caller info
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.PATHNAME,
                           structlog.processors.CallsiteParameter.FUNC_NAME,
                           structlog.processors.CallsiteParameter.LINENO]
            ),
            structlog.processors.format_exc_info,
            # JSON formatting for structured logs
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
