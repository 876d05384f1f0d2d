"""Logging and observability setup using Pydantic Logfire."""

import logging
import sys

import logfire

from src.config.settings import settings

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("httpx", "urllib3", "github.Requester", "rq.worker")


def setup_logging() -> None:
    """Configure application logging for the API process and the worker."""
    log_level = getattr(logging, settings.log_level)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,  # Reconfigure if already setup
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def setup_observability() -> bool:
    """Setup logging and, when a token is configured, Logfire tracing.

    Returns:
        True if Logfire instrumentation is active
    """
    setup_logging()

    logger = logging.getLogger(__name__)

    if not settings.logfire_token:
        logger.info("Logfire token not configured, skipping observability setup")
        return False

    try:
        logfire.configure(
            token=settings.logfire_token,
            environment=settings.environment,
            service_name="pr-review-orchestrator",
        )
        logfire.instrument_pydantic_ai()
        logfire.instrument_httpx()
    except Exception as e:
        logger.error(f"Failed to setup Logfire observability: {e}")
        return False

    logger.info(f"Logfire observability enabled for {settings.environment} environment")
    return True
