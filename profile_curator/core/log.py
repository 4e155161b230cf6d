import sys

from loguru import logger

from profile_curator.core.config import settings


def setup_logging(level: str | None = None) -> None:
    """Replace loguru's default sink with one filtered at the configured level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or settings.LOG_LEVEL).upper(),
        backtrace=False,
        diagnose=settings.APP_ENV == "development",
    )
