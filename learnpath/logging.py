"""
Loguru sink configuration shared by the CLI and the HTTP app.
"""
from __future__ import annotations

import sys

from loguru import logger


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Replace loguru's default sink with the learnpath sinks.

    Args:
        level: Minimum level for the stderr sink
        log_file: Optional path for a rotating file sink
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {name} | {message}",
    )
    if log_file:
        logger.add(
            log_file,
            level=level,
            rotation="1 day",
            retention="14 days",
            enqueue=True,
        )
