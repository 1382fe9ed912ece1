"""
Logging helper shared by the app and routers.
"""

import logging
import sys
from typing import Optional

from markovgen.config import settings

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a logger with a single stdout handler.

    Calling it again for the same name reuses the existing handler,
    so modules can call it at import time without duplicating output.

    Args:
        name: Logger name (usually ``__name__``)
        level: Level name; defaults to ``settings.LOG_LEVEL``

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel((level or settings.LOG_LEVEL).upper())
    return logger
