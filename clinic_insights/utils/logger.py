"""Logging for the Clinic Insights API and its behavior engine.

Services log one pipe-separated line per finished operation, for example
``Waitlist suggestions completed | service_id=s-1 | candidates=3``, so the
output can be grepped by operation name and filtered on ``key=value`` pairs.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

from clinic_insights.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None, stream: TextIO = sys.stdout) -> None:
    """Attach the pipe-format handler to the root logger.

    ``create_app`` passes ``Settings.log_level`` explicitly; a bare call falls
    back to ``CLINIC_LOG_LEVEL``. Only the first call has any effect.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, stream=stream)
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Module logger for services, controllers and the repository."""
    configure_logging()
    return logging.getLogger(name)
