"""Logger setup for query_advisor modules.

Level comes from the QUERY_ADVISOR_LOG_LEVEL environment variable
(default WARNING). Reports are printed, not logged; logging carries
diagnostics such as skipped log entries.
"""

import logging
import os

LOG_LEVEL_ENV = "QUERY_ADVISOR_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Get a configured ``query_advisor.<name>`` logger.

    Handlers are attached once per logger, so repeated calls are safe.
    """
    logger = logging.getLogger(f"query_advisor.{name}")
    if not logger.handlers:
        level = os.getenv(LOG_LEVEL_ENV, "WARNING").upper()
        if not isinstance(logging.getLevelName(level), int):
            level = "WARNING"
        logger.setLevel(level)
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
