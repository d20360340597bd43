"""Logging setup for gator."""

import logging
import sys

from gator.config import Config


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger("gator")


def setup_logging(config: Config) -> logging.Logger:
    """Attach a stderr handler to the gator logger at the configured level.

    Safe to call more than once; the handler is only installed the first time.
    """
    level = logging.getLevelName(str(config.log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger
