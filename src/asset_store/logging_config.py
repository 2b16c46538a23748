"""
Logging setup for command-line use.

Library modules only create loggers (logging.getLogger(__name__)); this
module attaches a handler to the package logger when a program wants
the output, as the CLI does.
"""

import logging
import sys
from typing import Optional, TextIO

PACKAGE_LOGGER = 'asset_store'
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

_handler: Optional[logging.Handler] = None


def configure_logging(level: str = 'WARNING', stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Attach a stream handler to the package logger and set its level.

    Idempotent: calling again updates the level (and stream) of the one
    handler instead of adding another.
    """
    global _handler

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level.upper())

    if _handler is not None:
        logger.removeHandler(_handler)
        _handler.close()

    _handler = logging.StreamHandler(stream or sys.stderr)
    _handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    logger.addHandler(_handler)
    return logger
