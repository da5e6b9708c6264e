from __future__ import annotations

import logging

from molparse.config import load_settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
_PACKAGE = "molparse"


def get_logger(name: str) -> logging.Logger:
    """Return a module logger.

    The root logger gets a default handler if nobody configured one, and the
    ``molparse`` package logger takes its level from MOLPARSE_LOG_LEVEL, so
    the setting never changes the level of other libraries' loggers.
    """
    if not logging.getLogger().handlers:
        logging.basicConfig(format=_FORMAT)
    package_logger = logging.getLogger(_PACKAGE)
    if package_logger.level == logging.NOTSET:
        package_logger.setLevel(load_settings().log_level)
    return logging.getLogger(name)
