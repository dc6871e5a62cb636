import logging
import sys
from typing import Optional, Union

from apicopilot.core.settings import settings


LOG_FORMAT = '[%(asctime)s]\t%(levelname)s\t%(name)s:%(lineno)d]\t%(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


def setup_logger(
    name: str = __name__,
    level: Optional[Union[int, str]] = None,
    log_file: Optional[str] = None
) -> logging.Logger:
    """Logger writing to stdout (and LOG_FILE when set), not propagating to root.

    Calling it again for the same name replaces the handlers instead of stacking them.
    """
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level if level is not None else settings.LOG_LEVEL.upper())

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    log_file = log_file or settings.LOG_FILE
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
