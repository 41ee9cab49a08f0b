import logging
import sys
from typing import Optional

from fintrack.config import get_log_level

HANDLER_NAME = "fintrack-stdout"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
QUIET_LOGGERS = ("sqlalchemy", "urllib3", "uvicorn.access")


def setup_logging(level: Optional[int] = None) -> logging.Handler:
    """Send log records to stdout, installing the handler once per process.

    Calling again only updates the root level, so repeated startups do not
    duplicate every line.
    """
    root_logger = logging.getLogger()
    handler = next((h for h in root_logger.handlers if h.get_name() == HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.set_name(HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(handler)
    root_logger.setLevel(level if level is not None else get_log_level())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
