"""Leveled file logging for the control panel."""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER = "avcontrols"


class LogLevelFilter(logging.Filter):
    """Pass errors always; pass info/debug only on an exact level match."""

    def __init__(self, level="error"):
        super().__init__()
        self.level = (level or "error").lower()

    def filter(self, record):
        if record.levelno >= logging.ERROR:
            return True
        return record.levelname.lower() == self.level


def configure_logging(log_file, level="error"):
    """Attach (or replace) the file handler on the package logger."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)

    for handler in list(logger.handlers):
        if getattr(handler, "_avcontrols", False):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.FileHandler(log_file, encoding="utf-8", delay=True)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler.addFilter(LogLevelFilter(level))
    handler._avcontrols = True
    logger.addHandler(handler)
    return handler
