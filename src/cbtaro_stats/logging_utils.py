"""Logging setup for cbtaro-stats."""

import logging

LOGGER_NAME = "cbtaro_stats"


def configure_logging(dev_mode: bool = False) -> logging.Logger:
    """Configure the package logger.

    Development mode logs at DEBUG, which is where remote-service failures
    are reported. Otherwise only warnings and errors are shown.
    """
    level = logging.DEBUG if dev_mode else logging.WARNING
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    logger.propagate = False
    return logger
