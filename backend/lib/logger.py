"""
Shared logging setup for the Volt backend.

Usage:
    from backend.lib.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Tariff loaded")
"""
import logging
import os

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "volt") -> logging.Logger:
    """
    Return a logger that writes to the console.

    The level comes from the LOG_LEVEL environment variable (default INFO).
    Handlers are only attached once per logger name.
    """
    logger = logging.getLogger(name)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(handler)

    return logger
