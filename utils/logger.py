"""
Application logger

Every module logs through the shared ``logger`` instance:

    from utils.logger import logger
    logger.info(f"Linked customer {customer_id}")
"""

import logging
import sys

from config import settings

LOGGER_NAME = "subscription_engine"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """Get a configured logger (handlers are attached only once)"""
    log = logging.getLogger(name)

    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log.addHandler(handler)
        log.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
        log.propagate = False

    return log


logger = get_logger()
