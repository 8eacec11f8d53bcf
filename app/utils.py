"""
Logging helpers shared by the whole application.
"""
import logging

from app.core import config


LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger once, using LOG_LEVEL by default."""
    global _configured
    if _configured:
        return

    logging.basicConfig(level=level or config.LOG_LEVEL, format=LOG_FORMAT)
    # SQL echo is controlled by the engine, keep the library quiet otherwise
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger.

    Usage:
        log = get_logger(__name__)
        log.info("Something happened")
    """
    configure_logging()
    return logging.getLogger(name)
