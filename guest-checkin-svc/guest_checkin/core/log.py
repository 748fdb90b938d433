from __future__ import annotations
import logging

LOGGER_NAME = "guest_checkin"

def setup_logging(level: str = "INFO") -> logging.Logger:
    """Library-friendly: do NOT touch root or add real handlers.

    The app server (uvicorn/gunicorn dictConfig) owns formatting; we only set
    the package level and keep a NullHandler so imports stay quiet.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(isinstance(h, logging.NullHandler) for h in logger.handlers):
        logger.addHandler(logging.NullHandler())
    logger.propagate = True
    return logger

def get_logger(name: str | None = None) -> logging.Logger:
    base = logging.getLogger(LOGGER_NAME)
    return base.getChild(name) if name else base
