"""Structured logging configuration."""

import logging
import sys
from typing import Optional

from pythonjsonlogger import jsonlogger

from portalsync.infra.config import config

# Libraries whose chatter drowns out push channel and poll logs
_NOISY_LOGGERS = {
    "uvicorn": logging.INFO,
    "websockets": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure JSON logs on stdout for the ``portalsync`` logger tree.

    Every module logs through ``logging.getLogger(__name__)`` and propagates here, so
    ``extra=`` fields (attempt, delay_ms, push_url, ...) become top-level JSON keys.
    """
    if level is None:
        level = "DEBUG" if config.DEBUG else config.LOG_LEVEL
    root = logging.getLogger("portalsync")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers = []
    root.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level"},
        datefmt="%Y-%m-%dT%H:%M:%S",
    ))
    root.addHandler(handler)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    return root


app_logger = setup_logging()
