"""Structured JSON logging configuration."""
import logging
import sys
from pythonjsonlogger import jsonlogger
from reimburse.core.config import settings

# Libraries whose INFO output drowns the workflow transition log lines.
_NOISY_LOGGERS = ("sqlalchemy.engine", "celery.app.trace", "httpx")


def setup_logging() -> None:
    """Configure JSON structured logging for production, human-readable for dev."""
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if settings.APP_ENV == "production":
        handler = logging.StreamHandler(sys.stdout)
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
        handler.setFormatter(formatter)
        logging.root.handlers = [handler]
        logging.root.setLevel(level)
    else:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
