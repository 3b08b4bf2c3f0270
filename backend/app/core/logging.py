import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys

from pythonjsonlogger import jsonlogger

JSON_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(job_id)s %(provider_id)s %(event)s"


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    logger = logging.getLogger()
    logger.handlers.clear()

    formatter = jsonlogger.JsonFormatter(JSON_LOG_FORMAT)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.setLevel(level.upper())
    # Per-request lines from the quote client drown out routing events.
    logging.getLogger("httpx").setLevel(max(logging.WARNING, logger.level))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
