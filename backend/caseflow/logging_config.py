"""Process-wide logging setup with optional rotating file output for audit trails."""
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from . import config

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def init_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> logging.Logger:
    level_name = (level or config.LOG_LEVEL or "INFO").upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_dir = log_dir if log_dir is not None else config.LOG_DIR

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    logger = logging.getLogger("caseflow")
    logger.setLevel(log_level)
    # Re-initialisation (reload, test runs) must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    log_path = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.join(log_dir, "caseflow.log")
        file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=5, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    logger.info(f"Logging initialized (level={level_name}, file={log_path or 'disabled'})")
    return logger
