import logging
import sys
from logging.handlers import RotatingFileHandler

from . import settings


def setup_logger(name: str = None, log_level: int | str = None) -> logging.Logger:
    """
    Sets up the planner logger with console (StreamHandler) and file (RotatingFileHandler) output.
    The level defaults to LOG_LEVEL from the environment.
    """
    logger = logging.getLogger(name)
    logger.setLevel(log_level or settings.LOG_LEVEL)

    # Refresh cycles can run back to back in one process
    if logger.handlers:
        return logger

    console_format = logging.Formatter("%(message)s")
    file_format = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        settings.LOG_DIR / "planner.log",
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(file_format)
    logger.addHandler(file_handler)

    return logger
