"""
Logging setup with console and file handlers.

Records carry the thread name so poll-cycle traffic (``ptu-poll``) can be
told apart from user commands arriving on server worker threads.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler

from flir_ptu.config.models import LoggingConfig


LOG_FORMAT = "[%(asctime)s] %(levelname)s [%(threadName)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Rotate at 10 MB, keep five files; DEBUG traces every TX/RX frame
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5


def setup_logging(config: LoggingConfig) -> None:
    """
    Configure the root logger from the logging section of config.json.

    Args:
        config: Logging configuration.
    """
    root = logging.getLogger()
    root.setLevel(config.level)
    root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]

    file_error = None
    if config.file:
        try:
            handlers.append(RotatingFileHandler(
                config.file,
                maxBytes=MAX_LOG_BYTES,
                backupCount=LOG_BACKUPS,
                encoding="utf-8"
            ))
        except OSError as e:
            file_error = e

    for handler in handlers:
        handler.setLevel(config.level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if file_error is not None:
        root.error(f"Failed to create log file {config.file}: {file_error}")
    elif config.file:
        root.info(f"Logging to file: {config.file}")

    # HTTP access lines only at DEBUG
    if config.level != "DEBUG":
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    root.info(f"Logging initialized at level: {config.level}")
