"""Logging configuration for the nodeprep package."""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(
    level: str = "INFO",
    debug: bool = False,
    log_file: Optional[str] = None,
    max_size_mb: int = 10,
    backup_count: int = 5,
) -> logging.Logger:
    """Configure the ``nodeprep`` logger.

    Args:
        level: Log level name used unless debug is set
        debug: Enable debug logging
        log_file: Optional path of a rotating log file
        max_size_mb: Maximum log file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        The configured ``nodeprep`` logger
    """
    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)
    logger = logging.getLogger("nodeprep")
    logger.setLevel(log_level)

    # Clear existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Disable debug logging for noisy libraries
    if not debug:
        logging.getLogger('urllib3').setLevel(logging.WARNING)

    return logger
