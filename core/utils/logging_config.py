"""
Logging setup for the invoice review engine
"""
import logging
import sys
from pathlib import Path
from typing import Optional

from core.config.config import config

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that flood DEBUG output with connection and graph chatter
QUIET_LOGGERS = ('sqlalchemy.engine', 'sqlalchemy.pool', 'langgraph', 'httpx')


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: str = DEFAULT_FORMAT
):
    """
    Send engine logs to stdout and, when log_file is set, to that file as well

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path; missing parent directories are created
        log_format: Record format for every handler
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=log_format,
        handlers=handlers
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger, called as get_logger(__name__)"""
    return logging.getLogger(name)


setup_logging(
    log_level=config.LOG_LEVEL,
    log_file=config.LOG_FILE
)
