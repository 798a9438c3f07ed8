import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from backport.constants import BACKPORT_DIR, LOG_FILE_NAME

DEFAULT_LOG_MAX_BYTES = 1_000_000
DEFAULT_LOG_BACKUP_COUNT = 10
LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(log_dir: Optional[Path] = None, log_level: str = 'INFO', verbose: bool = False) -> logging.Logger:
    """Send the 'backport' loggers to a rotating file, and to stderr when verbose.

    User-facing output goes through the rich console; the log keeps the git
    commands and API calls for troubleshooting.
    """
    log_dir = Path(log_dir) if log_dir else BACKPORT_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger('backport')
    logger.setLevel(logging.DEBUG if verbose else getattr(logging, log_level.upper()))
    # setup may run more than once per process (tests, repeated CLI invocations)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    file_handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=DEFAULT_LOG_MAX_BYTES,
        backupCount=DEFAULT_LOG_BACKUP_COUNT,
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if verbose:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    logger.propagate = False
    return logger
