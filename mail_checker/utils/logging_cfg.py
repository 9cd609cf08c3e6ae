"""
Logging configuration for the webmail checker.

This module sets up logging with rotating file handlers and console output,
providing a centralized way to configure logging throughout the application.
"""
import logging
import logging.handlers
from mail_checker import config


# Maximum log file size (10 MB)
MAX_LOG_SIZE = 10 * 1024 * 1024

# Number of backup log files to keep
BACKUP_COUNT = 5


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for the application.

    Sets up:
    - Rotating file handler for <LOG_DIR>/app.log
    - Console handler for immediate feedback
    - Appropriate log levels based on debug mode

    Args:
        debug: If True, sets log level to DEBUG. Otherwise, uses INFO.
    """
    log_dir = config.LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "app.log"

    log_level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    simple_formatter = logging.Formatter(
        fmt='%(levelname)s - %(message)s'
    )

    file_handler = logging.handlers.RotatingFileHandler(
        filename=str(log_file),
        maxBytes=MAX_LOG_SIZE,
        backupCount=BACKUP_COUNT,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(file_handler)

    # Console only shows warnings unless debugging
    console_handler = logging.StreamHandler()
    console_level = logging.DEBUG if debug else logging.WARNING
    console_handler.setLevel(console_level)
    console_handler.setFormatter(simple_formatter)
    root_logger.addHandler(console_handler)

    logger = logging.getLogger(__name__)
    logger.info("=" * 60)
    logger.info("Webmail Checker Started")
    logger.info(f"Log level: {logging.getLevelName(log_level)}")
    logger.info(f"Log file: {log_file}")
    logger.info("=" * 60)

    _suppress_noisy_loggers()


def _suppress_noisy_loggers() -> None:
    """Suppress verbose logging from third-party libraries."""
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    # tldextract's cache uses filelock
    logging.getLogger("filelock").setLevel(logging.WARNING)
    logging.getLogger("tldextract").setLevel(logging.WARNING)
    logging.getLogger("PyQt5").setLevel(logging.WARNING)

