import logging
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
    """Setup rotating file logger to <log_dir>/worker.log plus a console handler"""

    # Create logger
    logger = logging.getLogger("slides_worker")
    logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    log_file = None
    if log_dir:
        # Ensure log directory exists
        Path(log_dir).mkdir(parents=True, exist_ok=True)

        log_file = Path(log_dir) / "worker.log"
        handler = RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    logger.info(f"Logging initialized. Log file: {log_file or 'console only'}")
    return logger


def log_exception(logger: logging.Logger, message: str) -> None:
    """Log an error message followed by the active traceback, if any"""
    tb = traceback.format_exc()
    if tb and tb.strip() != "NoneType: None":
        logger.error(f"{message}\n{tb}")
    else:
        logger.error(message)
