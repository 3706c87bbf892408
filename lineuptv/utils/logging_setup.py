"""Logging setup for LineupTV with file and console output"""

import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path

from lineuptv.config import LoggingConfig, parse_size


def setup_logging(
    log_level: str = "INFO",
    log_file_name: str | None = None,
    log_to_console: bool = True,
    log_to_file: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 10,
    log_format: str | None = None,
    log_directory: Path | None = None,
) -> logging.Logger:
    """
    Set up logging for the LineupTV application.

    This configures logging to write to:
    - Console (stdout)
    - File with rotation

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file_name: Path to log file (can be absolute or relative)
        log_to_console: Whether to log to console
        log_to_file: Whether to log to file
        max_bytes: Maximum size of log file before rotation (default 10MB)
        backup_count: Number of backup files to keep (default 10)
        log_format: Custom log format string
        log_directory: Override log directory (defaults to logs/)

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    if log_directory is not None:
        log_dir = log_directory
    elif log_file_name and ("/" in log_file_name or Path(log_file_name).is_absolute()):
        log_dir = Path(log_file_name).parent
        log_file_name = Path(log_file_name).name
    else:
        log_dir = Path("logs")

    if log_file_name is None:
        timestamp = datetime.now().strftime("%Y-%m-%d")
        log_file_name = f"lineuptv-{timestamp}.log"

    log_file_path = log_dir / log_file_name

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear any existing handlers to avoid duplicates
    root_logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        log_format or "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"
    )

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    if log_to_file:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(detailed_formatter)
        root_logger.addHandler(file_handler)

    root_logger.info(f"LineupTV logging initialized - Level: {log_level}")
    if log_to_file:
        root_logger.info(
            f"Log file: {log_file_path} "
            f"(max {max_bytes / (1024 * 1024):.1f} MB, {backup_count} backups)"
        )

    return root_logger


def setup_logging_from_config(logging_config: LoggingConfig) -> logging.Logger:
    """Configure logging from the `logging` section of the app config."""
    return setup_logging(
        log_level=logging_config.level,
        log_file_name=logging_config.file,
        log_to_console=logging_config.to_console,
        log_to_file=logging_config.to_file,
        max_bytes=parse_size(logging_config.max_size),
        backup_count=logging_config.backup_count,
        log_format=logging_config.format,
    )
