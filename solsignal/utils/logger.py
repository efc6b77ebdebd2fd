"""Loguru logger configuration with rotation and structured logging."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from config.settings import settings


def get_log_dir() -> Path:
    """Log directory from settings, created on first use."""
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_logger(
    module_name: Optional[str] = None,
    log_level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = True,
):
    """
    Get a configured logger instance with rotation and structured logging.

    Args:
        module_name: Name of the module (used for log file naming and filtering)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Enable console output
        enable_file: Enable file output

    Returns:
        Configured logger instance

    Examples:
        >>> logger = get_logger("backtester", log_level="DEBUG")
        >>> logger.info("Walk-forward step done", step=3, decisions=41)
    """
    context_logger = logger.bind(module=module_name or "solsignal")

    if enable_console:
        logger.add(
            sys.stdout,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{extra[module]: <12}</cyan> | "
                "<level>{message}</level>"
            ),
            level=log_level,
            colorize=True,
            backtrace=True,
            diagnose=False,
            filter=lambda record: record["extra"].get("module") == module_name if module_name else True,
        )

    if enable_file:
        log_dir = get_log_dir()

        # Main log with rotation
        logger.add(
            log_dir / "backtest.log",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message} | {extra}",
            level=log_level,
            rotation="100 MB",
            retention="30 days",
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

        if module_name:
            logger.add(
                log_dir / f"{module_name}.log",
                format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {message} | {extra}",
                level=log_level,
                rotation="50 MB",
                retention="14 days",
                compression="zip",
                filter=lambda record: record["extra"].get("module") == module_name,
            )

        # Error-only log file
        logger.add(
            log_dir / "errors.log",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message} | {exception}",
            level="ERROR",
            rotation="50 MB",
            retention="60 days",
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    return context_logger


def get_backtester_logger(log_level: str = "INFO", enable_console: bool = True):
    """Get logger for walk-forward and PnL modules."""
    return get_logger("backtester", log_level=log_level, enable_console=enable_console)
