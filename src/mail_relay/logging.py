"""
Logging configuration using loguru.

Provides console output and optional rotating file output. Per-account
messages carry an ``account`` extra bound with ``logger.bind``.
"""

from __future__ import annotations
import sys
from pathlib import Path
from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<magenta>{extra[account]}</magenta> <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {extra[account]} {message}"


def setup_logging(
    log_level: str = "INFO",
    log_file: str | Path | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    console_level: str | None = None,
) -> None:
    """
    Configure loguru logger with console and optional file output.

    Args:
        log_level: Logging level for file (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If None, only console logging.
        rotation: Log rotation size (e.g., "10 MB", "1 GB")
        retention: Log retention period (e.g., "7 days", "1 month")
        console_level: Logging level for console. If None, uses WARNING when log_file is set, otherwise uses log_level.
    """
    logger.remove()
    # Records logged without a bound account still render the format.
    logger.configure(extra={"account": "-"})

    if console_level is None:
        console_level = "WARNING" if log_file else log_level

    logger.add(
        sys.stderr,
        format=_CONSOLE_FORMAT,
        level=console_level,
        colorize=True,
    )

    if log_file:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            logger.add(
                log_path,
                format=_FILE_FORMAT,
                level=log_level,
                rotation=rotation,
                retention=retention,
                compression="zip",
                encoding="utf-8",
                catch=True,
            )
            print(f"Logging to file: {log_path}", file=sys.stderr)
        except OSError as e:
            print(f"WARNING: Failed to setup file logging to {log_path}: {e}", file=sys.stderr)
            print("Continuing with console logging only", file=sys.stderr)


__all__ = ["logger", "setup_logging"]
