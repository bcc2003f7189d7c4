"""
Logging configuration using loguru.

Console output is colored and human-oriented; the optional file sink rotates,
compresses old files and can emit JSON lines for log shippers.
"""

from __future__ import annotations
import sys
from pathlib import Path
from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(
    log_level: str = "INFO",
    log_file: str | Path | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    console_level: str | None = None,
    serialize: bool = False,
) -> None:
    """
    Configure loguru with a console sink and an optional file sink.

    Args:
        log_level: Level for the file sink (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a log file. If None, only console logging.
        rotation: Log rotation size (e.g., "10 MB", "1 GB")
        retention: Log retention period (e.g., "7 days", "1 month")
        console_level: Level for the console sink. If None, uses WARNING when
            log_file is set, otherwise log_level.
        serialize: If True, the file sink writes one JSON object per record.
    """
    logger.remove()

    if console_level is None:
        console_level = "WARNING" if log_file else log_level

    logger.add(
        sys.stderr,
        format=_CONSOLE_FORMAT,
        level=console_level,
        colorize=True,
    )

    if not log_file:
        return

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
            serialize=serialize,
            catch=True,
        )
        logger.debug(f"Logging to file: {log_path}")
    except OSError as e:
        logger.warning(f"Failed to setup file logging to {log_path}: {e}. Continuing with console only")


__all__ = ["logger", "setup_logging"]
