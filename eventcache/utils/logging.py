"""Rich logging utilities for console and file output.

Keeps console output readable (Rich markup, tracebacks) while the log file
stays plain text for grepping.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


class PlainFormatter(logging.Formatter):
    """Formatter that strips Rich markup tags for clean file output."""

    def format(self, record):
        # Create copy to avoid mutating original record
        record = logging.makeLogRecord(record.__dict__)
        # Strip Rich markup tags: [bold], [/bold], [green], etc.
        record.msg = re.sub(r'\[/?[^\]]+\]', '', str(record.msg))
        return super().format(record)


def setup_logging(
    log_file: Optional[Path] = None,
    logger_name: str = "eventcache",
    log_level: int = logging.INFO,
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    log_file_mode: str = "a",
    rich_tracebacks: bool = True,
    rich_markup: bool = True,
) -> logging.Logger:
    """Setup Rich console logging, plus a plain file handler when log_file is set.

    Args:
        log_file: Optional path to log file (parent directories are created)
        logger_name: Name of logger to return
        log_level: Logging level (e.g., logging.INFO, logging.DEBUG)
        log_format: Format string for file log messages
        log_file_mode: File mode ('w' = overwrite, 'a' = append)
        rich_tracebacks: Enable rich traceback formatting
        rich_markup: Enable rich markup in console output

    Returns:
        Configured logger instance

    Example:
        >>> logger = setup_logging(Path("cache/build.log"))
        >>> logger.info("[bold green]Cache warm![/bold green]")
    """
    rich_handler = RichHandler(
        console=get_console(),
        rich_tracebacks=rich_tracebacks,
        markup=rich_markup,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers (prevents duplicates if called twice)
    root_logger.handlers.clear()
    root_logger.addHandler(rich_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode=log_file_mode)
        file_handler.setFormatter(PlainFormatter(log_format))
        root_logger.addHandler(file_handler)

    return logging.getLogger(logger_name)


def get_console() -> Console:
    """Get Rich console instance writing to stderr.

    Returns:
        Console instance for printing formatted output
    """
    return Console(stderr=True)
