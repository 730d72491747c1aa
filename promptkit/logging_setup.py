"""
Logging configuration for the promptkit command line.

The library itself only creates module loggers; handlers are installed here
when running the CLI.
"""
import logging
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

from .constants import APP_NAME


LOG_FORMAT = "%(message)s"
FILE_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(
    level: Union[int, str] = logging.WARNING,
    log_file: Optional[Union[str, Path]] = None,
    console: Optional[Console] = None,
) -> logging.Logger:
    """
    Install handlers on the package logger.

    Calling this again replaces the handlers from the previous call.

    Args:
        level: Logging level name or number
        log_file: Optional path for a plain-text log file
        console: Rich console for the terminal handler (stderr by default)

    Returns:
        The configured "promptkit" logger
    """
    logger = logging.getLogger(APP_NAME)
    if isinstance(level, str):
        level = level.upper()
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    rich_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(rich_handler)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
