"""Console and file logging for the relay process."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "agent_relay"


class RelayLogFormatter(logging.Formatter):
    """Formatter with optional message/agent context and ANSI level colors."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")

        context = ""
        if hasattr(record, "agent_id"):
            context += f"[@{record.agent_id}] "
        if hasattr(record, "message_id"):
            context += f"[{record.message_id}] "

        if self.use_colors:
            level_color = self.LEVEL_COLORS.get(record.levelname, "")
            reset = self.RESET
        else:
            level_color = ""
            reset = ""

        line = (
            f"{timestamp} {level_color}{record.levelname:8s}{reset} "
            f"{context}{record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_rich_logging(
    log_dir: Optional[Path] = None,
    log_level: str = "INFO",
    use_file: bool = True,
) -> logging.Logger:
    """
    Configure the ``agent_relay`` logger hierarchy.

    Args:
        log_dir: Directory for queue.log (skipped when None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_file: Write to logs/queue.log in addition to the console

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.propagate = False

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    # Under a process supervisor stdout is redirected into the same file
    stdout_is_redirected = not sys.stdout.isatty() if hasattr(sys.stdout, "isatty") else False
    if not stdout_is_redirected or not use_file:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(RelayLogFormatter(use_colors=not stdout_is_redirected))
        logger.addHandler(console_handler)

    if use_file and log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "queue.log")
        file_handler.setFormatter(RelayLogFormatter(use_colors=False))
        logger.addHandler(file_handler)

    return logger
