"""Diagnostic logging for the agent-loop process itself.

Tool output and run progress go through ProgressLogger; this module covers
the library's own logger.debug/info/warning calls.
"""

import logging
import sys
from datetime import datetime
from typing import Optional

from ..core.phases import Phase

ROOT_LOGGER_NAME = "agent_loop"


class LoopLogFormatter(logging.Formatter):
    """Formatter with optional phase context."""

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        phase_context = ""
        if hasattr(record, "phase"):
            phase_context = f"[{record.phase}] "

        if self.use_colors:
            level_colors = {
                "DEBUG": "\033[36m",      # Cyan
                "INFO": "\033[32m",       # Green
                "WARNING": "\033[33m",    # Yellow
                "ERROR": "\033[31m",      # Red
                "CRITICAL": "\033[35m",   # Magenta
            }
            reset = "\033[0m"
            level_color = level_colors.get(record.levelname, "")
        else:
            level_color = ""
            reset = ""

        message = (
            f"{timestamp} {level_color}{record.levelname:8s}{reset} "
            f"{phase_context}{record.name}: {record.getMessage()}"
        )
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class PhaseLogger(logging.LoggerAdapter):
    """Logger adapter that stamps the current phase on every record.

    The Runner owns one and updates it on each phase change.
    """

    def __init__(self, logger: logging.Logger):
        super().__init__(logger, {})
        self.current_phase: Optional[Phase] = None

    def set_phase(self, phase: Optional[Phase]) -> None:
        self.current_phase = phase

    def process(self, msg, kwargs):
        extra = kwargs.get("extra", {})
        if self.current_phase is not None:
            extra["phase"] = self.current_phase.value
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(log_level: str = "WARNING", use_colors: bool = True) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_colors: ANSI colours on the stderr handler

    Returns:
        The package logger; module loggers below it inherit the handler
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.propagate = False

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    # stdout belongs to the progress output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(
        LoopLogFormatter(use_colors=use_colors and sys.stderr.isatty())
    )
    logger.addHandler(console_handler)

    return logger
