import logging
import copy
from typing import Optional

from src.utils.colors import Colors
from src.utils.sanitization import sanitize_for_logging


class ColoredFormatter(logging.Formatter):
    """
    Custom formatter to add colors to log levels and specific messages.
    Highlights batch summaries and dims per-part decode chatter.
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.GREY,
        logging.INFO: Colors.BLUE,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED
    }

    def format(self, record):
        # Copy so file handlers never see ANSI codes
        record = copy.copy(record)

        color = self.LEVEL_COLORS.get(record.levelno, Colors.RESET)
        record.levelname = f"{color}{record.levelname}{Colors.RESET}"

        if isinstance(record.msg, str):
            if record.msg.startswith("Batch "):
                record.msg = f"{Colors.MAGENTA}{Colors.BOLD}{record.msg}{Colors.RESET}"
            elif record.msg.startswith("Decode issue"):
                record.msg = f"{Colors.GREY}{record.msg}{Colors.RESET}"
            elif "Watermark advanced" in record.msg:
                record.msg = f"{Colors.GREEN}{record.msg}{Colors.RESET}"

        return super().format(record)


class IssueSink:
    """
    Receives non-fatal decode issues from the pipeline

    Every component that degrades to a default value instead of raising
    reports here. Issues are always counted; they are only written to the
    log when debug is enabled.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, debug: bool = False):
        self.logger = logger or logging.getLogger("IMAPEmailChecker.issues")
        self.debug = debug
        self.issue_count = 0

    def note(self, message: str) -> None:
        """Record one non-fatal issue"""
        self.issue_count += 1
        if self.debug:
            self.logger.warning("Decode issue: %s", sanitize_for_logging(message, max_length=500))
