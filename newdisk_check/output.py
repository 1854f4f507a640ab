"""Terminal output and the session log

Every line shown to the operator goes through a Reporter, which logs to the
``newdisk_check`` logger. setup_logging attaches two handlers to it: a colored
console handler and a plain append-only file handler under /var/log.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path

from .errors import PrivilegeError

LOGGER_NAME = "newdisk_check"
LOG_DIR = Path("/var/log")
LOG_NAME_FORMAT = "newdisk-test-%Y%m%d-%H%M.log"


# Terminal colors
class Colors:
    """ANSI color codes for terminal output"""

    RED = "\033[0;31m"
    YELLOW = "\033[1;33m"
    GREEN = "\033[0;32m"
    CYAN = "\033[0;36m"
    BOLD = "\033[1m"
    NC = "\033[0m"  # No Color


TAG_COLORS = {
    "INFO": Colors.CYAN,
    "WARN": Colors.YELLOW,
    "ERROR": Colors.RED,
    "OK": Colors.GREEN,
}

_LEVEL_TAGS = {
    logging.DEBUG: "INFO",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}


def _tag(record: logging.LogRecord) -> str:
    return getattr(record, "tag", None) or _LEVEL_TAGS.get(record.levelno, "INFO")


class ColorFormatter(logging.Formatter):
    """Prefix each line with a colored, padded severity tag"""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if getattr(record, "raw", False):
            return message
        tag = _tag(record)
        color = getattr(record, "color", None) or TAG_COLORS[tag]
        return f"{color}{f'[{tag}]':<7}{Colors.NC} {message}"


class PlainFormatter(logging.Formatter):
    """Timestamped ASCII lines for the log file"""

    def __init__(self) -> None:
        super().__init__("%(asctime)s [%(tag)s] %(message)s", "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        record.tag = _tag(record)
        return super().format(record)


class Reporter:
    """Logger object handed to every stage"""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    def info(self, message: str) -> None:
        self.logger.info(message)

    def warn(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)

    def good(self, message: str) -> None:
        self.logger.info(message, extra={"tag": "OK"})

    def banner(self, lines: list[str]) -> None:
        """Print a red block framed by rules"""
        rule = "=" * 54
        for line in [rule, *lines, rule]:
            self.logger.warning(line, extra={"color": Colors.RED + Colors.BOLD})

    def dump(self, text: str) -> None:
        """Mirror a tool's report verbatim, one record per line"""
        for line in text.splitlines():
            self.logger.info(line, extra={"raw": True})


def session_log_path(log_dir: Path = LOG_DIR, started: datetime | None = None) -> Path:
    """Return the log file path named after the session start time"""
    return log_dir / (started or datetime.now()).strftime(LOG_NAME_FORMAT)


def setup_logging(log_path: Path, stream=None) -> Reporter:
    """Configure console and file handlers once and return the Reporter"""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    try:
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError as e:
        raise PrivilegeError(f"Cannot write to {log_path.parent}. Run as root.") from e
    file_handler.setFormatter(PlainFormatter())

    console = logging.StreamHandler(stream or sys.stdout)
    console.setFormatter(ColorFormatter())

    logger.addHandler(console)
    logger.addHandler(file_handler)
    return Reporter(logger)
