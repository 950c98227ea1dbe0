import logging
import os
import sys
from dotenv import load_dotenv


load_dotenv()  # Load environment variables from .env

# GitHub Actions renders ::warning:: / ::error:: lines as annotations
GITHUB_ACTIONS = os.getenv("GITHUB_ACTIONS") == "true"

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def _resolve_level(level: str | None) -> int:
    """Map a level name to a logging constant, falling back to INFO."""
    name = (level or "INFO").upper()
    if name not in VALID_LOG_LEVELS:
        name = "INFO"
    return getattr(logging, name)


class ANSIColors:
    """Terminal colors per level."""

    DEBUG = "\033[36m"
    INFO = "\033[32m"
    WARNING = "\033[33m"
    ERROR = "\033[31m"
    CRITICAL = "\033[1;31m"
    RESET = "\033[0m"


class LinkTableFormatter(logging.Formatter):
    """Colored console formatter; switches to annotation syntax on CI."""

    LEVEL_COLORS = {
        logging.DEBUG: ANSIColors.DEBUG,
        logging.INFO: ANSIColors.INFO,
        logging.WARNING: ANSIColors.WARNING,
        logging.ERROR: ANSIColors.ERROR,
        logging.CRITICAL: ANSIColors.CRITICAL,
    }

    def format(self, record):
        log_message = super().format(record)

        if GITHUB_ACTIONS:
            if record.levelno == logging.DEBUG:
                return f"::debug::{log_message}"
            if record.levelno == logging.WARNING:
                return f"::warning::{log_message}"
            if record.levelno >= logging.ERROR:
                return f"::error::{log_message}"
            return log_message

        color = self.LEVEL_COLORS.get(record.levelno, ANSIColors.RESET)
        return f"{color}{log_message}{ANSIColors.RESET}"


_console_handler = logging.StreamHandler(sys.stdout)
_console_handler.setFormatter(LinkTableFormatter(DEFAULT_FORMAT))

_root = logging.getLogger("linktable")
_root.setLevel(_resolve_level(os.getenv("LOG_LEVEL")))
if not _root.handlers:
    _root.addHandler(_console_handler)


def set_level(level: str) -> None:
    """Change the level of every linktable logger (used by --verbose)."""
    _root.setLevel(_resolve_level(level))


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the linktable hierarchy for the given module."""
    short_name = name.split(".")[-1]
    return _root.getChild(short_name)
