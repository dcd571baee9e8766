"""Logging setup for the ``stackbox`` logger tree."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

# Longest command output kept in a single log record.
MAX_LOGGED_OUTPUT = 2000


def default_log_dir() -> Path:
    return Path(os.environ.get("STACKBOX_LOG_DIR", tempfile.gettempdir() + "/stackbox-logs"))


def truncate(text: Optional[str], limit: int = MAX_LOGGED_OUTPUT) -> str:
    """Trim ``text`` for a log line, keeping the tail where errors usually are."""
    if not text:
        return ""
    text = str(text)
    if len(text) <= limit:
        return text
    return f"...[{len(text) - limit} chars truncated]...{text[-limit:]}"


def setup_logging(
    level: int | str = logging.INFO,
    log_dir: Optional[Path] = None,
    console: Optional[Console] = None,
    rich_console: bool = True,
) -> logging.Logger:
    """Attach a persistent file handler and a rich console handler.

    Safe to call repeatedly: handlers are only added once per target.
    """
    logger = logging.getLogger("stackbox")
    logger.setLevel(logging.DEBUG)

    log_dir = Path(log_dir) if log_dir else default_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = str(log_dir / "stackbox.log")

    if not any(
        isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == log_path
        for h in logger.handlers
    ):
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    if rich_console:
        existing = [h for h in logger.handlers if isinstance(h, RichHandler)]
        if existing:
            for h in existing:
                h.setLevel(level)
        else:
            handler = RichHandler(console=console, show_path=False, markup=False, rich_tracebacks=True)
            handler.setLevel(level)
            logger.addHandler(handler)

    return logger
