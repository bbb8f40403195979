"""
Logging setup for bidvault.

Every module logs under the ``bidvault`` namespace (``bidvault.ledger``,
``bidvault.bank``, ``bidvault.events``, ...). Console output is colored
with colorlog and written to stderr, leaving stdout to command output.
A plain-text copy can be written to ``<log_dir>/bidvault.log``.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import colorlog

NAMESPACE = "bidvault"
LOG_FILE = "bidvault.log"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
FILE_FORMAT = "%(asctime)s [%(name)s] %(levelname)-8s %(message)s"
CONSOLE_FORMAT = "%(log_color)s%(asctime)s [%(name)s] %(levelname)-8s%(reset)s %(message)s"

# Payout failures and drains log at WARNING, listener crashes at ERROR
LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def console_handler(level: int = logging.INFO) -> logging.Handler:
    """Colored stderr handler."""
    handler = colorlog.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        colorlog.ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT, log_colors=LEVEL_COLORS)
    )
    return handler


def file_handler(log_dir: Union[str, Path], level: int = logging.INFO) -> logging.Handler:
    """Plain-text handler appending to ``log_dir/bidvault.log``, creating the directory."""
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(directory / LOG_FILE, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    level: int = logging.INFO,
    log_dir: Optional[Union[str, Path]] = None,
    log_to_file: bool = False,
) -> logging.Logger:
    """
    (Re)configure the bidvault namespace.

    Handlers installed by an earlier call are closed and replaced, so the
    CLI can call this once per invocation with its own level.

    Args:
        level: Logging level for the namespace and its handlers
        log_dir: Directory for the log file. If None, uses ./logs
        log_to_file: Whether to also write to a file

    Returns:
        The ``bidvault`` namespace logger
    """
    base = logging.getLogger(NAMESPACE)
    for handler in list(base.handlers):
        base.removeHandler(handler)
        handler.close()

    base.setLevel(level)
    base.addHandler(console_handler(level))
    if log_to_file:
        base.addHandler(file_handler(log_dir or "logs", level))
    return base


def get_logger(name: str) -> logging.Logger:
    """
    Logger for one subsystem, e.g. ``get_logger("ledger")``.

    The namespace gets console defaults on first use if nothing set it up.
    """
    if not logging.getLogger(NAMESPACE).handlers:
        setup_logging()
    return logging.getLogger(f"{NAMESPACE}.{name}")
