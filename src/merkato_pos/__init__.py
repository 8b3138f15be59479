"""EthioMerkato point-of-sale: catalog, checkout, and sales reporting.

Importing the package sets up the shared ``log`` every module writes to.
Log files go to ``$MERKATO_LOG_DIR`` when it is set, otherwise to
``~/.merkato_pos/logs``, so an installed copy never writes into its own
install tree. ``$MERKATO_LOG_LEVEL`` overrides the INFO default.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOG_DIR_ENV = "MERKATO_LOG_DIR"
LOG_LEVEL_ENV = "MERKATO_LOG_LEVEL"
LOG_FILENAME = "merkato_pos.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def log_directory() -> Path:
    """Return the directory rotating log files are written to."""

    override = os.environ.get(LOG_DIR_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".merkato_pos" / "logs"


def log_level() -> int:
    """Return the level named by ``$MERKATO_LOG_LEVEL``, INFO if unset or unknown."""

    level = logging.getLevelName(os.environ.get(LOG_LEVEL_ENV, "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _file_handler(directory: Path, formatter: logging.Formatter) -> Optional[RotatingFileHandler]:
    target = directory / LOG_FILENAME
    try:
        directory.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(target, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: unable to initialize log file at '{target}': {exc}", file=sys.stderr)
        return None
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger("merkato_pos")
    if logger.handlers:
        return logger

    logger.setLevel(log_level())
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = _file_handler(log_directory(), formatter)
    if file_handler is not None:
        logger.addHandler(file_handler)

    # stdout is reserved for command output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    return logger


log = _configure_logging()
log.debug("Logging to '%s'", log_directory())
