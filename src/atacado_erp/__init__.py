"""Atacado ERP: wholesale order workflow and personal finance ledger.

Importing the package configures the shared ``atacado_erp`` logger once so
every layer (data access, business logic, CLI) writes to the same rotating
log file and to standard error.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("ATACADO_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "atacado_erp.log"
LOG_LEVEL = os.environ.get("ATACADO_LOG_LEVEL", "INFO").upper()


def _configure_logging() -> logging.Logger:
    """Attach file and console handlers to the package logger.

    The function is idempotent: a logger that already owns handlers is
    returned untouched, which keeps repeated imports (tests, reloads) from
    duplicating every line.
    """

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = logging.getLevelName(LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: could not open log file '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Logger ready for the 'atacado_erp' package (level=%s).", LOG_LEVEL)
