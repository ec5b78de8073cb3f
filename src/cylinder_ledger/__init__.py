"""Per-tenant daily ledger of gas cylinders.

Importing the package configures the shared ``cylinder_ledger`` logger used by
every module. ``CYLINDER_LEDGER_LOG_LEVEL`` and ``CYLINDER_LEDGER_LOG_DIR``
override the level and the log directory.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

__version__ = "1.0.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("CYLINDER_LEDGER_LOG_DIR") or PROJECT_ROOT / ".logs")
LOG_FILE = LOG_DIR / "cylinder_ledger.log"

# thread name identifies the recompute worker
LOG_FORMAT = "%(asctime)s | %(name)s | %(threadName)s | %(levelname)s | %(message)s"


def resolve_log_level(raw: Optional[str]) -> int:
    """Map a level name such as ``"debug"`` to its number, defaulting to INFO."""

    if not raw:
        return logging.INFO
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    name: str = __name__,
    *,
    log_file: Path = LOG_FILE,
    level: Optional[int] = None,
) -> logging.Logger:
    """Attach a rotating file handler and a stderr handler to ``name``.

    Configuration happens once per logger; later calls return it untouched.
    A log file that cannot be created only costs the file handler.

    Args:
        name (str): Logger to configure.
        log_file (Path): Target of the rotating file handler.
        level (int | None): Logger level. Read from
            ``CYLINDER_LEDGER_LOG_LEVEL`` when omitted.

    Returns:
        logging.Logger: The configured logger.
    """

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if level is None:
        level = resolve_log_level(os.environ.get("CYLINDER_LEDGER_LOG_LEVEL"))
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: unable to initialize log file at '{log_file}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(max(level, logging.INFO))
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = configure_logging()
log.info("Logger initialized for the 'cylinder_ledger' package (level %s).", logging.getLevelName(log.level))
