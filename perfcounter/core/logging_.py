"""Root logger setup: a size-rotated log file plus optional console output."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from perfcounter.shared.paths import ensure_app_dirs, log_path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
MAX_LOG_BYTES = 2_000_000
LOG_BACKUPS = 3

# Set on the handlers installed here so a later call can find them again
_HANDLER_MARK = "_perfcounter_handler"


def installed_handlers() -> List[logging.Handler]:
    return [h for h in logging.getLogger().handlers if getattr(h, _HANDLER_MARK, False)]


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    console: bool = True,
) -> Path:
    """
    Configure the root logger and return the path of the log file.

    Calling it again only changes the level of the handlers installed by the
    first call; the first call's log file stays in use.
    """
    root = logging.getLogger()
    root.setLevel(level)

    existing = installed_handlers()
    if existing:
        for handler in existing:
            handler.setLevel(level)
        for handler in existing:
            if isinstance(handler, RotatingFileHandler):
                return Path(handler.baseFilename)

    if log_file is None:
        ensure_app_dirs()
        log_file = log_path()
    else:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

    handlers: List[logging.Handler] = [
        RotatingFileHandler(str(log_file), maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    ]
    if console:
        handlers.append(logging.StreamHandler())

    fmt = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(fmt)
        setattr(handler, _HANDLER_MARK, True)
        root.addHandler(handler)
    return log_file
