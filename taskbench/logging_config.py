"""Process logging setup for taskbench entry points."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_THIRD_PARTY_LOGGERS = ("git", "aiosqlite", "sqlalchemy.engine")


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Configure the root logger once per process.

    Level resolution: explicit argument, then TASKBENCH_LOG_LEVEL, then INFO.
    A rotating file handler is added when a log file is given or
    TASKBENCH_LOG_FILE is set.
    """
    resolved = (level or os.getenv("TASKBENCH_LOG_LEVEL") or "INFO").upper()
    root = logging.getLogger()
    root.setLevel(resolved)

    for handler in list(root.handlers):
        if getattr(handler, "_taskbench", False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(formatter)
    stream._taskbench = True  # type: ignore[attr-defined]
    root.addHandler(stream)

    file_path = log_file or os.getenv("TASKBENCH_LOG_FILE")
    if file_path:
        path = Path(file_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler._taskbench = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)

    # Third-party chatter stays at WARNING unless we are debugging
    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if resolved == "DEBUG" else logging.WARNING)
