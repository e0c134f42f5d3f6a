"""Configuration management.

Entry points call `get_config()`; the first call loads `.env` and the YAML
config, later calls return the cached instance. Library code takes plain
values through its constructors and never reads config itself.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from taskbench.config.loader import load_config
from taskbench.config.schema import DatabaseConfig, LoggingConfig, TaskbenchConfig, WorkspacesConfig

_config: Optional[TaskbenchConfig] = None


def _load_dotenv() -> None:
    env_path = os.getenv("TASKBENCH_ENV_PATH")
    load_dotenv(Path(env_path).expanduser() if env_path else Path.cwd() / ".env")


def get_config(reload: bool = False) -> TaskbenchConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config  # pylint: disable=global-statement  # Process-wide cache
    if _config is None or reload:
        _load_dotenv()
        _config = load_config()
    return _config


__all__ = [
    "DatabaseConfig",
    "LoggingConfig",
    "TaskbenchConfig",
    "WorkspacesConfig",
    "get_config",
    "load_config",
]
