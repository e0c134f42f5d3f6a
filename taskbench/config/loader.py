import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel

from taskbench.config.schema import TaskbenchConfig
from taskbench.constants import DISABLE_ORPHAN_CLEANUP_ENV
from taskbench.utils import expand_env_vars

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.taskbench/taskbench.yml")


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if model.model_extra:
        logger.warning("Unknown keys in %s at %s: %s", path, config_path, list(model.model_extra.keys()))
    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)


def _apply_env_overrides(config: TaskbenchConfig) -> TaskbenchConfig:
    """Fold process-environment switches into the typed config.

    This is the only place the environment is consulted; components receive
    plain values.
    """
    db_path = os.getenv("TASKBENCH_DB_PATH")
    if db_path:
        config.database.path = db_path
    if os.getenv(DISABLE_ORPHAN_CLEANUP_ENV) is not None:
        config.workspaces.orphan_cleanup_enabled = False
    level = os.getenv("TASKBENCH_LOG_LEVEL")
    if level:
        config.logging.level = level.upper()
    return config


def load_config(path: Optional[Path] = None) -> TaskbenchConfig:
    """Load and validate configuration from a YAML file.

    A missing or unreadable file yields defaults. Invalid values raise.

    Args:
        path: Path to taskbench.yml (default: $TASKBENCH_CONFIG_PATH or ~/.taskbench/taskbench.yml)

    Returns:
        The validated configuration model

    Raises:
        pydantic.ValidationError: If the file contains invalid values
    """
    if path is None:
        env_path = os.getenv("TASKBENCH_CONFIG_PATH")
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    path = path.expanduser()

    if not path.exists():
        return _apply_env_overrides(TaskbenchConfig())

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to read config file %s: %s", path, e)
        return _apply_env_overrides(TaskbenchConfig())

    expanded = expand_env_vars(raw)
    model = TaskbenchConfig.model_validate(expanded)
    _warn_unknown_keys(model, "root", path)
    return _apply_env_overrides(model)
