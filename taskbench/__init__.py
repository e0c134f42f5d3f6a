"""Per-task git worktree workspaces and sequential task scheduling."""

from __future__ import annotations

import tomllib
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path


def _pyproject_version() -> str:
    """Read the version from pyproject.toml for source-tree runs."""
    pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
    try:
        data = tomllib.loads(pyproject_path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError):
        return "0.0.0"
    project = data.get("project")
    if isinstance(project, dict) and isinstance(project.get("version"), str):
        return str(project["version"])
    return "0.0.0"


try:
    __version__ = version("taskbench")
except PackageNotFoundError:
    __version__ = _pyproject_version()

__all__ = ["__version__"]
