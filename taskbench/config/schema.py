from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskbench.constants import DEFAULT_ORPHAN_SWEEP_INTERVAL_S


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    path: str = "~/.taskbench/taskbench.db"

    @field_validator("path")
    @classmethod
    def expand_user(cls, v: str) -> str:
        return v if v == ":memory:" else str(Path(v).expanduser())


class WorkspacesConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    base_dir: str = "~/.taskbench/workspaces"
    # Operational switch for the orphan sweep; the sweeper receives it at construction
    orphan_cleanup_enabled: bool = True
    orphan_sweep_interval_s: int = Field(default=DEFAULT_ORPHAN_SWEEP_INTERVAL_S, ge=60)

    @field_validator("base_dir")
    @classmethod
    def expand_user(cls, v: str) -> str:
        return str(Path(v).expanduser())


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    level: str = "INFO"
    file: str | None = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level


class TaskbenchConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    workspaces: WorkspacesConfig = Field(default_factory=WorkspacesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
