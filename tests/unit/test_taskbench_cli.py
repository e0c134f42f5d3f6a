"""Unit tests for the taskbench CLI."""

from unittest.mock import patch

import pytest

from taskbench.cli import taskbench as cli
from taskbench.config import TaskbenchConfig
from taskbench.core.models import ExecutionMode, TaskStatus


@pytest.fixture
def config(test_db, tmp_path):
    cfg = TaskbenchConfig()
    cfg.database.path = test_db.db_path
    cfg.workspaces.base_dir = str(tmp_path / "workspaces")
    return cfg


@pytest.mark.asyncio
async def test_queue_lists_sequential_tasks_in_order(test_db, config, capsys):
    await test_db.create_task("proj", "First", execution_mode=ExecutionMode.SEQUENTIAL)
    second = await test_db.create_task(
        "proj", "Second", status=TaskStatus.IN_PROGRESS, execution_mode=ExecutionMode.SEQUENTIAL
    )
    await test_db.create_task("proj", "Parallel")
    await test_db.create_task("other", "Elsewhere", execution_mode=ExecutionMode.SEQUENTIAL)

    with patch.object(cli, "get_config", return_value=config), patch.object(cli, "setup_logging"):
        cli._main_impl(["queue", "proj"])

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split() == ["Pos", "ID", "Status", "Title"]
    assert lines[2].split()[0] == "1" and lines[2].endswith("First")
    assert lines[3].split()[:3] == ["2", second.id[:8], "inprogress"]
    assert len(lines) == 4


@pytest.mark.asyncio
async def test_queue_empty_project(config, capsys):
    with patch.object(cli, "get_config", return_value=config), patch.object(cli, "setup_logging"):
        cli._main_impl(["queue", "nobody"])

    assert capsys.readouterr().out.strip() == "No sequential tasks queued."


def test_queue_without_database_exits(tmp_path, capsys):
    cfg = TaskbenchConfig()
    cfg.database.path = str(tmp_path / "missing.db")

    with patch.object(cli, "get_config", return_value=cfg), patch.object(cli, "setup_logging"):
        with pytest.raises(SystemExit) as exc_info:
            cli._main_impl(["queue", "proj"])

    assert exc_info.value.code == 1
    assert "database not found" in capsys.readouterr().err


def test_sweep_disabled_reports_and_touches_nothing(tmp_path, capsys):
    cfg = TaskbenchConfig()
    cfg.database.path = str(tmp_path / "tb.db")
    cfg.workspaces.base_dir = str(tmp_path / "workspaces")
    cfg.workspaces.orphan_cleanup_enabled = False
    orphan = tmp_path / "workspaces" / "orphan"
    orphan.mkdir(parents=True)

    with patch.object(cli, "get_config", return_value=cfg), patch.object(cli, "setup_logging"):
        cli._main_impl(["sweep"])

    assert "disabled" in capsys.readouterr().out
    assert orphan.exists()


def test_sweep_removes_orphans(tmp_path, capsys):
    cfg = TaskbenchConfig()
    cfg.database.path = str(tmp_path / "tb.db")
    cfg.workspaces.base_dir = str(tmp_path / "workspaces")
    orphan = tmp_path / "workspaces" / "orphan"
    orphan.mkdir(parents=True)

    with patch.object(cli, "get_config", return_value=cfg), patch.object(cli, "setup_logging"):
        cli._main_impl(["sweep"])

    out = capsys.readouterr().out
    assert "removed 1" in out
    assert not orphan.exists()


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as exc_info:
        cli._main_impl(["--version"])

    assert exc_info.value.code == 0
    assert capsys.readouterr().out.startswith("taskbench ")
