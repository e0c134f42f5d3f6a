"""taskbench: command line for inspecting queues and maintaining workspaces."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from sqlmodel import Session as SqlSession
from sqlmodel import col, create_engine, select

from taskbench import __version__
from taskbench.config import TaskbenchConfig, get_config
from taskbench.core import db_models
from taskbench.core.db import Db
from taskbench.core.orphan_sweeper import OrphanSweeper, SweepReport
from taskbench.core.worktree_ops import GitWorktreeOps
from taskbench.logging_config import setup_logging


def _load_queue(db_path: str, project_id: str) -> list[db_models.Task]:
    """Read a project's sequential queue through a short-lived sync session."""
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"timeout": 1.0})
    try:
        with SqlSession(engine) as session:
            statement = (
                select(db_models.Task)
                .where(db_models.Task.project_id == project_id)
                .where(db_models.Task.execution_mode == "sequential")
                .order_by(col(db_models.Task.queue_position).is_(None))
                .order_by(col(db_models.Task.queue_position))
                .order_by(col(db_models.Task.created_at))
            )
            return list(session.exec(statement).all())
    finally:
        engine.dispose()


def _print_queue_table(tasks: list[db_models.Task]) -> None:
    header = f"{'Pos':>3}  {'ID':<8}  {'Status':<10}  Title"
    print(header)
    print("-" * len(header))
    for task in tasks:
        position = str(task.queue_position) if task.queue_position is not None else "-"
        print(f"{position:>3}  {task.id[:8]:<8}  {task.status:<10}  {task.title}")


def _cmd_queue(config: TaskbenchConfig, project_id: str) -> None:
    if not Path(config.database.path).exists():
        sys.stderr.write(f"taskbench error: database not found at {config.database.path}\n")
        sys.exit(1)
    tasks = _load_queue(config.database.path, project_id)
    if not tasks:
        print("No sequential tasks queued.")
        return
    _print_queue_table(tasks)


async def _run_sweep(config: TaskbenchConfig, base_dir: Path | None) -> SweepReport:
    db = Db(config.database.path)
    await db.initialize()
    try:
        ops = GitWorktreeOps(Path(config.workspaces.base_dir))
        sweeper = OrphanSweeper.for_store(
            ops,
            db,
            enabled=config.workspaces.orphan_cleanup_enabled,
        )
        return await sweeper.sweep(base_dir)
    finally:
        await db.close()


def _cmd_sweep(config: TaskbenchConfig, base_dir: Path | None) -> None:
    report = asyncio.run(_run_sweep(config, base_dir))
    if report.skipped:
        print("Orphan cleanup is disabled.")
        return
    print(f"Scanned {report.scanned}, kept {report.kept}, removed {len(report.removed)}.")
    for path in report.removed:
        print(f"  removed {path}")
    for path, exc in report.failures:
        sys.stderr.write(f"taskbench error: {path}: {exc}\n")
    if report.failures:
        sys.exit(1)


def _cmd_daemon() -> None:
    from taskbench.daemon import main as daemon_main

    asyncio.run(daemon_main())


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskbench", description=__doc__)
    parser.add_argument("--version", action="version", version=f"taskbench {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    queue_parser = subparsers.add_parser("queue", help="show a project's sequential task queue")
    queue_parser.add_argument("project_id")

    sweep_parser = subparsers.add_parser("sweep", help="remove workspace directories with no owning record")
    sweep_parser.add_argument("--base-dir", type=Path, default=None, help="override the workspace base directory")

    subparsers.add_parser("daemon", help="run the taskbench daemon")
    return parser


def _main_impl(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)

    if args.command == "daemon":
        _cmd_daemon()
        return

    config = get_config()
    setup_logging(level=config.logging.level, log_file=config.logging.file)

    if args.command == "queue":
        _cmd_queue(config, args.project_id)
    elif args.command == "sweep":
        _cmd_sweep(config, args.base_dir)


def main() -> None:
    try:
        _main_impl()
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
