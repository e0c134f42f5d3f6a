"""Taskbench daemon - workspace repair on startup and periodic orphan sweeps."""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Callable, Optional

from taskbench.config import TaskbenchConfig, get_config
from taskbench.constants import LOG_ID_LEN
from taskbench.core.db import Db
from taskbench.core.models import WorkspaceStatus
from taskbench.core.orphan_sweeper import OrphanSweeper, SweepReport
from taskbench.core.sequential_queue import SequentialQueueService
from taskbench.core.task_lifecycle import TaskLifecycle
from taskbench.core.workspace_manager import WorkspaceManager
from taskbench.core.worktree_ops import GitWorktreeOps
from taskbench.logging_config import setup_logging

logger = logging.getLogger(__name__)


class TaskbenchDaemon:
    """Owns the long-lived services and the background sweep loop."""

    def __init__(self, config: TaskbenchConfig) -> None:
        self.config = config
        self.db = Db(config.database.path)
        self.worktree_ops = GitWorktreeOps(Path(config.workspaces.base_dir))
        self.workspace_manager = WorkspaceManager(self.worktree_ops)
        self.queue = SequentialQueueService(self.db)
        self.lifecycle = TaskLifecycle(self.db, self.workspace_manager, self.queue)
        self.sweeper = OrphanSweeper.for_store(
            self.worktree_ops,
            self.db,
            enabled=config.workspaces.orphan_cleanup_enabled,
        )
        self.shutdown_event = asyncio.Event()
        self.sweep_task: Optional[asyncio.Task[None]] = None

    def _log_background_task_exception(self, task_name: str) -> Callable[[asyncio.Task[None]], None]:
        """Return a done-callback that logs unexpected background task failures."""

        def _on_done(task: asyncio.Task[None]) -> None:
            try:
                task.result()
            except asyncio.CancelledError:
                return
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Background task '%s' crashed: %s", task_name, e, exc_info=True)

        return _on_done

    async def start(self) -> None:
        """Start the daemon."""
        logger.info("Starting taskbench daemon...")

        await self.db.initialize()
        logger.info("Database initialized at %s", self.config.database.path)

        await self.reconcile_ready_workspaces()
        await self.run_sweep()

        self.sweep_task = asyncio.create_task(self._periodic_sweep())
        self.sweep_task.add_done_callback(self._log_background_task_exception("periodic_sweep"))
        logger.info(
            "Periodic orphan sweep started (every %ds)",
            self.config.workspaces.orphan_sweep_interval_s,
        )

    async def stop(self) -> None:
        """Stop the daemon."""
        logger.info("Stopping taskbench daemon...")

        if self.sweep_task is not None:
            self.sweep_task.cancel()
            try:
                await self.sweep_task
            except asyncio.CancelledError:
                pass
            self.sweep_task = None
            logger.info("Periodic orphan sweep stopped")

        await self.db.close()
        logger.info("Database closed")

    async def reconcile_ready_workspaces(self) -> int:
        """Repair every READY workspace on disk.

        Returns:
            Number of workspaces repaired without error
        """
        repaired = 0
        for workspace in await self.db.list_workspaces(WorkspaceStatus.READY):
            try:
                await self.lifecycle.resume_workspace(workspace.id)
                repaired += 1
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Failed to reconcile workspace %s: %s", workspace.id[:LOG_ID_LEN], e)
        if repaired:
            logger.info("Reconciled %d workspaces", repaired)
        return repaired

    async def run_sweep(self) -> SweepReport:
        report = await self.sweeper.sweep()
        if report.removed or report.failures:
            logger.info(
                "Orphan sweep: scanned=%d kept=%d removed=%d failures=%d",
                report.scanned,
                report.kept,
                len(report.removed),
                len(report.failures),
            )
        return report

    async def _periodic_sweep(self) -> None:
        """Sweep the workspace base directory for orphans until cancelled."""
        interval = self.config.workspaces.orphan_sweep_interval_s
        while True:
            try:
                await asyncio.sleep(interval)
                await self.run_sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Error in periodic sweep: %s", e, exc_info=True)


async def main() -> None:
    """Run the daemon until SIGINT/SIGTERM."""
    config = get_config()
    setup_logging(level=config.logging.level, log_file=config.logging.file)

    daemon = TaskbenchDaemon(config)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, daemon.shutdown_event.set)

    try:
        await daemon.start()
        await daemon.shutdown_event.wait()
        logger.info("Shutdown requested")
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        sys.exit(1)
    finally:
        try:
            await daemon.stop()
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Error during daemon stop: %s", e)


if __name__ == "__main__":
    asyncio.run(main())
