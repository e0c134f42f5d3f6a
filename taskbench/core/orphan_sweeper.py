"""Orphan workspace sweep.

A workspace directory under the base directory is an orphan when no workspace
record references its path. Orphans get their worktrees cleaned up and are then
removed recursively.

This sweep races with concurrent builds and destroys: a directory created by a
build whose record is not yet visible, or one being destroyed right now, can be
touched here. Workspace records are persisted before the directory is
materialized, which keeps the window small, but nothing closes it. A lease per
workspace path would be required for that.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from taskbench.core.protocols import RecordExistsFn, WorkspaceRecordStore, WorktreeOps

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one sweep pass."""

    skipped: bool = False
    scanned: int = 0
    kept: int = 0
    removed: list[Path] = field(default_factory=list)
    failures: list[tuple[Path, Exception]] = field(default_factory=list)


def _list_dir(path: Path) -> list[Path]:
    return sorted(path.iterdir())


def _worktree_candidate(child: Path) -> Optional[Path]:
    """Directory to hand to `cleanup_suspected` for one entry of an orphan workspace.

    Repository slots are symlinks to sibling worktrees outside the base
    directory; those are followed. Dangling links and files yield None.
    """
    if child.is_symlink():
        try:
            target = child.resolve(strict=True)
        except OSError:
            return None
        return target if target.is_dir() else None
    return child if child.is_dir() else None


class OrphanSweeper:
    """Removes workspace directories that have no owning workspace record."""

    def __init__(self, worktree_ops: WorktreeOps, record_exists: RecordExistsFn, enabled: bool = True) -> None:
        """Initialize sweeper.

        Args:
            worktree_ops: Worktree primitives used to unregister suspected worktrees
            record_exists: Async predicate - does a workspace record reference this path?
            enabled: Operational switch; a disabled sweeper never touches the disk
        """
        self._ops = worktree_ops
        self._record_exists = record_exists
        self.enabled = enabled

    @classmethod
    def for_store(cls, worktree_ops: WorktreeOps, store: WorkspaceRecordStore, enabled: bool = True) -> "OrphanSweeper":
        return cls(worktree_ops, store.workspace_record_exists_for_path, enabled=enabled)

    async def sweep(self, base_dir: Optional[Path] = None) -> SweepReport:
        """Scan immediate subdirectories of the base directory and remove orphans.

        Never raises for per-entry failures; they are logged and collected.
        """
        report = SweepReport()
        if not self.enabled:
            logger.debug("Orphan workspace cleanup is disabled by configuration")
            report.skipped = True
            return report

        base = base_dir or self._ops.base_directory()
        if not base.is_dir():
            logger.debug("Workspace base directory %s does not exist, skipping orphan cleanup", base)
            return report

        try:
            entries = await asyncio.to_thread(_list_dir, base)
        except OSError as exc:
            logger.error("Failed to read workspace base directory %s: %s", base, exc)
            report.failures.append((base, exc))
            return report

        for entry in entries:
            if entry.is_symlink() or not entry.is_dir():
                continue
            report.scanned += 1
            if await self._has_owner(entry):
                report.kept += 1
                continue

            logger.info("Found orphaned workspace: %s", entry)
            if await self._remove_orphan(entry, report):
                report.removed.append(entry)
                logger.info("Removed orphaned workspace: %s", entry)

        if report.removed:
            logger.info("Orphan sweep removed %d of %d workspaces", len(report.removed), report.scanned)
        return report

    async def _has_owner(self, path: Path) -> bool:
        try:
            return await self._record_exists(str(path))
        except Exception as exc:  # noqa: BLE001 - an unanswerable lookup counts as "no owner"
            logger.warning("Workspace record lookup failed for %s, treating as orphan: %s", path, exc)
            return False

    async def _remove_orphan(self, workspace_dir: Path, report: SweepReport) -> bool:
        try:
            children = await asyncio.to_thread(_list_dir, workspace_dir)
        except OSError as exc:
            logger.debug("Cannot read workspace directory %s, attempting direct removal: %s", workspace_dir, exc)
            children = []

        for child in children:
            target = _worktree_candidate(child)
            if target is None:
                continue
            try:
                await self._ops.cleanup_suspected(target)
            except Exception as exc:  # noqa: BLE001 - keep sweeping
                logger.warning("Failed to clean up suspected worktree %s: %s", target, exc)
                report.failures.append((target, exc))

        if not workspace_dir.exists():
            return True
        try:
            await asyncio.to_thread(shutil.rmtree, workspace_dir)
        except OSError as exc:
            logger.error("Failed to remove orphaned workspace %s: %s", workspace_dir, exc)
            report.failures.append((workspace_dir, exc))
            return False
        return True
