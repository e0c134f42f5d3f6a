"""Workspace lifecycle - one git worktree per repository, linked from a shared directory.

Layout:
- Worktrees live next to their source checkout: `/src/myrepo` -> `/src/myrepo-feature-x`.
- The shared workspace directory holds one symlink per repository, named after
  the repository, pointing at that worktree (`{shared}/myrepo -> /src/myrepo-feature-x`).

Older workspaces kept the worktree itself at `{shared}/{repo_name}`, and the
oldest ones used the shared directory itself as the worktree. `reconcile` and
`migrate_legacy_single_tree` move both layouts forward.

Callers must serialize lifecycle operations per workspace; nothing here locks.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Sequence

from taskbench.constants import DEFAULT_REPO_DIR_NAME, LEGACY_MIGRATION_SUFFIX
from taskbench.core.errors import NoRepositories, PartialCreation, WorkspaceIOError
from taskbench.core.models import (
    RepoWorkspaceInput,
    RepoWorktree,
    Repository,
    WorkspaceLayoutState,
    WorktreeCleanup,
    WorktreeContainer,
)
from taskbench.core.protocols import WorktreeOps
from taskbench.core.worktree_ops import is_worktree_dir

logger = logging.getLogger(__name__)


def sanitize_branch(branch: str) -> str:
    return branch.replace("/", "-")


def compute_worktree_path(repo_path: Path, branch: str) -> Path:
    """Sibling worktree path for a repository checkout.

    /home/user/myrepo + feature/x -> /home/user/myrepo-feature-x
    """
    repo_name = repo_path.name or DEFAULT_REPO_DIR_NAME
    return repo_path.parent / f"{repo_name}-{sanitize_branch(branch)}"


def detect_layout_state(slot_path: Path, worktree_path: Path) -> WorkspaceLayoutState:
    """Classify the repository slot `{shared}/{repo_name}` against its sibling worktree."""
    if slot_path.is_symlink():
        try:
            target = Path(os.readlink(slot_path))
        except OSError:
            return WorkspaceLayoutState.LEGACY_SYMLINK_STALE
        if target == worktree_path:
            return WorkspaceLayoutState.CURRENT
        return WorkspaceLayoutState.LEGACY_SYMLINK_STALE
    if not slot_path.exists():
        return WorkspaceLayoutState.CURRENT
    if slot_path.is_dir() and is_worktree_dir(slot_path):
        return WorkspaceLayoutState.LEGACY_UNMIGRATED
    return WorkspaceLayoutState.LEGACY_SYMLINK_STALE


def is_legacy_single_tree(shared_directory: Path, repo_name: str) -> bool:
    """True when the shared directory itself is a worktree and the per-repo slot is missing."""
    slot = shared_directory / repo_name
    return (
        shared_directory.is_dir()
        and is_worktree_dir(shared_directory)
        and not slot.exists()
        and not slot.is_symlink()
    )


def _remove_any(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def _place_symlink(link_path: Path, target: Path) -> bool:
    """Point `link_path` at `target`, replacing whatever is there.

    Returns:
        False when the link already pointed at `target` (nothing changed)
    """
    if link_path.is_symlink() and Path(os.readlink(link_path)) == target:
        return False
    if link_path.is_symlink() or link_path.exists():
        _remove_any(link_path)
    link_path.symlink_to(target, target_is_directory=True)
    return True


class WorkspaceManager:
    """Builds, reconciles, migrates and destroys multi-repository workspaces."""

    def __init__(self, worktree_ops: WorktreeOps) -> None:
        self._ops = worktree_ops

    def workspace_base_directory(self) -> Path:
        return self._ops.base_directory()

    async def build(
        self,
        shared_directory: Path,
        repos: Sequence[RepoWorkspaceInput],
        branch: str,
    ) -> WorktreeContainer:
        """Create one worktree per repository and link them from the shared directory.

        All-or-nothing: on the first worktree failure every worktree created so
        far is removed, the shared directory is removed, and PartialCreation is
        raised. Symlink failures are logged only; `reconcile` repairs them.

        Args:
            shared_directory: Shared workspace directory (created if missing)
            repos: Repositories with the branch each worktree is based on, in creation order
            branch: Branch checked out in every worktree

        Returns:
            WorktreeContainer describing the created worktrees

        Raises:
            NoRepositories: If `repos` is empty (nothing is touched)
            PartialCreation: If any worktree could not be created
            WorkspaceIOError: If the shared directory cannot be created
        """
        if not repos:
            raise NoRepositories()

        logger.info(
            "Creating workspace at %s with %d repositories (worktrees as repo siblings)",
            shared_directory,
            len(repos),
        )
        try:
            await asyncio.to_thread(shared_directory.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkspaceIOError(f"Cannot create workspace directory ({exc})", shared_directory) from exc

        created: list[RepoWorktree] = []
        for item in repos:
            repo = item.repository
            worktree_path = compute_worktree_path(repo.path, branch)
            logger.debug("Creating worktree for repo '%s' at %s", repo.name, worktree_path)
            try:
                await self._ops.create(repo.path, branch, worktree_path, item.target_branch, checkout=True)
            except Exception as exc:  # noqa: BLE001 - any primitive failure must roll back
                logger.error("Failed to create worktree for repo '%s': %s. Rolling back...", repo.name, exc)
                await self._rollback(shared_directory, created)
                raise PartialCreation(repo.name, str(exc)) from exc
            created.append(
                RepoWorktree(
                    repo_id=repo.id,
                    repo_name=repo.name,
                    source_repo_path=repo.path,
                    worktree_path=worktree_path,
                )
            )

        for worktree in created:
            await self._link(shared_directory / worktree.repo_name, worktree.worktree_path)

        logger.info("Created workspace %s with %d worktrees", shared_directory, len(created))
        return WorktreeContainer(shared_directory=shared_directory, worktrees=created)

    async def reconcile(self, shared_directory: Path, repos: Sequence[Repository], branch: str) -> None:
        """Bring an existing workspace back to the current layout (cold start / restart).

        Idempotent: a second run with the same inputs changes nothing on disk.

        Raises:
            NoRepositories: If `repos` is empty
            WorkspaceIOError: If the shared directory cannot be created
            WorktreeError: If a sibling worktree cannot be (re)created
        """
        if not repos:
            raise NoRepositories()

        if not shared_directory.is_dir():
            try:
                await asyncio.to_thread(shared_directory.mkdir, parents=True, exist_ok=True)
            except OSError as exc:
                raise WorkspaceIOError(f"Cannot create workspace directory ({exc})", shared_directory) from exc

        for repo in repos:
            worktree_path = compute_worktree_path(repo.path, branch)
            slot_path = shared_directory / repo.name
            state = detect_layout_state(slot_path, worktree_path)

            if state == WorkspaceLayoutState.LEGACY_UNMIGRATED:
                await self._migrate_slot(repo, slot_path, worktree_path)

            logger.debug("Ensuring worktree exists for repo '%s' at %s", repo.name, worktree_path)
            await self._ops.ensure_exists(repo.path, branch, worktree_path)

            if state == WorkspaceLayoutState.CURRENT and slot_path.is_symlink():
                continue
            await self._link(slot_path, worktree_path)

    async def destroy(
        self,
        shared_directory: Path,
        repos: Sequence[Repository],
        branch: str,
    ) -> list[tuple[WorktreeCleanup, Exception]]:
        """Remove every repository worktree, then the shared directory.

        Best effort: individual failures are logged and returned, never raised.

        Returns:
            (cleanup request, error) pairs for worktrees that could not be removed
        """
        logger.info("Cleaning up workspace at %s", shared_directory)
        cleanups = [
            WorktreeCleanup(worktree_path=compute_worktree_path(repo.path, branch), repo_path=repo.path)
            for repo in repos
        ]
        failures = await self._ops.batch_cleanup(cleanups)
        for cleanup, exc in failures:
            logger.warning("Worktree %s was not removed: %s", cleanup.worktree_path, exc)

        if shared_directory.exists() or shared_directory.is_symlink():
            try:
                await asyncio.to_thread(_remove_any, shared_directory)
            except OSError as exc:
                logger.warning("Could not remove workspace directory %s: %s", shared_directory, exc)
        return failures

    async def migrate_legacy_single_tree(self, shared_directory: Path, repository: Repository) -> bool:
        """Convert a workspace whose shared directory *is* the worktree.

        Old layout: `{shared}` is the worktree. New layout: `{shared}/{repo_name}`.
        The worktree goes through a temporary sibling because a directory cannot
        be moved into its own descendant.

        Returns:
            True if a migration was performed, False if nothing needed migrating

        Raises:
            WorktreeError: If git refuses a move
            WorkspaceIOError: If the shared directory cannot be recreated
        """
        if not is_legacy_single_tree(shared_directory, repository.name):
            return False

        target = shared_directory / repository.name
        temp_path = shared_directory.with_name(f"{shared_directory.name}{LEGACY_MIGRATION_SUFFIX}")
        logger.info("Detected legacy worktree at %s, migrating to %s", shared_directory, target)

        await self._ops.move(repository.path, shared_directory, temp_path)
        try:
            await asyncio.to_thread(shared_directory.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkspaceIOError(f"Cannot recreate workspace directory ({exc})", shared_directory) from exc
        await self._ops.move(repository.path, temp_path, target)

        if temp_path.exists():
            try:
                await asyncio.to_thread(_remove_any, temp_path)
            except OSError as exc:
                logger.debug("Could not remove migration temp dir %s: %s", temp_path, exc)

        logger.info("Migrated legacy worktree to %s", target)
        return True

    async def _migrate_slot(self, repo: Repository, slot_path: Path, worktree_path: Path) -> None:
        """Move a worktree living inside the shared directory out to its sibling path."""
        logger.info("Migrating worktree for '%s' from %s to %s", repo.name, slot_path, worktree_path)
        try:
            await self._ops.move(repo.path, slot_path, worktree_path)
            return
        except Exception as exc:  # noqa: BLE001 - fall through to recreation
            logger.warning("Failed to migrate worktree for '%s': %s. Will recreate.", repo.name, exc)

        try:
            await asyncio.to_thread(_remove_any, slot_path)
        except OSError as exc:
            logger.warning("Could not remove unmigrated worktree %s: %s", slot_path, exc)

    async def _rollback(self, shared_directory: Path, created: Sequence[RepoWorktree]) -> None:
        for worktree in created:
            cleanup = WorktreeCleanup(worktree_path=worktree.worktree_path, repo_path=worktree.source_repo_path)
            try:
                await self._ops.cleanup(cleanup)
            except Exception as exc:  # noqa: BLE001 - rollback continues past failures
                logger.error("Failed to clean up worktree '%s' during rollback: %s", worktree.repo_name, exc)

        try:
            await asyncio.to_thread(shared_directory.rmdir)
        except OSError as exc:
            logger.debug("Could not remove workspace dir %s during rollback: %s", shared_directory, exc)

    async def _link(self, link_path: Path, target: Path) -> None:
        try:
            changed = await asyncio.to_thread(_place_symlink, link_path, target)
        except OSError as exc:
            logger.warning("Failed to create symlink %s -> %s: %s", link_path, target, exc)
            return
        if changed:
            logger.debug("Created symlink %s -> %s", link_path, target)
