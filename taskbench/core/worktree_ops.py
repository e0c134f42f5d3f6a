"""Git worktree primitives backed by GitPython.

Every public coroutine runs its git work in a worker thread so the event loop
stays responsive while git touches the disk. Timeouts are left to git itself.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional, Sequence

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from taskbench.constants import GIT_MARKER
from taskbench.core.errors import WorktreeError
from taskbench.core.models import WorktreeCleanup

logger = logging.getLogger(__name__)

_GITDIR_PREFIX = "gitdir:"


def _open_repo(repo_path: Path) -> Repo:
    try:
        return Repo(repo_path)
    except (InvalidGitRepositoryError, NoSuchPathError) as exc:
        raise WorktreeError(f"Not a git repository: {repo_path}", repo_path) from exc


def _git_error_detail(exc: GitCommandError) -> str:
    stderr = exc.stderr.strip() if isinstance(exc.stderr, str) else ""
    return stderr or str(exc)


def _branch_exists(repo: Repo, branch: str) -> bool:
    try:
        repo.git.rev_parse("--verify", "--quiet", f"refs/heads/{branch}")
    except GitCommandError:
        return False
    return True


def _prune(repo: Repo) -> None:
    """Drop registrations of worktrees whose directories are gone."""
    try:
        repo.git.worktree("prune")
    except GitCommandError as exc:
        logger.debug("git worktree prune failed in %s: %s", repo.working_dir, _git_error_detail(exc))


def is_worktree_dir(path: Path) -> bool:
    """True when `path` carries a worktree marker (`.git` file, not directory)."""
    return (path / GIT_MARKER).is_file()


def resolve_main_repo(worktree_path: Path) -> Optional[Path]:
    """Resolve the primary checkout a worktree belongs to from its `.git` file.

    The file reads `gitdir: <repo>/.git/worktrees/<name>`.
    """
    marker = worktree_path / GIT_MARKER
    try:
        content = marker.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if not content.startswith(_GITDIR_PREFIX):
        return None
    gitdir = Path(content[len(_GITDIR_PREFIX) :].strip())
    if not gitdir.is_absolute():
        gitdir = (worktree_path / gitdir).resolve()
    if gitdir.parent.name != "worktrees":
        return None
    return gitdir.parent.parent.parent


def _is_valid_worktree(path: Path) -> bool:
    if not is_worktree_dir(path):
        return False
    try:
        Repo(path)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return False
    return True


def _remove_tree(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


class GitWorktreeOps:
    """Production worktree primitives for a workspace base directory."""

    def __init__(self, base_dir: Path) -> None:
        """Initialize worktree operations.

        Args:
            base_dir: Directory under which shared workspace directories live
        """
        self._base_dir = base_dir

    def base_directory(self) -> Path:
        return self._base_dir

    async def create(
        self,
        repo_path: Path,
        branch: str,
        worktree_path: Path,
        base_branch: str,
        checkout: bool = True,
    ) -> None:
        await asyncio.to_thread(self._create, repo_path, branch, worktree_path, base_branch, checkout)

    async def move(self, repo_path: Path, src: Path, dst: Path) -> None:
        await asyncio.to_thread(self._move, repo_path, src, dst)

    async def ensure_exists(self, repo_path: Path, branch: str, worktree_path: Path) -> None:
        await asyncio.to_thread(self._ensure_exists, repo_path, branch, worktree_path)

    async def cleanup(self, cleanup: WorktreeCleanup) -> None:
        await asyncio.to_thread(self._cleanup, cleanup)

    async def batch_cleanup(self, cleanups: Sequence[WorktreeCleanup]) -> list[tuple[WorktreeCleanup, Exception]]:
        failures: list[tuple[WorktreeCleanup, Exception]] = []
        for item in cleanups:
            try:
                await self.cleanup(item)
            except WorktreeError as exc:
                logger.warning("Failed to clean up worktree %s: %s", item.worktree_path, exc)
                failures.append((item, exc))
        return failures

    async def cleanup_suspected(self, path: Path) -> bool:
        if not is_worktree_dir(path):
            logger.debug("Skipping %s: no worktree marker", path)
            return False
        await self.cleanup(WorktreeCleanup(worktree_path=path))
        return True

    def _create(self, repo_path: Path, branch: str, worktree_path: Path, base_branch: str, checkout: bool) -> None:
        repo = _open_repo(repo_path)
        _prune(repo)
        if worktree_path.exists() or worktree_path.is_symlink():
            raise WorktreeError(f"Worktree path already exists: {worktree_path}", worktree_path)

        worktree_path.parent.mkdir(parents=True, exist_ok=True)
        args = ["add"]
        if not checkout:
            args.append("--no-checkout")
        if _branch_exists(repo, branch):
            args += [str(worktree_path), branch]
        else:
            args += ["-b", branch, str(worktree_path), base_branch]

        try:
            repo.git.worktree(*args)
        except GitCommandError as exc:
            raise WorktreeError(
                f"git worktree add failed for {worktree_path}: {_git_error_detail(exc)}", worktree_path
            ) from exc
        logger.info("Created worktree %s (branch %s from %s)", worktree_path, branch, base_branch)

    def _move(self, repo_path: Path, src: Path, dst: Path) -> None:
        repo = _open_repo(repo_path)
        dst.parent.mkdir(parents=True, exist_ok=True)
        try:
            repo.git.worktree("move", str(src), str(dst))
        except GitCommandError as exc:
            raise WorktreeError(f"git worktree move {src} -> {dst} failed: {_git_error_detail(exc)}", src) from exc
        logger.info("Moved worktree %s -> %s", src, dst)

    def _ensure_exists(self, repo_path: Path, branch: str, worktree_path: Path) -> None:
        if _is_valid_worktree(worktree_path):
            logger.debug("Worktree %s exists, skipping creation", worktree_path)
            return

        repo = _open_repo(repo_path)
        _prune(repo)
        if worktree_path.exists() or worktree_path.is_symlink():
            logger.warning("Removing invalid worktree directory %s before recreating", worktree_path)
            try:
                _remove_tree(worktree_path)
            except OSError as exc:
                raise WorktreeError(f"Cannot remove invalid worktree at {worktree_path}: {exc}", worktree_path) from exc

        worktree_path.parent.mkdir(parents=True, exist_ok=True)
        if _branch_exists(repo, branch):
            args = ["add", str(worktree_path), branch]
        else:
            args = ["add", "-b", branch, str(worktree_path)]
        try:
            repo.git.worktree(*args)
        except GitCommandError as exc:
            raise WorktreeError(
                f"git worktree add failed for {worktree_path}: {_git_error_detail(exc)}", worktree_path
            ) from exc
        logger.info("Recreated worktree %s for branch %s", worktree_path, branch)

    def _cleanup(self, cleanup: WorktreeCleanup) -> None:
        path = cleanup.worktree_path
        repo_path = cleanup.repo_path or resolve_main_repo(path)
        repo: Optional[Repo] = None
        if repo_path is not None:
            try:
                repo = _open_repo(repo_path)
            except WorktreeError:
                logger.debug("Source repo %s unavailable, removing %s from disk only", repo_path, path)

        if repo is not None and (path.exists() or path.is_symlink()):
            try:
                repo.git.worktree("remove", "--force", str(path))
            except GitCommandError as exc:
                # Not registered (or already half-removed): fall back to plain removal
                logger.debug("git worktree remove %s failed: %s", path, _git_error_detail(exc))

        try:
            _remove_tree(path)
        except OSError as exc:
            raise WorktreeError(f"Failed to remove worktree directory {path}: {exc}", path) from exc

        if repo is not None:
            _prune(repo)
        logger.debug("Cleaned up worktree %s", path)
