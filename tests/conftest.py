"""Pytest configuration for taskbench tests."""

import shutil
from pathlib import Path
from typing import Sequence

import pytest

from taskbench.core.db import Db
from taskbench.core.errors import WorktreeError
from taskbench.core.models import WorktreeCleanup


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=2s, integration=10s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(2))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(10))


class FakeWorktreeOps:
    """On-disk stand-in for GitWorktreeOps.

    A "worktree" is a directory holding a `.git` file, which is all the layout
    detection looks at. Failures are injected per repository or per path.
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir
        self.fail_create_for: set[Path] = set()
        self.fail_cleanup_for: set[Path] = set()
        self.fail_move = False
        self.calls: list[tuple[str, Path]] = []

    def base_directory(self) -> Path:
        return self.base_dir

    @staticmethod
    def _materialize(repo_path: Path, worktree_path: Path) -> None:
        worktree_path.mkdir(parents=True)
        (worktree_path / ".git").write_text(f"gitdir: {repo_path}/.git/worktrees/{worktree_path.name}\n")

    async def create(
        self,
        repo_path: Path,
        branch: str,
        worktree_path: Path,
        base_branch: str,
        checkout: bool = True,
    ) -> None:
        self.calls.append(("create", worktree_path))
        if repo_path in self.fail_create_for:
            raise WorktreeError(f"injected create failure for {repo_path}", worktree_path)
        if worktree_path.exists():
            raise WorktreeError("Worktree path already exists", worktree_path)
        self._materialize(repo_path, worktree_path)

    async def move(self, repo_path: Path, src: Path, dst: Path) -> None:
        self.calls.append(("move", src))
        if self.fail_move:
            raise WorktreeError("injected move failure", src)
        shutil.move(str(src), str(dst))

    async def ensure_exists(self, repo_path: Path, branch: str, worktree_path: Path) -> None:
        self.calls.append(("ensure_exists", worktree_path))
        if (worktree_path / ".git").is_file():
            return
        if worktree_path.exists():
            shutil.rmtree(worktree_path)
        self._materialize(repo_path, worktree_path)

    async def cleanup(self, cleanup: WorktreeCleanup) -> None:
        self.calls.append(("cleanup", cleanup.worktree_path))
        if cleanup.worktree_path in self.fail_cleanup_for:
            raise WorktreeError("injected cleanup failure", cleanup.worktree_path)
        if cleanup.worktree_path.exists():
            shutil.rmtree(cleanup.worktree_path)

    async def batch_cleanup(self, cleanups: Sequence[WorktreeCleanup]) -> list[tuple[WorktreeCleanup, Exception]]:
        failures: list[tuple[WorktreeCleanup, Exception]] = []
        for item in cleanups:
            try:
                await self.cleanup(item)
            except WorktreeError as exc:
                failures.append((item, exc))
        return failures

    async def cleanup_suspected(self, path: Path) -> bool:
        self.calls.append(("cleanup_suspected", path))
        if not (path / ".git").is_file():
            return False
        await self.cleanup(WorktreeCleanup(worktree_path=path))
        return True

    def created_paths(self) -> list[Path]:
        return [path for op, path in self.calls if op == "create"]


@pytest.fixture
def fake_ops(tmp_path: Path) -> FakeWorktreeOps:
    base = tmp_path / "workspaces"
    base.mkdir()
    return FakeWorktreeOps(base)


@pytest.fixture
async def test_db(tmp_path: Path):
    """Fresh migrated database in a temp dir."""
    db = Db(str(tmp_path / "taskbench.db"))
    await db.initialize()
    yield db
    await db.close()
