"""Constants used across taskbench.

Filesystem layout names here are part of the on-disk contract shared with
existing workspaces; changing them breaks reconciliation of older layouts.
"""

# Worktree marker: a worktree has a `.git` *file*, a primary checkout a `.git` directory
GIT_MARKER = ".git"

# Suffix for the temporary sibling used while migrating a legacy single-tree workspace
LEGACY_MIGRATION_SUFFIX = "-migrating"

# Fallback directory name when a repository path has no final component
DEFAULT_REPO_DIR_NAME = "repo"

# Branch / directory naming for task workspaces
BRANCH_PREFIX = "tb"
WORKSPACE_ID_PREFIX_LEN = 4
MAX_SLUG_LENGTH = 40

# Orphan sweep cadence (seconds)
DEFAULT_ORPHAN_SWEEP_INTERVAL_S = 3600

# Environment switch that disables the orphan sweep (mapped into config by the loader)
DISABLE_ORPHAN_CLEANUP_ENV = "DISABLE_WORKTREE_ORPHAN_CLEANUP"

# Log line id truncation
LOG_ID_LEN = 8
