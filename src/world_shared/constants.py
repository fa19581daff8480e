"""Shared constants for world orchestration."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------
STATE_DIR = ".world-state"
STATE_FILE_SUFFIX = ".World.State.json"
STATE_SCHEMA_VERSION = 1

# General state keys
TESTED_COMMIT_MEMORY_KEY = "TestedCommitMemory"
TESTED_COMMIT_SEPARATOR = "|"

# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------
DEVELOP_BRANCH = "develop"
MASTER_BRANCH = "master"
LOCAL_BRANCH = "develop-local"

# ---------------------------------------------------------------------------
# Zero-build
# ---------------------------------------------------------------------------
ZERO_VERSION = "0.0.0-0"
ZERO_BUILD_CACHE_FILE = "CacheZeroVersion.txt"

# ---------------------------------------------------------------------------
# Build result types
# ---------------------------------------------------------------------------
BUILD_TYPE_LOCAL = "local"
BUILD_TYPE_CI = "ci"
BUILD_TYPE_RELEASE = "release"

# Maximum number of published build results kept in the history.
PUBLISHED_HISTORY_LIMIT = 20

# Maximum number of cycles rendered in a sorter error message.
MAX_REPORTED_CYCLES = 20
