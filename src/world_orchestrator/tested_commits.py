"""Memory of commits whose unit tests already passed.

This is a pure cache stored in the general state bag: a missing key means
"unknown", never "safe to skip". Keys combine the solution name and the
commit sha so a commit shared by two solutions is tracked per solution.
"""

from __future__ import annotations

import logging

from src.world_orchestrator.state import WorldState
from src.world_shared.constants import TESTED_COMMIT_MEMORY_KEY, TESTED_COMMIT_SEPARATOR

logger = logging.getLogger(__name__)


def commit_key(solution_name: str, sha: str) -> str:
    return f"{solution_name}@{sha}"


class CommitTestMemory:
    """Set of commit keys backed by ``WorldState.general_state``."""

    def __init__(self, state: WorldState) -> None:
        self._state = state
        raw = state.general_state.get(TESTED_COMMIT_MEMORY_KEY, "")
        self._keys: set[str] = {k for k in raw.split(TESTED_COMMIT_SEPARATOR) if k}

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: str) -> bool:
        """Remember *key*; return False when it was already known."""
        if TESTED_COMMIT_SEPARATOR in key:
            raise ValueError(f"Commit key cannot contain '{TESTED_COMMIT_SEPARATOR}': {key}")
        if key in self._keys:
            return False
        self._keys.add(key)
        self._sync()
        return True

    def clear(self) -> None:
        self._keys.clear()
        self._sync()
        logger.info("Tested commit memory cleared")

    def _sync(self) -> None:
        if self._keys:
            self._state.general_state[TESTED_COMMIT_MEMORY_KEY] = TESTED_COMMIT_SEPARATOR.join(
                sorted(self._keys)
            )
        else:
            self._state.general_state.pop(TESTED_COMMIT_MEMORY_KEY, None)
