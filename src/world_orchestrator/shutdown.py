"""Cooperative stop signal for long multi-repository loops.

A stop request never interrupts a repository mid-operation: loops check
``should_stop`` between repositories and leave the work status un-concluded
so ``World.conclude_current_work`` can resume it.
"""

from __future__ import annotations

import logging
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Any

from src.world_orchestrator.exceptions import WorldStateError

if TYPE_CHECKING:
    from src.world_orchestrator.state import WorldState

logger = logging.getLogger(__name__)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """Turns SIGINT / SIGTERM into a stop request.

    The first signal marks the world state as interrupted and saves it, so
    a process killed right after still leaves a resumable document. A second
    signal received while that save runs is ignored.
    """

    def __init__(self) -> None:
        self.should_stop = False
        self._state: WorldState | None = None
        self._state_dir: Path | None = None
        self._saving = False
        self._previous: dict[int, Any] = {}

    def request_stop(self) -> None:
        """Request a stop without a signal (e.g. from a host application)."""
        logger.warning("Stop requested")
        self.should_stop = True

    def set_state(self, state: WorldState, directory: Path | None = None) -> None:
        """Attach the state saved on signal; the World calls this once loaded."""
        self._state = state
        self._state_dir = directory

    def install(self) -> None:
        for sig in _SIGNALS:
            self._previous[sig] = signal.signal(sig, self._on_signal)

    def uninstall(self) -> None:
        """Restore the handlers replaced by :meth:`install`."""
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()

    def _on_signal(self, signum: int, frame: Any) -> None:
        if self._saving:
            return
        logger.warning("Received signal %s -- stopping after the current repository", signum)
        self.should_stop = True
        self._saving = True
        try:
            self._save_interrupted()
        finally:
            self._saving = False

    def _save_interrupted(self) -> None:
        if self._state is None:
            logger.warning("No world state attached: nothing saved")
            return
        self._state.interrupted = True
        self._state.interrupt_reason = "Signal received"
        try:
            self._state.save(self._state_dir)
        except (OSError, WorldStateError):
            logger.exception("Failed to save the interrupted world state")
            return
        logger.info("Interrupted world state saved")
