"""World state persistence with atomic writes.

The whole document is loaded, mutated in memory and written back at once.
It is keyed by world name: ``<state_dir>/<world>.World.State.json``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from src.world_orchestrator.exceptions import WorldStateError
from src.world_shared.constants import (
    PUBLISHED_HISTORY_LIMIT,
    STATE_DIR,
    STATE_FILE_SUFFIX,
    STATE_SCHEMA_VERSION,
)
from src.world_shared.utils import atomic_write_json, load_json


class GlobalWorkStatus(str, Enum):
    IDLE = "idle"
    SWITCHING_TO_LOCAL = "switching_to_local"
    SWITCHING_TO_DEVELOP = "switching_to_develop"
    RELEASING = "releasing"
    WAITING_RELEASE_CONFIRMATION = "waiting_release_confirmation"
    CANCELLING_RELEASE = "cancelling_release"
    PUBLISHING_RELEASE = "publishing_release"
    OTHER_OPERATION = "other_operation"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _pick(data: dict[str, Any] | None, cls: type) -> dict[str, Any]:
    """Keep only the keys of *data* that are fields of *cls*."""
    if not isinstance(data, dict):
        return {}
    known = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in known}


# ---------------------------------------------------------------------------
# Per-status work states
# ---------------------------------------------------------------------------


@dataclass
class SwitchState:
    """Progress of a branch switch: repositories already switched."""

    switched_repositories: list[str] = field(default_factory=list)


@dataclass
class ReleasingState:
    """Progress of a release: solutions whose release build was started.

    Only these solutions may carry a tag created by this release.
    """

    started_at: str = ""
    build_attempts: int = 0
    built_solutions: list[str] = field(default_factory=list)


@dataclass
class CancellingState:
    cleared_tags: list[str] = field(default_factory=list)
    restored_repositories: list[str] = field(default_factory=list)


@dataclass
class PublishingState:
    pushed_feeds: list[str] = field(default_factory=list)
    failed_feeds: list[str] = field(default_factory=list)
    pushed_repositories: list[str] = field(default_factory=list)


@dataclass
class OtherOperationState:
    started_at: str = ""


@dataclass
class WorkStatusStates:
    """One explicit state record per work status that needs one."""

    switching_to_local: SwitchState = field(default_factory=SwitchState)
    switching_to_develop: SwitchState = field(default_factory=SwitchState)
    releasing: ReleasingState = field(default_factory=ReleasingState)
    cancelling_release: CancellingState = field(default_factory=CancellingState)
    publishing_release: PublishingState = field(default_factory=PublishingState)
    other_operation: OtherOperationState = field(default_factory=OtherOperationState)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> WorkStatusStates:
        data = data or {}
        return cls(
            switching_to_local=SwitchState(**_pick(data.get("switching_to_local"), SwitchState)),
            switching_to_develop=SwitchState(
                **_pick(data.get("switching_to_develop"), SwitchState)
            ),
            releasing=ReleasingState(**_pick(data.get("releasing"), ReleasingState)),
            cancelling_release=CancellingState(
                **_pick(data.get("cancelling_release"), CancellingState)
            ),
            publishing_release=PublishingState(
                **_pick(data.get("publishing_release"), PublishingState)
            ),
            other_operation=OtherOperationState(
                **_pick(data.get("other_operation"), OtherOperationState)
            ),
        )

    def reset(self, status: GlobalWorkStatus) -> None:
        """Start *status* with a fresh state record."""
        if status is GlobalWorkStatus.SWITCHING_TO_LOCAL:
            self.switching_to_local = SwitchState()
        elif status is GlobalWorkStatus.SWITCHING_TO_DEVELOP:
            self.switching_to_develop = SwitchState()
        elif status is GlobalWorkStatus.RELEASING:
            self.releasing = ReleasingState(started_at=_now())
        elif status is GlobalWorkStatus.CANCELLING_RELEASE:
            self.cancelling_release = CancellingState()
        elif status is GlobalWorkStatus.PUBLISHING_RELEASE:
            self.publishing_release = PublishingState()
        elif status is GlobalWorkStatus.OTHER_OPERATION:
            self.other_operation = OtherOperationState(started_at=_now())


# ---------------------------------------------------------------------------
# Snapshot and build results
# ---------------------------------------------------------------------------


@dataclass
class RepositorySnapshot:
    """Tips of develop and master when the release started.

    An empty ``master_sha`` means master did not exist yet.
    """

    repository: str
    develop_sha: str
    master_sha: str = ""


@dataclass
class GeneratedArtifact:
    package_id: str
    version: str
    solution_name: str
    target_name: str

    def __str__(self) -> str:
        return f"{self.package_id}/{self.version} -> {self.target_name}"


@dataclass
class BuildResultRecord:
    build_type: str
    artifacts: list[GeneratedArtifact] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    published_at: str = ""
    release_notes: dict[str, str] = field(default_factory=dict)
    pushed_feeds: list[str] = field(default_factory=list)

    @property
    def is_published(self) -> bool:
        return bool(self.published_at)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuildResultRecord:
        values = _pick(data, cls)
        values["artifacts"] = [
            GeneratedArtifact(**_pick(a, GeneratedArtifact)) for a in values.get("artifacts", [])
        ]
        return cls(**values)


# ---------------------------------------------------------------------------
# World state
# ---------------------------------------------------------------------------


@dataclass
class WorldState:
    """The persisted state of one world.

    ``other_operation_name`` is set exactly when ``work_status`` is
    ``other_operation``.
    """

    world_name: str
    work_status: str = GlobalWorkStatus.IDLE.value
    other_operation_name: str = ""
    general_state: dict[str, str] = field(default_factory=dict)
    work_states: WorkStatusStates = field(default_factory=WorkStatusStates)
    build_results: dict[str, BuildResultRecord] = field(default_factory=dict)
    published_build_history: list[BuildResultRecord] = field(default_factory=list)
    roadmap: list[dict[str, Any]] = field(default_factory=list)
    git_snapshot: list[RepositorySnapshot] | None = None
    updated_at: str = field(default_factory=_now)
    interrupted: bool = False
    interrupt_reason: str = ""
    schema_version: int = STATE_SCHEMA_VERSION

    @property
    def status(self) -> GlobalWorkStatus:
        return GlobalWorkStatus(self.work_status)

    def validate(self) -> None:
        """Raise :class:`WorldStateError` when the document is inconsistent."""
        try:
            status = self.status
        except ValueError as exc:
            raise WorldStateError(f"Unknown work status '{self.work_status}'") from exc
        is_other = status is GlobalWorkStatus.OTHER_OPERATION
        if is_other != bool(self.other_operation_name):
            raise WorldStateError(
                "OtherOperationName must be set exactly when the work status is "
                f"'{GlobalWorkStatus.OTHER_OPERATION.value}' (status "
                f"'{self.work_status}', name '{self.other_operation_name}')"
            )

    # ------------------------------------------------------------------
    # Build results
    # ------------------------------------------------------------------

    def set_build_result(self, result: BuildResultRecord) -> None:
        self.build_results[result.build_type] = result

    def get_build_result(self, build_type: str) -> BuildResultRecord | None:
        return self.build_results.get(build_type)

    def clear_build_result(self, build_type: str) -> None:
        self.build_results.pop(build_type, None)

    def publish_build_result(self, build_type: str) -> None:
        """Move the *build_type* result to the published history."""
        result = self.build_results.pop(build_type, None)
        if result is None:
            return
        result.published_at = _now()
        self.published_build_history.append(result)
        del self.published_build_history[:-PUBLISHED_HISTORY_LIMIT]

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialise the state to a plain dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorldState:
        values = _pick(data, cls)
        if "world_name" not in values:
            raise WorldStateError("World state document has no world_name")
        values["work_states"] = WorkStatusStates.from_dict(values.get("work_states"))
        values["build_results"] = {
            k: BuildResultRecord.from_dict(v)
            for k, v in (values.get("build_results") or {}).items()
        }
        values["published_build_history"] = [
            BuildResultRecord.from_dict(v) for v in values.get("published_build_history") or []
        ]
        snapshot = values.get("git_snapshot")
        if snapshot is not None:
            values["git_snapshot"] = [
                RepositorySnapshot(**_pick(s, RepositorySnapshot)) for s in snapshot
            ]
        return cls(**values)

    @staticmethod
    def path_for(world_name: str, directory: Path | str | None = None) -> Path:
        directory = Path(directory) if directory else Path(STATE_DIR)
        return directory / f"{world_name}{STATE_FILE_SUFFIX}"

    def save(self, directory: Path | str | None = None) -> Path:
        """Persist state to disk using atomic writes.

        Args:
            directory: Target directory.  Defaults to the standard state
                       directory location.

        Returns:
            The path the state was written to.

        Raises:
            WorldStateError: The state is inconsistent; nothing is written.
        """
        self.validate()
        target = self.path_for(self.world_name, directory)
        self.updated_at = _now()
        atomic_write_json(target, self.to_dict())
        return target

    @classmethod
    def load(
        cls, world_name: str, directory: Path | str | None = None
    ) -> WorldState | None:
        """Load the state of *world_name*.

        Returns:
            The state, or None when no document exists (or it is unreadable).

        Raises:
            WorldStateError: The document is readable but inconsistent.
        """
        data = load_json(cls.path_for(world_name, directory))
        if data is None:
            return None
        state = cls.from_dict(data)
        if state.world_name != world_name:
            raise WorldStateError(
                f"State file of '{world_name}' belongs to '{state.world_name}'"
            )
        state.validate()
        return state

    @classmethod
    def clear(cls, world_name: str, directory: Path | str | None = None) -> None:
        """Remove the state document of *world_name* if it exists."""
        cls.path_for(world_name, directory).unlink(missing_ok=True)
