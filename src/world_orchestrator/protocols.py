"""Runtime-checkable protocols for the collaborators a World drives.

Git primitives, solution parsing, builds and feeds are outside the
orchestrator: they are injected and only ever reached through these
protocols. Methods return ``False`` (or ``None``) on failure after logging
the reason; the orchestrator stops the current loop on the first failure.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from src.dependency_model.items import ProjectItem
    from src.dependency_model.models import Solution
    from src.dependency_model.result import DependentSolution, ZeroBuildProjectInfo
    from src.world_orchestrator.builder import BuildState, PackageUpgrade
    from src.world_orchestrator.roadmap import VersionSelectionContext
    from src.world_orchestrator.state import GeneratedArtifact


@runtime_checkable
class GitRepository(Protocol):
    """Protocol for one repository of the world."""

    @property
    def name(self) -> str:
        """Repository name, as referenced by ``Solution.repository``."""
        ...

    @property
    def current_branch_name(self) -> str:
        ...

    def ahead_behind(self, branch: str) -> tuple[int, int]:
        """Return how many commits *branch* is ahead of and behind its remote."""
        ...

    def check_clean_commit(self) -> bool:
        """Return True when the working folder has no uncommitted change."""
        ...

    def head_commit_sha(self, sub_path: str = "") -> str | None:
        """Return the sha of the head commit, or of the tree at *sub_path*."""
        ...

    def branch_commit_sha(self, branch: str) -> str | None:
        """Return the tip of *branch*, or None when it does not exist."""
        ...

    def ensure_branch(self, branch: str) -> bool:
        ...

    def checkout_and_pull(self, branch: str) -> tuple[bool, bool]:
        """Checkout and pull *branch*.

        Returns:
            ``(success, reload_needed)``. ``reload_needed`` is set when the
            pull changed files that solutions are parsed from.
        """
        ...

    def switch_develop_to_local(self, auto_commit: bool = True) -> bool:
        ...

    def switch_local_to_develop(self) -> bool:
        ...

    def reset_branch(self, branch: str, sha: str) -> bool:
        """Hard-reset *branch* to *sha*. An empty *sha* deletes the branch."""
        ...

    def get_release_tag(self) -> str | None:
        """Return the release version tag on the head commit, if any."""
        ...

    def get_previous_version(self) -> str | None:
        """Return the best release version tagged below the head commit."""
        ...

    def clear_version_tag(self, version: str) -> bool:
        ...

    def push_version_tag(self, version: str) -> bool:
        ...

    def push(self, branch: str) -> bool:
        ...


@runtime_checkable
class SolutionDriver(Protocol):
    """Protocol for the driver of one solution (builds, reference updates)."""

    def prepare_build(
        self,
        solution: DependentSolution,
        build_type: str,
        upgrades: list[PackageUpgrade],
    ) -> tuple[str | None, bool]:
        """Apply *upgrades* and compute the version the build will produce.

        Returns:
            ``(version, must_build)``. A None version is a failure.
        """
        ...

    def build(
        self,
        solution: DependentSolution,
        build_type: str,
        version: str | None,
        upgrades: list[PackageUpgrade],
        run_tests: bool,
    ) -> BuildState:
        """Build *solution*. A None *version* lets the driver compute it."""
        ...

    def zero_build_project(self, info: ZeroBuildProjectInfo) -> bool:
        """Build (and pack when ``info.must_pack``) a project at the zero version."""
        ...

    def update_package_reference(
        self, project: ProjectItem, package_id: str, version: str
    ) -> bool:
        ...


@runtime_checkable
class SolutionProvider(Protocol):
    """Protocol for the parser of the solutions of the current branches."""

    def load_solutions(self) -> list[Solution]:
        ...

    def driver_for(self, solution_name: str) -> SolutionDriver:
        ...


@runtime_checkable
class ArtifactFeed(Protocol):
    """Protocol for a remote target feed."""

    @property
    def name(self) -> str:
        ...

    def push(self, artifacts: list[GeneratedArtifact]) -> bool:
        ...


@runtime_checkable
class LocalFeedProvider(Protocol):
    """Protocol for the local feeds that receive build outputs."""

    @property
    def zero_build_path(self) -> Path:
        """Folder of the zero-build feed (also holds the zero-build cache)."""
        ...

    def has_zero_build_package(self, package_id: str) -> bool:
        ...

    def clear(self, build_type: str) -> None:
        """Empty the local feed of *build_type*."""
        ...

    def remove(self, build_type: str, artifacts: list[GeneratedArtifact]) -> None:
        ...


@runtime_checkable
class VersionSelector(Protocol):
    """Protocol for the release version selection policy."""

    def choose_final_version(self, context: VersionSelectionContext) -> None:
        """Answer *context* by calling ``set_choice`` or ``cancel``."""
        ...

    def on_already_released(
        self, solution: DependentSolution, version: str, is_content_tag: bool
    ) -> bool:
        """Return True to reuse *version*, already tagged on the head commit."""
        ...
