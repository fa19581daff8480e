"""Shared fixtures for world orchestrator tests.

The collaborators of a world (git repositories, solution drivers, feeds and
the version selector) are replaced by small in-memory fakes that record
every call.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from src.dependency_model.models import (
    PackageReference,
    Project,
    ProjectKind,
    Solution,
)
from src.world_orchestrator.builder import BuildState
from src.world_orchestrator.config import WorldConfig
from src.world_orchestrator.roadmap import ReleaseLevel, VersionSelectionContext
from src.world_orchestrator.world import World
from src.world_shared.constants import DEVELOP_BRANCH, LOCAL_BRANCH, MASTER_BRANCH


# ---------------------------------------------------------------------------
# Git
# ---------------------------------------------------------------------------


class FakeRepository:
    """In-memory repository: branches map to their tip sha."""

    def __init__(
        self,
        name: str,
        branch: str = DEVELOP_BRANCH,
        develop_sha: str = "d0",
        master_sha: str | None = "m0",
    ) -> None:
        self.name = name
        self.current_branch_name = branch
        self.branches: dict[str, str] = {DEVELOP_BRANCH: develop_sha}
        if master_sha is not None:
            self.branches[MASTER_BRANCH] = master_sha
        self.head_sha: str | None = f"{name}-head"
        self.tree_shas: dict[str, str] = {}
        self.clean = True
        self.behind = 0
        self.fail_switch = False
        self.fail_push: set[str] = set()
        self.release_tag: str | None = None
        self.previous_version: str | None = None
        self.reload_on_pull = False
        self.pushed: list[str] = []
        self.pushed_tags: list[str] = []
        self.cleared_tags: list[str] = []
        self.resets: list[tuple[str, str]] = []

    def ahead_behind(self, branch: str) -> tuple[int, int]:
        return 0, self.behind

    def check_clean_commit(self) -> bool:
        return self.clean

    def head_commit_sha(self, sub_path: str = "") -> str | None:
        if sub_path:
            return self.tree_shas.get(sub_path, f"{self.name}:{sub_path}")
        return self.head_sha

    def branch_commit_sha(self, branch: str) -> str | None:
        return self.branches.get(branch)

    def ensure_branch(self, branch: str) -> bool:
        return True

    def checkout_and_pull(self, branch: str) -> tuple[bool, bool]:
        self.current_branch_name = branch
        return True, self.reload_on_pull

    def switch_develop_to_local(self, auto_commit: bool = True) -> bool:
        if self.fail_switch:
            return False
        self.current_branch_name = LOCAL_BRANCH
        return True

    def switch_local_to_develop(self) -> bool:
        if self.fail_switch:
            return False
        self.current_branch_name = DEVELOP_BRANCH
        return True

    def reset_branch(self, branch: str, sha: str) -> bool:
        self.resets.append((branch, sha))
        if sha:
            self.branches[branch] = sha
        else:
            self.branches.pop(branch, None)
        return True

    def get_release_tag(self) -> str | None:
        return self.release_tag

    def get_previous_version(self) -> str | None:
        return self.previous_version

    def clear_version_tag(self, version: str) -> bool:
        self.cleared_tags.append(version)
        return True

    def push_version_tag(self, version: str) -> bool:
        self.pushed_tags.append(version)
        return True

    def push(self, branch: str) -> bool:
        if branch in self.fail_push:
            return False
        self.pushed.append(branch)
        return True

    def commit(self, develop_sha: str, master_sha: str | None = None) -> None:
        """Move the tips as a release build would."""
        self.branches[DEVELOP_BRANCH] = develop_sha
        if master_sha is not None:
            self.branches[MASTER_BRANCH] = master_sha


# ---------------------------------------------------------------------------
# Solutions
# ---------------------------------------------------------------------------


class FakeDriver:
    def __init__(self, provider: FakeProvider, solution_name: str) -> None:
        self._provider = provider
        self._name = solution_name

    def prepare_build(self, solution: Any, build_type: str, upgrades: list[Any]) -> tuple[str | None, bool]:
        self._provider.prepared.append(
            (self._name, build_type, [(u.package_id, u.version) for u in upgrades])
        )
        if self._name in self._provider.fail_prepare:
            return None, False
        return self._provider.versions.get(self._name, "1.0.0-local"), True

    def build(
        self,
        solution: Any,
        build_type: str,
        version: str | None,
        upgrades: list[Any],
        run_tests: bool,
    ) -> BuildState:
        self._provider.builds.append((self._name, build_type, version, run_tests))
        if self._name in self._provider.fail_build:
            return BuildState.FAILED
        if self._provider.retry_once.pop(self._name, False):
            return BuildState.MUST_RETRY
        return BuildState.SUCCEED

    def zero_build_project(self, info: Any) -> bool:
        self._provider.zero_built.append(str(info.project.key))
        return str(info.project.key) not in self._provider.fail_zero

    def update_package_reference(self, project: Any, package_id: str, version: str) -> bool:
        self._provider.reference_updates.append((str(project.key), package_id, version))
        for ref in project.project.package_references:
            if ref.package_id == package_id:
                ref.version = version
        return True


class FakeProvider:
    """Serves a fixed list of solutions and records driver calls."""

    def __init__(self, solutions: list[Solution]) -> None:
        self.solutions = solutions
        self.load_count = 0
        self.versions: dict[str, str] = {}
        self.fail_prepare: set[str] = set()
        self.fail_build: set[str] = set()
        self.fail_zero: set[str] = set()
        self.retry_once: dict[str, bool] = {}
        self.prepared: list[tuple[str, str, list[tuple[str, str]]]] = []
        self.builds: list[tuple[str, str, str | None, bool]] = []
        self.zero_built: list[str] = []
        self.reference_updates: list[tuple[str, str, str]] = []

    def load_solutions(self) -> list[Solution]:
        self.load_count += 1
        return list(self.solutions)

    def driver_for(self, solution_name: str) -> FakeDriver:
        return FakeDriver(self, solution_name)


# ---------------------------------------------------------------------------
# Feeds
# ---------------------------------------------------------------------------


class FakeLocalFeeds:
    def __init__(self, root: Path) -> None:
        self.zero_build_path = root / "zero"
        self.zero_build_path.mkdir(parents=True, exist_ok=True)
        self.zero_packages: set[str] = set()
        self.cleared: list[str] = []
        self.removed: list[tuple[str, list[Any]]] = []

    def has_zero_build_package(self, package_id: str) -> bool:
        return package_id in self.zero_packages

    def clear(self, build_type: str) -> None:
        self.cleared.append(build_type)

    def remove(self, build_type: str, artifacts: list[Any]) -> None:
        self.removed.append((build_type, list(artifacts)))


class FakeArtifactFeed:
    def __init__(self, name: str, succeed: bool = True) -> None:
        self.name = name
        self.succeed = succeed
        self.pushed: list[Any] = []

    def push(self, artifacts: list[Any]) -> bool:
        if not self.succeed:
            return False
        self.pushed.extend(artifacts)
        return True


# ---------------------------------------------------------------------------
# Version selection
# ---------------------------------------------------------------------------


class FakeSelector:
    """Chooses the final version of the lowest allowed level."""

    def __init__(self, cancel: set[str] | None = None, reuse_tags: bool = True) -> None:
        self.cancel = cancel or set()
        self.reuse_tags = reuse_tags
        self.contexts: list[VersionSelectionContext] = []

    def choose_final_version(self, context: VersionSelectionContext) -> None:
        self.contexts.append(context)
        if context.solution.name in self.cancel:
            context.cancel()
            return
        if context.can_use_previously_resolved:
            info = context.previously_resolved
            assert info is not None and info.version is not None
            context.set_choice(info.level, info.version)
            return
        for level in (ReleaseLevel.FIX, ReleaseLevel.FEATURE, ReleaseLevel.BREAKING_CHANGE):
            versions = context.possible_versions.get(level)
            if versions:
                context.set_choice(level, versions[-1])
                return
        context.cancel()

    def on_already_released(self, solution: Any, version: str, is_content_tag: bool) -> bool:
        return self.reuse_tags


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _project(
    name: str, kind: ProjectKind = ProjectKind.PUBLISHED, packages: dict[str, str] | None = None
) -> Project:
    return Project(
        name=name,
        path=f"{name}/{name}.csproj",
        kind=kind,
        package_references=[
            PackageReference(package_id=pid, version=v) for pid, v in (packages or {}).items()
        ],
    )


def make_world_solutions(with_builder: bool = False) -> list[Solution]:
    """Core (core-repo) is consumed by App (app-repo)."""
    app_projects = [
        _project("App", packages={"Core": "1.0.0", "Json": "13.0.1"}),
        _project("App.Tests", kind=ProjectKind.TEST, packages={"Core": "1.0.0"}),
    ]
    if with_builder:
        app_projects.append(_project("Builder", kind=ProjectKind.BUILD, packages={"Core": "1.0.0"}))
    return [
        Solution(
            name="App",
            repository="app-repo",
            projects=app_projects,
            artifact_targets=["public"],
        ),
        Solution(
            name="Core",
            repository="core-repo",
            projects=[_project("Core", packages={"Json": "12.0.0"})],
            artifact_targets=["public"],
        ),
    ]


@pytest.fixture
def repositories() -> list[FakeRepository]:
    return [
        FakeRepository("app-repo", develop_sha="app-d0", master_sha="app-m0"),
        FakeRepository("core-repo", develop_sha="core-d0", master_sha=None),
    ]


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(make_world_solutions())


@pytest.fixture
def local_feeds(tmp_path: Path) -> FakeLocalFeeds:
    return FakeLocalFeeds(tmp_path / "feeds")


@pytest.fixture
def public_feed() -> FakeArtifactFeed:
    return FakeArtifactFeed("public")


@pytest.fixture
def selector() -> FakeSelector:
    return FakeSelector()


@pytest.fixture
def world_config(tmp_path: Path) -> WorldConfig:
    return WorldConfig(name="test-world", state_dir=str(tmp_path / "state"))


@pytest.fixture
def make_world(
    world_config: WorldConfig,
    repositories: list[FakeRepository],
    provider: FakeProvider,
    local_feeds: FakeLocalFeeds,
    public_feed: FakeArtifactFeed,
    selector: FakeSelector,
) -> Any:
    """Factory creating a World over the shared fakes; call again to 'restart'."""

    def factory(**overrides: Any) -> World:
        kwargs: dict[str, Any] = {
            "config": world_config,
            "repositories": repositories,
            "provider": provider,
            "feeds": local_feeds,
            "target_feeds": {"public": public_feed},
            "version_selector": selector,
        }
        kwargs.update(overrides)
        return World(**kwargs)

    return factory
