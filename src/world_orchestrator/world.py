"""World orchestration: branch switches, builds and the release workflow.

A :class:`World` drives the repositories of one world through the work
statuses of :mod:`src.world_orchestrator.state_machine`. Every status change
is persisted before the work it announces starts, so an interrupted
operation is resumed by :meth:`World.conclude_current_work` purely from the
persisted status.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from packaging.version import Version
from transitions import EventData, MachineError

from src.dependency_model.exceptions import DependencyModelError, InvalidReferenceError
from src.dependency_model.graph_builder import DependencyContext
from src.dependency_model.items import ProjectItem, ProjectKey
from src.dependency_model.result import DependentSolution, SolutionDependencyResult
from src.world_orchestrator.builder import BuildRunner
from src.world_orchestrator.config import WorldConfig
from src.world_orchestrator.exceptions import (
    CollaboratorError,
    WorldError,
    WorldStateError,
    WorldUsageError,
)
from src.world_orchestrator.protocols import (
    ArtifactFeed,
    GitRepository,
    LocalFeedProvider,
    SolutionProvider,
    VersionSelector,
)
from src.world_orchestrator.roadmap import ReleaseLevel, ReleaseRoadmap, ReleaseSolutionInfo
from src.world_orchestrator.shutdown import GracefulShutdown
from src.world_orchestrator.state import (
    BuildResultRecord,
    GeneratedArtifact,
    GlobalWorkStatus,
    RepositorySnapshot,
    SwitchState,
    WorldState,
)
from src.world_orchestrator.state_machine import CONCLUDE_HANDLERS, create_world_machine
from src.world_orchestrator.tested_commits import CommitTestMemory
from src.world_orchestrator.versioning import is_stable, parse_version, select_upgrade_version
from src.world_orchestrator.zero_build import ZeroBuilder, ensure_zero_build_projects
from src.world_shared.constants import BUILD_TYPE_CI, BUILD_TYPE_LOCAL, BUILD_TYPE_RELEASE
from src.world_shared.logging import world_context

logger = logging.getLogger(__name__)


class GlobalGitStatus(str, Enum):
    """Branch shared by every repository, or MIXED."""

    DEVELOP = "develop"
    LOCAL = "local"
    MASTER = "master"
    MIXED = "mixed"


class WorldModel:
    """Model object for the ``transitions`` world machine.

    Exposes the guard methods required by ``TRANSITIONS``. The ``state``
    attribute is managed by the ``Machine``; it is seeded from the persisted
    work status so that resume works.
    """

    def __init__(self, world: World) -> None:
        self._world = world
        self.state: str = world.state.work_status

    # ---- Guard methods ---------------------------------------------------

    def all_on_develop(self, event: EventData) -> bool:
        return self._world.git_status is GlobalGitStatus.DEVELOP

    def all_on_local(self, event: EventData) -> bool:
        return self._world.git_status is GlobalGitStatus.LOCAL

    def has_version_selector(self, event: EventData) -> bool:
        return self._world.version_selector is not None

    # ---- Callbacks -------------------------------------------------------

    def persist_status(self, event: EventData) -> None:
        self._world._persist_status(
            GlobalWorkStatus(self.state), event.kwargs.get("operation_name", "")
        )


class World:
    """Orchestrates one world.

    Args:
        config: The world configuration.
        repositories: The git repositories of the world.
        provider: Loads the solutions and their drivers.
        feeds: The local feeds that receive build outputs.
        target_feeds: Remote feeds by name (``Solution.artifact_targets``).
        version_selector: Release version policy. Releasing requires one.
        shutdown: Cooperative stop signal; a private one when omitted.
    """

    def __init__(
        self,
        config: WorldConfig,
        repositories: Iterable[GitRepository],
        provider: SolutionProvider,
        feeds: LocalFeedProvider,
        target_feeds: Mapping[str, ArtifactFeed] | None = None,
        version_selector: VersionSelector | None = None,
        shutdown: GracefulShutdown | None = None,
    ) -> None:
        self.config = config
        self._repositories: dict[str, GitRepository] = {r.name: r for r in repositories}
        self._provider = provider
        self._feeds = feeds
        self._target_feeds: dict[str, ArtifactFeed] = dict(target_feeds or {})
        self.version_selector = version_selector
        self._state_dir: Path | None = Path(config.state_dir) if config.state_dir else None

        state = WorldState.load(config.name, self._state_dir)
        if state is None:
            state = WorldState(world_name=config.name)
            state.save(self._state_dir)
            logger.info("Created new world state for '%s'", config.name)
        elif state.interrupted:
            logger.warning(
                "World '%s' was interrupted (%s) while '%s'",
                config.name,
                state.interrupt_reason,
                state.work_status,
            )
        self.state = state
        self._shutdown = shutdown or GracefulShutdown()
        self._shutdown.set_state(state, self._state_dir)
        self._memory = CommitTestMemory(state)
        self._roadmap = ReleaseRoadmap.from_list(state.roadmap)

        self._model = WorldModel(self)
        self._machine = create_world_machine(self._model, state.work_status)

        self._context: DependencyContext | None = None
        self._result: SolutionDependencyResult | None = None
        self._zero_builder: ZeroBuilder | None = None
        self._other_action: Callable[[], bool] | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def work_status(self) -> GlobalWorkStatus:
        return self.state.status

    @property
    def repositories(self) -> dict[str, GitRepository]:
        return dict(self._repositories)

    @property
    def roadmap(self) -> ReleaseRoadmap:
        return self._roadmap

    @property
    def tested_commits(self) -> CommitTestMemory:
        return self._memory

    @property
    def git_status(self) -> GlobalGitStatus:
        branches = {r.current_branch_name for r in self._repositories.values()}
        if len(branches) != 1:
            return GlobalGitStatus.MIXED
        branch = branches.pop()
        if branch == self.config.branches.develop:
            return GlobalGitStatus.DEVELOP
        if branch == self.config.branches.local:
            return GlobalGitStatus.LOCAL
        if branch == self.config.branches.master:
            return GlobalGitStatus.MASTER
        return GlobalGitStatus.MIXED

    @property
    def dependency_result(self) -> SolutionDependencyResult:
        """The current dependency analysis, loaded on first access."""
        if self._result is None:
            return self.reload()
        return self._result

    # ------------------------------------------------------------------
    # Solutions
    # ------------------------------------------------------------------

    def reload(self) -> SolutionDependencyResult:
        """Reload the solutions of the current branches and analyse them.

        Raises:
            InvalidReferenceError: A solution names a repository that is not
                part of the world.
            DependencyModelError: The solutions are inconsistent.
        """
        self._invalidate()
        solutions = self._provider.load_solutions()
        logger.info("Loaded %d solutions", len(solutions))
        for solution in solutions:
            if solution.repository not in self._repositories:
                raise InvalidReferenceError(
                    solution.name,
                    solution.repository,
                    f"Solution '{solution.name}' belongs to unknown repository "
                    f"'{solution.repository}'",
                )
        self._context = DependencyContext.create(solutions)
        self._result = self._context.analyze_dependencies(self.config.strategy)
        self._zero_builder = None
        if self._result.has_error:
            logger.error("Unable to order the solutions of '%s'", self.name)
            self._result.sort_result.log_error(logger)
        return self._result

    def _ensure_context(self) -> DependencyContext:
        if self._context is None:
            self.reload()
        assert self._context is not None
        return self._context

    def _invalidate(self) -> None:
        self._context = None
        self._result = None
        self._zero_builder = None

    # ------------------------------------------------------------------
    # Status handling
    # ------------------------------------------------------------------

    def _save(self) -> None:
        self.state.roadmap = self._roadmap.to_list()
        self.state.save(self._state_dir)

    def _persist_status(self, status: GlobalWorkStatus, operation_name: str) -> None:
        self.state.work_status = status.value
        self.state.other_operation_name = (
            operation_name if status is GlobalWorkStatus.OTHER_OPERATION else ""
        )
        self.state.work_states.reset(status)
        self.state.interrupted = False
        self.state.interrupt_reason = ""
        self._save()
        logger.info("Work status is now '%s'", status.value)

    def _guard_failure_reason(self) -> str:
        parts = [f"repositories are '{self.git_status.value}'"]
        if self.version_selector is None:
            parts.append("no version selector is configured")
        return " and ".join(parts)

    def _fire(self, trigger: str, operation: str, **kwargs: Any) -> None:
        """Fire *trigger*; a refused transition raises :class:`WorldUsageError`."""
        try:
            moved = getattr(self._model, trigger)(**kwargs)
        except MachineError as exc:
            raise WorldUsageError(
                operation, f"not allowed while '{self.state.work_status}'"
            ) from exc
        if not moved:
            raise WorldUsageError(operation, self._guard_failure_reason())

    def _require_idle(self, operation: str) -> None:
        if self.work_status is not GlobalWorkStatus.IDLE:
            raise WorldUsageError(
                operation,
                f"current work '{self.state.work_status}' must be concluded first",
            )

    def _run_safe(self, description: str, action: Callable[[], bool]) -> bool:
        """Run one top-level operation.

        Usage errors propagate untouched. Other errors save the state first;
        unexpected ones are wrapped in :class:`WorldError`.
        """
        with world_context(self.name):
            logger.info("Starting %s", description)
            try:
                success = action()
            except WorldUsageError:
                raise
            except (WorldError, DependencyModelError):
                logger.error("%s failed -- saving state", description)
                self._save()
                raise
            except Exception as exc:
                logger.exception("Unexpected error during %s", description)
                self._save()
                raise WorldError(f"Unexpected error during {description}: {exc}") from exc
            if success:
                logger.info("%s succeeded", description)
            else:
                logger.warning(
                    "%s did not complete; work status is '%s'",
                    description,
                    self.state.work_status,
                )
            return success

    def _stop_requested(self) -> bool:
        if self._shutdown.should_stop:
            logger.warning("Stop requested -- leaving '%s' unconcluded", self.state.work_status)
            self.state.interrupted = True
            self.state.interrupt_reason = "Stop requested"
            self._save()
            return True
        return False

    # ------------------------------------------------------------------
    # Conclude
    # ------------------------------------------------------------------

    def conclude_current_work(self) -> bool:
        """Resume the work announced by the persisted status.

        Raises:
            WorldUsageError: Nothing to conclude (idle or waiting for a
                release confirmation).
        """
        status = self.work_status
        handler = CONCLUDE_HANDLERS[status.value]
        if handler is None:
            raise WorldUsageError(
                "conclude_current_work", f"nothing to conclude while '{status.value}'"
            )
        return self._run_safe(f"conclude {status.value}", getattr(self, handler))

    # ------------------------------------------------------------------
    # Branch switches
    # ------------------------------------------------------------------

    def switch_to_local(self) -> bool:
        def run() -> bool:
            self._fire("start_switch_to_local", "switch_to_local")
            return self._do_switch_to_local()

        return self._run_safe("switch to local", run)

    def switch_to_develop(self) -> bool:
        def run() -> bool:
            self._fire("start_switch_to_develop", "switch_to_develop")
            return self._do_switch_to_develop()

        return self._run_safe("switch to develop", run)

    def _switch_repositories(
        self,
        work: SwitchState,
        target: str,
        switch: Callable[[GitRepository], bool],
    ) -> bool:
        for repo in self._repositories.values():
            if self._stop_requested():
                return False
            if repo.current_branch_name == target:
                logger.info("Repository '%s' is already on '%s'", repo.name, target)
            else:
                logger.info("Switching '%s' to '%s'", repo.name, target)
                if not switch(repo):
                    logger.error("Failed to switch '%s' to '%s'", repo.name, target)
                    self._save()
                    return False
            if repo.name not in work.switched_repositories:
                work.switched_repositories.append(repo.name)
                self._save()
        return True

    def _do_switch_to_local(self) -> bool:
        if not self._switch_repositories(
            self.state.work_states.switching_to_local,
            self.config.branches.local,
            lambda repo: repo.switch_develop_to_local(auto_commit=True),
        ):
            return False
        if self.reload().has_error or not self._run_zero_build():
            return False
        self._fire("work_done", "switch_to_local")
        return True

    def _do_switch_to_develop(self) -> bool:
        if not self._switch_repositories(
            self.state.work_states.switching_to_develop,
            self.config.branches.develop,
            lambda repo: repo.switch_local_to_develop(),
        ):
            return False
        if self.reload().has_error or not self._run_zero_build():
            return False
        record = self._run_build(
            BUILD_TYPE_CI,
            rebuild_all=self.config.build.rebuild_all,
            with_unit_test=self.config.build.with_unit_test,
        )
        if record is None:
            return False
        self._fire("work_done", "switch_to_develop")
        return True

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    def _run_zero_build(self) -> bool:
        context = self._ensure_context()
        builder, must_reload = ensure_zero_build_projects(
            context.build_projects_info,
            self._feeds,
            self._provider,
            self._repositories,
            self._shutdown,
        )
        if must_reload:
            self.reload()
        self._zero_builder = builder
        return builder is not None

    def _run_build(
        self,
        build_type: str,
        rebuild_all: bool,
        with_unit_test: bool,
        release_versions: dict[str, tuple[str, bool]] | None = None,
        release_notes: dict[str, str] | None = None,
        on_build: Callable[[DependentSolution], None] | None = None,
    ) -> BuildResultRecord | None:
        result = self.dependency_result
        if result.has_error:
            return None
        runner = BuildRunner(
            build_type,
            result,
            self._provider,
            self._feeds,
            self._repositories,
            zero_builder=self._zero_builder,
            memory=self._memory,
            with_unit_test=with_unit_test,
            release_versions=release_versions,
            release_notes=release_notes,
            shutdown=self._shutdown,
            on_build=on_build,
        )
        record = runner.run(force_rebuild=rebuild_all)
        if record is not None:
            self.state.set_build_result(record)
        self._save()
        return record

    def all_build(
        self, rebuild_all: bool | None = None, with_unit_test: bool | None = None
    ) -> bool:
        """Build every solution of the current branch.

        A local build runs on the local branch, a CI build on develop.
        """

        def run() -> bool:
            self._require_idle("all_build")
            git = self.git_status
            if git is GlobalGitStatus.LOCAL:
                build_type = BUILD_TYPE_LOCAL
            elif git is GlobalGitStatus.DEVELOP:
                build_type = BUILD_TYPE_CI
            else:
                raise WorldUsageError(
                    "all_build",
                    f"repositories must all be on '{self.config.branches.local}' or "
                    f"'{self.config.branches.develop}' (status '{git.value}')",
                )
            if self.dependency_result.has_error or not self._run_zero_build():
                return False
            record = self._run_build(
                build_type,
                rebuild_all=(
                    self.config.build.rebuild_all if rebuild_all is None else rebuild_all
                ),
                with_unit_test=(
                    self.config.build.with_unit_test if with_unit_test is None else with_unit_test
                ),
            )
            return record is not None

        return self._run_safe("all build", run)

    def zero_build_projects(self) -> bool:
        def run() -> bool:
            self._require_idle("zero_build_projects")
            return self._run_zero_build()

        return self._run_safe("zero build", run)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _push_artifacts(
        self, artifacts: list[GeneratedArtifact], skip: Iterable[str] = ()
    ) -> tuple[list[str], list[str]]:
        """Push *artifacts* grouped by target feed.

        A failing feed is logged and the others are still pushed.

        Returns:
            ``(pushed feeds, failed feeds)``.
        """
        skipped = set(skip)
        by_feed: dict[str, list[GeneratedArtifact]] = {}
        for artifact in artifacts:
            by_feed.setdefault(artifact.target_name, []).append(artifact)
        pushed: list[str] = []
        failed: list[str] = []
        for feed_name in sorted(by_feed):
            if feed_name in skipped:
                logger.debug("Feed '%s' already received its artifacts", feed_name)
                continue
            feed = self._target_feeds.get(feed_name)
            if feed is None:
                logger.error("Unknown target feed '%s'", feed_name)
                failed.append(feed_name)
                continue
            items = by_feed[feed_name]
            logger.info("Pushing %d artifacts to '%s'", len(items), feed_name)
            if feed.push(items):
                pushed.append(feed_name)
            else:
                logger.error("Pushing artifacts to '%s' failed", feed_name)
                failed.append(feed_name)
        return pushed, failed

    def publish_ci(self) -> bool:
        """Push the last CI build result and the develop branches.

        Feeds that received their artifacts are recorded on the build result,
        so retrying after a failed push does not push them again.
        """

        def run() -> bool:
            self._require_idle("publish_ci")
            if self.git_status is not GlobalGitStatus.DEVELOP:
                raise WorldUsageError(
                    "publish_ci",
                    f"repositories must all be on '{self.config.branches.develop}'",
                )
            record = self.state.get_build_result(BUILD_TYPE_CI)
            if record is None or record.is_published:
                raise WorldUsageError("publish_ci", "no unpublished CI build result")
            pushed, failed = self._push_artifacts(record.artifacts, skip=record.pushed_feeds)
            record.pushed_feeds.extend(pushed)
            self._save()
            if failed:
                return False
            for repo in self._repositories.values():
                if self._stop_requested():
                    return False
                if not repo.push(self.config.branches.develop):
                    logger.error("Pushing '%s' of '%s' failed", self.config.branches.develop, repo.name)
                    return False
            self.state.publish_build_result(BUILD_TYPE_CI)
            self._save()
            return True

        return self._run_safe("publish CI", run)

    # ------------------------------------------------------------------
    # Dependency upgrade
    # ------------------------------------------------------------------

    def upgrade_dependency(
        self,
        package_id: str,
        version: str | None = None,
        constraint: str | None = None,
        allow_downgrade: bool | None = None,
    ) -> bool:
        """Set every reference to *package_id* to one version.

        With no *version*, the greatest referenced version (within
        *constraint*) is used.

        Raises:
            VersionDowngradeError: *version* is lower than a referenced
                version and downgrades are not allowed.
        """

        def run() -> bool:
            self._require_idle("upgrade_dependency")
            context = self._ensure_context()
            references: list[tuple[ProjectItem, str]] = [
                (project, ref.version)
                for project in context.projects
                for ref in project.project.package_references
                if ref.package_id == package_id
            ]
            if not references:
                logger.warning("No project references '%s'", package_id)
                return False
            target = select_upgrade_version(
                package_id,
                [v for _, v in references],
                constraint=constraint,
                requested=version,
                allow_downgrade=(
                    self.config.allow_downgrade if allow_downgrade is None else allow_downgrade
                ),
            )
            return self._apply_upgrade(package_id, target, references)

        return self._run_safe(f"upgrade of {package_id}", run)

    def _apply_upgrade(
        self,
        package_id: str,
        target: Version,
        references: list[tuple[ProjectItem, str]],
    ) -> bool:
        to_update: dict[ProjectKey, ProjectItem] = {}
        for project, current in references:
            if parse_version(current) != target:
                to_update.setdefault(project.key, project)
        if not to_update:
            logger.info("Every reference to '%s' is already %s", package_id, target)
            return True
        for project in to_update.values():
            logger.info("Upgrading '%s' in %s to %s", package_id, project, target)
            driver = self._provider.driver_for(project.solution.name)
            if not driver.update_package_reference(project, package_id, str(target)):
                logger.error("Updating '%s' in %s failed", package_id, project)
                self._invalidate()
                return False
        self.reload()
        return True

    # ------------------------------------------------------------------
    # Other operations
    # ------------------------------------------------------------------

    def run_other_operation(self, name: str, action: Callable[[], bool]) -> bool:
        """Run *action* under the other-operation status.

        A failed action leaves the status unconcluded; concluding it in the
        same process runs the action again.
        """

        def run() -> bool:
            if not name:
                raise WorldUsageError("run_other_operation", "an operation name is required")
            self._fire("start_other_operation", "run_other_operation", operation_name=name)
            self._other_action = action
            return self._do_other_operation()

        return self._run_safe(f"operation '{name}'", run)

    def _do_other_operation(self) -> bool:
        name = self.state.other_operation_name
        action = self._other_action
        if action is None:
            logger.warning(
                "Operation '%s' cannot be resumed after a restart; returning to idle", name
            )
        elif not action():
            logger.error("Operation '%s' failed", name)
            return False
        self._other_action = None
        self._fire("work_done", "run_other_operation")
        return True

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release(self, pull: bool | None = None, reset_roadmap: bool | None = None) -> bool:
        """Start a release: build every solution at its roadmap version.

        On success the world waits for :meth:`publish_release` or
        :meth:`cancel_release`.
        """

        def run() -> bool:
            self._require_idle("release")
            if self.version_selector is None:
                raise WorldUsageError("release", "no version selector is configured")
            if self.git_status is not GlobalGitStatus.DEVELOP:
                raise WorldUsageError(
                    "release",
                    f"repositories must all be on '{self.config.branches.develop}'",
                )
            do_pull = self.config.release.pull_before_release if pull is None else pull
            if not self._check_before_release(do_pull):
                return False
            reset = self.config.release.reset_roadmap if reset_roadmap is None else reset_roadmap
            if reset:
                logger.info("Forgetting the previous release roadmap")
                self._roadmap = ReleaseRoadmap()
            if not self._update_roadmap():
                return False
            self._fire("start_release", "release")
            return self._do_releasing()

        return self._run_safe("release", run)

    def _check_before_release(self, pull: bool) -> bool:
        branches = self.config.branches
        reload_needed = self._result is None
        for repo in self._repositories.values():
            if self._stop_requested():
                return False
            if not repo.check_clean_commit():
                logger.error("Repository '%s' has uncommitted changes", repo.name)
                return False
            if not repo.ensure_branch(branches.master):
                logger.error("Unable to ensure '%s' in '%s'", branches.master, repo.name)
                return False
            if pull:
                for branch in (branches.master, branches.develop):
                    success, reload = repo.checkout_and_pull(branch)
                    if not success:
                        logger.error("Pulling '%s' of '%s' failed", branch, repo.name)
                        return False
                    reload_needed |= reload
            else:
                ahead, behind = repo.ahead_behind(branches.develop)
                if behind:
                    logger.error(
                        "'%s' is %d commits behind its remote '%s'",
                        repo.name,
                        behind,
                        branches.develop,
                    )
                    return False
                logger.debug("'%s' is %d commits ahead", repo.name, ahead)
        result = self.reload() if reload_needed else self.dependency_result
        return not result.has_error

    def _take_snapshot(self) -> list[RepositorySnapshot]:
        branches = self.config.branches
        snapshot: list[RepositorySnapshot] = []
        for repo in self._repositories.values():
            develop = repo.branch_commit_sha(branches.develop)
            if develop is None:
                raise CollaboratorError(repo.name, f"branch '{branches.develop}' has no commit")
            master = repo.branch_commit_sha(branches.master) or ""
            snapshot.append(RepositorySnapshot(repo.name, develop, master))
        return snapshot

    def _do_releasing(self) -> bool:
        work = self.state.work_states.releasing
        work.build_attempts += 1
        if self.state.git_snapshot is None:
            self.state.git_snapshot = self._take_snapshot()
            self._feeds.clear(BUILD_TYPE_RELEASE)
            logger.info("Git snapshot taken for %d repositories", len(self.state.git_snapshot))
        else:
            logger.info("Resuming release (attempt %d): keeping the git snapshot", work.build_attempts)
        self._save()

        if self.dependency_result.has_error or not self._run_zero_build():
            return False
        if not self._roadmap.check_valid(self.dependency_result) and not self._update_roadmap():
            return False

        def building(solution: DependentSolution) -> None:
            if solution.name not in work.built_solutions:
                work.built_solutions.append(solution.name)
                self._save()

        notes = {e.solution_name: e.release_note for e in self._roadmap.entries if e.release_note}
        record = self._run_build(
            BUILD_TYPE_RELEASE,
            rebuild_all=False,
            with_unit_test=self.config.build.with_unit_test,
            release_versions=self._roadmap.release_versions(),
            release_notes=notes,
            on_build=building,
        )
        if record is None:
            return False
        self._fire("release_built", "release")
        return True

    def _update_roadmap(self) -> bool:
        """Resolve the roadmap against the current analysis and save it."""
        if self.version_selector is None:
            raise WorldUsageError("release", "no version selector is configured")
        valid = self._roadmap.update(
            self.dependency_result, self._repositories, self.version_selector
        )
        self._save()
        if not valid:
            logger.warning("The release roadmap is not complete")
        return valid

    def _released_entries(self) -> list[ReleaseSolutionInfo]:
        return [
            e
            for e in self._roadmap.entries
            if e.info.level is not ReleaseLevel.NONE and e.info.version is not None
        ]

    def cancel_release(self) -> bool:
        """Restore every repository to the snapshot taken when the release started."""

        def run() -> bool:
            self._fire("start_cancel_release", "cancel_release")
            return self._do_cancel_release()

        return self._run_safe("cancel release", run)

    def _do_cancel_release(self) -> bool:
        work = self.state.work_states.cancelling_release
        built = set(self.state.work_states.releasing.built_solutions)
        branches = self.config.branches
        for entry in self._released_entries():
            if entry.solution_name not in built or entry.solution_name in work.cleared_tags:
                continue
            repo = self._repositories.get(entry.sub_path)
            if repo is None:
                logger.warning("No repository '%s' for '%s'", entry.sub_path, entry.solution_name)
                continue
            assert entry.info.version is not None
            if not repo.clear_version_tag(entry.info.version):
                logger.error("Clearing tag %s of '%s' failed", entry.info.version, repo.name)
                return False
            work.cleared_tags.append(entry.solution_name)
            self._save()

        for snap in self.state.git_snapshot or []:
            if snap.repository in work.restored_repositories:
                continue
            if self._stop_requested():
                return False
            repo = self._repositories.get(snap.repository)
            if repo is None:
                logger.warning("Snapshot repository '%s' is no longer in the world", snap.repository)
                continue
            logger.info("Restoring '%s' to its snapshot", repo.name)
            if not repo.reset_branch(branches.develop, snap.develop_sha):
                logger.error("Resetting '%s' of '%s' failed", branches.develop, repo.name)
                return False
            if not repo.reset_branch(branches.master, snap.master_sha):
                logger.error("Resetting '%s' of '%s' failed", branches.master, repo.name)
                return False
            work.restored_repositories.append(repo.name)
            self._save()

        self.state.git_snapshot = None
        self._feeds.clear(BUILD_TYPE_RELEASE)
        self.state.clear_build_result(BUILD_TYPE_RELEASE)
        self._invalidate()
        self._fire("work_done", "cancel_release")
        return True

    def publish_release(self) -> bool:
        """Push the release artifacts, tags and branches."""

        def run() -> bool:
            self._fire("start_publish_release", "publish_release")
            return self._do_publish_release()

        return self._run_safe("publish release", run)

    def _must_push_master(self, entries: list[ReleaseSolutionInfo]) -> bool:
        if not entries:
            return False
        if not self.config.release.push_master_only_when_stable:
            return True
        return all(is_stable(e.info.version) for e in entries if e.info.version is not None)

    def _do_publish_release(self) -> bool:
        work = self.state.work_states.publishing_release
        branches = self.config.branches
        record = self.state.get_build_result(BUILD_TYPE_RELEASE)
        if record is None:
            raise WorldStateError("No release build result to publish")

        pushed, failed = self._push_artifacts(record.artifacts, skip=work.pushed_feeds)
        work.pushed_feeds.extend(pushed)
        work.failed_feeds = failed
        self._save()
        if failed:
            logger.error("Artifacts could not be pushed to: %s", ", ".join(failed))
            return False

        released: dict[str, list[ReleaseSolutionInfo]] = {}
        for entry in self._released_entries():
            released.setdefault(entry.sub_path, []).append(entry)
        for repo in self._repositories.values():
            if repo.name in work.pushed_repositories:
                continue
            if self._stop_requested():
                return False
            entries = released.get(repo.name, [])
            for entry in entries:
                assert entry.info.version is not None
                if not repo.push_version_tag(entry.info.version):
                    logger.error("Pushing tag %s of '%s' failed", entry.info.version, repo.name)
                    return False
            if self._must_push_master(entries) and not repo.push(branches.master):
                logger.error("Pushing '%s' of '%s' failed", branches.master, repo.name)
                return False
            if not repo.push(branches.develop):
                logger.error("Pushing '%s' of '%s' failed", branches.develop, repo.name)
                return False
            work.pushed_repositories.append(repo.name)
            self._save()

        self.state.publish_build_result(BUILD_TYPE_RELEASE)
        self.state.git_snapshot = None
        self._fire("work_done", "publish_release")
        return True
