"""Ordered build passes over the solutions of a world.

A pass first *prepares* every solution in build order (applying package
upgrades and computing target versions), then *builds* them in the same
order. A driver may answer ``MUST_RETRY`` when the version it produced was
not known upfront; the whole pass is then prepared and run again.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum

from src.dependency_model.items import ProjectItem
from src.dependency_model.result import DependentSolution, SolutionDependencyResult
from src.world_orchestrator.protocols import (
    GitRepository,
    LocalFeedProvider,
    SolutionProvider,
)
from src.world_orchestrator.shutdown import GracefulShutdown
from src.world_orchestrator.state import BuildResultRecord, GeneratedArtifact
from src.world_orchestrator.tested_commits import CommitTestMemory, commit_key
from src.world_orchestrator.zero_build import ZeroBuilder

logger = logging.getLogger(__name__)


class BuildState(str, Enum):
    FAILED = "failed"
    SUCCEED = "succeed"
    MUST_RETRY = "must_retry"


@dataclass(frozen=True)
class PackageUpgrade:
    """A package reference of *project* to set to *version*."""

    project: ProjectItem
    package_id: str
    version: str


class BuildRunner:
    """Runs one build pass of *build_type* over an ordered result.

    When ``release_versions`` is given (release builds), target versions
    come from the roadmap instead of the drivers. ``on_build`` is called
    with each solution right before its driver builds it.
    """

    def __init__(
        self,
        build_type: str,
        result: SolutionDependencyResult,
        provider: SolutionProvider,
        feeds: LocalFeedProvider,
        repositories: Mapping[str, GitRepository],
        zero_builder: ZeroBuilder | None = None,
        memory: CommitTestMemory | None = None,
        with_unit_test: bool = True,
        release_versions: dict[str, tuple[str, bool]] | None = None,
        release_notes: dict[str, str] | None = None,
        shutdown: GracefulShutdown | None = None,
        max_retries: int = 3,
        on_build: Callable[[DependentSolution], None] | None = None,
    ) -> None:
        result.raise_for_error()
        self._build_type = build_type
        self._solutions = result.solutions
        self._provider = provider
        self._feeds = feeds
        self._repositories = repositories
        self._zero_builder = zero_builder
        self._memory = memory
        self._with_unit_test = with_unit_test
        self._release_versions = release_versions
        self._release_notes = release_notes or {}
        self._shutdown = shutdown
        self._max_retries = max_retries
        self._on_build = on_build
        self._package_versions: dict[str, str] = {}
        self._upgrades: dict[int, list[PackageUpgrade]] = {}
        self._target_versions: dict[int, str | None] = {}

    def run(self, force_rebuild: bool = False) -> BuildResultRecord | None:
        """Prepare and build every solution.

        Returns:
            The build result, or None on failure.
        """
        record = self._prepare(force_rebuild)
        if record is None:
            return None
        state = self._build_all()
        retries = 0
        while state is BuildState.MUST_RETRY:
            retries += 1
            if retries > self._max_retries:
                logger.error("Builds still require a retry after %d attempts", self._max_retries)
                return None
            logger.info("Retrying running builds (attempt %d).", retries)
            record = self._prepare(force_rebuild)
            if record is None:
                return None
            state = self._build_all()
        if state is BuildState.FAILED:
            logger.error("%s build failed.", self._build_type)
            return None
        logger.info(
            "%s build succeeded with %d artifacts.", self._build_type, len(record.artifacts)
        )
        return record

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def _upgrades_for(self, solution: DependentSolution) -> list[PackageUpgrade]:
        return [
            PackageUpgrade(
                project=imported.importer,
                package_id=imported.package.package_id,
                version=self._package_versions[imported.package.package_id],
            )
            for imported in solution.imported_local_packages
        ]

    def _register_sha_aliases(self) -> None:
        if self._zero_builder is not None:
            self._zero_builder.register_sha_aliases()

    def _prepare(self, force_rebuild: bool) -> BuildResultRecord | None:
        self._package_versions.clear()
        for s in self._solutions:
            upgrades = self._upgrades_for(s)
            self._upgrades[s.index] = upgrades
            driver = self._provider.driver_for(s.name)
            version, must_build = driver.prepare_build(s, self._build_type, upgrades)
            self._register_sha_aliases()
            if version is None:
                logger.error("Preparing %s build failed.", s)
                return None
            if self._release_versions is not None:
                decision = self._release_versions.get(s.name)
                if decision is None:
                    logger.error("No release decision for %s.", s)
                    return None
                version, must_build = decision
            logger.info(
                "Target version of %s: %s%s",
                s,
                version,
                "" if must_build else " (no build required)",
            )
            self._target_versions[s.index] = version if must_build else None
            for package in s.exported_packages:
                self._package_versions[package.package_id] = version

        record = self._create_result()
        if record is not None and force_rebuild:
            logger.info("Forcing rebuild: removing artifacts that will be produced.")
            self._feeds.remove(self._build_type, record.artifacts)
        return record

    def _create_result(self) -> BuildResultRecord | None:
        artifacts: list[GeneratedArtifact] = []
        for s in self._solutions:
            version = self._target_versions.get(s.index)
            if version is None:
                continue
            for package in s.exported_packages:
                if not s.solution.artifact_targets:
                    logger.error(
                        "Unable to find a target artifact repository for %s/%s.",
                        package.package_id,
                        version,
                    )
                    return None
                for target in s.solution.artifact_targets:
                    artifacts.append(
                        GeneratedArtifact(package.package_id, version, s.name, target)
                    )
        return BuildResultRecord(
            build_type=self._build_type,
            artifacts=artifacts,
            release_notes=dict(self._release_notes),
        )

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    def _test_key(self, solution: DependentSolution) -> tuple[bool, str | None]:
        """Return ``(run_tests, commit key)`` for *solution*."""
        if not self._with_unit_test:
            return False, None
        sha = self._repositories[solution.repository].head_commit_sha()
        if sha is None:
            return True, None
        key = commit_key(solution.name, sha)
        if self._memory is not None and key in self._memory:
            logger.info("Commit %s of %s has already been tested.", sha, solution.name)
            return False, key
        return True, key

    def _build_all(self) -> BuildState:
        final = BuildState.SUCCEED
        for s in self._solutions:
            if self._shutdown is not None and self._shutdown.should_stop:
                logger.warning("Stop requested before building %s.", s)
                return BuildState.FAILED
            # After a retry request, drivers compute versions themselves.
            version = None if final is BuildState.MUST_RETRY else self._target_versions[s.index]
            if version is None and final is not BuildState.MUST_RETRY:
                logger.info("Skipping %s: no build required.", s)
                continue
            run_tests, key = self._test_key(s)
            logger.info("Running %s build of %s.", self._build_type, s)
            if self._on_build is not None:
                self._on_build(s)
            driver = self._provider.driver_for(s.name)
            state = driver.build(s, self._build_type, version, self._upgrades[s.index], run_tests)
            self._register_sha_aliases()
            if state is BuildState.FAILED:
                logger.error("Build of %s failed.", s)
                return BuildState.FAILED
            if state is BuildState.SUCCEED and run_tests and key and self._memory is not None:
                self._memory.add(key)
            if state is BuildState.MUST_RETRY:
                final = BuildState.MUST_RETRY
        return final
