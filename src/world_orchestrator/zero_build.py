"""Zero-version bootstrap of build-tooling projects.

Build projects (and the published projects they consume) are built at the
placeholder zero version before the world itself. A cache maps each
project folder to the tree shas already built, so unchanged projects are
skipped. The cache file lives in the zero-build feed folder; each line is
``<project key> <sha>|<sha>...``.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from src.dependency_model.result import BuildProjectsInfo, ZeroBuildProjectInfo
from src.world_orchestrator.protocols import (
    GitRepository,
    LocalFeedProvider,
    SolutionProvider,
)
from src.world_orchestrator.shutdown import GracefulShutdown
from src.world_shared.constants import ZERO_BUILD_CACHE_FILE, ZERO_VERSION
from src.world_shared.utils import atomic_write_lines, ensure_dir, read_lines

logger = logging.getLogger(__name__)


def load_sha_cache(path: Path, keep: set[str]) -> dict[str, set[str]]:
    """Read the sha cache, keeping only the entries whose key is in *keep*."""
    cache: dict[str, set[str]] = {}
    for line in read_lines(path):
        key, _, shas = line.partition(" ")
        if key in keep and shas:
            cache[key] = set(shas.split("|"))
    return cache


def save_sha_cache(path: Path, cache: dict[str, set[str]]) -> None:
    logger.debug("Saving %d zero-build cache entries to %s", len(cache), path)
    atomic_write_lines(
        path, [f"{key} {'|'.join(sorted(shas))}" for key, shas in sorted(cache.items())]
    )


class ZeroBuilder:
    """Builds the zero-version projects that are not up to date."""

    def __init__(
        self,
        info: BuildProjectsInfo,
        feeds: LocalFeedProvider,
        provider: SolutionProvider,
        repositories: Mapping[str, GitRepository],
        cache_path: Path,
        sha_cache: dict[str, set[str]],
    ) -> None:
        self._projects = info.zero_build_projects
        self._feeds = feeds
        self._provider = provider
        self._repositories = repositories
        self._cache_path = cache_path
        self._sha_cache = sha_cache
        self._must_build: set[str] = {self._key(p) for p in self._projects}
        self._current_shas: dict[str, str] = {}

    @classmethod
    def create(
        cls,
        info: BuildProjectsInfo,
        feeds: LocalFeedProvider,
        provider: SolutionProvider,
        repositories: Mapping[str, GitRepository],
    ) -> ZeroBuilder | None:
        """Return a builder, or None when the build projects cannot be ordered."""
        if info.has_error:
            logger.error("Build projects dependencies failed to be computed.")
            info.sort_result.log_error(logger)
            return None
        if not info.zero_build_projects:
            logger.info("No build project in the world.")
        keys = {cls._key(p) for p in info.zero_build_projects}
        cache_path = ensure_dir(feeds.zero_build_path) / ZERO_BUILD_CACHE_FILE
        cache = load_sha_cache(cache_path, keys)
        logger.info("File '%s' contains %d entries.", cache_path, len(cache))
        return cls(info, feeds, provider, repositories, cache_path, cache)

    @staticmethod
    def _key(info: ZeroBuildProjectInfo) -> str:
        return str(info.project.key)

    @property
    def must_build(self) -> set[str]:
        return set(self._must_build)

    def _read_sha(self, info: ZeroBuildProjectInfo) -> str | None:
        repo = self._repositories[info.project.solution.repository]
        return repo.head_commit_sha(info.project.project.path)

    def _remember_current_sha(self, info: ZeroBuildProjectInfo) -> None:
        sha = self._current_shas.get(self._key(info))
        if sha is None:
            return
        shas = self._sha_cache.setdefault(self._key(info), set())
        if sha not in shas and shas:
            logger.debug("Added new sha alias for %s", self._key(info))
        shas.add(sha)

    def register_sha_aliases(self) -> None:
        """Record the current shas as already built.

        Called after a build that only changed versions, so the zero-build
        outputs stay valid for the new tree.
        """
        for p in self._projects:
            sha = self._read_sha(p)
            if sha is not None:
                self._current_shas[self._key(p)] = sha
                self._remember_current_sha(p)
        save_sha_cache(self._cache_path, self._sha_cache)

    def _reason_to_build(self, info: ZeroBuildProjectInfo) -> str | None:
        key = self._key(info)
        sha = self._current_shas[key]
        cached = self._sha_cache.get(key)
        if cached is None:
            return "no cached sha signature"
        if sha not in cached:
            return "current sha signature differs from the cached ones"
        rebuilt = [str(d.key) for d in info.dependencies if str(d.key) in self._must_build]
        if rebuilt:
            return f"rebuilt dependencies: {', '.join(rebuilt)}"
        if info.must_pack and not self._feeds.has_zero_build_package(info.name):
            return f"{info.name} zero version is missing from the zero-build feed"
        return None

    def run(self, shutdown: GracefulShutdown | None = None) -> tuple[bool, bool]:
        """Build what is not up to date.

        Returns:
            ``(success, must_reload)``. ``must_reload`` is set when at least
            one project had to be built: solutions must be reloaded.
        """
        for p in self._projects:
            sha = self._read_sha(p)
            if sha is None:
                logger.error("Unable to get sha for %s", p)
                return False, False
            self._current_shas[self._key(p)] = sha

        for p in self._projects:
            reason = self._reason_to_build(p)
            if reason is None:
                self._must_build.discard(self._key(p))
                logger.info("Project '%s' is up to date. Build skipped.", p)
            else:
                logger.info("Project '%s' must be built: %s", p, reason)
            if shutdown is not None and shutdown.should_stop:
                return False, False

        if not self._must_build:
            logger.info("Nothing to build. Build projects are up-to-date.")
            return True, False

        logger.info(
            "Build/Publish %d build projects: %s",
            len(self._must_build),
            ", ".join(sorted(self._must_build)),
        )
        try:
            for p in self._projects:
                key = self._key(p)
                if key not in self._must_build:
                    continue
                action = "Publishing" if p.must_pack else "Building"
                logger.info("%s %s", action, p)
                driver = self._provider.driver_for(p.solution_name)
                if not driver.zero_build_project(p):
                    self._sha_cache.pop(key, None)
                    logger.error("Zero build of %s failed", p)
                    return False, True
                self._must_build.discard(key)
                self._remember_current_sha(p)
                if shutdown is not None and shutdown.should_stop:
                    return False, True
        finally:
            save_sha_cache(self._cache_path, self._sha_cache)
        return True, True


def ensure_zero_build_projects(
    info: BuildProjectsInfo,
    feeds: LocalFeedProvider,
    provider: SolutionProvider,
    repositories: Mapping[str, GitRepository],
    shutdown: GracefulShutdown | None = None,
) -> tuple[ZeroBuilder | None, bool]:
    """Create a :class:`ZeroBuilder` and run it.

    Returns:
        ``(builder, must_reload)``; builder is None on failure.
    """
    logger.info("Building build projects at version %s.", ZERO_VERSION)
    builder = ZeroBuilder.create(info, feeds, provider, repositories)
    if builder is None:
        return None, False
    success, must_reload = builder.run(shutdown)
    return (builder if success else None), must_reload
