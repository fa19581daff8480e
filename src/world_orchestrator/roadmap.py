"""Release roadmap: one version decision per ordered solution.

Solutions are resolved in build order, so every requirement of a solution is
decided before the solution itself. The decision is delegated to a
:class:`~src.world_orchestrator.protocols.VersionSelector` through a
:class:`VersionSelectionContext` that only offers versions compatible with
what the requirements imply.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from packaging.version import Version

from src.dependency_model.result import (
    DependentSolution,
    ImportedLocalPackage,
    SolutionDependencyResult,
)
from src.world_orchestrator.exceptions import RoadmapError
from src.world_orchestrator.versioning import is_stable, parse_version

if TYPE_CHECKING:
    from src.world_orchestrator.protocols import GitRepository, VersionSelector

logger = logging.getLogger(__name__)


class ReleaseLevel(str, Enum):
    NONE = "none"
    FIX = "fix"
    FEATURE = "feature"
    BREAKING_CHANGE = "breaking_change"

    @property
    def rank(self) -> int:
        return _LEVEL_RANKS[self]


_LEVEL_RANKS: dict[ReleaseLevel, int] = {
    ReleaseLevel.NONE: 0,
    ReleaseLevel.FIX: 1,
    ReleaseLevel.FEATURE: 2,
    ReleaseLevel.BREAKING_CHANGE: 3,
}


def max_level(a: ReleaseLevel, b: ReleaseLevel) -> ReleaseLevel:
    return a if a.rank >= b.rank else b


@dataclass(frozen=True)
class ReleaseConstraint:
    """What the requirements of a solution impose on its release."""

    has_features: bool = False
    has_breaking_changes: bool = False
    must_be_prerelease: bool = False

    def allows(self, version: Version) -> bool:
        # The 0 major is exempt from the pre-release rule.
        return not self.must_be_prerelease or version.major == 0 or version.is_prerelease


@dataclass(frozen=True)
class ReleaseInfo:
    """A resolved (or required) release of one solution."""

    level: ReleaseLevel = ReleaseLevel.NONE
    version: str | None = None
    constraint: ReleaseConstraint = field(default_factory=ReleaseConstraint)

    @property
    def is_valid(self) -> bool:
        return self.version is not None

    def combine_requirement(self, other: ReleaseInfo) -> ReleaseInfo:
        """Return the requirement raised by a published requirement *other*.

        A new release upstream forces at least a fix; a breaking change
        upstream forces at least a feature; a pre-release upstream forces a
        pre-release.
        """
        if other.level is ReleaseLevel.NONE:
            return self
        implied = (
            ReleaseLevel.FEATURE
            if other.level is ReleaseLevel.BREAKING_CHANGE
            else ReleaseLevel.FIX
        )
        level = max_level(self.level, implied)
        prerelease = self.constraint.must_be_prerelease or (
            other.version is not None and not is_stable(other.version)
        )
        return ReleaseInfo(
            level=level,
            version=self.version,
            constraint=ReleaseConstraint(
                has_features=level.rank >= ReleaseLevel.FEATURE.rank,
                has_breaking_changes=self.constraint.has_breaking_changes
                or other.level is ReleaseLevel.BREAKING_CHANGE,
                must_be_prerelease=prerelease,
            ),
        )

    def with_level(self, level: ReleaseLevel) -> ReleaseInfo:
        return ReleaseInfo(level=level, version=self.version, constraint=self.constraint)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "version": self.version,
            "constraint": asdict(self.constraint),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ReleaseInfo:
        data = data or {}
        return cls(
            level=ReleaseLevel(data.get("level", ReleaseLevel.NONE.value)),
            version=data.get("version"),
            constraint=ReleaseConstraint(**(data.get("constraint") or {})),
        )


def _bump(base: Version, level: ReleaseLevel) -> Version:
    major, minor, micro = (list(base.release) + [0, 0, 0])[:3]
    if level is ReleaseLevel.FIX:
        if base.is_prerelease:
            return Version(base.base_version)
        return Version(f"{major}.{minor}.{micro + 1}")
    if level is ReleaseLevel.FEATURE:
        return Version(f"{major}.{minor + 1}.0")
    return Version(f"{major + 1}.0.0")


def possible_versions(
    previous: Version | None, requirement: ReleaseInfo
) -> dict[ReleaseLevel, list[Version]]:
    """Versions a solution may be released at, per level.

    Levels below the requirement's level offer nothing. Each level offers a
    release candidate and the final version; a fix on top of a pre-release
    also offers the next pre-release.
    """
    base = previous or Version("0.0.0")
    result: dict[ReleaseLevel, list[Version]] = {ReleaseLevel.NONE: []}
    for level in (ReleaseLevel.FIX, ReleaseLevel.FEATURE, ReleaseLevel.BREAKING_CHANGE):
        if level.rank < requirement.level.rank:
            result[level] = []
            continue
        target = _bump(base, level)
        candidates: list[Version] = []
        if level is ReleaseLevel.FIX and base.pre is not None:
            phase, number = base.pre
            candidates.append(Version(f"{base.base_version}{phase}{number + 1}"))
        candidates.append(Version(f"{target}rc1"))
        candidates.append(target)
        result[level] = [
            v
            for v in dict.fromkeys(candidates)
            if (previous is None or v > previous) and requirement.constraint.allows(v)
        ]
    return result


# ---------------------------------------------------------------------------
# Selection context
# ---------------------------------------------------------------------------


@dataclass
class VersionSelectionContext:
    """Question asked to a version selector for one solution.

    The selector must answer with :meth:`set_choice` or :meth:`cancel`.
    """

    solution: DependentSolution
    previous_version: Version | None
    requirements: ReleaseInfo
    possible_versions: dict[ReleaseLevel, list[Version]]
    published_updates: list[tuple[ImportedLocalPackage, str]] = field(default_factory=list)
    non_published_updates: list[tuple[ImportedLocalPackage, str]] = field(
        default_factory=list
    )
    previously_resolved: ReleaseInfo | None = None
    release_note: str = ""
    final_level: ReleaseLevel | None = None
    final_version: Version | None = None
    is_canceled: bool = False

    @property
    def all_possible_versions(self) -> list[Version]:
        return sorted({v for versions in self.possible_versions.values() for v in versions})

    @property
    def can_use_previously_resolved(self) -> bool:
        info = self.previously_resolved
        return (
            info is not None
            and info.version is not None
            and parse_version(info.version) in self.possible_versions.get(info.level, [])
        )

    @property
    def has_choice(self) -> bool:
        return self.final_version is not None

    @property
    def is_answered(self) -> bool:
        return self.is_canceled or self.has_choice

    def set_choice(self, level: ReleaseLevel, version: Version | str) -> None:
        if self.is_answered:
            raise RoadmapError(f"Version of '{self.solution.name}' is already answered")
        version = parse_version(version)
        if version not in self.possible_versions.get(level, []):
            raise ValueError(f"{version} is not a possible {level.value} version")
        self.final_level = level
        self.final_version = version

    def cancel(self) -> None:
        if self.is_answered:
            raise RoadmapError(f"Version of '{self.solution.name}' is already answered")
        self.is_canceled = True


# ---------------------------------------------------------------------------
# Roadmap
# ---------------------------------------------------------------------------


@dataclass
class ReleaseSolutionInfo:
    solution_name: str
    sub_path: str
    commit_sha: str = ""
    info: ReleaseInfo = field(default_factory=ReleaseInfo)
    release_note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "solution_name": self.solution_name,
            "sub_path": self.sub_path,
            "commit_sha": self.commit_sha,
            "info": self.info.to_dict(),
            "release_note": self.release_note,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReleaseSolutionInfo:
        return cls(
            solution_name=data["solution_name"],
            sub_path=data.get("sub_path", ""),
            commit_sha=data.get("commit_sha", ""),
            info=ReleaseInfo.from_dict(data.get("info")),
            release_note=data.get("release_note", ""),
        )


def _same_version(a: str, b: str | None) -> bool:
    return b is not None and parse_version(a) == parse_version(b)


class ReleaseRoadmap:
    """Ordered release decisions, persisted in the world state."""

    def __init__(self, entries: list[ReleaseSolutionInfo] | None = None) -> None:
        self._entries: list[ReleaseSolutionInfo] = list(entries or [])

    @classmethod
    def from_list(cls, data: list[dict[str, Any]]) -> ReleaseRoadmap:
        return cls([ReleaseSolutionInfo.from_dict(d) for d in data])

    def to_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self._entries]

    @property
    def entries(self) -> list[ReleaseSolutionInfo]:
        return list(self._entries)

    def get(self, solution_name: str) -> ReleaseSolutionInfo | None:
        for e in self._entries:
            if e.solution_name == solution_name:
                return e
        return None

    @property
    def is_valid(self) -> bool:
        return bool(self._entries) and all(e.info.is_valid for e in self._entries)

    def check_valid(self, result: SolutionDependencyResult) -> bool:
        """Return True when every ordered solution has a resolved version."""
        if not self.is_valid:
            return False
        names = {e.solution_name for e in self._entries}
        missing = [s.name for s in result.solutions if s.name not in names]
        if missing:
            logger.error("Roadmap has no decision for: %s", ", ".join(missing))
            return False
        return True

    def release_versions(self) -> dict[str, tuple[str, bool]]:
        """Map solution name to ``(version, must_build)``.

        Solutions released at level None reuse an existing tag and are not
        rebuilt.
        """
        return {
            e.solution_name: (e.info.version, e.info.level is not ReleaseLevel.NONE)
            for e in self._entries
            if e.info.version is not None
        }

    def update(
        self,
        result: SolutionDependencyResult,
        repositories: Mapping[str, GitRepository],
        selector: VersionSelector,
        forget: bool = False,
    ) -> bool:
        """Resolve a release decision for every ordered solution.

        Args:
            result: A complete dependency analysis.
            repositories: Repositories by name.
            selector: The version selection policy.
            forget: Drop the previous decisions instead of offering them to
                the selector.

        Returns:
            True when every solution received a version. A cancelled choice
            stops the update and leaves the roadmap invalid.
        """
        result.raise_for_error()
        previous = {} if forget else {e.solution_name: e for e in self._entries}
        resolved: dict[int, ReleaseInfo] = {}
        entries: list[ReleaseSolutionInfo] = []
        for s in result.solutions:
            repo = repositories[s.repository]
            sha = repo.head_commit_sha() or ""
            prior = previous.get(s.name)
            prior_info = prior.info if prior is not None and prior.commit_sha == sha else None
            note = prior.release_note if prior is not None else ""
            info, note = self._resolve(s, repo, selector, resolved, prior_info, note)
            resolved[s.index] = info
            entries.append(
                ReleaseSolutionInfo(
                    solution_name=s.name,
                    sub_path=s.repository,
                    commit_sha=sha,
                    info=info,
                    release_note=note,
                )
            )
            if not info.is_valid:
                logger.warning("Release of '%s' has been cancelled", s.name)
                self._entries = entries
                return False
            logger.info("Roadmap: %s => %s (%s)", s.name, info.version, info.level.value)
        self._entries = entries
        return True

    def _resolve(
        self,
        solution: DependentSolution,
        repo: GitRepository,
        selector: VersionSelector,
        resolved: dict[int, ReleaseInfo],
        prior_info: ReleaseInfo | None,
        note: str,
    ) -> tuple[ReleaseInfo, str]:
        requirements = ReleaseInfo()
        published_updates: list[tuple[ImportedLocalPackage, str]] = []
        non_published_updates: list[tuple[ImportedLocalPackage, str]] = []
        published = {r.index for r in solution.published_requirements}
        for required in solution.requirements:
            r_info = resolved[required.index]
            if not r_info.is_valid:
                return ReleaseInfo(), note
            assert r_info.version is not None
            is_published = required.index in published
            if is_published:
                requirements = requirements.combine_requirement(r_info)
            for imported in solution.imported_local_packages:
                if imported.producer_index != required.index:
                    continue
                if _same_version(r_info.version, imported.version):
                    continue
                update = (imported, r_info.version)
                if is_published:
                    published_updates.append(update)
                else:
                    non_published_updates.append(update)

        if not published_updates and not non_published_updates:
            tag = repo.get_release_tag()
            if tag is not None:
                logger.warning("'%s': this commit already has a version tag: %s", solution.name, tag)
                if not selector.on_already_released(solution, tag, False):
                    return ReleaseInfo(), note
                return ReleaseInfo(version=tag), note
        elif requirements.level is ReleaseLevel.NONE:
            # Reference updates need a new commit: at least a fix.
            requirements = requirements.with_level(ReleaseLevel.FIX)

        previous_text = repo.get_previous_version()
        previous_version = parse_version(previous_text) if previous_text else None
        context = VersionSelectionContext(
            solution=solution,
            previous_version=previous_version,
            requirements=requirements,
            possible_versions=possible_versions(previous_version, requirements),
            published_updates=published_updates,
            non_published_updates=non_published_updates,
            previously_resolved=prior_info,
            release_note=note,
        )
        selector.choose_final_version(context)
        if context.is_canceled:
            return ReleaseInfo(), context.release_note
        if not context.has_choice:
            raise RoadmapError(
                f"Version selector neither chose nor cancelled for '{solution.name}'"
            )
        assert context.final_level is not None
        return (
            ReleaseInfo(
                level=context.final_level,
                version=str(context.final_version),
                constraint=requirements.constraint,
            ),
            context.release_note,
        )
