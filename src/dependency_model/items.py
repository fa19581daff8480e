"""Sortable items and the domain objects wired by the graph builder.

The sorter only knows :class:`DependentItem`: one tagged record per item with
plain reference lists. Domain objects (projects, packages, solutions) are
attached as ``payload`` so the graph builder can map a sorted sequence back
to what it describes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple, Union

from src.dependency_model.models import Project, ProjectKind, Solution


class ItemKind(str, Enum):
    ITEM = "item"
    CONTAINER = "container"
    GROUP = "group"


# A reference is either the item itself or its full name.
ItemRef = Union["DependentItem", str]


@dataclass(eq=False)
class DependentItem:
    """A sortable entity.

    Attributes:
        full_name: Unique name of the item in one sort.
        kind: ``ITEM``, ``CONTAINER`` (owns its children) or ``GROUP``
            (non-owning cross-cutting unit).
        container: Owning container, if any.
        generalization: Item this one specializes. Implies a requirement and
            supplies the container when ``container`` is not set.
        requires: Items that must precede this one.
        groups: Groups this item belongs to.
        children: Items owned (containers) or gathered (groups) by this one.
        optional: When True, unresolved ``requires`` names are ignored
            instead of failing the sort. Never set by the graph builder.
        payload: Domain object described by this item.
    """

    full_name: str
    kind: ItemKind = ItemKind.ITEM
    container: ItemRef | None = None
    generalization: ItemRef | None = None
    requires: list[ItemRef] = field(default_factory=list)
    groups: list[ItemRef] = field(default_factory=list)
    children: list[ItemRef] = field(default_factory=list)
    optional: bool = False
    payload: Any = None

    @property
    def is_container(self) -> bool:
        return self.kind is ItemKind.CONTAINER

    @property
    def is_group(self) -> bool:
        return self.kind is not ItemKind.ITEM

    def __repr__(self) -> str:
        return f"DependentItem({self.full_name!r}, {self.kind.value})"


# ---------------------------------------------------------------------------
# Packages
# ---------------------------------------------------------------------------


class ProjectKey(NamedTuple):
    """Stable arena key of a project: its solution name and its path."""

    solution_name: str
    project_path: str

    def __str__(self) -> str:
        return f"{self.solution_name}/{self.project_path}"


@dataclass(frozen=True)
class LocalPackage:
    """A package produced by a project of the world.

    Its version is unknown until the producing solution is built, so its
    only requirement is that solution.
    """

    package_id: str
    solution_name: str
    project_key: ProjectKey

    @property
    def full_name(self) -> str:
        return self.package_id

    @property
    def sortable_name(self) -> str:
        return f"Package:{self.full_name}"

    @property
    def requires(self) -> list[str]:
        return [solution_sortable_name(self.solution_name)]

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class ExternalPackage:
    """A package coming from outside the world, at a fixed version."""

    package_id: str
    version: str

    @property
    def full_name(self) -> str:
        return f"{self.package_id}/{self.version}"

    @property
    def sortable_name(self) -> str:
        return f"Package:{self.full_name}"

    @property
    def requires(self) -> list[str]:
        return []

    def __str__(self) -> str:
        return self.full_name


Package = Union[LocalPackage, ExternalPackage]


def solution_sortable_name(solution_name: str) -> str:
    return f"Solution:{solution_name}"


def project_sortable_name(key: ProjectKey) -> str:
    return f"Project:{key}"


# ---------------------------------------------------------------------------
# Project adapters
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class PackageRequirement:
    """A resolved package reference of a project."""

    reference_version: str
    frameworks: list[str]
    package: Package

    @property
    def is_local(self) -> bool:
        return isinstance(self.package, LocalPackage)


@dataclass(eq=False)
class ProjectItem:
    """Graph adapter of a :class:`Project`, memoized per :class:`ProjectKey`.

    ``project_requirements`` holds project references plus local packages
    that resolve inside the same build unit (so they cannot create a cycle
    through the unit's container).
    """

    key: ProjectKey
    project: Project
    solution: Solution
    project_requirements: list[ProjectItem] = field(default_factory=list)
    package_requirements: list[PackageRequirement] = field(default_factory=list)
    published_package: LocalPackage | None = None

    @property
    def name(self) -> str:
        return self.project.name

    @property
    def kind(self) -> ProjectKind:
        return self.project.kind

    @property
    def sortable_name(self) -> str:
        return project_sortable_name(self.key)

    @property
    def local_requirements(self) -> list[PackageRequirement]:
        return [r for r in self.package_requirements if r.is_local]

    def add_project_requirement(self, other: ProjectItem) -> None:
        if other is not self and other not in self.project_requirements:
            self.project_requirements.append(other)

    def __str__(self) -> str:
        return str(self.key)

    def __repr__(self) -> str:
        return f"ProjectItem({self.key})"


@dataclass(eq=False)
class SortableSolution:
    """A solution wrapped with the projects selected by the sort strategy.

    Folded secondary solutions contribute their selected projects to their
    primary's unit and are listed in ``folded``.
    """

    solution: Solution
    projects: list[ProjectItem] = field(default_factory=list)
    folded: list[Solution] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.solution.name

    @property
    def sortable_name(self) -> str:
        return solution_sortable_name(self.solution.name)

    def owns(self, solution_name: str) -> bool:
        return solution_name == self.solution.name or any(
            s.name == solution_name for s in self.folded
        )
