"""Results of a dependency analysis.

A :class:`SolutionDependencyResult` is what higher layers consume: the
ordered solutions, the flattened cross-solution requirement table and, when
the analysis failed, the raw sorter result for cycle diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from src.dependency_model.exceptions import DependencyCycleError
from src.dependency_model.items import LocalPackage, ProjectItem, SortableSolution
from src.dependency_model.models import Solution, SortStrategy
from src.dependency_model.sorter import SortResult


@dataclass(frozen=True)
class DependencyRow:
    """One cross-solution requirement edge.

    ``origin`` and ``target`` are both None for a solution that requires
    nothing, so every ordered solution appears at least once in the table.
    """

    index: int
    solution: Solution
    origin: ProjectItem | None = None
    target: ProjectItem | None = None
    version: str | None = None
    target_index: int | None = None

    @property
    def has_dependency(self) -> bool:
        return self.target is not None


@dataclass(frozen=True)
class ImportedLocalPackage:
    """A local package referenced by a project of another solution."""

    importer: ProjectItem
    package: LocalPackage
    version: str
    producer_index: int


@dataclass(eq=False)
class DependentSolution:
    """An ordered solution with its requirement and impact closures.

    All solution lists are sorted by build index.
    """

    index: int
    unit: SortableSolution
    rank: int = 0
    requirements: list[DependentSolution] = field(default_factory=list)
    minimal_requirements: list[DependentSolution] = field(default_factory=list)
    transitive_requirements: list[DependentSolution] = field(default_factory=list)
    published_requirements: list[DependentSolution] = field(default_factory=list)
    impacts: list[DependentSolution] = field(default_factory=list)
    minimal_impacts: list[DependentSolution] = field(default_factory=list)
    transitive_impacts: list[DependentSolution] = field(default_factory=list)
    imported_local_packages: list[ImportedLocalPackage] = field(default_factory=list)
    exported_packages: list[LocalPackage] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.unit.name

    @property
    def solution(self) -> Solution:
        return self.unit.solution

    @property
    def repository(self) -> str:
        return self.unit.solution.repository

    @property
    def projects(self) -> list[ProjectItem]:
        return self.unit.projects

    def __str__(self) -> str:
        return f"{self.index}:{self.name}"

    def __repr__(self) -> str:
        return f"DependentSolution({self.index}, {self.name!r})"


@dataclass
class SolutionDependencyResult:
    """Ordered solutions plus the :class:`DependencyRow` table.

    When ``sort_result`` is incomplete, ``solutions`` and ``rows`` are empty:
    there is no partial table.
    """

    strategy: SortStrategy
    sort_result: SortResult
    solutions: list[DependentSolution] = field(default_factory=list)
    rows: list[DependencyRow] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.sort_result.is_complete

    @property
    def has_error(self) -> bool:
        return not self.sort_result.is_complete

    @property
    def solution_names(self) -> list[str]:
        return [s.name for s in self.solutions]

    def find_solution(self, name: str) -> DependentSolution | None:
        """Find the ordered solution holding *name* (primary or folded)."""
        for s in self.solutions:
            if s.unit.owns(name):
                return s
        return None

    def rows_for(self, name: str) -> list[DependencyRow]:
        return [r for r in self.rows if r.solution.name == name]

    def raise_for_error(self) -> None:
        """Raise :class:`DependencyCycleError` when the analysis failed."""
        if self.has_error:
            raise DependencyCycleError(self.sort_result)


# ---------------------------------------------------------------------------
# Build projects
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class ZeroBuildProjectInfo:
    """A project that must be built at the zero version before the world.

    ``must_pack`` is set for published projects: build tooling consumes
    their package, so it has to exist in the zero-build feed.
    """

    index: int
    rank: int
    project: ProjectItem
    must_pack: bool
    upgrade_packages: list[LocalPackage] = field(default_factory=list)
    upgrade_zero_projects: list[ProjectItem] = field(default_factory=list)
    dependencies: list[ProjectItem] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.project.name

    @property
    def solution_name(self) -> str:
        return self.project.solution.name

    def __str__(self) -> str:
        return f"{self.index}:{self.project.key}"


@dataclass
class BuildProjectsInfo:
    sort_result: SortResult
    zero_build_projects: list[ZeroBuildProjectInfo] = field(default_factory=list)

    @property
    def has_error(self) -> bool:
        return not self.sort_result.is_complete
