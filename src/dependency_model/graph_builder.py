"""Builds the dependency graph of a set of parsed solutions.

:meth:`DependencyContext.create` resolves every package reference to a local
producing project or to an external package. :meth:`analyze_dependencies`
then orders the solutions for a sort strategy and flattens the result into
the :class:`DependencyRow` table.

.. rubric:: Resolution rules

* One :class:`ProjectItem` per ``(solution name, project path)``, shared by
  every reference to it.
* One :class:`LocalPackage` per published project of a primary solution. The
  same package id published twice is an input error.
* A reference to a package produced inside the referencing project's own
  build unit (its solution, or the primary a non-independent secondary is
  folded into) becomes a direct project requirement.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable

import networkx as nx

from src.dependency_model.exceptions import (
    DuplicatePackageError,
    DuplicateSolutionError,
    InvalidReferenceError,
)
from src.dependency_model.items import (
    DependentItem,
    ExternalPackage,
    ItemKind,
    LocalPackage,
    Package,
    PackageRequirement,
    ProjectItem,
    ProjectKey,
    SortableSolution,
)
from src.dependency_model.models import (
    Project,
    Solution,
    SolutionSpecialType,
    SortStrategy,
)
from src.dependency_model.result import (
    BuildProjectsInfo,
    DependencyRow,
    DependentSolution,
    ImportedLocalPackage,
    SolutionDependencyResult,
    ZeroBuildProjectInfo,
)
from src.dependency_model.sorter import sort_items

logger = logging.getLogger(__name__)


def _is_folded(solution: Solution) -> bool:
    return (
        not solution.is_primary
        and solution.special_type is not SolutionSpecialType.INDEPENDENT
    )


def _unit_name(solution: Solution) -> str:
    """Name of the build unit *solution* belongs to."""
    if _is_folded(solution):
        assert solution.primary_name is not None
        return solution.primary_name
    return solution.name


class DependencyContext:
    """Resolved packages and projects of one set of solutions.

    Use :meth:`create`; the constructor only stores already-validated data.
    """

    def __init__(
        self,
        solutions: list[Solution],
        projects: dict[ProjectKey, ProjectItem],
        local_packages: dict[str, LocalPackage],
        external_packages: dict[str, ExternalPackage],
    ) -> None:
        self._solutions = solutions
        self._projects = projects
        self._local_packages = local_packages
        self._external_packages = external_packages
        self._build_projects_info: BuildProjectsInfo | None = None

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, solutions: Iterable[Solution]) -> DependencyContext:
        """Resolve the projects and packages of *solutions*.

        Raises:
            DuplicateSolutionError: Two solutions share a name.
            InvalidReferenceError: Unknown primary solution or project
                reference.
            DuplicatePackageError: A package id is published by more than
                one project.
        """
        solutions = list(solutions)
        by_name: dict[str, Solution] = {}
        for s in solutions:
            if s.name in by_name:
                raise DuplicateSolutionError(s.name)
            by_name[s.name] = s
        for s in solutions:
            if s.primary_name is None:
                continue
            primary = by_name.get(s.primary_name)
            if primary is None:
                raise InvalidReferenceError(
                    s.name, s.primary_name, f"Secondary solution '{s.name}' "
                    f"references unknown primary '{s.primary_name}'"
                )
            if not primary.is_primary:
                raise InvalidReferenceError(
                    s.name, s.primary_name, f"Primary of '{s.name}' must be a "
                    f"primary solution but '{s.primary_name}' is secondary"
                )

        projects: dict[ProjectKey, ProjectItem] = {}

        def ensure_project(solution: Solution, project: Project) -> ProjectItem:
            key = ProjectKey(solution.name, project.path)
            item = projects.get(key)
            if item is None:
                item = ProjectItem(key=key, project=project, solution=solution)
                projects[key] = item
            return item

        for s in solutions:
            for p in s.projects:
                ensure_project(s, p)
        for item in projects.values():
            for path in item.project.project_references:
                target = projects.get(ProjectKey(item.solution.name, path))
                if target is None:
                    raise InvalidReferenceError(str(item.key), path)
                item.add_project_requirement(target)

        local_packages = cls._create_local_packages(solutions, projects)
        external_packages: dict[str, ExternalPackage] = {}
        for item in projects.values():
            for ref in item.project.package_references:
                local = local_packages.get(ref.package_id)
                package: Package
                if local is not None:
                    if local.solution_name == _unit_name(item.solution):
                        item.add_project_requirement(projects[local.project_key])
                        continue
                    package = local
                else:
                    external = ExternalPackage(ref.package_id, ref.version)
                    package = external_packages.setdefault(external.full_name, external)
                item.package_requirements.append(
                    PackageRequirement(ref.version, list(ref.frameworks), package)
                )

        logger.debug(
            "Dependency context: %d solutions, %d projects, %d local and %d external packages",
            len(solutions),
            len(projects),
            len(local_packages),
            len(external_packages),
        )
        return cls(solutions, projects, local_packages, external_packages)

    @staticmethod
    def _create_local_packages(
        solutions: list[Solution], projects: dict[ProjectKey, ProjectItem]
    ) -> dict[str, LocalPackage]:
        producers: dict[str, list[ProjectItem]] = {}
        for s in solutions:
            if not s.is_primary:
                continue
            for p in s.published_projects:
                producers.setdefault(p.name, []).append(
                    projects[ProjectKey(s.name, p.path)]
                )
        collisions = {
            package_id: [str(i.key) for i in items]
            for package_id, items in producers.items()
            if len(items) > 1
        }
        if collisions:
            logger.error("Duplicate package publication: %s", collisions)
            raise DuplicatePackageError(collisions)
        packages: dict[str, LocalPackage] = {}
        for package_id, (item,) in producers.items():
            package = LocalPackage(package_id, item.solution.name, item.key)
            item.published_package = package
            packages[package_id] = package
        return packages

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def solutions(self) -> list[Solution]:
        return list(self._solutions)

    @property
    def projects(self) -> list[ProjectItem]:
        return list(self._projects.values())

    @property
    def local_packages(self) -> dict[str, LocalPackage]:
        return dict(self._local_packages)

    @property
    def external_packages(self) -> dict[str, ExternalPackage]:
        return dict(self._external_packages)

    def find_project(self, solution_name: str, project_path: str) -> ProjectItem | None:
        return self._projects.get(ProjectKey(solution_name, project_path))

    def find_package(self, full_name: str) -> Package | None:
        """Find a package by full name (bare id for local ones)."""
        return self._local_packages.get(full_name) or self._external_packages.get(
            full_name
        )

    def producer_of(self, package: LocalPackage) -> ProjectItem:
        return self._projects[package.project_key]

    # ------------------------------------------------------------------
    # Solution ordering
    # ------------------------------------------------------------------

    def _build_units(self, strategy: SortStrategy) -> list[SortableSolution]:
        units: dict[str, SortableSolution] = {}
        for s in self._solutions:
            if s.is_primary:
                units[s.name] = SortableSolution(s)
        with_secondaries = strategy is SortStrategy.EVERYTHING_EXCEPT_BUILD_PROJECTS
        if with_secondaries:
            for s in self._solutions:
                if not s.is_primary and not _is_folded(s):
                    units[s.name] = SortableSolution(s)
        for s in self._solutions:
            if not s.is_primary and not with_secondaries:
                continue
            unit = units[_unit_name(s)]
            if unit.solution is not s:
                unit.folded.append(s)
            unit.projects.extend(
                self._projects[ProjectKey(s.name, p.path)]
                for p in s.projects
                if strategy.selects(p.kind)
            )
        return list(units.values())

    def analyze_dependencies(
        self, strategy: SortStrategy = SortStrategy.EVERYTHING_EXCEPT_BUILD_PROJECTS
    ) -> SolutionDependencyResult:
        """Order the solutions for *strategy*.

        Args:
            strategy: Which projects of each solution participate.

        Returns:
            The ordered result. When the sort fails (cycle), the result
            carries the raw sorter output and no solutions nor rows.
        """
        units = self._build_units(strategy)
        containers: dict[str, DependentItem] = {}
        project_items: dict[ProjectKey, DependentItem] = {}
        package_items: dict[str, DependentItem] = {}

        for unit in units:
            containers[unit.name] = DependentItem(
                unit.sortable_name, kind=ItemKind.CONTAINER, payload=unit
            )
        for unit in units:
            container = containers[unit.name]
            for p in unit.projects:
                item = DependentItem(p.sortable_name, container=container, payload=p)
                project_items[p.key] = item
                container.children.append(item)

        def package_item(package: Package) -> DependentItem:
            item = package_items.get(package.sortable_name)
            if item is None:
                item = DependentItem(
                    package.sortable_name, requires=list(package.requires), payload=package
                )
                package_items[package.sortable_name] = item
            return item

        for unit in units:
            for p in unit.projects:
                item = project_items[p.key]
                for required in p.project_requirements:
                    # Projects filtered out by the strategy are not ordered.
                    if required.key in project_items:
                        item.requires.append(project_items[required.key])
                for r in p.package_requirements:
                    item.requires.append(package_item(r.package))

        sort_result = sort_items(containers.values())
        if not sort_result.is_complete:
            logger.error(
                "Dependency analysis (%s) failed: %s",
                strategy.value,
                sort_result.describe(),
            )
            return SolutionDependencyResult(strategy=strategy, sort_result=sort_result)

        ordered_units: list[SortableSolution] = []
        project_order: dict[ProjectKey, int] = {}
        for entry in sort_result.items:
            if isinstance(entry.payload, SortableSolution):
                ordered_units.append(entry.payload)
            elif isinstance(entry.payload, ProjectItem):
                project_order[entry.payload.key] = entry.index
        for unit in ordered_units:
            unit.projects.sort(key=lambda p: project_order[p.key])

        solutions = [DependentSolution(index=i, unit=u) for i, u in enumerate(ordered_units)]
        rows = self._build_rows(solutions)
        self._link_solutions(solutions, rows)
        logger.info(
            "Dependency analysis (%s): %s",
            strategy.value,
            ", ".join(str(s) for s in solutions),
        )
        return SolutionDependencyResult(
            strategy=strategy, sort_result=sort_result, solutions=solutions, rows=rows
        )

    def _unit_index(self, solutions: list[DependentSolution]) -> dict[str, DependentSolution]:
        index: dict[str, DependentSolution] = {}
        for s in solutions:
            index[s.unit.solution.name] = s
            for folded in s.unit.folded:
                index[folded.name] = s
        return index

    def _build_rows(self, solutions: list[DependentSolution]) -> list[DependencyRow]:
        by_name = self._unit_index(solutions)
        rows: list[DependencyRow] = []
        for s in solutions:
            seen: set[tuple[ProjectKey, ProjectKey]] = set()
            emitted = False
            for origin in s.projects:
                for r in origin.local_requirements:
                    assert isinstance(r.package, LocalPackage)
                    target = self._projects[r.package.project_key]
                    producer = by_name.get(target.solution.name)
                    if producer is None or producer is s:
                        continue
                    if (origin.key, target.key) in seen:
                        continue
                    seen.add((origin.key, target.key))
                    rows.append(
                        DependencyRow(
                            index=s.index,
                            solution=s.solution,
                            origin=origin,
                            target=target,
                            version=r.reference_version,
                            target_index=producer.index,
                        )
                    )
                    s.imported_local_packages.append(
                        ImportedLocalPackage(
                            importer=origin,
                            package=r.package,
                            version=r.reference_version,
                            producer_index=producer.index,
                        )
                    )
                    emitted = True
            if not emitted:
                rows.append(DependencyRow(index=s.index, solution=s.solution))
        return rows

    @staticmethod
    def _link_solutions(
        solutions: list[DependentSolution], rows: list[DependencyRow]
    ) -> None:
        graph = nx.DiGraph()
        graph.add_nodes_from(s.index for s in solutions)
        published: dict[int, set[int]] = {s.index: set() for s in solutions}
        for row in rows:
            if row.target_index is None or row.origin is None:
                continue
            graph.add_edge(row.index, row.target_index)
            if row.origin.project.is_published:
                published[row.index].add(row.target_index)

        def pick(indices: Iterable[int]) -> list[DependentSolution]:
            return [solutions[i] for i in sorted(indices)]

        descendants = {s.index: nx.descendants(graph, s.index) for s in solutions}
        ancestors = {s.index: nx.ancestors(graph, s.index) for s in solutions}
        for s in solutions:
            requirements = set(graph.successors(s.index))
            impacts = set(graph.predecessors(s.index))
            s.requirements = pick(requirements)
            s.transitive_requirements = pick(descendants[s.index])
            s.minimal_requirements = pick(
                r
                for r in requirements
                if not any(r in descendants[o] for o in requirements if o != r)
            )
            s.published_requirements = pick(published[s.index])
            s.impacts = pick(impacts)
            s.transitive_impacts = pick(ancestors[s.index])
            s.minimal_impacts = pick(
                i for i in impacts if not any(i in ancestors[o] for o in impacts if o != i)
            )
            s.exported_packages = [
                p.published_package for p in s.projects if p.published_package is not None
            ]
        # Requirements always have a lower index: ranks resolve in order.
        for s in solutions:
            s.rank = max((r.rank + 1 for r in s.minimal_requirements), default=0)

    # ------------------------------------------------------------------
    # Build projects
    # ------------------------------------------------------------------

    @property
    def build_projects_info(self) -> BuildProjectsInfo:
        """Zero-build information, computed once per context."""
        if self._build_projects_info is None:
            self._build_projects_info = self._compute_build_projects_info()
        return self._build_projects_info

    def _direct_project_requirements(self, project: ProjectItem) -> list[ProjectItem]:
        required = list(project.project_requirements)
        for r in project.local_requirements:
            assert isinstance(r.package, LocalPackage)
            producer = self._projects[r.package.project_key]
            if producer not in required:
                required.append(producer)
        return required

    def _compute_build_projects_info(self) -> BuildProjectsInfo:
        items = {
            key: DependentItem(p.sortable_name, payload=p) for key, p in self._projects.items()
        }
        graph = nx.DiGraph()
        for key, p in self._projects.items():
            graph.add_node(key)
            for required in self._direct_project_requirements(p):
                items[key].requires.append(items[required.key])
                graph.add_edge(key, required.key)

        sort_result = sort_items(items.values())
        if not sort_result.is_complete:
            logger.error("Build projects sort failed: %s", sort_result.describe())
            return BuildProjectsInfo(sort_result=sort_result)

        zero_keys: set[ProjectKey] = set()
        for key, p in self._projects.items():
            if p.project.is_build_project:
                zero_keys.add(key)
                zero_keys.update(nx.descendants(graph, key))

        ordered = [e for e in sort_result.items if e.payload.key in zero_keys]
        position = {e.payload.key: i for i, e in enumerate(ordered)}
        infos: list[ZeroBuildProjectInfo] = []
        for i, entry in enumerate(ordered):
            p: ProjectItem = entry.payload
            upgrade_packages: list[LocalPackage] = []
            for r in p.local_requirements:
                assert isinstance(r.package, LocalPackage)
                if r.package not in upgrade_packages:
                    upgrade_packages.append(r.package)
            upgrade_zero_projects = [
                self._projects[pkg.project_key] for pkg in upgrade_packages
            ]
            dependencies = sorted(
                (self._projects[k] for k in nx.descendants(graph, p.key)),
                key=lambda d: position[d.key],
            )
            infos.append(
                ZeroBuildProjectInfo(
                    index=i,
                    rank=entry.rank,
                    project=p,
                    must_pack=p.project.is_published,
                    upgrade_packages=upgrade_packages,
                    upgrade_zero_projects=upgrade_zero_projects,
                    dependencies=dependencies,
                )
            )
        logger.debug("Zero-build projects: %s", ", ".join(str(i) for i in infos))
        return BuildProjectsInfo(sort_result=sort_result, zero_build_projects=infos)
