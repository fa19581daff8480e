"""Pydantic models for parsed solutions and projects.

These are the inputs of the dependency analysis. They are produced by the
collaborators that parse build files and are never mutated here.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


class ProjectKind(str, Enum):
    PUBLISHED = "published"
    TEST = "test"
    BUILD = "build"
    MISC = "misc"


class SolutionSpecialType(str, Enum):
    NONE = "none"
    INDEPENDENT = "independent"
    INCLUDED = "included"


class SortStrategy(str, Enum):
    """Selects which projects of each solution participate in an analysis."""

    PUBLISHED_PROJECTS = "published"
    PUBLISHED_AND_TESTS_PROJECTS = "published_and_tests"
    EVERYTHING_EXCEPT_BUILD_PROJECTS = "everything_except_build"

    def selects(self, kind: ProjectKind) -> bool:
        if self is SortStrategy.PUBLISHED_PROJECTS:
            return kind is ProjectKind.PUBLISHED
        if self is SortStrategy.PUBLISHED_AND_TESTS_PROJECTS:
            return kind in (ProjectKind.PUBLISHED, ProjectKind.TEST)
        return kind is not ProjectKind.BUILD


class PackageReference(BaseModel):
    """A versioned package reference, scoped to a target-framework subset.

    An empty ``frameworks`` list means the reference applies to every
    framework of the project.
    """

    package_id: str
    version: str
    frameworks: list[str] = Field(default_factory=list)

    @field_validator("package_id", "version")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class Project(BaseModel):
    """A project inside a solution.

    ``path`` is the stable identity of the project within its solution.
    The package id of a published project is its ``name``.
    """

    name: str
    path: str
    kind: ProjectKind = ProjectKind.MISC
    frameworks: list[str] = Field(default_factory=list)
    package_references: list[PackageReference] = Field(default_factory=list)
    project_references: list[str] = Field(default_factory=list)

    @property
    def is_published(self) -> bool:
        return self.kind is ProjectKind.PUBLISHED

    @property
    def is_build_project(self) -> bool:
        return self.kind is ProjectKind.BUILD

    def find_reference(self, package_id: str) -> PackageReference | None:
        """Return the first reference to *package_id*, if any."""
        for ref in self.package_references:
            if ref.package_id == package_id:
                return ref
        return None


class Solution(BaseModel):
    """A parsed solution: an ordered collection of projects.

    A solution with no ``primary_name`` is primary. Secondary solutions name
    their primary and carry a ``special_type``.
    """

    name: str
    repository: str = ""
    projects: list[Project] = Field(default_factory=list)
    primary_name: str | None = None
    special_type: SolutionSpecialType = SolutionSpecialType.NONE
    artifact_targets: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def _check_consistency(self) -> Solution:
        if self.primary_name is None and self.special_type is not SolutionSpecialType.NONE:
            raise ValueError(
                f"Primary solution '{self.name}' cannot have special type "
                f"'{self.special_type.value}'"
            )
        if self.primary_name == self.name:
            raise ValueError(f"Solution '{self.name}' cannot be its own primary")
        seen: set[str] = set()
        for project in self.projects:
            if project.path in seen:
                raise ValueError(
                    f"Project path '{project.path}' appears twice in '{self.name}'"
                )
            seen.add(project.path)
        return self

    @property
    def is_primary(self) -> bool:
        return self.primary_name is None

    @property
    def published_projects(self) -> list[Project]:
        return [p for p in self.projects if p.is_published]
