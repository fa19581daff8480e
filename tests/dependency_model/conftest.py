"""Shared fixtures for dependency model tests."""

from __future__ import annotations

import pytest

from src.dependency_model.models import (
    PackageReference,
    Project,
    ProjectKind,
    Solution,
    SolutionSpecialType,
)


def make_project(
    name: str,
    kind: ProjectKind = ProjectKind.PUBLISHED,
    packages: dict[str, str] | None = None,
    projects: list[str] | None = None,
    path: str | None = None,
) -> Project:
    """Build a project whose path defaults to ``<name>/<name>.csproj``."""
    return Project(
        name=name,
        path=path or f"{name}/{name}.csproj",
        kind=kind,
        package_references=[
            PackageReference(package_id=pid, version=v) for pid, v in (packages or {}).items()
        ],
        project_references=projects or [],
    )


def make_solution(
    name: str,
    *projects: Project,
    primary: str | None = None,
    special: SolutionSpecialType = SolutionSpecialType.NONE,
    repository: str | None = None,
) -> Solution:
    return Solution(
        name=name,
        repository=repository or f"{name}-repo",
        projects=list(projects),
        primary_name=primary,
        special_type=special,
        artifact_targets=["public"],
    )


# ---------------------------------------------------------------------------
# Worlds
# ---------------------------------------------------------------------------


@pytest.fixture
def chain_solutions() -> list[Solution]:
    """X requires Y requires Z, declared in reverse build order."""
    return [
        make_solution("X", make_project("X.Core", packages={"Y.Core": "1.0.0"})),
        make_solution("Y", make_project("Y.Core", packages={"Z.Core": "2.0.0"})),
        make_solution("Z", make_project("Z.Core", packages={"Newtonsoft.Json": "13.0.1"})),
    ]


@pytest.fixture
def foo_solutions() -> list[Solution]:
    """Project A references package Foo 1.2.0, published by Foo.sln."""
    return [
        make_solution("App", make_project("A", packages={"Foo": "1.2.0"})),
        make_solution("Foo.sln", make_project("Foo")),
    ]
