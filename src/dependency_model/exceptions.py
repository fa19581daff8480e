"""Custom exceptions for dependency analysis."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.dependency_model.sorter import SortResult


class DependencyModelError(Exception):
    """Base exception for all dependency model errors."""

    pass


class DuplicateSolutionError(DependencyModelError):
    """Raised when two solutions share the same name."""

    def __init__(self, solution_name: str) -> None:
        self.solution_name = solution_name
        super().__init__(f"Solution name '{solution_name}' is used more than once")


class DuplicatePackageError(DependencyModelError):
    """Raised when the same package id is published by more than one project.

    ``collisions`` maps each ambiguous package id to the ``solution/project``
    names that publish it.
    """

    def __init__(self, collisions: dict[str, list[str]]) -> None:
        self.collisions = collisions
        details = "; ".join(
            f"'{package_id}' produced by {', '.join(producers)}"
            for package_id, producers in sorted(collisions.items())
        )
        super().__init__(f"Package published more than once: {details}")


class InvalidReferenceError(DependencyModelError):
    """Raised when a solution or project refers to something that does not exist."""

    def __init__(self, owner: str, reference: str, message: str = "") -> None:
        self.owner = owner
        self.reference = reference
        super().__init__(
            message or f"'{owner}' references unknown '{reference}'"
        )


class DependencyCycleError(DependencyModelError):
    """Raised when a dependency analysis could not order its items."""

    def __init__(self, sort_result: SortResult) -> None:
        self.sort_result = sort_result
        super().__init__(sort_result.describe())
