"""Custom exceptions for the world orchestrator."""

from __future__ import annotations


class WorldError(Exception):
    """Base exception for all world orchestration errors."""

    pass


class WorldUsageError(WorldError, RuntimeError):
    """Raised when an operation is invoked while its precondition is false.

    This is a programming error: the persisted work status is left untouched.
    """

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"Cannot run '{operation}': {reason}")


class WorldStateError(WorldError):
    """Raised when the persisted world state is inconsistent."""

    pass


class CollaboratorError(WorldError):
    """Raised when a git, build or feed collaborator cannot complete."""

    def __init__(self, collaborator: str, message: str) -> None:
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")


class InvalidVersionError(WorldError, ValueError):
    """Raised when a version string cannot be parsed."""

    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__(f"Invalid version '{text}'")


class VersionDowngradeError(WorldError):
    """Raised when an upgrade would select a lower version than referenced."""

    def __init__(self, package_id: str, current: str, requested: str) -> None:
        self.package_id = package_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Refusing to downgrade '{package_id}' from {current} to {requested}"
        )


class NoMatchingVersionError(WorldError):
    """Raised when no candidate version satisfies a constraint."""

    def __init__(self, package_id: str, constraint: str) -> None:
        self.package_id = package_id
        self.constraint = constraint
        super().__init__(f"No version of '{package_id}' satisfies '{constraint}'")


class RoadmapError(WorldError):
    """Raised when a release roadmap cannot be resolved."""

    pass
