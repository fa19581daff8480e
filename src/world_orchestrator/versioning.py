"""Version parsing and the world-wide upgrade policy.

Versions are compared with :class:`packaging.version.Version`; a version is
*stable* when it is neither a pre-release nor a development release.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from src.world_orchestrator.exceptions import (
    InvalidVersionError,
    NoMatchingVersionError,
    VersionDowngradeError,
)

logger = logging.getLogger(__name__)


def parse_version(text: str | Version) -> Version:
    if isinstance(text, Version):
        return text
    try:
        return Version(text)
    except InvalidVersion as exc:
        raise InvalidVersionError(str(text)) from exc


def is_stable(version: str | Version) -> bool:
    return not parse_version(version).is_prerelease


def max_version(versions: Iterable[str | Version]) -> Version | None:
    parsed = [parse_version(v) for v in versions]
    return max(parsed) if parsed else None


def parse_constraint(constraint: str | SpecifierSet | None) -> SpecifierSet | None:
    if constraint is None or isinstance(constraint, SpecifierSet):
        return constraint
    try:
        return SpecifierSet(constraint)
    except InvalidSpecifier as exc:
        raise InvalidVersionError(constraint) from exc


def select_upgrade_version(
    package_id: str,
    referenced: Iterable[str | Version],
    available: Iterable[str | Version] | None = None,
    constraint: str | SpecifierSet | None = None,
    requested: str | Version | None = None,
    allow_downgrade: bool = False,
) -> Version:
    """Select the version every reference to *package_id* should use.

    Args:
        package_id: Package being upgraded (for messages only).
        referenced: Versions currently referenced across the world.
        available: Candidate versions (e.g. from a feed). Defaults to the
            referenced versions.
        constraint: Compatibility constraint candidates must satisfy.
        requested: Explicit target version; bypasses candidate selection.
        allow_downgrade: Accept a target lower than the greatest version
            currently referenced.

    Returns:
        The greatest candidate satisfying *constraint*, or *requested*.

    Raises:
        VersionDowngradeError: The target is lower than a referenced
            version and *allow_downgrade* is False.
        NoMatchingVersionError: No candidate satisfies *constraint*.
    """
    referenced = [parse_version(v) for v in referenced]
    floor = max(referenced) if referenced else None
    if requested is not None:
        target = parse_version(requested)
    else:
        pool = referenced if available is None else available
        candidates = [parse_version(v) for v in pool]
        spec = parse_constraint(constraint)
        if spec is not None:
            candidates = list(spec.filter(candidates))
        if not candidates:
            raise NoMatchingVersionError(package_id, str(constraint or "*"))
        target = max(candidates)
    if floor is not None and target < floor and not allow_downgrade:
        raise VersionDowngradeError(package_id, str(floor), str(target))
    if floor is not None and target < floor:
        logger.warning("Downgrading '%s' from %s to %s", package_id, floor, target)
    return target
