"""Version/branch convention checks.

Development branches carry prerelease versions (``1.2.3-dev.0``), release
branches carry bare release versions (``1.2.3``). Other branches accept both.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

DEVELOPMENT_BRANCH_PATTERN = re.compile(r"^(working|development|dev|wip/)", re.IGNORECASE)
RELEASE_BRANCH_PATTERN = re.compile(r"^(main|master|production|release/)", re.IGNORECASE)

RELEASE_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
PRERELEASE_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+-[a-zA-Z0-9.-]+$")
ANY_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.-]+)?$")


class BranchFamily(str, Enum):
    """Naming family of a branch."""

    DEVELOPMENT = "development"
    RELEASE = "release"
    OTHER = "other"


@dataclass(frozen=True)
class VersionValidation:
    """Result of validating a version for a branch."""

    valid: bool
    issue: str | None = None
    fix: str | None = None


def classify_branch(branch_name: str) -> BranchFamily:
    """Classify a branch name by its prefix."""
    if DEVELOPMENT_BRANCH_PATTERN.match(branch_name):
        return BranchFamily.DEVELOPMENT
    if RELEASE_BRANCH_PATTERN.match(branch_name):
        return BranchFamily.RELEASE
    return BranchFamily.OTHER


def is_prerelease_version(version: str) -> bool:
    """Prerelease versions carry a tag: 1.2.3-dev.0, 1.2.3-alpha.1, ..."""
    return "-" in version


def expected_version_pattern(family: BranchFamily) -> tuple[re.Pattern[str], str]:
    """Get the version pattern and its human description for a branch family."""
    if family is BranchFamily.DEVELOPMENT:
        return PRERELEASE_VERSION_PATTERN, "X.Y.Z-<tag> (e.g., 1.2.3-dev.0)"
    if family is BranchFamily.RELEASE:
        return RELEASE_VERSION_PATTERN, "X.Y.Z (e.g., 1.2.3)"
    return ANY_VERSION_PATTERN, "X.Y.Z or X.Y.Z-<tag>"


def validate_version_for_branch(version: str, branch_name: str) -> VersionValidation:
    """Check that a version's shape matches its branch's convention.

    Args:
        version: Declared package version.
        branch_name: Branch the package is currently on.

    Returns:
        VersionValidation with issue and suggested fix when invalid.
    """
    family = classify_branch(branch_name)
    prerelease = is_prerelease_version(version)

    if not ANY_VERSION_PATTERN.match(version):
        _, description = expected_version_pattern(family)
        return VersionValidation(
            valid=False,
            issue=f"Invalid version format for branch '{branch_name}'",
            fix=f"Version should match {description}",
        )

    if family is BranchFamily.DEVELOPMENT and not prerelease:
        return VersionValidation(
            valid=False,
            issue=f"Release version on development branch '{branch_name}'",
            fix="Bump to a prerelease version (e.g., 1.2.4-dev.0) before continuing development",
        )

    if family is BranchFamily.RELEASE and prerelease:
        return VersionValidation(
            valid=False,
            issue=f"Development version on release branch '{branch_name}'",
            fix="Do not commit development versions to release branches",
        )

    return VersionValidation(valid=True)
