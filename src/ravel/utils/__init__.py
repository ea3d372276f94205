"""Utility modules for ravel."""

from ravel.utils.git import (
    GitCommandError,
    GitRunner,
    RepositoryProber,
    get_git_repository_root,
    group_repository_roots,
    is_in_git_repository,
)
from ravel.utils.manifest import Manifest, ManifestError, discover_packages, read_manifest

__all__ = [
    "GitCommandError",
    "GitRunner",
    "Manifest",
    "ManifestError",
    "RepositoryProber",
    "discover_packages",
    "get_git_repository_root",
    "group_repository_roots",
    "is_in_git_repository",
    "read_manifest",
]
