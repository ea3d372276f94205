"""Package manifest reading and workspace package discovery."""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from ravel.core.models import Package

logger = logging.getLogger(__name__)

MANIFEST_FILES = ("package.json", "pyproject.toml")
DEFAULT_EXCLUDES = frozenset({"node_modules", ".git", ".venv", "venv", "dist", "build", "__pycache__"})


class ManifestError(Exception):
    """A manifest is missing or cannot be parsed."""


@dataclass(frozen=True)
class Manifest:
    """The parts of a package manifest the audit cares about."""

    path: Path
    name: str | None = None
    version: str | None = None


def _manifest(path: Path, name: object, version: object) -> Manifest:
    if version is not None and not isinstance(version, str):
        raise ManifestError(f"Version in {path} must be a string, got {version!r}")
    return Manifest(path=path, name=name if isinstance(name, str) else None, version=version)


def _read_package_json(path: Path) -> Manifest:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ManifestError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(f"Expected an object in {path}")
    return _manifest(path, data.get("name"), data.get("version"))


def _read_pyproject(path: Path) -> Manifest:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ManifestError(f"Invalid TOML in {path}: {e}") from e
    project = data.get("project", {})
    if not isinstance(project, dict):
        raise ManifestError(f"Expected a [project] table in {path}")
    return _manifest(path, project.get("name"), project.get("version"))


def find_manifest(package_dir: Path) -> Path | None:
    """Get the first manifest file present in ``package_dir``."""
    for filename in MANIFEST_FILES:
        candidate = package_dir / filename
        if candidate.is_file():
            return candidate
    return None


def read_manifest(package_dir: Path) -> Manifest:
    """Read the version-declaring manifest of a package.

    ``package.json`` wins over ``pyproject.toml`` when both exist.

    Raises:
        ManifestError: If no manifest exists or it cannot be parsed.
    """
    manifest_path = find_manifest(package_dir)
    if manifest_path is None:
        raise ManifestError(f"No manifest ({', '.join(MANIFEST_FILES)}) in {package_dir}")
    try:
        if manifest_path.name == "package.json":
            return _read_package_json(manifest_path)
        return _read_pyproject(manifest_path)
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"Could not read {manifest_path}: {e}") from e


def discover_packages(
    workspace: Path,
    max_depth: int = 2,
    exclude: Iterable[str] = DEFAULT_EXCLUDES,
) -> list[Package]:
    """Find packages under ``workspace`` by looking for manifests.

    The workspace root itself is not a package. Discovery does not descend
    into a package once found.

    Args:
        workspace: Directory to scan.
        max_depth: How many directory levels below ``workspace`` to search.
        exclude: Directory names never entered.

    Returns:
        Packages sorted by path.
    """
    excluded = set(exclude)
    packages: list[Package] = []

    def walk(directory: Path, depth: int) -> None:
        if depth > max_depth:
            return
        try:
            children = sorted(p for p in directory.iterdir() if p.is_dir())
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {directory}: {e}")
            return
        for child in children:
            if child.name in excluded or child.name.startswith("."):
                continue
            if find_manifest(child) is not None:
                packages.append(Package(name=_package_name(child), path=child))
            else:
                walk(child, depth + 1)

    walk(workspace, 1)
    return packages


def _package_name(package_dir: Path) -> str:
    try:
        name = read_manifest(package_dir).name
    except ManifestError:
        name = None
    return name or package_dir.name
