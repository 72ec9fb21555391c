"""
Manifest reading.

Loads package.json and exposes the declared dependency names split into
production and development scopes. Only the ``dependencies`` and
``devDependencies`` fields are consulted.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .common import vlog
from .errors import ManifestError, ManifestMissingError


MANIFEST_NAME = "package.json"

SCOPE_PRODUCTION = "production"
SCOPE_DEVELOPMENT = "development"


@dataclass(frozen=True)
class DeclaredDependency:
    """A dependency named in the manifest."""
    name: str
    scope: str

    def to_dict(self) -> dict:
        return {"name": self.name, "scope": self.scope}


@dataclass(frozen=True)
class Manifest:
    """
    Declared dependencies of one project.

    Attributes:
        path: Location of package.json
        production: Names under ``dependencies``
        development: Names under ``devDependencies``
    """
    path: str
    production: frozenset[str]
    development: frozenset[str]

    @property
    def declared_names(self) -> frozenset[str]:
        """Every declared name, both scopes."""
        return self.production | self.development

    def scope_of(self, name: str) -> str | None:
        if name in self.development:
            return SCOPE_DEVELOPMENT
        if name in self.production:
            return SCOPE_PRODUCTION
        return None

    def dependencies(self) -> Iterator[DeclaredDependency]:
        for name in sorted(self.production):
            yield DeclaredDependency(name, SCOPE_PRODUCTION)
        for name in sorted(self.development):
            yield DeclaredDependency(name, SCOPE_DEVELOPMENT)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "path": self.path,
            "dependencies": sorted(self.production),
            "devDependencies": sorted(self.development),
        }


def _names(data: dict, field_name: str, path: Path) -> frozenset[str]:
    section = data.get(field_name)
    if section is None:
        return frozenset()
    if not isinstance(section, dict):
        raise ManifestError(
            f"'{field_name}' in {path} must be an object, got {type(section).__name__}"
        )
    return frozenset(section)


def load_manifest(project_dir: str | os.PathLike[str] = ".", verbose: bool = False) -> Manifest:
    """
    Read package.json from the project directory.

    Args:
        project_dir: Directory expected to hold package.json
        verbose: Enable verbose logging

    Returns:
        Manifest with both scopes

    Raises:
        ManifestMissingError: If there is no package.json
        ManifestError: If the file is not valid JSON, a dependency field is not
            an object, or a name is declared in both scopes
    """
    path = Path(project_dir) / MANIFEST_NAME
    if not path.is_file():
        raise ManifestMissingError(
            f"Didn't find {MANIFEST_NAME} in {Path(project_dir).resolve()}",
            remediation="Run dep-check from the project root or pass --project-dir",
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ManifestError(f"{path} is not valid JSON: {e}") from e
    except UnicodeDecodeError as e:
        raise ManifestError(f"{path} is not valid UTF-8: {e}") from e
    except OSError as e:
        raise ManifestError(f"Could not read {path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(f"{path} must contain a JSON object")

    production = _names(data, "dependencies", path)
    development = _names(data, "devDependencies", path)

    overlap = production & development
    if overlap:
        raise ManifestError(
            f"Declared in both dependencies and devDependencies: {', '.join(sorted(overlap))}",
            remediation="Keep each package in exactly one of the two sections",
        )

    vlog(
        f"Manifest {path}: {len(production)} dependencies, {len(development)} devDependencies",
        verbose,
    )
    return Manifest(path=str(path), production=production, development=development)
