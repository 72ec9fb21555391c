"""
Declared-versus-installed comparison.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet


@dataclass(frozen=True)
class DependencyDiff:
    """
    Result of comparing declared names with the install tree.

    Attributes:
        missing: Declared but not installed
        extra: Installed but not declared (transitive or leftover packages, not an error)
        declared_count: Number of declared names
        installed_count: Number of installed names
    """
    missing: frozenset[str]
    extra: frozenset[str]
    declared_count: int
    installed_count: int

    @property
    def is_complete(self) -> bool:
        return not self.missing

    @property
    def cardinality_matches(self) -> bool:
        return self.declared_count == self.installed_count

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "missing": sorted(self.missing),
            "extra": sorted(self.extra),
            "declared_count": self.declared_count,
            "installed_count": self.installed_count,
        }


def diff_dependencies(declared: AbstractSet[str], installed: AbstractSet[str]) -> DependencyDiff:
    """
    Compare declared names with installed names.

    ``missing`` is exactly ``declared - installed``.
    """
    return DependencyDiff(
        missing=frozenset(declared) - frozenset(installed),
        extra=frozenset(installed) - frozenset(declared),
        declared_count=len(declared),
        installed_count=len(installed),
    )
