"""
Exception hierarchy for dep-audit.

Prerequisite failures (no manifest, unusable manager, bad config) are raised
and end the current workflow. Per-record failures are never raised; they are
recorded on the record or action instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .package_managers import CommandResult


class DepAuditError(Exception):
    """
    Base exception for dep-audit errors.

    Attributes:
        message: Human-readable error message
        remediation: Suggested fix for the error
    """
    def __init__(self, message: str, remediation: str | None = None):
        self.message = message
        self.remediation = remediation
        super().__init__(message)

    def describe(self) -> str:
        """Message plus remediation hint, for terminal output."""
        if self.remediation:
            return f"{self.message}\n  hint: {self.remediation}"
        return self.message


class ManifestMissingError(DepAuditError):
    """No package.json in the project directory."""


class ManifestError(DepAuditError):
    """package.json exists but cannot be used (bad JSON, bad field types, scope overlap)."""


class ConfigError(DepAuditError):
    """Invalid configuration or unknown package manager."""


class ManagerInvocationError(DepAuditError):
    """
    A package manager command could not be spawned or exited unexpectedly.

    Attributes:
        result: The CommandResult of the failed invocation
    """
    def __init__(
        self,
        message: str,
        result: CommandResult | None = None,
        remediation: str | None = None,
    ):
        self.result = result
        super().__init__(message, remediation)
