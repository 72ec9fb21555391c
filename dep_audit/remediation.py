"""
Remediation planning and execution.

Turns outdated or vulnerability records into install/add commands for the
selected manager. The scope a package was declared in decides the dev flag.
Packages that are not declared at all are transitive and are never installed
directly, since that would add them to package.json and desynchronize the
manifest from the lockfile.

Actions run one after another. A failing action is recorded and the batch
moves on.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, replace
from typing import AbstractSet, Iterable, Sequence, Union

from packaging.version import InvalidVersion, Version

from .common import vlog
from .logging_config import get_logger
from .outdated import OutdatedRecord
from .package_managers import PackageManager, execute
from .vulnerabilities import VulnerabilityRecord


MODE_WANTED = "wanted"
MODE_LATEST = "latest"
MODE_FIX = "fix"
MODES = (MODE_WANTED, MODE_LATEST, MODE_FIX)

OUTCOME_PENDING = "pending"
OUTCOME_APPLIED = "applied"
OUTCOME_SKIPPED_TRANSITIVE = "skipped_transitive"
OUTCOME_SKIPPED_NO_FIX = "skipped_no_fix"
OUTCOME_FAILED = "failed"

SKIPPED_OUTCOMES = (OUTCOME_SKIPPED_TRANSITIVE, OUTCOME_SKIPPED_NO_FIX)

Record = Union[OutdatedRecord, VulnerabilityRecord]


@dataclass(frozen=True)
class RemediationAction:
    """
    One planned upgrade.

    Attributes:
        name: Package name
        target_version: Version or tag to install (None when skipped for lack of a fix)
        dev_flag: Whether the package is declared as a development dependency
        command: Command line as shown to the user ("" when nothing will run)
        argv: Command as executed (empty when nothing will run)
        outcome: pending, applied, skipped_transitive, skipped_no_fix or failed
        error_message: Why the action failed
        major_upgrade: Target is a major version ahead of the installed one
    """
    name: str
    target_version: str | None
    dev_flag: bool
    command: str
    argv: tuple[str, ...] = ()
    outcome: str = OUTCOME_PENDING
    error_message: str | None = None
    major_upgrade: bool = False

    @property
    def runnable(self) -> bool:
        return self.outcome == OUTCOME_PENDING and bool(self.argv)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "target_version": self.target_version,
            "dev_flag": self.dev_flag,
            "command": self.command,
            "outcome": self.outcome,
            "error_message": self.error_message,
            "major_upgrade": self.major_upgrade,
        }


@dataclass(frozen=True)
class RemediationReport:
    """
    Result of one remediation pass.

    Attributes:
        mode: Mode the actions were planned in
        actions: Every action in dispatch order, with final outcomes
        duration_seconds: Total execution time
    """
    mode: str
    actions: tuple[RemediationAction, ...]
    duration_seconds: float = 0.0

    @property
    def applied(self) -> tuple[RemediationAction, ...]:
        return tuple(a for a in self.actions if a.outcome == OUTCOME_APPLIED)

    @property
    def skipped(self) -> tuple[RemediationAction, ...]:
        return tuple(a for a in self.actions if a.outcome in SKIPPED_OUTCOMES)

    @property
    def failed(self) -> tuple[RemediationAction, ...]:
        return tuple(a for a in self.actions if a.outcome == OUTCOME_FAILED)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "mode": self.mode,
            "actions": [a.to_dict() for a in self.actions],
            "applied": len(self.applied),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
            "duration_seconds": self.duration_seconds,
        }

    def summary(self) -> str:
        """Human-readable summary."""
        return f"""
Remediation Summary ({self.mode}):
  ✅ Applied: {len(self.applied)}
  ❌ Failed: {len(self.failed)}
  ⏭️  Skipped: {len(self.skipped)}
  ⏱️  Duration: {self.duration_seconds:.1f}s
"""


def is_major_upgrade(current: str | None, target: str | None) -> bool:
    """
    Check if going from current to target crosses a major version.

    Tags such as ``latest`` and unknown current versions are never major.

    >>> is_major_upgrade("0.21.0", "1.6.0")
    True
    >>> is_major_upgrade("4.17.20", "4.17.21")
    False
    """
    if not current or not target:
        return False
    try:
        return Version(target).major > Version(current).major
    except InvalidVersion:
        return False


def target_version(record: Record, mode: str) -> str | None:
    """
    Version an action should install.

    wanted → record.wanted; fix → the advisory's fix version; latest →
    record.latest for outdated records, the ``latest`` tag for advisories.
    """
    if mode not in MODES:
        raise ValueError(f"Invalid remediation mode: {mode}. Must be one of: {', '.join(MODES)}")

    if isinstance(record, OutdatedRecord):
        if mode == MODE_WANTED:
            return record.wanted
        if mode == MODE_LATEST:
            return record.latest or "latest"
        raise ValueError("Mode 'fix' applies to vulnerability records only")

    if mode == MODE_FIX:
        return record.recommended_fix
    if mode == MODE_LATEST:
        return "latest"
    raise ValueError("Mode 'wanted' applies to outdated records only")


def plan_action(
    record: Record,
    declared_prod: AbstractSet[str],
    declared_dev: AbstractSet[str],
    mode: str,
    manager: PackageManager,
) -> RemediationAction:
    """
    Build the action for one record.

    Args:
        record: Outdated or vulnerability record
        declared_prod: Names declared under dependencies
        declared_dev: Names declared under devDependencies
        mode: MODE_WANTED, MODE_LATEST or MODE_FIX
        manager: Manager whose command syntax to use

    Returns:
        A pending action with its command, or a skipped action with no command
    """
    version = target_version(record, mode)
    is_dev = record.name in declared_dev

    if not is_dev and record.name not in declared_prod:
        return RemediationAction(
            name=record.name,
            target_version=version,
            dev_flag=False,
            command="",
            outcome=OUTCOME_SKIPPED_TRANSITIVE,
        )

    if version is None:
        return RemediationAction(
            name=record.name,
            target_version=None,
            dev_flag=is_dev,
            command="",
            outcome=OUTCOME_SKIPPED_NO_FIX,
        )

    current = record.current if isinstance(record, OutdatedRecord) else None
    argv = manager.build_install_command(record.name, version, dev=is_dev)
    return RemediationAction(
        name=record.name,
        target_version=version,
        dev_flag=is_dev,
        command=" ".join(argv).strip(),
        argv=argv,
        major_upgrade=is_major_upgrade(current, version),
    )


def plan_actions(
    records: Iterable[Record],
    declared_prod: AbstractSet[str],
    declared_dev: AbstractSet[str],
    mode: str,
    manager: PackageManager,
) -> list[RemediationAction]:
    """Plan every record, preserving order."""
    return [plan_action(r, declared_prod, declared_dev, mode, manager) for r in records]


def apply_actions(
    actions: Sequence[RemediationAction],
    mode: str,
    project_dir: str | os.PathLike[str] = ".",
    timeout: int | None = None,
    verbose: bool = False,
) -> RemediationReport:
    """
    Dispatch actions sequentially.

    Skipped actions are reported and never reach a subprocess. Each runnable
    action waits for the previous one, so lockfile writes never overlap.

    Args:
        actions: Planned actions
        mode: Mode they were planned in (for the report)
        project_dir: Directory holding package.json
        timeout: Optional per-command timeout in seconds
        verbose: Enable verbose logging

    Returns:
        RemediationReport with the final outcome of every action
    """
    logger = get_logger()
    start_time = time.time()
    finished = []

    for action in actions:
        if action.outcome == OUTCOME_SKIPPED_TRANSITIVE:
            logger.info(f"{action.name} is not a direct dependency, skipping")
            finished.append(action)
            continue
        if action.outcome == OUTCOME_SKIPPED_NO_FIX:
            logger.warning(f"{action.name} has no known fixed version, skipping")
            finished.append(action)
            continue
        if not action.runnable:
            finished.append(action)
            continue

        if action.major_upgrade:
            logger.warning(f"{action.name} {action.target_version} is a major upgrade, expect breaking changes")
        logger.info(f"Running: {action.command}")
        result = execute(action.argv, cwd=project_dir, timeout=timeout, verbose=verbose)
        if result.stdout:
            vlog(result.stdout.rstrip(), verbose)

        if result.success:
            finished.append(replace(action, outcome=OUTCOME_APPLIED))
        else:
            logger.error(f"Error updating {action.name}: {result.error_message}")
            finished.append(replace(
                action,
                outcome=OUTCOME_FAILED,
                error_message=result.error_message,
            ))

    return RemediationReport(
        mode=mode,
        actions=tuple(finished),
        duration_seconds=time.time() - start_time,
    )
