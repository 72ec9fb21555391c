"""
Reconciliation workflows.

- scan: compare declared and installed dependencies, fall through to clean
  when something is missing
- analyze: offer wanted-version updates for outdated packages, then
  remediate vulnerabilities
- clean: delete the install tree and lockfile, reinstall, verify

Each workflow runs once and ends; nothing is retried automatically.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from .common import vlog
from .config import Config
from .decisions import WORKFLOWS, DecisionProvider
from .diff import DependencyDiff, diff_dependencies
from .errors import ConfigError, DepAuditError, ManagerInvocationError
from .logging_config import get_logger
from .manifest import Manifest, load_manifest
from .outdated import classify_outdated
from .package_managers import INSTALL_TREE, PackageManager
from .remediation import (
    MODE_WANTED,
    RemediationReport,
    apply_actions,
    plan_actions,
)
from .report import render_outdated, render_vulnerabilities
from .vulnerabilities import fetch_vulnerabilities


@dataclass(frozen=True)
class WorkflowContext:
    """
    Everything a workflow needs, passed explicitly.

    Attributes:
        manager: Package manager chosen for this run
        config: Loaded configuration
        decisions: Answers for the interactive decision points
        project_dir: Directory holding package.json
        verbose: Enable verbose logging
    """
    manager: PackageManager
    config: Config
    decisions: DecisionProvider
    project_dir: str = "."
    verbose: bool = False

    @property
    def timeout(self) -> int | None:
        return self.config.preferences.command_timeout_seconds


@dataclass(frozen=True)
class WorkflowResult:
    """
    Outcome of one workflow.

    Attributes:
        workflow: scan, analyze or clean
        success: Whether the workflow reached its goal
        message: Final human-readable status
        missing: Declared packages found missing (scan: before cleaning, clean: after)
        reports: Remediation passes that were executed
        followed_by: Workflow this one transitioned into (scan → clean)
    """
    workflow: str
    success: bool
    message: str
    missing: tuple[str, ...] = ()
    reports: tuple[RemediationReport, ...] = ()
    followed_by: WorkflowResult | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "workflow": self.workflow,
            "success": self.success,
            "message": self.message,
            "missing": list(self.missing),
            "reports": [r.to_dict() for r in self.reports],
            "followed_by": self.followed_by.to_dict() if self.followed_by else None,
        }

    def result_entries(self, manager: str) -> list[dict]:
        """
        Flat per-item results for the summary report.

        One entry for the workflow itself and one per executed or skipped
        remediation action, followed by the entries of the next workflow.
        """
        entries = [{
            "test": self.workflow,
            "manager": manager,
            "success": self.success,
            "message": self.message,
        }]
        for report in self.reports:
            for action in report.actions:
                entry = {
                    "test": f"{self.workflow}:{report.mode}",
                    "manager": manager,
                    "package": action.name,
                    "outcome": action.outcome,
                    "success": action.outcome != "failed",
                }
                if action.error_message:
                    entry["error"] = action.error_message
                entries.append(entry)
        if self.followed_by is not None:
            entries.extend(self.followed_by.result_entries(manager))
        return entries


def _diff(ctx: WorkflowContext, manifest: Manifest) -> DependencyDiff:
    installed = ctx.manager.list_installed(cwd=ctx.project_dir, timeout=ctx.timeout, verbose=ctx.verbose)
    result = diff_dependencies(manifest.declared_names, installed)
    if not result.cardinality_matches:
        vlog(
            f"{result.declared_count} declared, {result.installed_count} installed "
            f"({len(result.extra)} not declared directly)",
            ctx.verbose,
        )
    return result


def scan(ctx: WorkflowContext) -> WorkflowResult:
    """
    Check that every declared dependency is installed.

    A complete install tree ends the workflow without touching anything.
    Otherwise the missing names are reported and clean runs.

    Raises:
        ManifestMissingError, ManifestError: Without a usable manifest
        ManagerInvocationError: If the installed packages cannot be listed
    """
    logger = get_logger()
    manifest = load_manifest(ctx.project_dir, ctx.verbose)
    result = _diff(ctx, manifest)

    if result.is_complete:
        message = "Nothing is missing, the problem lies elsewhere"
        logger.info(message)
        return WorkflowResult(workflow="scan", success=True, message=message)

    missing = tuple(sorted(result.missing))
    logger.warning(f"Missing dependencies: {', '.join(missing)}")
    cleaned = clean(ctx)
    return WorkflowResult(
        workflow="scan",
        success=cleaned.success,
        message=f"{len(missing)} missing, reinstalled: {cleaned.message}",
        missing=missing,
        followed_by=cleaned,
    )


def analyze(ctx: WorkflowContext) -> WorkflowResult:
    """
    Offer updates for outdated packages, then remediate vulnerabilities.

    A failed outdated query is reported and the audit still runs. The
    workflow succeeds when no remediation action failed.

    Raises:
        ManifestMissingError, ManifestError: Without a usable manifest
    """
    logger = get_logger()
    manifest = load_manifest(ctx.project_dir, ctx.verbose)
    reports: list[RemediationReport] = []

    try:
        raw = ctx.manager.list_outdated(cwd=ctx.project_dir, timeout=ctx.timeout, verbose=ctx.verbose)
    except ManagerInvocationError as e:
        logger.error(f"Error while listing outdated dependencies: {e.message}")
        raw = ""

    outdated = classify_outdated(raw, ctx.manager.outdated_format)
    if not outdated:
        logger.info("No outdated dependencies")
    else:
        render_outdated(outdated)
        if ctx.decisions.confirm_wanted_updates(outdated):
            actions = plan_actions(
                outdated, manifest.production, manifest.development, MODE_WANTED, ctx.manager,
            )
            report = apply_actions(actions, MODE_WANTED, ctx.project_dir, ctx.timeout, ctx.verbose)
            logger.info(report.summary())
            reports.append(report)

    vulnerabilities = fetch_vulnerabilities(
        ctx.manager, ctx.decisions, ctx.config, ctx.project_dir, ctx.verbose,
    )
    if not vulnerabilities:
        message = "No vulnerabilities found"
        logger.info(message)
        return _analyze_result(message, reports)

    render_vulnerabilities(vulnerabilities)
    mode = ctx.decisions.choose_vulnerability_mode(vulnerabilities)
    if mode == "ignore":
        message = f"{len(vulnerabilities)} vulnerable dependencies left as they are"
        logger.info(message)
        return _analyze_result(message, reports)

    actions = plan_actions(
        vulnerabilities, manifest.production, manifest.development, mode, ctx.manager,
    )
    report = apply_actions(actions, mode, ctx.project_dir, ctx.timeout, ctx.verbose)
    logger.info(report.summary())
    reports.append(report)
    return _analyze_result(f"Remediated vulnerabilities ({mode})", reports)


def _analyze_result(message: str, reports: list[RemediationReport]) -> WorkflowResult:
    failed = sum(len(r.failed) for r in reports)
    if failed:
        message = f"{message}; {failed} update(s) failed"
    return WorkflowResult(
        workflow="analyze",
        success=failed == 0,
        message=message,
        reports=tuple(reports),
    )


def remove_install_state(project_dir: str | os.PathLike[str], manager: PackageManager) -> list[str]:
    """
    Delete the install tree and the manager's lockfile.

    Either may already be absent.

    Returns:
        Paths that were actually removed

    Raises:
        OSError: If something exists but cannot be removed
    """
    project = Path(project_dir)
    removed = []

    tree = project / INSTALL_TREE
    if tree.is_dir() and not tree.is_symlink():
        shutil.rmtree(tree)
        removed.append(str(tree))
    elif tree.exists() or tree.is_symlink():
        tree.unlink()
        removed.append(str(tree))

    lockfile = project / manager.lockfile
    if lockfile.exists():
        lockfile.unlink()
        removed.append(str(lockfile))

    return removed


def clean(ctx: WorkflowContext) -> WorkflowResult:
    """
    Wipe and reinstall, then verify nothing declared is missing.

    Raises:
        ManifestMissingError, ManifestError: Without a usable manifest
            (checked before anything is deleted)
        ManagerInvocationError: If the post-install check cannot list packages
    """
    logger = get_logger()
    manifest = load_manifest(ctx.project_dir, ctx.verbose)

    try:
        removed = remove_install_state(ctx.project_dir, ctx.manager)
    except OSError as e:
        message = f"Error while deleting {INSTALL_TREE} & {ctx.manager.lockfile}: {e}"
        logger.error(message)
        return WorkflowResult(workflow="clean", success=False, message=message)
    logger.info(f"Deleted {', '.join(removed) if removed else 'nothing (already clean)'}")

    logger.info(f"Reinstalling with {ctx.manager.display_name}...")
    result = ctx.manager.reinstall(cwd=ctx.project_dir, timeout=ctx.timeout, verbose=ctx.verbose)
    if not result.success:
        message = f"Error trying to reinstall all dependencies: {result.error_message}"
        logger.error(message)
        return WorkflowResult(workflow="clean", success=False, message=message)

    check = _diff(ctx, manifest)
    if not check.is_complete:
        missing = tuple(sorted(check.missing))
        message = f"Still missing after reinstall: {', '.join(missing)}"
        logger.error(message)
        return WorkflowResult(workflow="clean", success=False, message=message, missing=missing)

    message = "All good, you're good to go"
    logger.info(message)
    return WorkflowResult(workflow="clean", success=True, message=message)


NO_WORKFLOW_MESSAGE = "No workflow given"
NO_WORKFLOW_REMEDIATION = f"Name one of: {', '.join(WORKFLOWS)} (or pass --fix)"

_WORKFLOWS = {
    "scan": scan,
    "analyze": analyze,
    "clean": clean,
}


def run_workflow(workflow: str | None, ctx: WorkflowContext) -> WorkflowResult:
    """
    Run one workflow, asking which one when not named.

    Prerequisite failures (missing manifest, unusable manager output) end
    the workflow and come back as a failed result instead of an exception.

    Raises:
        ConfigError: If no workflow was named and none was chosen
        ValueError: If the workflow name is unknown
    """
    if workflow is None:
        workflow = ctx.decisions.choose_workflow()
    if workflow is None:
        raise ConfigError(NO_WORKFLOW_MESSAGE, remediation=NO_WORKFLOW_REMEDIATION)
    if workflow not in WORKFLOWS:
        raise ValueError(f"Unknown workflow: {workflow}. Must be one of: {', '.join(WORKFLOWS)}")

    vlog(f"Running {workflow} with {ctx.manager.name} in {ctx.project_dir}", ctx.verbose)
    try:
        return _WORKFLOWS[workflow](ctx)
    except DepAuditError as e:
        get_logger().error(e.describe())
        return WorkflowResult(workflow=workflow, success=False, message=e.message)
