"""
dep-audit - reconcile package.json with node_modules and remediate drift.

Core Modules:
- Manager adapters: npm, yarn and pnpm command translation and output parsing
- Manifest and diff: declared versus installed dependencies
- Classification: outdated and vulnerable packages
- Remediation: scope-aware upgrade planning and sequential execution
- Workflows: scan, analyze and clean
"""

__version__ = "1.0.0"

VERSION = __version__

from .errors import (
    DepAuditError,
    ManifestMissingError,
    ManifestError,
    ConfigError,
    ManagerInvocationError,
)
from .config import Config, Preferences, load_config, load_config_file, validate_config
from .package_managers import (
    CommandResult,
    PackageManager,
    PACKAGE_MANAGERS,
    get_package_manager,
    select_package_manager,
    parse_installed,
)
from .manifest import DeclaredDependency, Manifest, load_manifest
from .diff import DependencyDiff, diff_dependencies
from .outdated import OutdatedRecord, classify_outdated, parse_outdated
from .vulnerabilities import (
    VulnerabilityRecord,
    classify_vulnerabilities,
    parse_vulnerabilities,
    extract_version,
    fetch_vulnerabilities,
    filter_by_severity,
)
from .remediation import (
    RemediationAction,
    RemediationReport,
    is_major_upgrade,
    plan_action,
    plan_actions,
    apply_actions,
)
from .decisions import DecisionProvider, InteractiveDecisions, ScriptedDecisions, decisions_from_config
from .reconcile import WorkflowContext, WorkflowResult, scan, analyze, clean, run_workflow
from .report import build_summary_report, write_summary_report
from .logging_config import setup_logging, get_logger

__all__ = [
    # Version
    "__version__",
    "VERSION",
    # Errors
    "DepAuditError",
    "ManifestMissingError",
    "ManifestError",
    "ConfigError",
    "ManagerInvocationError",
    # Configuration
    "Config",
    "Preferences",
    "load_config",
    "load_config_file",
    "validate_config",
    # Manager adapters
    "CommandResult",
    "PackageManager",
    "PACKAGE_MANAGERS",
    "get_package_manager",
    "select_package_manager",
    "parse_installed",
    # Manifest and diff
    "DeclaredDependency",
    "Manifest",
    "load_manifest",
    "DependencyDiff",
    "diff_dependencies",
    # Classification
    "OutdatedRecord",
    "classify_outdated",
    "parse_outdated",
    "VulnerabilityRecord",
    "classify_vulnerabilities",
    "parse_vulnerabilities",
    "extract_version",
    "fetch_vulnerabilities",
    "filter_by_severity",
    # Remediation
    "RemediationAction",
    "RemediationReport",
    "is_major_upgrade",
    "plan_action",
    "plan_actions",
    "apply_actions",
    # Workflows
    "DecisionProvider",
    "InteractiveDecisions",
    "ScriptedDecisions",
    "decisions_from_config",
    "WorkflowContext",
    "WorkflowResult",
    "scan",
    "analyze",
    "clean",
    "run_workflow",
    # Reporting
    "build_summary_report",
    "write_summary_report",
    # Logging
    "setup_logging",
    "get_logger",
]
