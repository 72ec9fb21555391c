"""
Command-line entry point.

Usage:
    dep-check                    # ask what to do
    dep-check scan --npm         # check for missing dependencies
    dep-check analyze --yarn     # outdated packages and vulnerabilities
    dep-check --fix --pnpm       # wipe node_modules + lockfile and reinstall
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from .config import load_config, validate_config
from .decisions import VULNERABILITY_CHOICES, WORKFLOWS, decisions_from_config
from .errors import ConfigError
from .logging_config import get_logger, setup_logging
from .package_managers import manager_names, select_package_manager
from .reconcile import NO_WORKFLOW_MESSAGE, NO_WORKFLOW_REMEDIATION, WorkflowContext, run_workflow
from .report import write_summary_report


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dep-check",
        description="Find missing, outdated and vulnerable dependencies and fix them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "workflow",
        nargs="?",
        choices=WORKFLOWS,
        help="What to do (asked interactively when omitted)",
    )
    parser.add_argument(
        "--fix",
        action="store_true",
        help="Dependency problem: delete node_modules & the lockfile and reinstall everything",
    )

    managers = parser.add_mutually_exclusive_group()
    for name in manager_names():
        managers.add_argument(
            f"--{name}",
            dest="manager",
            action="store_const",
            const=name,
            help=f"Use {name}",
        )
    managers.add_argument(
        "--manager",
        dest="manager",
        choices=manager_names(),
        help="Package manager to use",
    )

    parser.add_argument(
        "--update-wanted",
        dest="update_wanted",
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Update outdated dependencies to their "wanted" version without asking',
    )
    parser.add_argument(
        "--vuln-mode",
        choices=VULNERABILITY_CHOICES,
        help="How to remediate vulnerabilities without asking",
    )
    parser.add_argument(
        "--install-audit-tool",
        dest="install_audit_tool",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Allow installing pnpm's audit package without asking",
    )
    parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Never prompt; unanswered questions change nothing (a workflow must be named)",
    )

    parser.add_argument(
        "--project-dir", "-C",
        default=".",
        help="Directory containing package.json (default: current directory)",
    )
    parser.add_argument(
        "--config",
        help="Configuration file (default: .dep-audit.yml, then user and system config)",
    )
    parser.add_argument(
        "--report",
        metavar="PATH",
        help="Write a JSON summary of the run",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only warnings and errors",
    )
    parser.add_argument(
        "--log-file",
        help="Also write a full debug log to this file",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for dep-check."""
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)
    logger = get_logger()

    workflow = "clean" if args.fix else args.workflow

    try:
        config = load_config(args.config, project_dir=args.project_dir, verbose=args.verbose)
        for warning in validate_config(config):
            logger.warning(f"Config: {warning}")

        decisions = decisions_from_config(
            config,
            interactive=not args.yes,
            update_wanted=args.update_wanted,
            install_audit_tool=args.install_audit_tool,
            vulnerability_mode=args.vuln_mode,
        )
        if workflow is None:
            workflow = decisions.choose_workflow()
        if workflow is None:
            raise ConfigError(NO_WORKFLOW_MESSAGE, remediation=NO_WORKFLOW_REMEDIATION)

        manager, _ = select_package_manager(
            config, decisions, project_dir=args.project_dir, override=args.manager, verbose=args.verbose,
        )
    except ConfigError as e:
        logger.error(e.describe())
        return EXIT_CONFIG

    if not manager.is_available():
        logger.warning(f"{manager.name} does not respond to --version, commands will probably fail")

    ctx = WorkflowContext(
        manager=manager,
        config=config,
        decisions=decisions,
        project_dir=args.project_dir,
        verbose=args.verbose,
    )
    result = run_workflow(workflow, ctx)

    if args.report:
        try:
            write_summary_report(args.report, result.result_entries(manager.name))
            logger.info(f"Report saved to: {args.report}")
        except OSError as e:
            logger.error(f"Could not write report to {args.report}: {e}")

    return EXIT_OK if result.success else EXIT_FAILED


def run() -> None:
    """Console script wrapper."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
