"""
Small helpers shared across dep_audit modules.
"""

from __future__ import annotations

import os
import sys


def is_ci_environment() -> bool:
    """
    Check if running under a CI/CD system.

    Interactive prompts are never shown there; decisions fall back to their
    conservative answers.
    """
    ci_indicators = [
        "CI",
        "CONTINUOUS_INTEGRATION",
        "GITHUB_ACTIONS",
        "GITLAB_CI",
        "CIRCLECI",
        "TRAVIS",
        "JENKINS_HOME",
        "BUILDKITE",
        "DRONE",
        "TF_BUILD",  # Azure Pipelines
    ]
    return any(os.environ.get(var) for var in ci_indicators)


def is_interactive() -> bool:
    """True when a human can answer prompts on stdin."""
    try:
        return sys.stdin is not None and sys.stdin.isatty() and not is_ci_environment()
    except ValueError:
        # stdin closed
        return False


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Emit a debug-level progress message.

    Shown when ``verbose`` is set or ``DEP_AUDIT_DEBUG=1`` is exported.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or os.environ.get("DEP_AUDIT_DEBUG", "0") == "1":
        from .logging_config import get_logger
        get_logger().info(msg)
