"""
Package manager registry and command translation.

Each supported manager (npm, yarn, pnpm) is one frozen PackageManager
definition. The definition carries everything that differs between the
managers: command lines, output formats, accepted exit codes, the dev flag
and the lockfile. Callers pick a definition once and never branch on the
manager name again.
"""

from __future__ import annotations

import os
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from .common import vlog
from .config import Config
from .errors import ConfigError, ManagerInvocationError

if TYPE_CHECKING:
    from .decisions import DecisionProvider


INSTALL_TREE = "node_modules"

# Output formats understood by the parsers in this package
LIST_PARSEABLE = "parseable"
LIST_TREE = "tree"

# Cache for availability checks
_PM_CACHE: dict[str, bool] = {}


@dataclass(frozen=True)
class CommandResult:
    """
    Outcome of one package manager invocation.

    Attributes:
        command: Full argv that was executed
        stdout: Captured standard output
        stderr: Captured standard error
        exit_code: Process exit code (-1 if the process never ran to completion)
        duration_seconds: Wall time of the call
        error_message: Human-readable failure description, None on success
    """
    command: tuple[str, ...]
    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and self.error_message is None

    @property
    def command_line(self) -> str:
        return " ".join(self.command)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "command": self.command_line,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_code": self.exit_code,
            "duration_seconds": self.duration_seconds,
            "error_message": self.error_message,
        }


def execute(
    command: Sequence[str],
    cwd: str | os.PathLike[str] | None = None,
    timeout: int | None = None,
    verbose: bool = False,
) -> CommandResult:
    """
    Run a command and capture its output.

    Never raises for process failures; they come back as a CommandResult
    whose ``success`` is False.

    Args:
        command: argv to execute
        cwd: Working directory (the project directory)
        timeout: Optional timeout in seconds
        verbose: Enable verbose logging

    Returns:
        CommandResult with execution outcome
    """
    command = tuple(command)
    start_time = time.time()
    vlog(f"Executing: {' '.join(command)}", verbose)

    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        return CommandResult(
            command=command,
            stdout=_decode(e.stdout),
            stderr=_decode(e.stderr),
            exit_code=-1,
            duration_seconds=time.time() - start_time,
            error_message=f"Command timed out after {timeout}s",
        )
    except FileNotFoundError:
        return CommandResult(
            command=command,
            stdout="",
            stderr="",
            exit_code=-1,
            duration_seconds=time.time() - start_time,
            error_message=f"Command not found: {command[0]}",
        )
    except OSError as e:
        return CommandResult(
            command=command,
            stdout="",
            stderr="",
            exit_code=-1,
            duration_seconds=time.time() - start_time,
            error_message=f"Could not start {command[0]}: {e}",
        )

    error_msg = None
    if result.returncode != 0:
        error_msg = f"Command failed with exit code {result.returncode}"
        if result.stderr:
            error_msg += f": {result.stderr.strip()[:200]}"

    return CommandResult(
        command=command,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
        exit_code=result.returncode,
        duration_seconds=time.time() - start_time,
        error_message=error_msg,
    )


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data


@dataclass(frozen=True)
class PackageManager:
    """
    Package manager definition.

    Attributes:
        name: Executable and identifier ("npm", "yarn", "pnpm")
        display_name: Human-readable name
        list_args: Arguments that print the installed tree
        list_format: How list output is laid out (LIST_PARSEABLE or LIST_TREE)
        install_verb: Subcommand that adds or upgrades a single package
        dev_flag: Flag that stores a package as a development dependency
        lockfile: Lockfile written next to package.json
        outdated_format: Shape of ``outdated --json`` output
        audit_format: Shape of ``audit --json`` output
        list_ok_exit_codes: Exit codes of the list command that still carry usable output
        outdated_ok_exit_codes: Exit codes of ``outdated`` that are not failures
        audit_ok_exit_codes: Exit codes of ``audit`` that are not failures
        requires_audit_tool: Whether ``audit`` needs an auxiliary package first
    """
    name: str
    display_name: str
    list_args: tuple[str, ...]
    list_format: str
    install_verb: str
    dev_flag: str
    lockfile: str
    outdated_format: str
    audit_format: str
    list_ok_exit_codes: frozenset[int] = frozenset({0})
    outdated_ok_exit_codes: frozenset[int] = frozenset({0, 1})
    audit_ok_exit_codes: frozenset[int] = frozenset({0, 1})
    requires_audit_tool: bool = False

    def run(
        self,
        subcommand: str,
        args: Sequence[str] = (),
        cwd: str | os.PathLike[str] | None = None,
        timeout: int | None = None,
        verbose: bool = False,
    ) -> CommandResult:
        """Run ``<manager> <subcommand> <args...>`` in the project directory."""
        return execute((self.name, subcommand, *args), cwd=cwd, timeout=timeout, verbose=verbose)

    def is_available(self, timeout: int = 5) -> bool:
        """
        Check whether this manager's executable responds to --version.

        Results are cached for the life of the process.
        """
        if self.name in _PM_CACHE:
            return _PM_CACHE[self.name]

        available = execute((self.name, "--version"), timeout=timeout).success
        _PM_CACHE[self.name] = available
        return available

    def list_installed(
        self,
        cwd: str | os.PathLike[str] | None = None,
        timeout: int | None = None,
        verbose: bool = False,
    ) -> frozenset[str]:
        """
        Names of the packages present in the install tree.

        Always queries the manager; the install tree changes under every
        remediation step.

        Raises:
            ManagerInvocationError: If the list command failed
        """
        result = self.run(self.list_args[0], self.list_args[1:], cwd=cwd, timeout=timeout, verbose=verbose)
        self._check(result, self.list_ok_exit_codes, "list installed packages")
        installed = parse_installed(result.stdout, self.list_format)
        vlog(f"{self.name} reports {len(installed)} installed packages", verbose)
        return installed

    def list_outdated(
        self,
        cwd: str | os.PathLike[str] | None = None,
        timeout: int | None = None,
        verbose: bool = False,
    ) -> str:
        """
        Raw ``outdated --json`` output in this manager's native format.

        Raises:
            ManagerInvocationError: If the command failed for a reason other
                than having found outdated packages
        """
        result = self.run("outdated", ("--json",), cwd=cwd, timeout=timeout, verbose=verbose)
        self._check(result, self.outdated_ok_exit_codes, "list outdated packages")
        return result.stdout

    def audit(
        self,
        cwd: str | os.PathLike[str] | None = None,
        timeout: int | None = None,
        verbose: bool = False,
    ) -> str:
        """
        Raw ``audit --json`` output in this manager's native format.

        Raises:
            ManagerInvocationError: If the command failed for a reason other
                than having found vulnerabilities
        """
        result = self.run("audit", ("--json",), cwd=cwd, timeout=timeout, verbose=verbose)
        self._check(result, self.audit_ok_exit_codes, "audit dependencies")
        return result.stdout

    def reinstall(
        self,
        cwd: str | os.PathLike[str] | None = None,
        timeout: int | None = None,
        verbose: bool = False,
    ) -> CommandResult:
        """Full install from package.json."""
        return self.run("install", cwd=cwd, timeout=timeout, verbose=verbose)

    def install_audit_tool(
        self,
        package: str,
        cwd: str | os.PathLike[str] | None = None,
        timeout: int | None = None,
        verbose: bool = False,
    ) -> CommandResult:
        """Add the auxiliary audit package as a development dependency."""
        return execute(
            self.build_install_command(package, dev=True),
            cwd=cwd,
            timeout=timeout,
            verbose=verbose,
        )

    def build_install_command(
        self,
        package: str,
        version: str | None = None,
        dev: bool = False,
    ) -> tuple[str, ...]:
        """
        argv that installs one package, e.g. ``("yarn", "add", "jest@29.7.0", "--dev")``.

        Args:
            package: Package name
            version: Target version or tag (omitted from the spec when None)
            dev: Store as a development dependency
        """
        spec = f"{package}@{version}" if version else package
        command = [self.name, self.install_verb, spec]
        if dev:
            command.append(self.dev_flag)
        return tuple(command)

    def _check(self, result: CommandResult, accepted: frozenset[int], action: str) -> None:
        if result.exit_code in accepted and result.exit_code >= 0:
            return
        raise ManagerInvocationError(
            f"{self.name} could not {action}: {result.error_message}",
            result=result,
            remediation=f"Run `{result.command_line}` manually to see the full output",
        )


PACKAGE_MANAGERS = (
    PackageManager(
        name="npm",
        display_name="npm",
        list_args=("ls", "--parseable"),
        list_format=LIST_PARSEABLE,
        install_verb="install",
        dev_flag="--save-dev",
        lockfile="package-lock.json",
        outdated_format="json-map",
        audit_format="npm-report",
        # npm ls exits 1 (ELSPROBLEMS) when the tree is missing packages
        list_ok_exit_codes=frozenset({0, 1}),
    ),
    PackageManager(
        name="yarn",
        display_name="Yarn",
        list_args=("list", "--depth=0"),
        list_format=LIST_TREE,
        install_verb="add",
        dev_flag="--dev",
        lockfile="yarn.lock",
        outdated_format="ndjson-table",
        audit_format="ndjson-advisories",
        # yarn audit exit code is a bitmask of the severities found
        audit_ok_exit_codes=frozenset(range(32)),
    ),
    PackageManager(
        name="pnpm",
        display_name="pnpm",
        list_args=("list", "--parseable"),
        list_format=LIST_PARSEABLE,
        install_verb="add",
        dev_flag="-D",
        lockfile="pnpm-lock.yaml",
        outdated_format="json-map",
        audit_format="npm-report",
        requires_audit_tool=True,
    ),
)


_PM_BY_NAME = {pm.name: pm for pm in PACKAGE_MANAGERS}


def get_package_manager(name: str) -> PackageManager | None:
    """Look up a manager definition by name."""
    return _PM_BY_NAME.get(name)


def manager_names() -> list[str]:
    return [pm.name for pm in PACKAGE_MANAGERS]


# Tree-drawing prefix of `yarn list` lines, e.g. "├─ lodash@4.17.21"
_TREE_LINE = re.compile(r"^[\s│├└┬─]*[├└]─+\s*(?P<spec>\S+)")


def parse_installed(output: str, list_format: str) -> frozenset[str]:
    """
    Extract package names from list output.

    Parseable output holds one path per line; the name is whatever follows
    the last ``node_modules/``. Tree output holds ``name@version`` entries
    behind tree-drawing characters. Headers, warnings and summary lines
    are ignored.

    Args:
        output: stdout of the list command
        list_format: LIST_PARSEABLE or LIST_TREE

    Returns:
        Set of package names
    """
    names = set()
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        if list_format == LIST_PARSEABLE:
            line = line.replace("\\", "/")
            marker = f"{INSTALL_TREE}/"
            if marker not in line:
                continue
            name = line.rsplit(marker, 1)[-1].strip("/")
        elif list_format == LIST_TREE:
            match = _TREE_LINE.match(raw_line)
            if not match:
                continue
            spec = match.group("spec")
            at = spec.rfind("@")
            name = spec[:at] if at > 0 else spec
        else:
            raise ValueError(f"Unknown list format: {list_format}")

        if name:
            names.add(name)

    return frozenset(names)


def detect_from_lockfile(project_dir: str | os.PathLike[str]) -> PackageManager | None:
    """
    Guess the manager from the lockfile in the project directory.

    Returns:
        The matching manager when exactly one known lockfile exists, else None
    """
    project = Path(project_dir)
    found = [pm for pm in PACKAGE_MANAGERS if (project / pm.lockfile).exists()]
    if len(found) == 1:
        return found[0]
    return None


def select_package_manager(
    config: Config,
    decisions: DecisionProvider,
    project_dir: str | os.PathLike[str] = ".",
    override: str | None = None,
    verbose: bool = False,
) -> tuple[PackageManager, str]:
    """
    Pick the package manager for this run.

    Selection priority:
    1. Explicit override (command line)
    2. config.manager
    3. The single lockfile present in the project directory
    4. Ask the caller

    Args:
        config: Configuration object
        decisions: Where to ask when nothing else decides
        project_dir: Directory holding package.json
        override: Manager named on the command line
        verbose: Enable verbose logging

    Returns:
        Tuple of (package_manager, selection_reason)

    Raises:
        ConfigError: If a named manager is not supported
    """
    for name, reason in ((override, "override"), (config.manager, "config")):
        if not name:
            continue
        pm = get_package_manager(name)
        if pm is None:
            raise ConfigError(
                f"Unknown package manager: {name}",
                remediation=f"Use one of: {', '.join(manager_names())}",
            )
        vlog(f"Using {pm.name} (reason: {reason})", verbose)
        return (pm, reason)

    detected = detect_from_lockfile(project_dir)
    if detected is not None:
        vlog(f"Using {detected.name} (reason: lockfile {detected.lockfile})", verbose)
        return (detected, "lockfile")

    choice = decisions.choose_manager(manager_names())
    pm = get_package_manager(choice)
    if pm is None:
        raise ConfigError(f"Unknown package manager: {choice}")
    vlog(f"Using {pm.name} (reason: decision)", verbose)
    return (pm, "decision")


def clear_cache() -> None:
    """Clear the availability cache."""
    _PM_CACHE.clear()
