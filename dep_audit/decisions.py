"""
Decision points of the reconciliation workflows.

The workflows never prompt on their own; they ask a DecisionProvider.
InteractiveDecisions prompts on the terminal. ScriptedDecisions returns
answers fixed in advance (command-line flags, config, tests). Both fall
back to the conservative answer when nobody can be asked: change nothing,
install nothing.
"""

from __future__ import annotations

import sys
from typing import Sequence

from .common import is_interactive
from .config import Config
from .outdated import OutdatedRecord
from .vulnerabilities import VulnerabilityRecord


WORKFLOWS = ("scan", "analyze", "clean")
VULNERABILITY_CHOICES = ("latest", "fix", "ignore")

_WORKFLOW_LABELS = {
    "scan": "check if there is any dependency missing",
    "analyze": "search for outdated & vulnerable dependencies",
    "clean": "something is wrong, reinstall everything",
}

_VULNERABILITY_LABELS = {
    "latest": "upgrade to latest version",
    "fix": "upgrade to fix only",
    "ignore": "ignore",
}


class DecisionProvider:
    """
    Answers the questions the workflows need settled from outside.

    The defaults are the conservative answers.
    """

    def choose_workflow(self) -> str | None:
        """
        Which workflow to run when none was named.

        None means nobody picked one; every workflow can modify the project,
        so there is no default.
        """
        return None

    def choose_manager(self, choices: Sequence[str]) -> str:
        """Which package manager the project uses."""
        return choices[0]

    def confirm_wanted_updates(self, records: Sequence[OutdatedRecord]) -> bool:
        """Whether to update every outdated package to its wanted version."""
        return False

    def confirm_audit_tool_install(self, package: str) -> bool:
        """Whether the auxiliary audit package may be installed."""
        return False

    def choose_vulnerability_mode(self, records: Sequence[VulnerabilityRecord]) -> str:
        """How to remediate vulnerabilities: latest, fix or ignore."""
        return "ignore"


class ScriptedDecisions(DecisionProvider):
    """
    Pre-set answers. Unset answers fall back to the conservative defaults.

    Attributes:
        workflow: Workflow to run when none was named
        manager: Manager to pick when asked
        update_wanted: Answer to the wanted-updates question
        install_audit_tool: Answer to the audit-tool question
        vulnerability_mode: Answer to the vulnerability question
    """

    def __init__(
        self,
        workflow: str | None = None,
        manager: str | None = None,
        update_wanted: bool | None = None,
        install_audit_tool: bool | None = None,
        vulnerability_mode: str | None = None,
    ):
        if workflow is not None and workflow not in WORKFLOWS:
            raise ValueError(f"Invalid workflow: {workflow}")
        if vulnerability_mode is not None and vulnerability_mode not in VULNERABILITY_CHOICES:
            raise ValueError(f"Invalid vulnerability mode: {vulnerability_mode}")
        self.workflow = workflow
        self.manager = manager
        self.update_wanted = update_wanted
        self.install_audit_tool = install_audit_tool
        self.vulnerability_mode = vulnerability_mode
        self.asked: list[str] = []

    def choose_workflow(self) -> str | None:
        self.asked.append("workflow")
        return self.workflow or super().choose_workflow()

    def choose_manager(self, choices: Sequence[str]) -> str:
        self.asked.append("manager")
        if self.manager in choices:
            return self.manager
        return super().choose_manager(choices)

    def confirm_wanted_updates(self, records: Sequence[OutdatedRecord]) -> bool:
        self.asked.append("update_wanted")
        if self.update_wanted is None:
            return super().confirm_wanted_updates(records)
        return self.update_wanted

    def confirm_audit_tool_install(self, package: str) -> bool:
        self.asked.append("install_audit_tool")
        if self.install_audit_tool is None:
            return super().confirm_audit_tool_install(package)
        return self.install_audit_tool

    def choose_vulnerability_mode(self, records: Sequence[VulnerabilityRecord]) -> str:
        self.asked.append("vulnerability_mode")
        return self.vulnerability_mode or super().choose_vulnerability_mode(records)


class InteractiveDecisions(ScriptedDecisions):
    """
    Prompt on the terminal for every answer not fixed in advance.

    Without a terminal (pipes, CI) the conservative defaults are used.
    """

    def _ask(self, prompt: str) -> str:
        print(prompt, end="", flush=True)
        try:
            return input().strip()
        except EOFError:
            return ""

    def _pick(self, question: str, options: Sequence[tuple[str, str]]) -> str | None:
        if not is_interactive():
            return None
        print(question)
        for idx, (_, label) in enumerate(options, 1):
            print(f"  {idx}) {label}")
        answer = self._ask(f"Choice [1-{len(options)}]: ").lower()
        for idx, (value, _) in enumerate(options, 1):
            if answer in (str(idx), value):
                return value
        print(f"Unrecognized choice: {answer!r}", file=sys.stderr)
        return None

    def _confirm(self, question: str) -> bool | None:
        if not is_interactive():
            return None
        answer = self._ask(f"{question} [y/N]: ").lower()
        return answer in ("y", "yes")

    def choose_workflow(self) -> str | None:
        if self.workflow is None:
            self.workflow = self._pick(
                "What do you want to do?",
                [(w, _WORKFLOW_LABELS[w]) for w in WORKFLOWS],
            )
        return super().choose_workflow()

    def choose_manager(self, choices: Sequence[str]) -> str:
        if self.manager is None:
            self.manager = self._pick("Which one is your package manager?", [(c, c) for c in choices])
        return super().choose_manager(choices)

    def confirm_wanted_updates(self, records: Sequence[OutdatedRecord]) -> bool:
        if self.update_wanted is None:
            self.update_wanted = self._confirm(
                f'Update {len(records)} outdated dependencies to their "wanted" version?'
            )
        return super().confirm_wanted_updates(records)

    def confirm_audit_tool_install(self, package: str) -> bool:
        if self.install_audit_tool is None:
            self.install_audit_tool = self._confirm(
                f"Audit isn't available by default, install {package}?"
            )
        return super().confirm_audit_tool_install(package)

    def choose_vulnerability_mode(self, records: Sequence[VulnerabilityRecord]) -> str:
        if self.vulnerability_mode is None:
            self.vulnerability_mode = self._pick(
                f"What do you want to do about {len(records)} vulnerable dependencies?",
                [(m, _VULNERABILITY_LABELS[m]) for m in VULNERABILITY_CHOICES],
            )
        return super().choose_vulnerability_mode(records)


def _tristate(value: str) -> bool | None:
    if value == "always":
        return True
    if value == "never":
        return False
    return None


def decisions_from_config(
    config: Config,
    interactive: bool = True,
    workflow: str | None = None,
    manager: str | None = None,
    update_wanted: bool | None = None,
    install_audit_tool: bool | None = None,
    vulnerability_mode: str | None = None,
) -> ScriptedDecisions:
    """
    Build the decision provider for a run.

    Explicit arguments (command-line flags) win over config preferences;
    anything still open is prompted for when ``interactive`` is set.
    """
    prefs = config.preferences
    if update_wanted is None:
        update_wanted = _tristate(prefs.update_wanted)
    if install_audit_tool is None:
        install_audit_tool = _tristate(prefs.install_audit_tool)
    if vulnerability_mode is None and prefs.vulnerability_mode != "ask":
        vulnerability_mode = prefs.vulnerability_mode

    cls = InteractiveDecisions if interactive else ScriptedDecisions
    return cls(
        workflow=workflow,
        manager=manager,
        update_wanted=update_wanted,
        install_audit_tool=install_audit_tool,
        vulnerability_mode=vulnerability_mode,
    )
