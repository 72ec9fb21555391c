"""
Tests for remediation planning and execution (dep_audit/remediation.py).
"""

import subprocess
from unittest.mock import patch

import pytest

from dep_audit.outdated import OutdatedRecord
from dep_audit.package_managers import get_package_manager
from dep_audit.remediation import (
    MODE_FIX,
    MODE_LATEST,
    MODE_WANTED,
    OUTCOME_APPLIED,
    OUTCOME_FAILED,
    OUTCOME_PENDING,
    OUTCOME_SKIPPED_NO_FIX,
    OUTCOME_SKIPPED_TRANSITIVE,
    RemediationAction,
    RemediationReport,
    apply_actions,
    is_major_upgrade,
    plan_action,
    plan_actions,
    target_version,
)
from dep_audit.vulnerabilities import VulnerabilityRecord


def _completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


NPM = get_package_manager("npm")
YARN = get_package_manager("yarn")
PNPM = get_package_manager("pnpm")

PROD = frozenset({"axios", "express"})
DEV = frozenset({"jest", "eslint"})


class TestTargetVersion:
    """Tests for target_version."""

    def test_outdated_wanted(self):
        """Test wanted mode uses the wanted version."""
        record = OutdatedRecord("axios", "0.21.0", "0.21.4", "1.6.0")
        assert target_version(record, MODE_WANTED) == "0.21.4"

    def test_outdated_latest(self):
        """Test latest mode prefers the reported latest version."""
        assert target_version(OutdatedRecord("axios", "0.21.0", "0.21.4", "1.6.0"), MODE_LATEST) == "1.6.0"
        assert target_version(OutdatedRecord("axios", "0.21.0", "0.21.4", None), MODE_LATEST) == "latest"

    def test_vulnerability_fix(self):
        """Test fix mode uses the advisory's version."""
        assert target_version(VulnerabilityRecord("axios", "high", "0.21.2"), MODE_FIX) == "0.21.2"
        assert target_version(VulnerabilityRecord("axios", "high"), MODE_FIX) is None

    def test_vulnerability_latest(self):
        """Test latest mode installs the latest tag."""
        assert target_version(VulnerabilityRecord("axios", "high", "0.21.2"), MODE_LATEST) == "latest"

    @pytest.mark.parametrize("record,mode", [
        (OutdatedRecord("a", "1.0.0", "1.0.1", "1.0.1"), MODE_FIX),
        (VulnerabilityRecord("a", "low"), MODE_WANTED),
        (VulnerabilityRecord("a", "low"), "newest"),
    ])
    def test_invalid_combinations(self, record, mode):
        """Test mode/record mismatches are rejected."""
        with pytest.raises(ValueError):
            target_version(record, mode)


class TestPlanAction:
    """Tests for plan_action."""

    def test_production_fix_npm(self):
        """Test a production package gets no dev flag."""
        action = plan_action(VulnerabilityRecord("axios", "high", "0.21.2"), PROD, DEV, MODE_FIX, NPM)
        assert action.command == "npm install axios@0.21.2"
        assert action.argv == ("npm", "install", "axios@0.21.2")
        assert action.dev_flag is False
        assert action.outcome == OUTCOME_PENDING
        assert action.runnable

    def test_dev_latest_yarn(self):
        """Test a development package gets the manager's dev flag."""
        action = plan_action(VulnerabilityRecord("jest", "low", "29.7.0"), PROD, DEV, MODE_LATEST, YARN)
        assert action.command == "yarn add jest@latest --dev"
        assert action.dev_flag is True

    def test_dev_wanted_pnpm(self):
        """Test pnpm's dev flag in wanted mode."""
        record = OutdatedRecord("eslint", "8.0.0", "8.56.0", "9.0.0")
        action = plan_action(record, PROD, DEV, MODE_WANTED, PNPM)
        assert action.command == "pnpm add eslint@8.56.0 -D"

    @pytest.mark.parametrize("mode", [MODE_FIX, MODE_LATEST])
    def test_transitive_skipped(self, mode):
        """Test undeclared packages are never installed directly, in any mode."""
        action = plan_action(VulnerabilityRecord("minimist", "critical", "1.2.6"), PROD, DEV, mode, NPM)
        assert action.outcome == OUTCOME_SKIPPED_TRANSITIVE
        assert action.command == ""
        assert action.argv == ()
        assert not action.runnable

    def test_no_fix_skipped(self):
        """Test a declared package without a fix version."""
        action = plan_action(VulnerabilityRecord("express", "moderate"), PROD, DEV, MODE_FIX, NPM)
        assert action.outcome == OUTCOME_SKIPPED_NO_FIX
        assert action.target_version is None
        assert not action.runnable

    def test_plan_actions_preserves_order(self):
        """Test batch planning keeps record order."""
        records = [
            VulnerabilityRecord("minimist", "critical", "1.2.6"),
            VulnerabilityRecord("axios", "high", "0.21.2"),
            VulnerabilityRecord("jest", "low", "29.7.0"),
        ]
        actions = plan_actions(records, PROD, DEV, MODE_FIX, NPM)
        assert [a.name for a in actions] == ["minimist", "axios", "jest"]
        assert [a.outcome for a in actions] == [OUTCOME_SKIPPED_TRANSITIVE, OUTCOME_PENDING, OUTCOME_PENDING]


class TestApplyActions:
    """Tests for apply_actions."""

    def test_all_succeed(self, tmp_path):
        """Test successful actions are marked applied."""
        actions = plan_actions(
            [VulnerabilityRecord("axios", "high", "0.21.2"), VulnerabilityRecord("jest", "low", "29.7.0")],
            PROD, DEV, MODE_FIX, NPM,
        )
        with patch("subprocess.run", return_value=_completed()) as mock_run:
            report = apply_actions(actions, MODE_FIX, tmp_path)

        assert [a.outcome for a in report.actions] == [OUTCOME_APPLIED, OUTCOME_APPLIED]
        commands = [c[0][0] for c in mock_run.call_args_list]
        assert commands == [
            ("npm", "install", "axios@0.21.2"),
            ("npm", "install", "jest@29.7.0", "--save-dev"),
        ]
        assert all(c[1]["cwd"] == tmp_path for c in mock_run.call_args_list)

    def test_failure_continues_batch(self, tmp_path):
        """Test one failing action does not stop the rest."""
        actions = plan_actions(
            [VulnerabilityRecord("axios", "high", "0.21.2"), VulnerabilityRecord("express", "low", "4.19.2")],
            PROD, DEV, MODE_FIX, NPM,
        )
        results = [_completed("", 1, "ERESOLVE could not resolve"), _completed()]
        with patch("subprocess.run", side_effect=results) as mock_run:
            report = apply_actions(actions, MODE_FIX, tmp_path)

        assert mock_run.call_count == 2
        assert [a.outcome for a in report.actions] == [OUTCOME_FAILED, OUTCOME_APPLIED]
        assert "ERESOLVE" in report.actions[0].error_message
        assert len(report.failed) == 1
        assert len(report.applied) == 1

    def test_skipped_never_executed(self, tmp_path):
        """Test skipped actions spawn no process."""
        actions = plan_actions(
            [VulnerabilityRecord("minimist", "critical", "1.2.6"), VulnerabilityRecord("express", "high")],
            PROD, DEV, MODE_FIX, NPM,
        )
        with patch("subprocess.run") as mock_run:
            report = apply_actions(actions, MODE_FIX, tmp_path)

        mock_run.assert_not_called()
        assert len(report.skipped) == 2
        assert report.failed == ()

    def test_timeout_passed_through(self, tmp_path):
        """Test the per-command timeout reaches subprocess."""
        actions = plan_actions([OutdatedRecord("axios", "0.21.0", "0.21.4", "1.6.0")], PROD, DEV, MODE_WANTED, NPM)
        with patch("subprocess.run", return_value=_completed()) as mock_run:
            apply_actions(actions, MODE_WANTED, tmp_path, timeout=30)
        assert mock_run.call_args[1]["timeout"] == 30


class TestRemediationReport:
    """Tests for RemediationReport."""

    def test_counts_and_summary(self):
        """Test outcome buckets and summary text."""
        report = RemediationReport(
            mode=MODE_FIX,
            actions=(
                RemediationAction("a", "1.0.0", False, "npm install a@1.0.0", outcome=OUTCOME_APPLIED),
                RemediationAction("b", "1.0.0", False, "npm install b@1.0.0", outcome=OUTCOME_FAILED),
                RemediationAction("c", None, False, "", outcome=OUTCOME_SKIPPED_NO_FIX),
            ),
            duration_seconds=1.25,
        )
        data = report.to_dict()
        assert (data["applied"], data["failed"], data["skipped"]) == (1, 1, 1)
        assert "Applied: 1" in report.summary()
        assert "Remediation Summary (fix)" in report.summary()


class TestMajorUpgrade:
    """Tests for major-version detection."""

    @pytest.mark.parametrize("current,target,expected", [
        ("0.21.0", "1.6.0", True),
        ("8.0.0", "8.56.0", False),
        ("2.0.0", "10.0.0", True),
        (None, "1.6.0", False),
        ("1.0.0", "latest", False),
        ("1.0.0", None, False),
    ])
    def test_is_major_upgrade(self, current, target, expected):
        """Test numeric major comparison and non-version targets."""
        assert is_major_upgrade(current, target) is expected

    def test_flagged_on_action(self):
        """Test latest-mode outdated actions carry the flag."""
        record = OutdatedRecord("axios", "0.21.0", "0.21.4", "1.6.0")
        assert plan_action(record, PROD, DEV, MODE_LATEST, NPM).major_upgrade is True
        assert plan_action(record, PROD, DEV, MODE_WANTED, NPM).major_upgrade is False

    def test_vulnerability_actions_not_flagged(self):
        """Test advisories have no installed version to compare."""
        action = plan_action(VulnerabilityRecord("axios", "high", "1.6.0"), PROD, DEV, MODE_FIX, NPM)
        assert action.major_upgrade is False
