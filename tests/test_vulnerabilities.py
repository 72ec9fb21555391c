"""
Tests for audit report normalization (dep_audit/vulnerabilities.py).
"""

import json
import logging
import subprocess
from unittest.mock import patch

import pytest

from dep_audit.config import Config, Preferences
from dep_audit.decisions import ScriptedDecisions
from dep_audit.package_managers import get_package_manager
from dep_audit.vulnerabilities import (
    FORMAT_NDJSON_ADVISORIES,
    FORMAT_NPM_REPORT,
    VulnerabilityRecord,
    classify_vulnerabilities,
    extract_version,
    fetch_vulnerabilities,
    filter_by_severity,
    merge_duplicates,
    parse_vulnerabilities,
)


def _completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def _advisory(name, severity, recommendation="", patched_versions=""):
    return {
        "type": "auditAdvisory",
        "data": {
            "resolution": {"id": 1, "path": name},
            "advisory": {
                "module_name": name,
                "severity": severity,
                "recommendation": recommendation,
                "patched_versions": patched_versions,
            },
        },
    }


NPM_REPORT = json.dumps({
    "auditReportVersion": 2,
    "vulnerabilities": {
        "minimist": {"severity": "critical", "fixAvailable": {"name": "minimist", "version": "1.2.6"}},
        "nth-check": {"severity": "high", "fixAvailable": False},
        "semver": {"severity": "moderate", "fixAvailable": True},
    },
})


class TestExtractVersion:
    """Tests for extract_version."""

    @pytest.mark.parametrize("text,expected", [
        ("Upgrade to version 1.2.3 or later", "1.2.3"),
        (">=4.17.21", "4.17.21"),
        ("Upgrade to 2.0.0 or 3.1.4", "2.0.0"),
        ("No fix available", None),
        ("<0.0.0", "0.0.0"),
        (None, None),
        (42, None),
    ])
    def test_extract(self, text, expected):
        """Test the first X.Y.Z in free text."""
        assert extract_version(text) == expected


class TestNpmReport:
    """Tests for the npm/pnpm audit format."""

    def test_vulnerabilities_map(self):
        """Test severity and fix extraction."""
        records, dropped = parse_vulnerabilities(NPM_REPORT, FORMAT_NPM_REPORT)
        by_name = {r.name: r for r in records}
        assert by_name["minimist"] == VulnerabilityRecord("minimist", "critical", "1.2.6")
        assert by_name["nth-check"].recommended_fix is None
        # fixAvailable: true carries no version
        assert by_name["semver"].recommended_fix is None
        assert dropped == 0

    def test_legacy_advisories(self):
        """Test the older advisories layout."""
        raw = json.dumps({
            "advisories": {
                "1179": {"module_name": "minimist", "severity": "Low",
                         "recommendation": "Upgrade to version 0.2.1 or later"},
                "1500": {"module_name": "yargs-parser", "severity": "moderate",
                         "recommendation": "", "patched_versions": ">=13.1.2"},
            },
        })
        records, dropped = parse_vulnerabilities(raw, FORMAT_NPM_REPORT)
        assert VulnerabilityRecord("minimist", "low", "0.2.1") in records
        assert VulnerabilityRecord("yargs-parser", "moderate", "13.1.2") in records
        assert dropped == 0

    def test_unknown_severity_dropped(self):
        """Test unrecognized severities are counted."""
        raw = json.dumps({"vulnerabilities": {
            "a": {"severity": "apocalyptic"},
            "b": "high",
            "c": {"severity": "low"},
        }})
        records, dropped = parse_vulnerabilities(raw, FORMAT_NPM_REPORT)
        assert [r.name for r in records] == ["c"]
        assert dropped == 2

    def test_invalid_json(self, caplog):
        """Test an unparseable report."""
        with caplog.at_level(logging.WARNING, logger="dep_audit"):
            assert parse_vulnerabilities("ERR_PNPM_AUDIT", FORMAT_NPM_REPORT) == ([], 0)
        assert "Could not parse audit report" in caplog.text


class TestNdjsonAdvisories:
    """Tests for yarn's audit format."""

    def test_advisory_events(self):
        """Test auditAdvisory events among summary events."""
        lines = [
            _advisory("minimist", "critical", "Upgrade to version 1.2.6 or later"),
            _advisory("lodash", "high", "", ">=4.17.21"),
            {"type": "auditSummary", "data": {"vulnerabilities": {"critical": 1}}},
        ]
        raw = "\n".join(json.dumps(line) for line in lines)
        records, dropped = parse_vulnerabilities(raw, FORMAT_NDJSON_ADVISORIES)
        assert records == [
            VulnerabilityRecord("minimist", "critical", "1.2.6"),
            VulnerabilityRecord("lodash", "high", "4.17.21"),
        ]
        assert dropped == 0

    def test_json_array_document(self):
        """Test a report printed as one JSON array of events."""
        raw = json.dumps([
            _advisory("minimist", "low", "Upgrade to version 1.2.6 or later"),
            {"type": "auditSummary", "data": {}},
        ])
        records, dropped = parse_vulnerabilities(raw, FORMAT_NDJSON_ADVISORIES)
        assert records == [VulnerabilityRecord("minimist", "low", "1.2.6")]
        assert dropped == 0

    def test_advisory_without_data(self):
        """Test an advisory event with missing nested fields is dropped."""
        raw = "\n".join([
            json.dumps({"type": "auditAdvisory", "data": {}}),
            json.dumps({"type": "auditAdvisory"}),
            "not json",
            json.dumps(_advisory("qs", "moderate")),
        ])
        records, dropped = parse_vulnerabilities(raw, FORMAT_NDJSON_ADVISORIES)
        assert records == [VulnerabilityRecord("qs", "moderate", None)]
        assert dropped == 3


class TestMergeAndFilter:
    """Tests for merge_duplicates and filter_by_severity."""

    def test_merge_keeps_worst_severity(self):
        """Test duplicate advisories collapse to one record."""
        merged = merge_duplicates([
            VulnerabilityRecord("lodash", "low", None),
            VulnerabilityRecord("lodash", "critical", "4.17.21"),
            VulnerabilityRecord("lodash", "moderate", "4.17.12"),
        ])
        assert merged == [VulnerabilityRecord("lodash", "critical", "4.17.21")]

    def test_merge_keeps_first_fix(self):
        """Test the first offered fix wins."""
        merged = merge_duplicates([
            VulnerabilityRecord("qs", "high", "6.5.3"),
            VulnerabilityRecord("qs", "high", "6.11.0"),
        ])
        assert merged[0].recommended_fix == "6.5.3"

    def test_sorted_worst_first(self):
        """Test ordering by severity, then name."""
        merged = merge_duplicates([
            VulnerabilityRecord("b", "low"),
            VulnerabilityRecord("z", "critical"),
            VulnerabilityRecord("a", "low"),
        ])
        assert [r.name for r in merged] == ["z", "a", "b"]

    def test_filter_by_severity(self):
        """Test the minimum-severity threshold is inclusive."""
        records = [
            VulnerabilityRecord("a", "critical"),
            VulnerabilityRecord("b", "high"),
            VulnerabilityRecord("c", "low"),
        ]
        assert [r.name for r in filter_by_severity(records, "high")] == ["a", "b"]
        assert filter_by_severity(records, "info") == records

    def test_classify_warns_on_dropped(self, caplog):
        """Test classify_vulnerabilities reports dropped entries."""
        raw = json.dumps({"vulnerabilities": {"a": {"severity": "bogus"}, "b": {"severity": "high"}}})
        with caplog.at_level(logging.WARNING, logger="dep_audit"):
            records = classify_vulnerabilities(raw, FORMAT_NPM_REPORT)
        assert [r.name for r in records] == ["b"]
        assert "Ignored 1 unrecognized entries in the audit report" in caplog.text


class TestFetchVulnerabilities:
    """Tests for fetch_vulnerabilities."""

    def test_npm_audit(self, tmp_path):
        """Test npm runs audit directly."""
        decisions = ScriptedDecisions()
        with patch("subprocess.run", return_value=_completed(NPM_REPORT, 1)) as mock_run:
            records = fetch_vulnerabilities(get_package_manager("npm"), decisions, Config(), tmp_path)

        assert [r.name for r in records] == ["minimist", "nth-check", "semver"]
        assert mock_run.call_args[0][0] == ("npm", "audit", "--json")
        assert decisions.asked == []

    def test_min_severity_applied(self, tmp_path):
        """Test the configured threshold filters records."""
        config = Config(preferences=Preferences(min_severity="high"))
        with patch("subprocess.run", return_value=_completed(NPM_REPORT, 1)):
            records = fetch_vulnerabilities(get_package_manager("npm"), ScriptedDecisions(), config, tmp_path)
        assert [r.name for r in records] == ["minimist", "nth-check"]

    def test_pnpm_declined_tool(self, tmp_path):
        """Test declining the audit tool skips the audit entirely."""
        decisions = ScriptedDecisions(install_audit_tool=False)
        with patch("subprocess.run") as mock_run:
            records = fetch_vulnerabilities(get_package_manager("pnpm"), decisions, Config(), tmp_path)

        assert records == []
        mock_run.assert_not_called()
        assert decisions.asked == ["install_audit_tool"]

    def test_pnpm_installs_tool_then_audits(self, tmp_path):
        """Test the audit tool is installed before auditing."""
        decisions = ScriptedDecisions(install_audit_tool=True)
        with patch("subprocess.run", side_effect=[_completed(), _completed(NPM_REPORT, 1)]) as mock_run:
            records = fetch_vulnerabilities(get_package_manager("pnpm"), decisions, Config(), tmp_path)

        commands = [c[0][0] for c in mock_run.call_args_list]
        assert commands == [("pnpm", "add", "@pnpm/audit", "-D"), ("pnpm", "audit", "--json")]
        assert len(records) == 3

    def test_pnpm_tool_install_fails(self, tmp_path, caplog):
        """Test a failed tool install yields no records."""
        decisions = ScriptedDecisions(install_audit_tool=True)
        with patch("subprocess.run", return_value=_completed("", 1, "ERR_PNPM_FETCH_404")) as mock_run:
            with caplog.at_level(logging.ERROR, logger="dep_audit"):
                records = fetch_vulnerabilities(get_package_manager("pnpm"), decisions, Config(), tmp_path)

        assert records == []
        assert mock_run.call_count == 1
        assert "Error while installing @pnpm/audit" in caplog.text

    def test_audit_failure(self, tmp_path, caplog):
        """Test an audit that could not run yields no records."""
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            with caplog.at_level(logging.ERROR, logger="dep_audit"):
                records = fetch_vulnerabilities(get_package_manager("yarn"), ScriptedDecisions(), Config(), tmp_path)

        assert records == []
        assert "Error trying to get vulnerabilities" in caplog.text
