"""
Normalization of ``audit --json`` reports.

Supported shapes:

- ``npm-report``: ``{"vulnerabilities": {name: {severity, fixAvailable}}}``
  as printed by npm 7+ and by pnpm once its audit package is installed.
  The older ``{"advisories": {id: {...}}}`` layout is read as well.
- ``ndjson-advisories``: yarn's newline-delimited events, where each
  ``auditAdvisory`` event nests ``module_name``, ``severity`` and a
  free-text ``recommendation``.

Unrecognized entries are dropped and counted.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable

from .common import vlog
from .config import SEVERITY_LEVELS, Config
from .errors import ManagerInvocationError
from .logging_config import get_logger

if TYPE_CHECKING:
    from .decisions import DecisionProvider
    from .package_managers import PackageManager


FORMAT_NPM_REPORT = "npm-report"
FORMAT_NDJSON_ADVISORIES = "ndjson-advisories"

SEVERITY_RANK = {name: rank for rank, name in enumerate(SEVERITY_LEVELS)}

_SEMVER = re.compile(r"\b(\d+\.\d+\.\d+)\b")


@dataclass(frozen=True)
class VulnerabilityRecord:
    """
    One vulnerable package.

    Attributes:
        name: Package name
        severity: One of info, low, moderate, high, critical
        recommended_fix: First safe version, None when there is no upgrade path
    """
    name: str
    severity: str
    recommended_fix: str | None = None

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self.severity]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "severity": self.severity,
            "recommended_fix": self.recommended_fix,
        }


def extract_version(text: Any) -> str | None:
    """
    First ``X.Y.Z`` version in free text.

    >>> extract_version("Upgrade to version 1.2.3 or later")
    '1.2.3'
    >>> extract_version("No fix available") is None
    True
    """
    if not isinstance(text, str):
        return None
    match = _SEMVER.search(text)
    return match.group(1) if match else None


def _record(name: Any, severity: Any, fix: str | None) -> VulnerabilityRecord | None:
    if not isinstance(name, str) or not name:
        return None
    if not isinstance(severity, str) or severity.lower() not in SEVERITY_RANK:
        return None
    return VulnerabilityRecord(name=name, severity=severity.lower(), recommended_fix=fix)


def _parse_npm_report(raw: str) -> tuple[list[VulnerabilityRecord], int]:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")

    records = []
    dropped = 0

    vulnerabilities = data.get("vulnerabilities")
    if isinstance(vulnerabilities, dict):
        for name, vuln in vulnerabilities.items():
            if not isinstance(vuln, dict):
                dropped += 1
                continue
            fix_available = vuln.get("fixAvailable")
            fix = None
            if isinstance(fix_available, dict) and fix_available.get("version"):
                fix = str(fix_available["version"])
            record = _record(name, vuln.get("severity"), fix)
            if record is None:
                dropped += 1
            else:
                records.append(record)

    advisories = data.get("advisories")
    if isinstance(advisories, dict):
        for advisory in advisories.values():
            record = _advisory_record(advisory)
            if record is None:
                dropped += 1
            else:
                records.append(record)

    return records, dropped


def _advisory_record(advisory: Any) -> VulnerabilityRecord | None:
    if not isinstance(advisory, dict):
        return None
    fix = extract_version(advisory.get("recommendation")) or extract_version(
        advisory.get("patched_versions")
    )
    return _record(advisory.get("module_name"), advisory.get("severity"), fix)


def _iter_audit_events(raw: str) -> Iterable[Any]:
    """
    Events of a yarn audit report.

    Normally one JSON event per line. A report that is a single JSON document
    is accepted too: an object is one event, an array is a sequence of events.
    """
    stripped = raw.strip()
    if stripped.startswith("["):
        try:
            document = json.loads(stripped)
        except json.JSONDecodeError:
            document = None
        if isinstance(document, list):
            yield from document
            return

    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError:
            yield None


def _parse_ndjson_advisories(raw: str) -> tuple[list[VulnerabilityRecord], int]:
    records = []
    dropped = 0
    for event in _iter_audit_events(raw):
        if not isinstance(event, dict):
            dropped += 1
            continue
        if event.get("type") != "auditAdvisory":
            # auditSummary, info and warning events
            continue
        data = event.get("data")
        advisory = data.get("advisory") if isinstance(data, dict) else None
        record = _advisory_record(advisory)
        if record is None:
            dropped += 1
        else:
            records.append(record)
    return records, dropped


_PARSERS = {
    FORMAT_NPM_REPORT: _parse_npm_report,
    FORMAT_NDJSON_ADVISORIES: _parse_ndjson_advisories,
}


def merge_duplicates(records: Iterable[VulnerabilityRecord]) -> list[VulnerabilityRecord]:
    """
    One record per package, highest severity first.

    A package reported by several advisories keeps the worst severity and the
    first fix version any of them offered.
    """
    merged: dict[str, VulnerabilityRecord] = {}
    for record in records:
        seen = merged.get(record.name)
        if seen is None:
            merged[record.name] = record
            continue
        severity = record.severity if record.rank > seen.rank else seen.severity
        merged[record.name] = VulnerabilityRecord(
            name=record.name,
            severity=severity,
            recommended_fix=seen.recommended_fix or record.recommended_fix,
        )
    return sorted(merged.values(), key=lambda r: (-r.rank, r.name))


def parse_vulnerabilities(raw: str, output_format: str) -> tuple[list[VulnerabilityRecord], int]:
    """
    Parse an audit report.

    Args:
        raw: stdout of ``audit --json``
        output_format: FORMAT_NPM_REPORT or FORMAT_NDJSON_ADVISORIES

    Returns:
        Tuple of (records, dropped_entry_count). Records are not yet merged.
        Input that cannot be parsed at all yields ``([], 0)`` and a warning.

    Raises:
        ValueError: If output_format is unknown
    """
    parser = _PARSERS.get(output_format)
    if parser is None:
        raise ValueError(f"Unknown audit format: {output_format}")

    if not raw.strip():
        return [], 0

    try:
        return parser(raw)
    except (ValueError, TypeError) as e:
        get_logger().warning(f"Could not parse audit report ({output_format}): {e}")
        return [], 0


def classify_vulnerabilities(raw: str, output_format: str) -> list[VulnerabilityRecord]:
    """Merged vulnerability records from a raw audit report, worst first."""
    records, dropped = parse_vulnerabilities(raw, output_format)
    if dropped:
        get_logger().warning(f"Ignored {dropped} unrecognized entries in the audit report")
    return merge_duplicates(records)


def filter_by_severity(
    records: Iterable[VulnerabilityRecord],
    minimum: str,
) -> list[VulnerabilityRecord]:
    """Keep records at or above ``minimum`` severity."""
    threshold = SEVERITY_RANK[minimum]
    return [r for r in records if r.rank >= threshold]


def fetch_vulnerabilities(
    manager: PackageManager,
    decisions: DecisionProvider,
    config: Config,
    project_dir: str | os.PathLike[str] = ".",
    verbose: bool = False,
) -> list[VulnerabilityRecord]:
    """
    Run the manager's audit and classify the result.

    For managers whose audit needs an auxiliary package, the caller is asked
    before anything is installed. A refusal, a failed tool install or a
    failed audit all yield an empty list after logging why.

    Args:
        manager: Selected package manager
        decisions: Answers the auxiliary-tool question
        config: Supplies the tool package, timeout and minimum severity
        project_dir: Directory holding package.json
        verbose: Enable verbose logging

    Returns:
        Vulnerability records at or above the configured minimum severity
    """
    logger = get_logger()
    prefs = config.preferences
    timeout = prefs.command_timeout_seconds

    if manager.requires_audit_tool:
        if not decisions.confirm_audit_tool_install(prefs.audit_tool_package):
            logger.info("Audit tool not installed, no vulnerability data available")
            return []
        logger.info(f"Installing {prefs.audit_tool_package}")
        result = manager.install_audit_tool(
            prefs.audit_tool_package, cwd=project_dir, timeout=timeout, verbose=verbose,
        )
        if not result.success:
            logger.error(f"Error while installing {prefs.audit_tool_package}: {result.error_message}")
            return []

    try:
        raw = manager.audit(cwd=project_dir, timeout=timeout, verbose=verbose)
    except ManagerInvocationError as e:
        logger.error(f"Error trying to get vulnerabilities: {e.message}")
        return []

    records = classify_vulnerabilities(raw, manager.audit_format)
    kept = filter_by_severity(records, prefs.min_severity)
    if len(kept) < len(records):
        vlog(
            f"Ignoring {len(records) - len(kept)} advisories below {prefs.min_severity}",
            verbose,
        )
    return kept
