"""
Output rendering and the machine-readable run summary.

Tables go to stdout. The summary file keeps the record layout existing
tooling reads: ``{timestamp, summary: {totalTests, successfulTests,
failedTests, successRate}, results}`` with the rate formatted ``"NN.N%"``.
"""

from __future__ import annotations

import datetime
import json
import os
import sys
from pathlib import Path
from typing import Any, Iterable, Sequence

from wcwidth import wcswidth

from .outdated import OutdatedRecord
from .remediation import is_major_upgrade
from .vulnerabilities import VulnerabilityRecord


GREEN = "\033[32m"
YELLOW = "\033[33m"
RED = "\033[31m"
BOLD_RED = "\033[1;31m"
RESET = "\033[0m"

SEVERITY_COLORS = {
    "info": "",
    "low": GREEN,
    "moderate": YELLOW,
    "high": RED,
    "critical": BOLD_RED,
}


def color_enabled() -> bool:
    """
    Whether tables get ANSI colors.

    DEP_AUDIT_COLOR=1 or 0 forces it either way, otherwise only a terminal
    on stdout gets colors.
    """
    forced = os.environ.get("DEP_AUDIT_COLOR")
    if forced is not None:
        return forced == "1"
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def colorize(text: str, color: str) -> str:
    """Wrap text in an ANSI color when color output is enabled."""
    if not color or not color_enabled():
        return text
    return f"{color}{text}{RESET}"


def display_width(text: str) -> int:
    """Terminal columns taken by text (wide and zero-width characters counted properly)."""
    width = wcswidth(text)
    # wcswidth returns -1 for control characters
    return width if width >= 0 else len(text)


def format_table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Left-aligned plain-text table."""
    cells = [[("" if c is None else str(c)) for c in row] for row in rows]
    widths = [display_width(h) for h in headers]
    for row in cells:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], display_width(cell))

    def pad(value: str, width: int) -> str:
        return value + " " * (width - display_width(value))

    def line(values: Sequence[str]) -> str:
        return "  ".join(pad(v, widths[i]) for i, v in enumerate(values)).rstrip()

    out = [line(headers), line(["-" * w for w in widths])]
    out.extend(line(row) for row in cells)
    return "\n".join(out)


def _latest_label(record: OutdatedRecord) -> str | None:
    if record.latest and is_major_upgrade(record.current, record.latest):
        return f"{record.latest} (major)"
    return record.latest


def render_outdated(records: Sequence[OutdatedRecord]) -> None:
    """Print outdated packages. Latest versions a major ahead are marked."""
    print(format_table(
        ("package", "current", "wanted", "latest", "type"),
        ((r.name, r.current or "MISSING", r.wanted, _latest_label(r), r.kind) for r in records),
    ))


def render_vulnerabilities(records: Sequence[VulnerabilityRecord]) -> None:
    """Print vulnerable packages, worst first."""
    table = format_table(
        ("package", "severity", "fix"),
        ((r.name, r.severity, r.recommended_fix or "-") for r in records),
    )
    lines = table.splitlines()
    print("\n".join(lines[:2]))
    for record, text in zip(records, lines[2:]):
        print(colorize(text, SEVERITY_COLORS.get(record.severity, "")))


def format_success_rate(successful: int, total: int) -> str:
    """Percentage with one decimal, e.g. ``"66.7%"``."""
    if total == 0:
        return "0.0%"
    return f"{successful / total * 100:.1f}%"


def build_summary_report(results: Sequence[dict[str, Any]]) -> dict[str, Any]:
    """
    Summary record over a list of result dictionaries.

    Each result needs a boolean ``success`` key; everything else is carried
    through unchanged.
    """
    successful = sum(1 for r in results if r.get("success"))
    return {
        "timestamp": datetime.datetime.now(datetime.timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
        "summary": {
            "totalTests": len(results),
            "successfulTests": successful,
            "failedTests": len(results) - successful,
            "successRate": format_success_rate(successful, len(results)),
        },
        "results": list(results),
    }


def write_summary_report(path: str | os.PathLike[str], results: Sequence[dict[str, Any]]) -> dict[str, Any]:
    """
    Write the summary record as JSON.

    Returns:
        The record that was written
    """
    report = build_summary_report(results)
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)
        f.write("\n")
    return report
