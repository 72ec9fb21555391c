"""
Normalization of ``outdated --json`` reports.

npm and pnpm print one JSON object keyed by package name. Yarn prints
newline-delimited JSON events, and the rows of its ``table`` event are
fixed-position arrays ``[name, current, wanted, latest, type, ...]``.
Both are reduced to OutdatedRecord. Entries that do not fit the expected
shape are dropped and counted rather than failing the whole report.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable

from .logging_config import get_logger


FORMAT_JSON_MAP = "json-map"
FORMAT_NDJSON_TABLE = "ndjson-table"

KIND_PRODUCTION = "production"
KIND_DEVELOPMENT = "development"
KIND_UNKNOWN = "unknown"

_KIND_BY_DEPENDENCY_TYPE = {
    "dependencies": KIND_PRODUCTION,
    "devDependencies": KIND_DEVELOPMENT,
}


@dataclass(frozen=True)
class OutdatedRecord:
    """
    A package whose installed version differs from its wanted version.

    Attributes:
        name: Package name
        current: Installed version (None if the manager reports it missing)
        wanted: Highest version satisfying the declared range
        latest: Latest published version
        kind: KIND_PRODUCTION, KIND_DEVELOPMENT or KIND_UNKNOWN
    """
    name: str
    current: str | None
    wanted: str
    latest: str | None
    kind: str = KIND_UNKNOWN

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "current": self.current,
            "wanted": self.wanted,
            "latest": self.latest,
            "kind": self.kind,
        }


def _kind(dependency_type: Any) -> str:
    return _KIND_BY_DEPENDENCY_TYPE.get(dependency_type, KIND_UNKNOWN) if isinstance(dependency_type, str) else KIND_UNKNOWN


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _parse_json_map(raw: str) -> tuple[list[OutdatedRecord], int]:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")

    records = []
    dropped = 0
    for name, info in data.items():
        if not isinstance(info, dict) or not info.get("wanted"):
            dropped += 1
            continue
        records.append(OutdatedRecord(
            name=name,
            current=_opt_str(info.get("current")),
            wanted=str(info["wanted"]),
            latest=_opt_str(info.get("latest")),
            kind=_kind(info.get("dependencyType")),
        ))
    return records, dropped


def _iter_events(raw: str) -> Iterable[Any]:
    """Decode newline-delimited JSON, yielding None for undecodable lines."""
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError:
            yield None


def _parse_ndjson_table(raw: str) -> tuple[list[OutdatedRecord], int]:
    records = []
    dropped = 0
    for event in _iter_events(raw):
        if event is None:
            dropped += 1
            continue
        if not isinstance(event, dict) or event.get("type") != "table":
            # info/warning events carry no package data
            continue

        data = event.get("data")
        body = data.get("body") if isinstance(data, dict) else None
        if not isinstance(body, list):
            dropped += 1
            continue

        for row in body:
            if not isinstance(row, (list, tuple)) or len(row) < 5 or not row[0] or not row[2]:
                dropped += 1
                continue
            name, current, wanted, latest, dependency_type = row[:5]
            records.append(OutdatedRecord(
                name=str(name),
                current=_opt_str(current),
                wanted=str(wanted),
                latest=_opt_str(latest),
                kind=_kind(dependency_type),
            ))
    return records, dropped


_PARSERS = {
    FORMAT_JSON_MAP: _parse_json_map,
    FORMAT_NDJSON_TABLE: _parse_ndjson_table,
}


def parse_outdated(raw: str, output_format: str) -> tuple[list[OutdatedRecord], int]:
    """
    Parse an outdated report and keep only packages with ``current != wanted``.

    Args:
        raw: stdout of ``outdated --json``
        output_format: FORMAT_JSON_MAP or FORMAT_NDJSON_TABLE

    Returns:
        Tuple of (records, dropped_entry_count). Input that cannot be parsed at
        all yields ``([], 0)`` and a logged warning.

    Raises:
        ValueError: If output_format is unknown
    """
    parser = _PARSERS.get(output_format)
    if parser is None:
        raise ValueError(f"Unknown outdated format: {output_format}")

    if not raw.strip():
        return [], 0

    try:
        records, dropped = parser(raw)
    except (ValueError, TypeError) as e:
        get_logger().warning(f"Could not parse outdated report ({output_format}): {e}")
        return [], 0

    return [r for r in records if r.current != r.wanted], dropped


def classify_outdated(raw: str, output_format: str) -> list[OutdatedRecord]:
    """
    Outdated records from a raw report, sorted by name.

    Dropped entries are reported as a warning.
    """
    records, dropped = parse_outdated(raw, output_format)
    if dropped:
        get_logger().warning(f"Ignored {dropped} unrecognized entries in the outdated report")
    return sorted(records, key=lambda r: r.name)
