"""
Configuration file parsing and management.

Reads YAML configuration files (JSON is accepted for ``.json`` paths) and
merges them from project → user → system → defaults.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .common import vlog
from .errors import ConfigError


# Configuration file locations (in priority order). Project-relative entries
# are resolved against the project directory.
PROJECT_CONFIG_NAMES = (".dep-audit.yml", ".dep-audit.yaml")
GLOBAL_CONFIG_LOCATIONS = (
    os.path.expanduser("~/.config/dep-audit/config.yml"),
    os.path.expanduser("~/.config/dep-audit/config.yaml"),
    "/etc/dep-audit/config.yml",
    "/etc/dep-audit/config.yaml",
)

KNOWN_MANAGERS = ("npm", "yarn", "pnpm")
SEVERITY_LEVELS = ("info", "low", "moderate", "high", "critical")

_ASK_ALWAYS_NEVER = {"ask", "always", "never"}
_VULNERABILITY_MODES = {"ask", "latest", "fix", "ignore"}


@dataclass(frozen=True)
class Preferences:
    """
    Answers and knobs for the remediation workflows.

    Attributes:
        update_wanted: Apply wanted-version updates ('ask', 'always', 'never')
        vulnerability_mode: Vulnerability remediation ('ask', 'latest', 'fix', 'ignore')
        install_audit_tool: Install pnpm's auxiliary audit tool ('ask', 'always', 'never')
        min_severity: Advisories below this severity are ignored
        audit_tool_package: Package installed to give pnpm an audit command
        command_timeout_seconds: Timeout for each package manager call (None = wait forever)
    """
    update_wanted: str = "ask"
    vulnerability_mode: str = "ask"
    install_audit_tool: str = "ask"
    min_severity: str = "info"
    audit_tool_package: str = "@pnpm/audit"
    command_timeout_seconds: int | None = None

    def __post_init__(self):
        """Validate preferences after initialization."""
        if self.update_wanted not in _ASK_ALWAYS_NEVER:
            raise ValueError(
                f"Invalid update_wanted: {self.update_wanted}. "
                "Must be 'ask', 'always' or 'never'"
            )

        if self.vulnerability_mode not in _VULNERABILITY_MODES:
            raise ValueError(
                f"Invalid vulnerability_mode: {self.vulnerability_mode}. "
                f"Must be one of: {', '.join(sorted(_VULNERABILITY_MODES))}"
            )

        if self.install_audit_tool not in _ASK_ALWAYS_NEVER:
            raise ValueError(
                f"Invalid install_audit_tool: {self.install_audit_tool}. "
                "Must be 'ask', 'always' or 'never'"
            )

        if self.min_severity not in SEVERITY_LEVELS:
            raise ValueError(
                f"Invalid min_severity: {self.min_severity}. "
                f"Must be one of: {', '.join(SEVERITY_LEVELS)}"
            )

        if not self.audit_tool_package:
            raise ValueError("audit_tool_package must not be empty")

        if self.command_timeout_seconds is not None and not (
            1 <= self.command_timeout_seconds <= 3600
        ):
            raise ValueError(
                f"Invalid command_timeout_seconds: {self.command_timeout_seconds}. "
                "Must be between 1 and 3600"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Preferences:
        """Create Preferences from dictionary."""
        return Preferences(
            update_wanted=data.get("update_wanted", "ask"),
            vulnerability_mode=data.get("vulnerability_mode", "ask"),
            install_audit_tool=data.get("install_audit_tool", "ask"),
            min_severity=data.get("min_severity", "info"),
            audit_tool_package=data.get("audit_tool_package", "@pnpm/audit"),
            command_timeout_seconds=data.get("command_timeout_seconds"),
        )


@dataclass(frozen=True)
class Config:
    """
    Complete dep-audit configuration.

    Attributes:
        version: Config schema version
        manager: Pre-selected package manager (None = detect or ask)
        preferences: Workflow preferences
        source: Path of the file this config was loaded from
    """
    version: int = 1
    manager: str | None = None
    preferences: Preferences = field(default_factory=Preferences)
    source: str = ""

    def __post_init__(self):
        """Validate config after initialization."""
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")

        if self.manager is not None and self.manager not in KNOWN_MANAGERS:
            raise ValueError(
                f"Invalid manager: {self.manager}. "
                f"Must be one of: {', '.join(KNOWN_MANAGERS)}"
            )

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        preferences = data.get("preferences") or {}
        if not isinstance(preferences, dict):
            raise ValueError(f"preferences must be a mapping, got {type(preferences).__name__}")
        return Config(
            version=data.get("version", 1),
            manager=data.get("manager"),
            preferences=Preferences.from_dict(preferences),
            source=source,
        )

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with a lower-priority one.

        Values still at their default in this config are taken from ``other``.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        defaults = Preferences()
        mine = self.preferences
        theirs = other.preferences

        def pick(name: str) -> Any:
            value = getattr(mine, name)
            if value != getattr(defaults, name):
                return value
            return getattr(theirs, name)

        merged_preferences = Preferences(
            update_wanted=pick("update_wanted"),
            vulnerability_mode=pick("vulnerability_mode"),
            install_audit_tool=pick("install_audit_tool"),
            min_severity=pick("min_severity"),
            audit_tool_package=pick("audit_tool_package"),
            command_timeout_seconds=pick("command_timeout_seconds"),
        )

        return Config(
            version=self.version,
            manager=self.manager or other.manager,
            preferences=merged_preferences,
            source=self.source or other.source,
        )


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load a YAML configuration file.

    Returns:
        Parsed dictionary ({} for an empty or non-mapping document), or None
        if the file cannot be read or parsed
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load a JSON configuration file.

    Returns:
        Parsed dictionary, or None if the file is invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return None


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    Args:
        file_path: Path to a .yml/.yaml or .json file
        verbose: Enable verbose logging

    Returns:
        Config object, or None if the file is absent or unusable
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)

    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
        return None

    try:
        config = Config.from_dict(data, source=file_path)
    except (ValueError, TypeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None

    vlog(f"Loaded config successfully: {file_path}", verbose)
    return config


def config_locations(project_dir: str | os.PathLike[str] = ".") -> list[str]:
    """Candidate config paths for a project, highest priority first."""
    project = Path(project_dir)
    return [str(project / name) for name in PROJECT_CONFIG_NAMES] + list(GLOBAL_CONFIG_LOCATIONS)


def load_config(
    custom_path: str | None = None,
    project_dir: str | os.PathLike[str] = ".",
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Precedence (highest to lowest):
    1. Custom path (argument, or DEP_AUDIT_CONFIG)
    2. Project .dep-audit.yml
    3. User ~/.config/dep-audit/config.yml
    4. System /etc/dep-audit/config.yml
    5. Defaults

    Args:
        custom_path: Optional path to a specific configuration file
        project_dir: Directory holding package.json
        verbose: Enable verbose logging

    Returns:
        Merged Config (defaults if nothing was found)

    Raises:
        ConfigError: If a custom path was given but cannot be loaded
    """
    custom_path = custom_path or os.environ.get("DEP_AUDIT_CONFIG")
    configs: list[Config] = []

    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ConfigError(
                f"Could not load config from specified path: {custom_path}",
                remediation="Check that the file exists and contains a valid version 1 config",
            )
        configs.append(config)

    for location in config_locations(project_dir):
        config = load_config_file(location, verbose)
        if config is not None:
            configs.append(config)
            vlog(f"Found config at: {location}", verbose)

    if not configs:
        vlog("No config files found, using defaults", verbose)
        return Config()

    merged = configs[0]
    for config in configs[1:]:
        merged = merged.merge_with(config)

    vlog(f"Merged {len(configs)} config files", verbose)
    return merged


def validate_config(config: Config) -> list[str]:
    """
    Check a config for settings that are legal but probably unintended.

    Returns:
        List of warning messages (empty if nothing looks off)
    """
    warnings = []
    prefs = config.preferences

    if prefs.install_audit_tool != "ask" and config.manager not in (None, "pnpm"):
        warnings.append(
            f"install_audit_tool is only used with pnpm (manager is {config.manager})"
        )

    if prefs.vulnerability_mode == "ignore" and prefs.min_severity != "info":
        warnings.append("min_severity has no effect when vulnerability_mode is 'ignore'")

    if prefs.update_wanted == "always" and prefs.vulnerability_mode == "latest":
        warnings.append(
            "update_wanted=always followed by vulnerability_mode=latest may undo wanted-range pins"
        )

    return warnings
