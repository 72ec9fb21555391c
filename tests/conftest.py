"""
Shared fixtures for dep_audit tests.
"""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from dep_audit.logging_config import setup_logging
from dep_audit.package_managers import clear_cache


@pytest.fixture(autouse=True)
def quiet_logging():
    """Route log output to a buffer and let caplog see records."""
    setup_logging(level="DEBUG", propagate=True, stream=io.StringIO())
    clear_cache()
    yield


@pytest.fixture
def project(tmp_path: Path):
    """Factory writing package.json into a temporary project directory."""
    def _make(dependencies: dict | None = None, dev_dependencies: dict | None = None) -> Path:
        data: dict = {"name": "test-project", "version": "1.0.0"}
        if dependencies is not None:
            data["dependencies"] = dependencies
        if dev_dependencies is not None:
            data["devDependencies"] = dev_dependencies
        (tmp_path / "package.json").write_text(json.dumps(data, indent=2))
        return tmp_path
    return _make
