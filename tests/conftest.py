"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from pathlib import Path
import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function", autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in ["SMS_RELAY_CONFIG", "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER"]:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("SMS_RELAY__"):
            monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(scope="function")
def config_file(tmp_path: Path):
    """Write a YAML config into tmp_path and return its path as a string."""
    def _write(text: str) -> str:
        p = tmp_path / "config.yaml"
        p.write_text(text, encoding="utf-8")
        return str(p)
    return _write


@pytest.fixture(scope="function")
def missing_config(tmp_path: Path) -> str:
    """Path to a config file that does not exist (forces built-in defaults)."""
    return str(tmp_path / "nope.yaml")
