# FILE: tests/conftest.py
"""
Shared fixtures: every test starts from a clean environment and an
unresolved global config.
"""
import pytest

from config import CONFIG_KEYS, reset_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove any config keys inherited from the outer environment."""
    for key in CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def fresh_global_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def write_config(tmp_path):
    """Write a YAML config file and return its path."""

    def _write(text: str) -> str:
        path = tmp_path / "config.yaml"
        path.write_text(text.lstrip(), encoding="utf-8")
        return str(path)

    return _write
