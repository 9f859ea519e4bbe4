"""
Tests for Configuration Management
==================================
"""

import json
import tempfile
from pathlib import Path

import pytest

from loopforge.config import CONFIG_FILENAME, DEFAULT_MODEL, LoopConfig, SafetyProtocols


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "LOOPFORGE_MODEL",
        "LOOPFORGE_TASKS",
        "LOOPFORGE_KNOWLEDGE",
        "LOOPFORGE_MAX_ITERATIONS",
        "LOOPFORGE_MAX_HOURS",
        "LOOPFORGE_REVIEW_EVERY",
        "LOOPFORGE_GENERATION_TIMEOUT",
        "LOOPFORGE_GATE_TIMEOUT",
        "LOOPFORGE_MAX_CONSECUTIVE_FAILURES",
    ):
        monkeypatch.delenv(name, raising=False)


class TestProfiles:
    """Tests for built-in profiles."""

    def test_default(self):
        config = LoopConfig.default()
        assert config.model == DEFAULT_MODEL
        assert config.max_iterations == 20
        assert config.max_hours is None
        assert set(config.quality_gates) == {"types", "tests", "lint", "build"}

    def test_overnight(self):
        config = LoopConfig.overnight()
        assert config.max_iterations == 50
        assert config.max_hours == 8.0
        assert "production.config.*" in config.safety.exclude_paths

    def test_profiles_do_not_share_lists(self):
        a, b = LoopConfig(), LoopConfig()
        a.quality_gates["extra"] = "true"
        a.allowed_capabilities.append("WebFetch")
        assert "extra" not in b.quality_gates
        assert "WebFetch" not in b.allowed_capabilities


class TestLoad:
    """Tests for layered loading."""

    def test_file_overrides_defaults(self, temp_project):
        (temp_project / CONFIG_FILENAME).write_text(json.dumps({
            "tasks_path": "docs/TODO.md",
            "quality_gates": {"tests": "pytest -q"},
            "safety": {"exclude_paths": ["secrets/"], "require_tests": False},
            "unknown_key": 1,
        }))

        config = LoopConfig.load(temp_project)
        assert config.tasks_path == "docs/TODO.md"
        assert config.quality_gates == {"tests": "pytest -q"}
        assert config.safety == SafetyProtocols(exclude_paths=["secrets/"], require_tests=False)
        assert not hasattr(config, "unknown_key")

    def test_env_overrides_file(self, temp_project, monkeypatch):
        (temp_project / CONFIG_FILENAME).write_text(json.dumps({"model": "from-file"}))
        monkeypatch.setenv("LOOPFORGE_MODEL", "from-env")
        monkeypatch.setenv("LOOPFORGE_MAX_ITERATIONS", "0")

        config = LoopConfig.load(temp_project)
        assert config.model == "from-env"
        assert config.max_iterations is None

    def test_broken_file_falls_back(self, temp_project):
        (temp_project / CONFIG_FILENAME).write_text("{not json")
        config = LoopConfig.load(temp_project, profile="overnight")
        assert config.max_iterations == 50

    def test_to_dict_round_trip(self):
        config = LoopConfig.overnight()
        assert LoopConfig.from_dict(config.to_dict()) == config
