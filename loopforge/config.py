"""
Configuration Management
========================

Handles loading loop configuration from environment variables and config files.

Precedence (highest first):
1. Environment variables (LOOPFORGE_*)
2. Local config file (loopforge_config.json)
3. Default values
"""

import os
import json
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field, fields

from dotenv import load_dotenv

load_dotenv()

# Default configuration values
DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
CONFIG_FILENAME = "loopforge_config.json"
DATA_DIRNAME = ".loopforge"

DEFAULT_QUALITY_GATES: Dict[str, str] = {
    "types": "npm run typecheck",
    "tests": "npm test",
    "lint": "npm run lint",
    "build": "npm run build",
}

DEFAULT_CAPABILITIES = ["Read", "Write", "Edit", "Bash", "Glob", "Grep"]


@dataclass
class SafetyProtocols:
    """Guard rails passed to every worker prompt."""
    exclude_paths: List[str] = field(default_factory=lambda: [".env", "secrets/"])
    allow_breaking_changes: bool = False
    require_tests: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exclude_paths": list(self.exclude_paths),
            "allow_breaking_changes": self.allow_breaking_changes,
            "require_tests": self.require_tests,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SafetyProtocols":
        return cls(
            exclude_paths=list(data.get("exclude_paths", [".env", "secrets/"])),
            allow_breaking_changes=bool(data.get("allow_breaking_changes", False)),
            require_tests=bool(data.get("require_tests", True)),
        )


@dataclass
class LoopConfig:
    """Settings for one orchestrator run."""
    tasks_path: str = "TASKS.md"
    knowledge_path: str = "AGENTS.md"
    model: str = DEFAULT_MODEL

    # Limits
    max_iterations: Optional[int] = 20
    max_hours: Optional[float] = None
    max_consecutive_failures: int = 5
    review_every: int = 6
    sleep_between: float = 0.0

    # Timeouts (seconds)
    generation_timeout: float = 600.0
    gate_timeout: float = 300.0

    # Worker
    allowed_capabilities: List[str] = field(default_factory=lambda: list(DEFAULT_CAPABILITIES))
    quality_gates: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_QUALITY_GATES))
    safety: SafetyProtocols = field(default_factory=SafetyProtocols)

    # Memory
    commit_window: int = 10
    max_recent_learnings: int = 20
    context_max_chars: int = 4000

    @classmethod
    def default(cls) -> "LoopConfig":
        return cls()

    @classmethod
    def overnight(cls) -> "LoopConfig":
        """Long unattended run with a wider safety net."""
        return cls(
            max_iterations=50,
            max_hours=8.0,
            safety=SafetyProtocols(
                exclude_paths=[".env", "secrets/", "production.config.*"],
                allow_breaking_changes=False,
                require_tests=True,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["safety"] = self.safety.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional["LoopConfig"] = None) -> "LoopConfig":
        """Overlay known keys from ``data`` onto ``base`` (defaults if omitted)."""
        config = base or cls()
        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            if key not in known:
                continue
            if key == "safety" and isinstance(value, dict):
                value = SafetyProtocols.from_dict(value)
            setattr(config, key, value)
        return config

    @classmethod
    def load(cls, project_dir: Optional[Path] = None, profile: str = "default") -> "LoopConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables
        2. Local config file (loopforge_config.json)
        3. Default values (``profile`` picks default or overnight)
        """
        config = cls.overnight() if profile == "overnight" else cls.default()

        config_path = Path(project_dir or ".") / CONFIG_FILENAME
        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    file_config = json.load(f)
                config = cls.from_dict(file_config, base=config)
            except Exception as e:
                print(f"Warning: Failed to load config file: {e}")

        return config.apply_env()

    def apply_env(self) -> "LoopConfig":
        """Override settings from LOOPFORGE_* environment variables."""
        env = os.environ

        if env.get("LOOPFORGE_MODEL"):
            self.model = env["LOOPFORGE_MODEL"]
        if env.get("LOOPFORGE_TASKS"):
            self.tasks_path = env["LOOPFORGE_TASKS"]
        if env.get("LOOPFORGE_KNOWLEDGE"):
            self.knowledge_path = env["LOOPFORGE_KNOWLEDGE"]
        if env.get("LOOPFORGE_MAX_ITERATIONS"):
            self.max_iterations = int(env["LOOPFORGE_MAX_ITERATIONS"]) or None
        if env.get("LOOPFORGE_MAX_HOURS"):
            self.max_hours = float(env["LOOPFORGE_MAX_HOURS"]) or None
        if env.get("LOOPFORGE_REVIEW_EVERY"):
            self.review_every = int(env["LOOPFORGE_REVIEW_EVERY"])
        if env.get("LOOPFORGE_GENERATION_TIMEOUT"):
            self.generation_timeout = float(env["LOOPFORGE_GENERATION_TIMEOUT"])
        if env.get("LOOPFORGE_GATE_TIMEOUT"):
            self.gate_timeout = float(env["LOOPFORGE_GATE_TIMEOUT"])
        if env.get("LOOPFORGE_MAX_CONSECUTIVE_FAILURES"):
            self.max_consecutive_failures = int(env["LOOPFORGE_MAX_CONSECUTIVE_FAILURES"])

        return self


def get_default_model() -> str:
    """Get the default model from configuration."""
    return LoopConfig.load().model
