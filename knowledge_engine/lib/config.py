"""Configuration loader for the knowledge engine.

Values come from ``config/knowledge.yaml`` and are overridden by environment
variables (optionally loaded from a ``.env`` file). Every field has a default,
so running without a config file is supported.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


@dataclass
class EngineConfig:
    """Resolved engine configuration."""

    descriptor_dir: str = "config/knowledge-data"
    cache_dir: str = "data/knowledge-cache"
    telemetry_dir: str = "logs"
    working_root: str = field(default_factory=os.getcwd)

    # HTTP executor
    http_max_attempts: int = 3
    http_backoff_base_ms: int = 100
    http_backoff_jitter_ms: int = 100
    http_timeout_seconds: float = 10.0

    # Enhancement
    max_suggestions: int = 3
    fuzzy_ratio: float = 0.25
    concurrent_fetch: bool = False

    # Continuity
    logical_memory_answer_count: int = 2
    model_history_window: int = 4

    debug: bool = False


class ConfigLoader:
    """Loads and manages engine configuration."""

    def __init__(self, config_dir: str | None = None, env_file: str | None = None):
        """Initialize configuration loader.

        Args:
            config_dir: Directory containing knowledge.yaml (default: ./config)
            env_file: Path to .env file (default: ./.env)
        """
        self.config_dir = Path(config_dir or "config")
        self.env_file = Path(env_file or ".env")

        if self.env_file.exists():
            load_dotenv(self.env_file)
            logger.info(f"Loaded environment from {self.env_file}")

        self.raw = self._load_yaml()
        self.config = self._build_config(self.raw)

    def _load_yaml(self) -> dict[str, Any]:
        config_file = self.config_dir / "knowledge.yaml"

        if not config_file.exists():
            logger.warning(f"Knowledge config not found: {config_file}, using defaults")
            return {}

        with open(config_file) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"{config_file} must contain a mapping at the top level")

        logger.info(f"Loaded knowledge configuration from {config_file}")
        return data

    def _build_config(self, data: dict[str, Any]) -> EngineConfig:
        cache = data.get("cache", {}) or {}
        telemetry = data.get("telemetry", {}) or {}
        http = data.get("http", {}) or {}
        enhancement = data.get("enhancement", {}) or {}
        relevance = data.get("relevance", {}) or {}
        continuity = data.get("continuity", {}) or {}

        defaults = EngineConfig()
        config = EngineConfig(
            descriptor_dir=data.get("descriptor_dir", defaults.descriptor_dir),
            cache_dir=cache.get("fallback_dir", defaults.cache_dir),
            telemetry_dir=telemetry.get("log_dir", defaults.telemetry_dir),
            working_root=data.get("working_root", defaults.working_root),
            http_max_attempts=int(http.get("max_attempts", defaults.http_max_attempts)),
            http_backoff_base_ms=int(http.get("backoff_base_ms", defaults.http_backoff_base_ms)),
            http_backoff_jitter_ms=int(
                http.get("backoff_jitter_ms", defaults.http_backoff_jitter_ms)
            ),
            http_timeout_seconds=float(
                http.get("timeout_seconds", defaults.http_timeout_seconds)
            ),
            max_suggestions=int(enhancement.get("max_suggestions", defaults.max_suggestions)),
            concurrent_fetch=_as_bool(
                enhancement.get("concurrent_fetch", defaults.concurrent_fetch)
            ),
            fuzzy_ratio=float(relevance.get("fuzzy_ratio", defaults.fuzzy_ratio)),
            logical_memory_answer_count=int(
                continuity.get("answer_window", defaults.logical_memory_answer_count)
            ),
            model_history_window=int(
                continuity.get("history_window", defaults.model_history_window)
            ),
        )

        # Environment overrides
        config.descriptor_dir = os.getenv("KNOWLEDGE_DESCRIPTOR_DIR", config.descriptor_dir)
        config.cache_dir = os.getenv("KNOWLEDGE_CACHE_DIR", config.cache_dir)
        config.telemetry_dir = os.getenv("KNOWLEDGE_TELEMETRY_DIR", config.telemetry_dir)
        config.working_root = os.getenv("KNOWLEDGE_WORKING_ROOT", config.working_root)
        config.http_max_attempts = int(
            os.getenv("KNOWLEDGE_HTTP_MAX_ATTEMPTS", config.http_max_attempts)
        )
        config.logical_memory_answer_count = int(
            os.getenv("LOGICAL_MEMORY_ANSWER_COUNT", config.logical_memory_answer_count)
        )
        config.model_history_window = int(
            os.getenv("MODEL_HISTORY_WINDOW", config.model_history_window)
        )
        config.debug = is_debug_enabled()

        if config.http_max_attempts < 1:
            raise ValueError("http.max_attempts must be at least 1")
        if config.max_suggestions < 0:
            raise ValueError("enhancement.max_suggestions must not be negative")

        return config

    def get(self) -> EngineConfig:
        """Get the resolved configuration."""
        return self.config


def is_debug_enabled() -> bool:
    """Whether KNOWLEDGE_DEBUG is set to a truthy value."""
    return os.getenv("KNOWLEDGE_DEBUG", "").strip().lower() in _TRUTHY
