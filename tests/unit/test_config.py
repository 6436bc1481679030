"""Tests for configuration loading."""

import pytest

from knowledge_engine.lib.config import ConfigLoader, EngineConfig, is_debug_enabled

ENV_VARS = (
    "KNOWLEDGE_DESCRIPTOR_DIR",
    "KNOWLEDGE_CACHE_DIR",
    "KNOWLEDGE_TELEMETRY_DIR",
    "KNOWLEDGE_WORKING_ROOT",
    "KNOWLEDGE_HTTP_MAX_ATTEMPTS",
    "LOGICAL_MEMORY_ANSWER_COUNT",
    "MODEL_HISTORY_WINDOW",
    "KNOWLEDGE_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so monkeypatch also removes values that .env loading adds
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_defaults_without_config_file(tmp_path):
    config = ConfigLoader(config_dir=str(tmp_path), env_file=str(tmp_path / ".env")).get()

    defaults = EngineConfig()
    assert config.cache_dir == defaults.cache_dir
    assert config.http_max_attempts == 3
    assert config.max_suggestions == 3
    assert config.logical_memory_answer_count == 2
    assert config.model_history_window == 4
    assert config.concurrent_fetch is False
    assert config.debug is False


def test_yaml_values(tmp_path):
    (tmp_path / "knowledge.yaml").write_text(
        """
cache:
  fallback_dir: /var/cache/knowledge
http:
  max_attempts: 5
  timeout_seconds: 2.5
enhancement:
  max_suggestions: 4
  concurrent_fetch: true
relevance:
  fuzzy_ratio: 0.2
continuity:
  answer_window: 3
  history_window: 6
"""
    )

    config = ConfigLoader(config_dir=str(tmp_path), env_file=str(tmp_path / ".env")).get()

    assert config.cache_dir == "/var/cache/knowledge"
    assert config.http_max_attempts == 5
    assert config.http_timeout_seconds == 2.5
    assert config.max_suggestions == 4
    assert config.concurrent_fetch is True
    assert config.fuzzy_ratio == 0.2
    assert config.logical_memory_answer_count == 3
    assert config.model_history_window == 6


def test_quoted_false_concurrent_fetch(tmp_path):
    (tmp_path / "knowledge.yaml").write_text('enhancement:\n  concurrent_fetch: "false"\n')

    config = ConfigLoader(config_dir=str(tmp_path), env_file=str(tmp_path / ".env")).get()

    assert config.concurrent_fetch is False


def test_env_overrides_yaml(tmp_path, monkeypatch):
    (tmp_path / "knowledge.yaml").write_text("continuity:\n  answer_window: 3\n")
    monkeypatch.setenv("LOGICAL_MEMORY_ANSWER_COUNT", "5")
    monkeypatch.setenv("MODEL_HISTORY_WINDOW", "8")
    monkeypatch.setenv("KNOWLEDGE_CACHE_DIR", "/tmp/kc")

    config = ConfigLoader(config_dir=str(tmp_path), env_file=str(tmp_path / ".env")).get()

    assert config.logical_memory_answer_count == 5
    assert config.model_history_window == 8
    assert config.cache_dir == "/tmp/kc"


def test_env_file_is_loaded(tmp_path):
    (tmp_path / ".env").write_text("KNOWLEDGE_HTTP_MAX_ATTEMPTS=7\n")

    config = ConfigLoader(config_dir=str(tmp_path), env_file=str(tmp_path / ".env")).get()

    assert config.http_max_attempts == 7


def test_invalid_attempt_budget_rejected(tmp_path):
    (tmp_path / "knowledge.yaml").write_text("http:\n  max_attempts: 0\n")

    with pytest.raises(ValueError):
        ConfigLoader(config_dir=str(tmp_path), env_file=str(tmp_path / ".env"))


def test_non_mapping_yaml_rejected(tmp_path):
    (tmp_path / "knowledge.yaml").write_text("- just\n- a list\n")

    with pytest.raises(ValueError):
        ConfigLoader(config_dir=str(tmp_path), env_file=str(tmp_path / ".env"))


@pytest.mark.parametrize("value,expected", [("1", True), ("true", True), ("0", False), ("", False)])
def test_debug_flag(monkeypatch, value, expected):
    monkeypatch.setenv("KNOWLEDGE_DEBUG", value)

    assert is_debug_enabled() is expected
