"""Pytest configuration and fixtures for test suite.

Provides:
- Session-level telemetry reporting (backend failures recorded by tests)
- Shared fixtures for descriptors, telemetry, and executor contexts
"""

import logging
from typing import Any

import pytest

from knowledge_engine.executors.factory import ExecutorContext
from knowledge_engine.lib.fallback_handler import RetryPolicy
from knowledge_engine.lib.metrics import MetricsCollector
from knowledge_engine.models.descriptor import KnowledgeDescriptor, validate_descriptor
from knowledge_engine.storage.result_cache import FallbackStore

logger = logging.getLogger(__name__)

# Error entries recorded by the `metrics` fixture across the session
_session_errors: dict[str, int] = {}


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


@pytest.hookimpl(tryfirst=True)
def pytest_sessionstart(session):
    """Called before test session starts."""
    _session_errors.clear()


@pytest.hookimpl(trylast=True)
def pytest_sessionfinish(session, exitstatus):
    """Report which sources logged backend errors during the session."""
    if not _session_errors:
        return

    print("\n" + "=" * 80)
    print("📉 BACKEND ERRORS RECORDED DURING TESTS")
    print("=" * 80)
    for source_id, count in sorted(_session_errors.items(), key=lambda x: x[1], reverse=True):
        print(f"  • {source_id:<30} {count:>4} error entries")
    print("=" * 80 + "\n")


@pytest.fixture
def metrics():
    """In-process telemetry sink; error entries are tallied for the session report."""
    collector = MetricsCollector()
    yield collector
    for entry in collector.error_history:
        _session_errors[entry.source_id] = _session_errors.get(entry.source_id, 0) + 1


@pytest.fixture
def make_descriptor():
    """Build a validated descriptor from keyword overrides."""

    def _make(**overrides: Any) -> KnowledgeDescriptor:
        raw: dict[str, Any] = {
            "id": "dogs",
            "name": "Dogs",
            "keywords": ["dog", "puppy"],
            "backendKind": "static",
            "static": {"text": "DOG FACTS"},
        }
        raw.update(overrides)
        return validate_descriptor(raw)

    return _make


@pytest.fixture
def executor_context(tmp_path, metrics):
    """Executor context with isolated cache directories and no backoff delay."""
    return ExecutorContext(
        telemetry=metrics,
        fallback_store=FallbackStore(tmp_path / "knowledge-cache"),
        retry_policy=RetryPolicy(max_attempts=3, base_delay_ms=0, jitter_ms=0),
        working_root=tmp_path,
    )
