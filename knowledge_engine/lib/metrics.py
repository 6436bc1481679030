"""Telemetry sinks for executor latency, counters, and error entries."""

import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

LATENCY_METRIC = "executor.fetch.latency"
FAILURE_COUNTER = "executor.fetch.failureCount"
CACHE_HIT_COUNTER = "executor.fetch.cacheHit"
FALLBACK_COUNTER = "executor.fetch.fallbackUsed"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class ErrorEntry:
    """A structured error record for one failed operation."""

    source_id: str
    operation: str
    error: str
    source_name: str | None = None
    attempt: int = 0
    notes: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MetricPoint:
    name: str
    value: float
    tags: dict[str, Any]
    timestamp: str = field(default_factory=_now_iso)


class TelemetrySink(ABC):
    """Destination for executor telemetry."""

    @abstractmethod
    def record_latency(self, name: str, ms: float, tags: dict[str, Any] | None = None) -> None:
        pass

    @abstractmethod
    def increment_counter(self, name: str, tags: dict[str, Any] | None = None) -> None:
        pass

    @abstractmethod
    def log_error(self, entry: ErrorEntry) -> None:
        pass


class NullTelemetry(TelemetrySink):
    """Sink that drops everything."""

    def record_latency(self, name, ms, tags=None):
        pass

    def increment_counter(self, name, tags=None):
        pass

    def log_error(self, entry):
        pass


class MetricsCollector(TelemetrySink):
    """Collects and aggregates telemetry in process."""

    def __init__(self, max_history: int = 10000):
        """Initialize metrics collector.

        Args:
            max_history: Maximum number of latency points and errors to keep
        """
        self.max_history = max_history
        self.latency_history: deque[MetricPoint] = deque(maxlen=max_history)
        self.error_history: deque[ErrorEntry] = deque(maxlen=max_history)
        self.counters: dict[str, int] = defaultdict(int)
        self.counter_tags: deque[tuple[str, dict[str, Any]]] = deque(maxlen=max_history)

    def record_latency(self, name: str, ms: float, tags: dict[str, Any] | None = None) -> None:
        self.latency_history.append(MetricPoint(name=name, value=float(ms), tags=dict(tags or {})))

    def increment_counter(self, name: str, tags: dict[str, Any] | None = None) -> None:
        self.counters[name] += 1
        self.counter_tags.append((name, dict(tags or {})))

    def log_error(self, entry: ErrorEntry) -> None:
        self.error_history.append(entry)

    def get_counter(self, name: str, **tags: Any) -> int:
        """Count increments of ``name``, optionally filtered by tag values."""
        if not tags:
            return self.counters.get(name, 0)
        return sum(
            1
            for counter_name, counter_tags in self.counter_tags
            if counter_name == name
            and all(counter_tags.get(k) == v for k, v in tags.items())
        )

    def get_latency_percentiles(self, name: str = LATENCY_METRIC) -> dict[str, float]:
        """Calculate latency percentiles for a metric.

        Returns:
            Dict with p50, p90, p95, p99 in milliseconds
        """
        values = sorted(p.value for p in self.latency_history if p.name == name)
        if not values:
            return {"p50": 0.0, "p90": 0.0, "p95": 0.0, "p99": 0.0}

        n = len(values)

        def percentile(p: float) -> float:
            idx = int(n * p / 100)
            return values[min(idx, n - 1)]

        return {
            "p50": round(percentile(50), 2),
            "p90": round(percentile(90), 2),
            "p95": round(percentile(95), 2),
            "p99": round(percentile(99), 2),
        }

    def get_summary(self) -> dict[str, Any]:
        latency_by_source: dict[str, list[float]] = defaultdict(list)
        for point in self.latency_history:
            latency_by_source[str(point.tags.get("id", "unknown"))].append(point.value)

        return {
            "latency_points": len(self.latency_history),
            "errors": len(self.error_history),
            "counters": dict(self.counters),
            "avg_latency_ms_by_source": {
                source_id: round(sum(values) / len(values), 2)
                for source_id, values in latency_by_source.items()
            },
            "latency_percentiles": self.get_latency_percentiles(),
        }

    def reset(self) -> None:
        self.latency_history.clear()
        self.error_history.clear()
        self.counters.clear()
        self.counter_tags.clear()
        logger.info("Metrics reset")


class JsonlTelemetrySink(TelemetrySink):
    """Appends metrics and error entries to JSONL files under a log directory."""

    def __init__(self, log_dir: str | Path = "logs", collector: MetricsCollector | None = None):
        self.log_dir = Path(log_dir)
        self.metrics_file = self.log_dir / "metrics.jsonl"
        self.errors_file = self.log_dir / "error-entities.jsonl"
        self.collector = collector

    def _append(self, path: Path, payload: dict[str, Any]) -> None:
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            logger.warning(f"Failed to write telemetry to {path}: {e}")

    def record_latency(self, name: str, ms: float, tags: dict[str, Any] | None = None) -> None:
        self._append(
            self.metrics_file,
            {"timestamp": _now_iso(), "name": name, "value": ms, "tags": tags or {}},
        )
        if self.collector:
            self.collector.record_latency(name, ms, tags)

    def increment_counter(self, name: str, tags: dict[str, Any] | None = None) -> None:
        self._append(
            self.metrics_file,
            {"timestamp": _now_iso(), "name": name, "value": 1, "tags": tags or {}},
        )
        if self.collector:
            self.collector.increment_counter(name, tags)

    def log_error(self, entry: ErrorEntry) -> None:
        self._append(self.errors_file, entry.to_dict())
        if self.collector:
            self.collector.log_error(entry)
