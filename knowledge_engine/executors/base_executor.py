"""Base executor interface for knowledge retrieval backends."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from knowledge_engine.lib.metrics import (
    FAILURE_COUNTER,
    LATENCY_METRIC,
    ErrorEntry,
    NullTelemetry,
    TelemetrySink,
)
from knowledge_engine.models.descriptor import BackendKind, KnowledgeDescriptor
from knowledge_engine.models.knowledge import ExecutionResult

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "not_configured"


@dataclass
class CallContext:
    """Per-call information passed down to executors."""

    conversation_id: str | None = None
    message: str | None = None


class BaseExecutor(ABC):
    """Turns a validated descriptor into retrieved content.

    Executors return an empty result for "no data" and for missing runtime
    collaborators. They may raise on unrecoverable backend failure; callers
    are expected to catch.
    """

    backend_kind: BackendKind

    def __init__(self, telemetry: TelemetrySink | None = None):
        self.telemetry = telemetry if telemetry is not None else NullTelemetry()
        self.executor_name = self.__class__.__name__

    @abstractmethod
    async def execute(
        self, descriptor: KnowledgeDescriptor, call_context: CallContext | None = None
    ) -> ExecutionResult:
        """Retrieve content for ``descriptor``.

        Args:
            descriptor: Validated descriptor whose backend_kind matches this executor
            call_context: Optional conversation/message information

        Returns:
            ExecutionResult, empty when the source has nothing to contribute
        """
        pass

    @property
    def provider_tag(self) -> str:
        return self.backend_kind.value

    def _tags(self, descriptor: KnowledgeDescriptor, **extra: Any) -> dict[str, Any]:
        return {"provider": self.provider_tag, "id": descriptor.id, **extra}

    def _record_latency(self, descriptor: KnowledgeDescriptor, started: float) -> None:
        latency_ms = (time.perf_counter() - started) * 1000
        self.telemetry.record_latency(LATENCY_METRIC, latency_ms, self._tags(descriptor))

    def _record_failure(
        self,
        descriptor: KnowledgeDescriptor,
        error: Exception | str,
        attempt: int = 0,
        notes: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Count a failed attempt and log a structured error entry."""
        tags = self._tags(descriptor, attempt=attempt) if attempt else self._tags(descriptor)
        self.telemetry.increment_counter(FAILURE_COUNTER, tags)

        entry = ErrorEntry(
            source_id=descriptor.id,
            source_name=descriptor.name,
            operation=f"{self.provider_tag}-exec",
            error=str(error),
            attempt=attempt,
            notes=notes,
            extra=extra or {},
        )
        self.telemetry.log_error(entry)
        logger.error(
            f"{self.executor_name} failed for {descriptor.id}: {error}",
            extra={"extra_fields": {"source_id": descriptor.id, "attempt": attempt, **(extra or {})}},
        )

    def _check_kind(self, descriptor: KnowledgeDescriptor) -> None:
        if descriptor.backend_kind is not self.backend_kind:
            raise ValueError(
                f"{self.executor_name} cannot execute '{descriptor.backend_kind.value}' "
                f"descriptor {descriptor.id}"
            )
