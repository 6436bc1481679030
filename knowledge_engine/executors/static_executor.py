"""Static executor: inline text from the descriptor."""

import time

from knowledge_engine.executors.base_executor import BaseExecutor, CallContext
from knowledge_engine.models.descriptor import BackendKind, KnowledgeDescriptor
from knowledge_engine.models.knowledge import ExecutionResult


class StaticExecutor(BaseExecutor):
    """Returns the descriptor's inline text and suggestions verbatim."""

    backend_kind = BackendKind.STATIC

    async def execute(
        self, descriptor: KnowledgeDescriptor, call_context: CallContext | None = None
    ) -> ExecutionResult:
        started = time.perf_counter()
        try:
            self._check_kind(descriptor)
            config = descriptor.static
            if config is None:
                raise ValueError(f"Static descriptor {descriptor.id} has no static block")

            return ExecutionResult(
                text=config.text,
                suggestions=list(config.suggestions),
                metadata={"id": descriptor.id},
            )
        except ValueError as e:
            self._record_failure(descriptor, e, notes="static executor failure")
            raise
        finally:
            self._record_latency(descriptor, started)
