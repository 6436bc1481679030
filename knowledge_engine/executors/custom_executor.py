"""Custom executor: extension point for deployment-provided backends."""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from knowledge_engine.executors.base_executor import NOT_CONFIGURED, BaseExecutor, CallContext
from knowledge_engine.lib.metrics import TelemetrySink
from knowledge_engine.models.descriptor import BackendKind, KnowledgeDescriptor
from knowledge_engine.models.knowledge import ExecutionResult

logger = logging.getLogger(__name__)

CustomHandler = Callable[[KnowledgeDescriptor, CallContext | None], Awaitable[Any]]


class CustomExecutor(BaseExecutor):
    """Dispatches to a handler named by ``custom.handler`` (or the descriptor id).

    Without a matching handler the result is empty.
    """

    backend_kind = BackendKind.CUSTOM

    def __init__(
        self,
        handlers: dict[str, CustomHandler] | None = None,
        telemetry: TelemetrySink | None = None,
    ):
        super().__init__(telemetry)
        self.handlers = handlers if handlers is not None else {}

    async def execute(
        self, descriptor: KnowledgeDescriptor, call_context: CallContext | None = None
    ) -> ExecutionResult:
        self._check_kind(descriptor)
        handler_name = (descriptor.custom or {}).get("handler") or descriptor.id
        handler = self.handlers.get(handler_name)
        if handler is None:
            return ExecutionResult.empty(descriptor.id, reason=NOT_CONFIGURED)

        started = time.perf_counter()
        try:
            output = await handler(descriptor, call_context)
        except Exception as e:
            self._record_failure(descriptor, e, extra={"handler": handler_name})
            raise
        finally:
            self._record_latency(descriptor, started)

        if isinstance(output, ExecutionResult):
            return output
        if output is None:
            return ExecutionResult.empty(descriptor.id)
        if isinstance(output, str):
            return ExecutionResult(text=output, metadata={"id": descriptor.id})
        if isinstance(output, dict):
            return ExecutionResult.model_validate(
                {**output, "metadata": {"id": descriptor.id, **output.get("metadata", {})}}
            )
        raise TypeError(
            f"Custom handler {handler_name} returned unsupported type {type(output).__name__}"
        )
