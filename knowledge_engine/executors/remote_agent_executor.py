"""Remote-agent executor: asks another agent for knowledge."""

import json
import logging
import time
from typing import Any, Protocol

from knowledge_engine.executors.base_executor import NOT_CONFIGURED, BaseExecutor, CallContext
from knowledge_engine.lib.metrics import TelemetrySink
from knowledge_engine.models.descriptor import BackendKind, KnowledgeDescriptor
from knowledge_engine.models.knowledge import ExecutionResult

logger = logging.getLogger(__name__)


class AgentClient(Protocol):
    """Inter-agent communication client."""

    async def send_request(self, agent_id: str, capability: str, payload: dict[str, Any]) -> Any:
        """Send a request; the response has ``success``, ``data`` and ``error``."""
        ...


def _response_field(response: Any, name: str) -> Any:
    if isinstance(response, dict):
        return response.get(name)
    return getattr(response, name, None)


class RemoteAgentExecutor(BaseExecutor):
    backend_kind = BackendKind.REMOTE_AGENT

    def __init__(self, client: AgentClient | None = None, telemetry: TelemetrySink | None = None):
        super().__init__(telemetry)
        self.client = client

    async def execute(
        self, descriptor: KnowledgeDescriptor, call_context: CallContext | None = None
    ) -> ExecutionResult:
        self._check_kind(descriptor)
        config = descriptor.remote_agent
        if config is None or not config.agent_id or self.client is None:
            return ExecutionResult.empty(descriptor.id, reason=NOT_CONFIGURED)

        query = call_context.message if call_context and call_context.message else descriptor.id
        payload = {"query": query, "descriptor": descriptor.model_dump(mode="json")}

        started = time.perf_counter()
        try:
            response = await self.client.send_request(config.agent_id, config.capability, payload)
        except Exception as e:
            self._record_failure(
                descriptor,
                e,
                extra={"agent_id": config.agent_id, "capability": config.capability},
            )
            return ExecutionResult.empty(descriptor.id, error=str(e))
        finally:
            self._record_latency(descriptor, started)

        metadata = {"id": descriptor.id, "agent_id": config.agent_id}
        if _response_field(response, "success"):
            data = _response_field(response, "data")
            if isinstance(data, str):
                return ExecutionResult(text=data, metadata=metadata)
            return ExecutionResult(
                text=json.dumps(data, ensure_ascii=False, default=str),
                structured=data,
                metadata=metadata,
            )

        error = _response_field(response, "error")
        logger.info(f"Remote agent {config.agent_id} declined {descriptor.id}: {error}")
        return ExecutionResult(text=str(error or ""), metadata={**metadata, "success": False})
