"""Document-store executor: runs a configured query and summarizes the top hits."""

import time
from typing import Any, Protocol

from knowledge_engine.executors.base_executor import NOT_CONFIGURED, BaseExecutor, CallContext
from knowledge_engine.lib.metrics import TelemetrySink
from knowledge_engine.models.descriptor import BackendKind, KnowledgeDescriptor
from knowledge_engine.models.knowledge import ExecutionResult

DESCRIPTION_LIMIT = 140
TITLE_FIELDS = ("name", "title", "id")
DESCRIPTION_FIELDS = ("description", "body", "summary")


class DocumentStoreClient(Protocol):
    async def query(
        self,
        query: str,
        params: Any = None,
        *,
        database: str | None = None,
        container: str | None = None,
    ) -> list[dict[str, Any]]:
        ...


def summarize_item(item: Any, index: int) -> str:
    """One bullet line: title plus a truncated description."""
    if not isinstance(item, dict):
        return f"- {str(item)[:DESCRIPTION_LIMIT]}"

    title = next((item[k] for k in TITLE_FIELDS if item.get(k)), f"item-{index + 1}")
    description = next((str(item[k]) for k in DESCRIPTION_FIELDS if item.get(k)), "")
    if len(description) > DESCRIPTION_LIMIT:
        description = description[:DESCRIPTION_LIMIT] + "…"
    return f"- {title}: {description}" if description else f"- {title}"


def summarize_results(rows: list[Any], top_n: int = 5) -> str:
    if not rows:
        return "No results found."
    lines = [summarize_item(row, i) for i, row in enumerate(rows[:top_n])]
    return f"Results ({len(rows)} total):\n" + "\n".join(lines)


class DocumentStoreExecutor(BaseExecutor):
    """Keeps injected context bounded regardless of result-set size."""

    backend_kind = BackendKind.DOCUMENT_STORE

    def __init__(
        self, client: DocumentStoreClient | None = None, telemetry: TelemetrySink | None = None
    ):
        super().__init__(telemetry)
        self.client = client

    async def execute(
        self, descriptor: KnowledgeDescriptor, call_context: CallContext | None = None
    ) -> ExecutionResult:
        self._check_kind(descriptor)
        config = descriptor.document_store
        if config is None or self.client is None:
            return ExecutionResult.empty(descriptor.id, reason=NOT_CONFIGURED)

        started = time.perf_counter()
        try:
            rows = await self.client.query(
                config.query,
                config.params,
                database=config.database,
                container=config.container,
            )
        except Exception as e:
            self._record_failure(descriptor, e, extra={"query": config.query})
            return ExecutionResult.empty(descriptor.id, error=str(e))
        finally:
            self._record_latency(descriptor, started)

        rows = list(rows or [])
        return ExecutionResult(
            text=summarize_results(rows, config.top_n),
            structured=rows,
            metadata={"id": descriptor.id, "count": len(rows)},
        )
