"""Executor factory: backend kind -> executor instance."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from knowledge_engine.executors.base_executor import BaseExecutor
from knowledge_engine.executors.custom_executor import CustomExecutor, CustomHandler
from knowledge_engine.executors.document_store_executor import (
    DocumentStoreClient,
    DocumentStoreExecutor,
)
from knowledge_engine.executors.file_executor import FileExecutor
from knowledge_engine.executors.http_executor import HttpExecutor
from knowledge_engine.executors.remote_agent_executor import AgentClient, RemoteAgentExecutor
from knowledge_engine.executors.static_executor import StaticExecutor
from knowledge_engine.lib.config import EngineConfig
from knowledge_engine.lib.fallback_handler import RetryPolicy
from knowledge_engine.lib.metrics import NullTelemetry, TelemetrySink
from knowledge_engine.models.descriptor import BackendKind, KnowledgeDescriptor
from knowledge_engine.storage.result_cache import FallbackStore, TTLCache

logger = logging.getLogger(__name__)


@dataclass
class ExecutorContext:
    """Runtime collaborators shared by every executor built from this context.

    Optional clients that are absent make their backend return empty results
    instead of failing.
    """

    telemetry: TelemetrySink = field(default_factory=NullTelemetry)
    agent_client: AgentClient | None = None
    document_store_client: DocumentStoreClient | None = None
    http_client: httpx.AsyncClient | None = None
    custom_handlers: dict[str, CustomHandler] = field(default_factory=dict)
    cache: TTLCache = field(default_factory=TTLCache)
    fallback_store: FallbackStore = field(default_factory=FallbackStore)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    http_timeout_seconds: float = 10.0
    working_root: Path = field(default_factory=Path.cwd)
    secret_resolver: Callable[[str], str | None] | None = None
    _executors: dict[BackendKind, BaseExecutor] = field(default_factory=dict, init=False, repr=False)

    @classmethod
    def from_config(cls, config: EngineConfig, **collaborators) -> "ExecutorContext":
        """Build a context whose cache, retry, and path settings come from config."""
        collaborators.setdefault("fallback_store", FallbackStore(config.cache_dir))
        collaborators.setdefault(
            "retry_policy",
            RetryPolicy(
                max_attempts=config.http_max_attempts,
                base_delay_ms=config.http_backoff_base_ms,
                jitter_ms=config.http_backoff_jitter_ms,
            ),
        )
        collaborators.setdefault("http_timeout_seconds", config.http_timeout_seconds)
        collaborators.setdefault("working_root", Path(config.working_root))
        return cls(**collaborators)

    async def aclose(self) -> None:
        http = self._executors.get(BackendKind.HTTP)
        if isinstance(http, HttpExecutor):
            await http.aclose()


def _build_executor(kind: BackendKind, ctx: ExecutorContext) -> BaseExecutor:
    if kind is BackendKind.STATIC:
        return StaticExecutor(telemetry=ctx.telemetry)
    if kind is BackendKind.HTTP:
        extra = {"secret_resolver": ctx.secret_resolver} if ctx.secret_resolver else {}
        return HttpExecutor(
            telemetry=ctx.telemetry,
            cache=ctx.cache,
            fallback_store=ctx.fallback_store,
            client=ctx.http_client,
            retry_policy=ctx.retry_policy,
            timeout_seconds=ctx.http_timeout_seconds,
            **extra,
        )
    if kind is BackendKind.REMOTE_AGENT:
        return RemoteAgentExecutor(client=ctx.agent_client, telemetry=ctx.telemetry)
    if kind is BackendKind.DOCUMENT_STORE:
        return DocumentStoreExecutor(client=ctx.document_store_client, telemetry=ctx.telemetry)
    if kind is BackendKind.FILE:
        return FileExecutor(working_root=ctx.working_root, telemetry=ctx.telemetry)
    if kind is BackendKind.CUSTOM:
        return CustomExecutor(handlers=ctx.custom_handlers, telemetry=ctx.telemetry)
    raise ValueError(f"No executor registered for backend kind {kind!r}")


def get_executor_for(
    descriptor: KnowledgeDescriptor, ctx: ExecutorContext | None = None
) -> BaseExecutor:
    """Executor for the descriptor's backend kind.

    Executors are created once per context and kind, so HTTP sources built
    from the same context share one TTL cache and one HTTP client.
    """
    ctx = ctx if ctx is not None else ExecutorContext()
    kind = descriptor.backend_kind
    executor = ctx._executors.get(kind)
    if executor is None:
        executor = _build_executor(kind, ctx)
        ctx._executors[kind] = executor
        logger.debug(f"Created {executor.executor_name} for backend kind {kind.value}")
    return executor
