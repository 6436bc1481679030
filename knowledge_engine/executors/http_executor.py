"""HTTP executor with TTL caching, retry/backoff, and on-disk fallback."""

import json
import logging
import os
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from knowledge_engine.executors.base_executor import NOT_CONFIGURED, BaseExecutor, CallContext
from knowledge_engine.lib.fallback_handler import FallbackStrategy, RetryPolicy, retry_with_backoff
from knowledge_engine.lib.metrics import CACHE_HIT_COUNTER, FALLBACK_COUNTER, LATENCY_METRIC, TelemetrySink
from knowledge_engine.models.descriptor import BackendKind, KnowledgeDescriptor
from knowledge_engine.models.errors import TerminalBackendError, TransientBackendError
from knowledge_engine.models.knowledge import ExecutionResult
from knowledge_engine.storage.result_cache import FallbackStore, TTLCache

logger = logging.getLogger(__name__)

ID_PLACEHOLDER = "{{id}}"


class HttpExecutor(BaseExecutor):
    """Fetches a source's content from an HTTP endpoint.

    Successful results are cached in memory for ``cacheTtlSeconds`` and
    persisted to the fallback store. When every attempt fails, the last
    persisted result is returned instead; only if there is none does the
    executor raise ``TerminalBackendError``.
    """

    backend_kind = BackendKind.HTTP

    def __init__(
        self,
        telemetry: TelemetrySink | None = None,
        cache: TTLCache | None = None,
        fallback_store: FallbackStore | None = None,
        client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float = 10.0,
        secret_resolver: Callable[[str], str | None] = os.getenv,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        """Initialize HTTP executor.

        Args:
            telemetry: Sink for latency, counters, and error entries
            cache: In-memory TTL cache shared across calls
            fallback_store: On-disk store of last successful results
            client: Shared httpx client (created lazily when omitted)
            retry_policy: Attempt budget and backoff
            timeout_seconds: Per-request timeout
            secret_resolver: Maps a secret reference name to its value
            sleep: Awaitable sleep used between attempts
        """
        super().__init__(telemetry)
        self.cache = cache if cache is not None else TTLCache()
        self.fallback_store = fallback_store if fallback_store is not None else FallbackStore()
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self.secret_resolver = secret_resolver
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def build_request(self, descriptor: KnowledgeDescriptor) -> tuple[dict[str, str], str | None]:
        """Headers and optional body for the descriptor's endpoint."""
        config = descriptor.http
        headers = {"accept": "application/json"}

        if config.secret_env_name:
            secret = self.secret_resolver(config.secret_env_name)
            if secret:
                headers["authorization"] = f"Bearer {secret}"
            else:
                logger.warning(
                    f"Secret {config.secret_env_name} for {descriptor.id} is not set; "
                    "sending request without authorization"
                )

        body = None
        if config.method == "POST" and config.request_body_template:
            body = config.request_body_template.replace(ID_PLACEHOLDER, descriptor.id, 1)
            headers["content-type"] = "application/json"

        return headers, body

    async def execute(
        self, descriptor: KnowledgeDescriptor, call_context: CallContext | None = None
    ) -> ExecutionResult:
        self._check_kind(descriptor)
        config = descriptor.http
        if config is None:
            return ExecutionResult.empty(descriptor.id, reason=NOT_CONFIGURED)

        source_id = descriptor.id
        ttl = config.cache_ttl_seconds
        if ttl > 0:
            cached = self.cache.get(source_id)
            if cached is not None:
                self.telemetry.increment_counter(
                    CACHE_HIT_COUNTER,
                    self._tags(descriptor, strategy=FallbackStrategy.CACHE.value),
                )
                logger.debug(f"Cache hit for knowledge source {source_id}")
                return cached

        headers, body = self.build_request(descriptor)

        async def attempt_fetch(attempt: int) -> ExecutionResult:
            started = time.perf_counter()
            try:
                response = await self.client.request(
                    config.method,
                    config.endpoint,
                    headers=headers,
                    content=body,
                    timeout=self.timeout_seconds,
                )
            except httpx.HTTPError as e:
                raise TransientBackendError(
                    f"{type(e).__name__}: {e}", source_id=source_id
                ) from e
            finally:
                latency_ms = (time.perf_counter() - started) * 1000
                self.telemetry.record_latency(
                    LATENCY_METRIC, latency_ms, self._tags(descriptor, attempt=attempt)
                )

            if not response.is_success:
                raise TransientBackendError(
                    f"HTTP {response.status_code} from {config.endpoint}",
                    source_id=source_id,
                    status_code=response.status_code,
                )
            return self.parse_response(descriptor, response)

        def on_failure(error: Exception, attempt: int) -> None:
            self._record_failure(
                descriptor,
                error,
                attempt=attempt,
                extra={"endpoint": config.endpoint, "method": config.method},
            )

        retry_kwargs: dict[str, Any] = {"on_failure": on_failure}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep

        try:
            result = await retry_with_backoff(attempt_fetch, self.retry_policy, **retry_kwargs)
        except TransientBackendError as last_error:
            fallback = self.fallback_store.read_fallback(source_id)
            if fallback is not None:
                logger.warning(
                    f"All {self.retry_policy.max_attempts} attempts failed for {source_id}; "
                    "serving persisted fallback"
                )
                self.telemetry.increment_counter(FALLBACK_COUNTER, self._tags(descriptor))
                return fallback.model_copy(
                    update={
                        "metadata": {
                            **fallback.metadata,
                            "strategy": FallbackStrategy.FALLBACK_FILE.value,
                        }
                    }
                )

            raise TerminalBackendError(
                f"HTTP source {source_id} failed after {self.retry_policy.max_attempts} "
                f"attempts: {last_error}",
                source_id=source_id,
                attempts=self.retry_policy.max_attempts,
            ) from last_error

        self.fallback_store.persist_fallback(source_id, result)
        self.cache.put(source_id, result, ttl)
        return result

    def parse_response(
        self, descriptor: KnowledgeDescriptor, response: httpx.Response
    ) -> ExecutionResult:
        """Convert a response body into an ExecutionResult.

        JSON bodies with a ``text``/``suggestions`` shape are unpacked; other
        JSON is serialized as text; non-JSON bodies are used as plain text.
        """
        metadata = {
            "id": descriptor.id,
            "status": response.status_code,
            "strategy": FallbackStrategy.LIVE.value,
        }
        raw = response.text

        try:
            payload = json.loads(raw)
        except ValueError:
            return ExecutionResult(text=raw, metadata=metadata)

        if isinstance(payload, str):
            return ExecutionResult(text=payload, metadata=metadata)

        suggestions: list[str] = []
        text = None
        if isinstance(payload, dict):
            if isinstance(payload.get("suggestions"), list):
                suggestions = [str(s) for s in payload["suggestions"]]
            if payload.get("text") is not None:
                value = payload["text"]
                text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)

        if text is None:
            text = json.dumps(payload, ensure_ascii=False)

        return ExecutionResult(
            text=text, structured=payload, suggestions=suggestions, metadata=metadata
        )
