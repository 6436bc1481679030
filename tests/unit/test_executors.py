"""Tests for the non-HTTP executors and the executor factory."""

import pytest

from knowledge_engine.executors.base_executor import NOT_CONFIGURED, CallContext
from knowledge_engine.executors.custom_executor import CustomExecutor
from knowledge_engine.executors.document_store_executor import (
    DocumentStoreExecutor,
    summarize_item,
    summarize_results,
)
from knowledge_engine.executors.factory import ExecutorContext, _build_executor, get_executor_for
from knowledge_engine.executors.file_executor import FileExecutor
from knowledge_engine.executors.http_executor import HttpExecutor
from knowledge_engine.executors.remote_agent_executor import RemoteAgentExecutor
from knowledge_engine.executors.static_executor import StaticExecutor
from knowledge_engine.lib.metrics import FAILURE_COUNTER, LATENCY_METRIC
from knowledge_engine.models.descriptor import BackendKind
from knowledge_engine.models.knowledge import ExecutionResult


class FakeAgentClient:
    """Records requests and replies with a canned response."""

    def __init__(self, response=None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.requests = []

    async def send_request(self, agent_id, capability, payload):
        self.requests.append((agent_id, capability, payload))
        if self.error:
            raise self.error
        return self.response


class FakeDocumentStore:
    def __init__(self, rows=None, error: Exception | None = None):
        self.rows = rows or []
        self.error = error
        self.queries = []

    async def query(self, query, params=None, *, database=None, container=None):
        self.queries.append((query, params, database, container))
        if self.error:
            raise self.error
        return self.rows


# ----------------------------------------------------------------------------
# Static
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_static_executor_is_idempotent(make_descriptor, metrics):
    descriptor = make_descriptor(static={"text": "DOG FACTS", "suggestions": ["More dogs"]})
    executor = StaticExecutor(telemetry=metrics)

    first = await executor.execute(descriptor)
    second = await executor.execute(descriptor)

    assert first.text == second.text == "DOG FACTS"
    assert first.suggestions == second.suggestions == ["More dogs"]
    assert len(metrics.latency_history) == 2
    assert metrics.latency_history[0].name == LATENCY_METRIC


@pytest.mark.asyncio
async def test_static_executor_rejects_other_kinds(make_descriptor, metrics):
    descriptor = make_descriptor(backendKind="file", file={"paths": ["a.txt"]})

    with pytest.raises(ValueError):
        await StaticExecutor(telemetry=metrics).execute(descriptor)

    assert metrics.get_counter(FAILURE_COUNTER) == 1


# ----------------------------------------------------------------------------
# File
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_file_executor_reads_files_with_headers(tmp_path, make_descriptor, metrics):
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "a.md").write_text("Alpha", encoding="utf-8")
    (tmp_path / "b.md").write_text("Beta", encoding="utf-8")
    descriptor = make_descriptor(
        id="handbook", backendKind="file", file={"paths": ["docs/a.md", "b.md"]}
    )

    result = await FileExecutor(working_root=tmp_path, telemetry=metrics).execute(descriptor)

    assert "---- docs/a.md ----\nAlpha" in result.text
    assert "---- b.md ----\nBeta" in result.text
    assert result.text.index("Alpha") < result.text.index("Beta")
    assert len(result.metadata["files"]) == 2


@pytest.mark.asyncio
async def test_file_executor_missing_file_reported_inline(tmp_path, make_descriptor, metrics):
    (tmp_path / "present.md").write_text("Present", encoding="utf-8")
    descriptor = make_descriptor(
        id="handbook", backendKind="file", file={"paths": ["missing.md", "present.md"]}
    )

    result = await FileExecutor(working_root=tmp_path, telemetry=metrics).execute(descriptor)

    assert "---- missing.md (failed to read) ----" in result.text
    assert "---- present.md ----\nPresent" in result.text
    assert metrics.get_counter(FAILURE_COUNTER) == 1
    assert metrics.error_history[0].operation == "file-exec"


# ----------------------------------------------------------------------------
# Document store
# ----------------------------------------------------------------------------


def test_summarize_item_truncates_description():
    line = summarize_item({"title": "Policy", "body": "x" * 200}, 0)

    assert line.startswith("- Policy: ")
    assert line.endswith("…")
    assert len(line) == len("- Policy: ") + 140 + 1


def test_summarize_item_falls_back_to_index():
    assert summarize_item({"unrelated": 1}, 2) == "- item-3"


def test_summarize_results_empty():
    assert summarize_results([]) == "No results found."


@pytest.mark.asyncio
async def test_document_store_summarizes_top_n(make_descriptor, metrics):
    rows = [{"name": f"Person {i}", "description": f"Role {i}"} for i in range(8)]
    client = FakeDocumentStore(rows=rows)
    descriptor = make_descriptor(
        id="people",
        backendKind="documentStore",
        documentStore={"query": "SELECT * FROM c", "database": "hr", "container": "people"},
    )

    result = await DocumentStoreExecutor(client=client, telemetry=metrics).execute(descriptor)

    assert result.text.startswith("Results (8 total):")
    assert result.text.count("\n- ") == 5
    assert "Person 5" not in result.text
    assert result.structured == rows
    assert result.metadata["count"] == 8
    assert client.queries == [("SELECT * FROM c", [], "hr", "people")]


@pytest.mark.asyncio
async def test_document_store_without_client_is_empty(make_descriptor):
    descriptor = make_descriptor(
        id="people", backendKind="documentStore", documentStore={"query": "SELECT 1"}
    )

    result = await DocumentStoreExecutor(client=None).execute(descriptor)

    assert result.is_empty
    assert result.metadata["reason"] == NOT_CONFIGURED


@pytest.mark.asyncio
async def test_document_store_failure_is_empty(make_descriptor, metrics):
    descriptor = make_descriptor(
        id="people", backendKind="documentStore", documentStore={"query": "SELECT 1"}
    )
    client = FakeDocumentStore(error=ConnectionError("store unreachable"))

    result = await DocumentStoreExecutor(client=client, telemetry=metrics).execute(descriptor)

    assert result.is_empty
    assert metrics.get_counter(FAILURE_COUNTER, id="people") == 1


# ----------------------------------------------------------------------------
# Remote agent
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_remote_agent_string_data(make_descriptor):
    client = FakeAgentClient(response={"success": True, "data": "Agent says hi"})
    descriptor = make_descriptor(
        id="hr", backendKind="remoteAgent", remoteAgent={"agentId": "hr-agent"}
    )

    result = await RemoteAgentExecutor(client=client).execute(
        descriptor, CallContext(conversation_id="c1", message="vacation days?")
    )

    assert result.text == "Agent says hi"
    agent_id, capability, payload = client.requests[0]
    assert agent_id == "hr-agent"
    assert capability == "knowledge"
    assert payload["query"] == "vacation days?"
    assert payload["descriptor"]["id"] == "hr"


@pytest.mark.asyncio
async def test_remote_agent_structured_data(make_descriptor):
    data = {"count": 2, "statistics": {"open": 1}}
    client = FakeAgentClient(response={"success": True, "data": data})
    descriptor = make_descriptor(
        id="tickets", backendKind="remoteAgent", remoteAgent={"agentId": "it-agent"}
    )

    result = await RemoteAgentExecutor(client=client).execute(descriptor)

    assert result.structured == data
    assert '"count": 2' in result.text
    assert client.requests[0][2]["query"] == "tickets"


@pytest.mark.asyncio
async def test_remote_agent_unsuccessful_response(make_descriptor):
    client = FakeAgentClient(response={"success": False, "error": "no such capability"})
    descriptor = make_descriptor(
        id="hr", backendKind="remoteAgent", remoteAgent={"agentId": "hr-agent"}
    )

    result = await RemoteAgentExecutor(client=client).execute(descriptor)

    assert result.text == "no such capability"
    assert result.metadata["success"] is False


@pytest.mark.asyncio
async def test_remote_agent_without_client_is_empty(make_descriptor):
    descriptor = make_descriptor(
        id="hr", backendKind="remoteAgent", remoteAgent={"agentId": "hr-agent"}
    )

    result = await RemoteAgentExecutor(client=None).execute(descriptor)

    assert result.is_empty
    assert result.metadata["reason"] == NOT_CONFIGURED


@pytest.mark.asyncio
async def test_remote_agent_exception_is_empty(make_descriptor, metrics):
    client = FakeAgentClient(error=TimeoutError("agent timed out"))
    descriptor = make_descriptor(
        id="hr", backendKind="remoteAgent", remoteAgent={"agentId": "hr-agent"}
    )

    result = await RemoteAgentExecutor(client=client, telemetry=metrics).execute(descriptor)

    assert result.is_empty
    assert metrics.error_history[0].operation == "remoteAgent-exec"


# ----------------------------------------------------------------------------
# Custom
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_custom_handler_by_name(make_descriptor):
    async def weather(descriptor, call_context):
        return "Sunny, 22C"

    descriptor = make_descriptor(id="weather", backendKind="custom", custom={"handler": "wx"})

    result = await CustomExecutor(handlers={"wx": weather}).execute(descriptor)

    assert result.text == "Sunny, 22C"
    assert result.metadata["id"] == "weather"


@pytest.mark.asyncio
async def test_custom_handler_by_descriptor_id(make_descriptor):
    async def handler(descriptor, call_context):
        return {"text": "Custom", "suggestions": ["Ask more"]}

    descriptor = make_descriptor(id="bespoke", backendKind="custom")

    result = await CustomExecutor(handlers={"bespoke": handler}).execute(descriptor)

    assert result.text == "Custom"
    assert result.suggestions == ["Ask more"]


@pytest.mark.asyncio
async def test_custom_without_handler_is_empty(make_descriptor):
    descriptor = make_descriptor(id="bespoke", backendKind="custom")

    result = await CustomExecutor().execute(descriptor)

    assert result.is_empty
    assert result.metadata["reason"] == NOT_CONFIGURED


@pytest.mark.asyncio
async def test_custom_handler_error_propagates(make_descriptor, metrics):
    async def broken(descriptor, call_context):
        raise RuntimeError("handler exploded")

    descriptor = make_descriptor(id="bespoke", backendKind="custom")

    with pytest.raises(RuntimeError):
        await CustomExecutor(handlers={"bespoke": broken}, telemetry=metrics).execute(descriptor)

    assert metrics.get_counter(FAILURE_COUNTER) == 1


@pytest.mark.asyncio
async def test_custom_handler_unsupported_output(make_descriptor):
    async def handler(descriptor, call_context):
        return 42

    descriptor = make_descriptor(id="bespoke", backendKind="custom")

    with pytest.raises(TypeError):
        await CustomExecutor(handlers={"bespoke": handler}).execute(descriptor)


# ----------------------------------------------------------------------------
# Factory
# ----------------------------------------------------------------------------


@pytest.mark.parametrize("kind", list(BackendKind))
def test_factory_covers_every_backend_kind(kind):
    executor = _build_executor(kind, ExecutorContext())

    assert executor.backend_kind is kind


def test_factory_reuses_executor_per_context(make_descriptor, executor_context):
    first = get_executor_for(make_descriptor(id="a"), executor_context)
    second = get_executor_for(make_descriptor(id="b"), executor_context)

    assert first is second
    assert isinstance(first, StaticExecutor)


def test_factory_http_executor_shares_context_collaborators(make_descriptor, executor_context):
    descriptor = make_descriptor(
        id="rates", backendKind="http", http={"endpoint": "https://rates.example.com"}
    )

    executor = get_executor_for(descriptor, executor_context)

    assert isinstance(executor, HttpExecutor)
    assert executor.cache is executor_context.cache
    assert executor.fallback_store is executor_context.fallback_store


def test_execution_result_empty_helper():
    result = ExecutionResult.empty("dogs", reason="no_data")

    assert result.is_empty
    assert result.metadata == {"id": "dogs", "reason": "no_data"}
