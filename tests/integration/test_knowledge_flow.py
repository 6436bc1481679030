"""End-to-end flow: descriptors on disk -> library -> conversation turns."""

import json

import httpx
import pytest

from knowledge_engine.cli.main import main as cli_main
from knowledge_engine.core.descriptor_loader import build_library, load_descriptors
from knowledge_engine.core.message_bridge import KnowledgeMessageBridge
from knowledge_engine.executors.factory import ExecutorContext
from knowledge_engine.lib.config import EngineConfig
from knowledge_engine.lib.fallback_handler import RetryPolicy
from knowledge_engine.lib.metrics import CACHE_HIT_COUNTER, MetricsCollector
from knowledge_engine.storage.conversation_store import FileConversationStore
from knowledge_engine.storage.result_cache import FallbackStore

pytestmark = pytest.mark.integration


@pytest.fixture
def config(tmp_path):
    return EngineConfig(cache_dir=str(tmp_path / "cache"), working_root=str(tmp_path))


@pytest.fixture
async def engine(tmp_path, descriptor_dir, rates_transport, config):
    metrics = MetricsCollector()
    client = httpx.AsyncClient(transport=httpx.MockTransport(rates_transport))
    ctx = ExecutorContext(
        telemetry=metrics,
        http_client=client,
        fallback_store=FallbackStore(config.cache_dir),
        retry_policy=RetryPolicy(max_attempts=2, base_delay_ms=0, jitter_ms=0),
        working_root=tmp_path,
    )
    library = build_library(load_descriptors(descriptor_dir), ctx, config)
    store = FileConversationStore(base_dir=str(tmp_path / "conversations"))
    bridge = KnowledgeMessageBridge(library, store, config)

    yield library, bridge, store, metrics

    bridge.close()
    await client.aclose()


async def echo_responder(prompt, history):
    return f"Answered using {len(prompt)} chars of prompt"


def test_loader_skips_invalid_and_orders_by_filename(descriptor_dir):
    descriptors = load_descriptors(descriptor_dir)

    assert [d.id for d in descriptors] == ["dogs", "rates", "handbook"]


def test_loader_later_duplicate_wins(descriptor_dir):
    (descriptor_dir / "99-dogs.json").write_text(
        '{"id": "dogs", "backendKind": "static", "static": {"text": "NEWER DOG FACTS"}}'
    )

    descriptors = {d.id: d for d in load_descriptors(descriptor_dir)}

    assert descriptors["dogs"].static.text == "NEWER DOG FACTS"


def test_loader_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_descriptors(tmp_path / "nope")


@pytest.mark.asyncio
async def test_static_source_end_to_end(engine):
    library, _, _, _ = engine

    context = await library.enhance_message("show me a kepie puppy")

    assert context.used_sources == ["dogs"]
    assert "[DOGS KNOWLEDGE BASE]\nDOG FACTS" in context.enhanced_message
    assert context.suggestions == ["Tell me about kelpies"]


@pytest.mark.asyncio
async def test_http_statistics_rendered_and_cached(engine, rates_transport):
    library, _, _, metrics = engine

    first = await library.enhance_message("what is the exchange rate today")
    second = await library.enhance_message("currency update?")

    assert first.used_sources == ["rates"]
    assert "[EXCHANGE RATES KNOWLEDGE BASE]\nCount: 2" in first.enhanced_message
    assert "- EUR/USD: 1.08" in first.enhanced_message
    assert "Count: 2" in second.enhanced_message
    assert len(rates_transport.requests) == 1
    assert metrics.get_counter(CACHE_HIT_COUNTER, id="rates") == 1


@pytest.mark.asyncio
async def test_file_source(engine):
    library, _, _, _ = engine

    context = await library.enhance_message("how many vacation days are allowed?")

    assert context.used_sources == ["handbook"]
    assert "---- handbook.md ----\nEmployees get 25 vacation days." in context.enhanced_message


@pytest.mark.asyncio
async def test_conversation_continuity_across_turns(engine):
    library, bridge, store, _ = engine

    first = await bridge.process_message("conv-1", "user-1", "tell me about a puppy", echo_responder)
    follow_up = await bridge.process_message("conv-1", "user-1", "ok", echo_responder)

    assert first["metadata"]["knowledge_sources_used"] == ["dogs"]
    assert follow_up["metadata"]["knowledge_sources_used"] == ["dogs"]
    assert follow_up["metadata"]["suggestions"] == ["Tell me about kelpies"]

    library.remove_source("dogs")
    after_removal = await bridge.process_message("conv-1", "user-1", "ok", echo_responder)

    assert after_removal["metadata"]["knowledge_sources_used"] == []
    context = await store.get_context("conv-1")
    assert context.knowledge_version == library.version
    assert len(await store.get_messages("conv-1")) == 6


def test_cli_validate_reports_invalid(descriptor_dir, capsys):
    exit_code = cli_main(["validate", str(descriptor_dir)])

    output = capsys.readouterr().out
    assert exit_code == 1
    assert "10-dogs.json: dogs (static)" in output
    assert "40-broken.json" in output


def test_cli_sources_prints_summary(descriptor_dir, capsys):
    exit_code = cli_main(["sources", str(descriptor_dir)])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert '"dogs"' in output
    assert '"backend_kind": "http"' in output


def test_cli_enhance_static(descriptor_dir, tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)

    exit_code = cli_main(["enhance", str(descriptor_dir), "any puppy facts?"])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "DOG FACTS" in output
    assert "Sources used: dogs" in output


def test_cli_log_file_records_descriptor_errors(descriptor_dir, tmp_path):
    log_file = tmp_path / "logs" / "cli.log"

    cli_main(["--debug", "--log-file", str(log_file), "sources", str(descriptor_dir)])

    entries = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert any(entry.get("file", "").endswith("40-broken.json") for entry in entries)
