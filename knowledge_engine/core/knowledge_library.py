"""Knowledge library: source registry and message enhancement.

The library keeps the live set of knowledge sources, decides which ones a
message concerns, fetches their content, and folds it into an augmented
prompt. A failing source never aborts enhancement of the others; it simply
contributes nothing.
"""

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from typing import Any

from knowledge_engine.core.knowledge_source import KnowledgeSource
from knowledge_engine.core.library_events import (
    ChangeKind,
    ChangeListener,
    ChangeNotifier,
    LibraryChangeEvent,
)
from knowledge_engine.executors.base_executor import CallContext
from knowledge_engine.models.errors import UnknownSourceError
from knowledge_engine.models.knowledge import ExecutionResult, KnowledgeContext

logger = logging.getLogger(__name__)

DEFAULT_MAX_SUGGESTIONS = 3
INSTRUCTION_SUFFIX = (
    "Please use this knowledge to provide accurate, data-driven responses. "
    "If the user is asking for specific information covered by these knowledge bases, "
    "reference the data directly."
)


def _format_stat(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:,.2f}"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(", ", ": "))
    return str(value)


def summarize_payload(payload: Any) -> str | None:
    """Compact rendering for recognized payload shapes, else None.

    Recognized shapes:
        ``{"noData": true, "fallbackText": ...}`` renders the fallback text
        ``{"count": n, "statistics": {...}}`` renders a count plus one line per statistic
    """
    if not isinstance(payload, dict):
        return None

    if "noData" in payload:
        if not payload["noData"]:
            return None
        fallback = payload.get("fallbackText") or payload.get("fallback") or ""
        return str(fallback)

    statistics = payload.get("statistics")
    if "count" in payload and isinstance(statistics, dict):
        lines = [f"Count: {payload['count']}"]
        if statistics:
            lines.append("Statistics:")
            lines.extend(f"- {key}: {_format_stat(value)}" for key, value in statistics.items())
        return "\n".join(lines)

    return None


def render_result(result: ExecutionResult) -> str:
    """Text to inject for one source's result."""
    if result.structured is not None:
        summary = summarize_payload(result.structured)
        if summary is not None:
            return summary

    text = result.text
    if text.lstrip().startswith("{"):
        try:
            summary = summarize_payload(json.loads(text))
        except ValueError:
            summary = None
        if summary is not None:
            return summary

    return text


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


class KnowledgeLibrary:
    """Registry of knowledge sources plus the enhancement algorithm."""

    def __init__(
        self,
        max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
        concurrent_fetch: bool = False,
        notifier: ChangeNotifier | None = None,
    ):
        """Initialize the library.

        Args:
            max_suggestions: Cap on suggestions returned per enhancement
            concurrent_fetch: Fetch matched sources concurrently; sections are
                still rendered in priority order
            notifier: Change event channel (a private one is created if omitted)
        """
        self.max_suggestions = max_suggestions
        self.concurrent_fetch = concurrent_fetch
        self.events = notifier or ChangeNotifier()
        self._sources: dict[str, KnowledgeSource] = {}
        self._version = 1

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        return self._version

    def get_version(self) -> int:
        return self._version

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Subscribe to registry changes; returns an unsubscribe function."""
        return self.events.subscribe(listener)

    def _bump_version(self, kind: ChangeKind, source_id: str) -> None:
        self._version += 1
        self.events.publish(LibraryChangeEvent(kind=kind, source_id=source_id, version=self._version))
        logger.info(f"📦 Knowledge library version bumped to {self._version}")

    def register_source(self, source: KnowledgeSource) -> None:
        """Register a source; an existing source with the same id is replaced."""
        replaced = source.id in self._sources
        self._sources[source.id] = source
        logger.info(
            f"📚 {'Replaced' if replaced else 'Registered'} knowledge source: {source.name}"
        )
        self._bump_version(ChangeKind.REGISTERED, source.id)

    def remove_source(self, source_id: str) -> bool:
        if self._sources.pop(source_id, None) is None:
            logger.warning(f"Cannot remove unknown knowledge source: {source_id}")
            return False
        logger.info(f"📚 Removed knowledge source: {source_id}")
        self._bump_version(ChangeKind.REMOVED, source_id)
        return True

    def set_source_enabled(self, source_id: str, enabled: bool) -> bool:
        """Toggle a source; returns False if it is unknown or already in that state."""
        source = self._sources.get(source_id)
        if source is None:
            logger.warning(f"Cannot toggle unknown knowledge source: {source_id}")
            return False
        if source.enabled == enabled:
            return False

        source.enabled = enabled
        logger.info(f"📚 {'Enabled' if enabled else 'Disabled'} knowledge source: {source.name}")
        self._bump_version(ChangeKind.ENABLED if enabled else ChangeKind.DISABLED, source_id)
        return True

    def get_source(self, source_id: str) -> KnowledgeSource:
        try:
            return self._sources[source_id]
        except KeyError:
            raise UnknownSourceError(source_id) from None

    def get_sources(self) -> list[KnowledgeSource]:
        return list(self._sources.values())

    def get_knowledge_summary(self) -> dict[str, dict[str, Any]]:
        return {
            source.id: {
                "name": source.name,
                "description": source.description,
                "enabled": source.enabled,
                "keywords": list(source.keywords),
                "priority": source.priority,
                "backend_kind": source.descriptor.backend_kind.value,
            }
            for source in self._sources.values()
        }

    # ------------------------------------------------------------------
    # Enhancement
    # ------------------------------------------------------------------

    def match_sources(self, message: str) -> list[KnowledgeSource]:
        """Enabled sources relevant to ``message``, highest priority first.

        Equal priorities keep registration order.
        """
        low = message.lower()
        matched = [s for s in self._sources.values() if s.enabled and s.is_relevant(low)]
        return sorted(matched, key=lambda s: -s.priority)

    async def _fetch_section(
        self, source: KnowledgeSource, call_context: CallContext | None
    ) -> tuple[str, list[str]] | None:
        try:
            result = await source.fetch_context(call_context)
            if result.is_empty:
                return None
            rendered = render_result(result)
        except Exception as e:
            logger.warning(f"Failed to fetch context from {source.name}: {e}")
            return None

        if not rendered.strip():
            return None
        section = f"[{source.name.upper()} KNOWLEDGE BASE]\n{rendered}"
        return section, [*result.suggestions, *source.get_suggestions()]

    async def _build_context(
        self,
        original_message: str,
        sources: list[KnowledgeSource],
        call_context: CallContext | None,
    ) -> KnowledgeContext:
        if self.concurrent_fetch:
            outcomes = await asyncio.gather(
                *(self._fetch_section(source, call_context) for source in sources)
            )
        else:
            outcomes = [await self._fetch_section(source, call_context) for source in sources]

        sections: list[str] = []
        suggestions: list[str] = []
        used_sources: list[str] = []
        for source, outcome in zip(sources, outcomes):
            if outcome is None:
                continue
            section, source_suggestions = outcome
            sections.append(section)
            suggestions.extend(source_suggestions)
            used_sources.append(source.id)

        enhanced_message = original_message
        if sections:
            enhanced_message = (
                f"{original_message}\n\n" + "\n\n".join(sections) + f"\n\n{INSTRUCTION_SUFFIX}"
            )

        return KnowledgeContext(
            sources=sources,
            enhanced_message=enhanced_message,
            suggestions=_dedupe(suggestions)[: self.max_suggestions],
            used_sources=used_sources,
        )

    async def enhance_message(
        self, original_message: str, call_context: CallContext | None = None
    ) -> KnowledgeContext:
        """Augment a message with content from every relevant source."""
        if call_context is None:
            call_context = CallContext(message=original_message)
        return await self._build_context(
            original_message, self.match_sources(original_message), call_context
        )

    async def enhance_with_source_ids(
        self,
        original_message: str,
        source_ids: list[str],
        call_context: CallContext | None = None,
    ) -> KnowledgeContext:
        """Augment a message using an explicit list of sources, skipping relevance matching.

        Unknown or disabled ids are ignored. An empty list falls back to
        ``enhance_message``.
        """
        if not source_ids:
            return await self.enhance_message(original_message, call_context)

        if call_context is None:
            call_context = CallContext(message=original_message)

        sources = []
        for source_id in _dedupe(source_ids):
            source = self._sources.get(source_id)
            if source is None or not source.enabled:
                logger.info(f"Skipping unavailable knowledge source for reuse: {source_id}")
                continue
            sources.append(source)

        context = await self._build_context(original_message, sources, call_context)
        context.sources = [s for s in sources if s.id in context.used_sources]
        return context

    def get_quick_suggestions(self, message: str) -> list[str]:
        """Suggestions from relevant sources, without fetching content."""
        suggestions: list[str] = []
        for source in self.match_sources(message):
            suggestions.extend(source.get_suggestions())
        return _dedupe(suggestions)[: self.max_suggestions]
