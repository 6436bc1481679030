"""Conversation turn handling with knowledge enhancement and continuity.

A short acknowledgement ("ok", "yes", "...") usually continues the previous
exchange, so instead of relevance matching it reuses the knowledge sources
of the previous assistant turn.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from knowledge_engine.core.knowledge_library import KnowledgeLibrary
from knowledge_engine.core.library_events import LibraryChangeEvent
from knowledge_engine.executors.base_executor import CallContext
from knowledge_engine.lib.config import EngineConfig
from knowledge_engine.models.conversation import ConversationContext, StoredMessage
from knowledge_engine.models.knowledge import KnowledgeContext
from knowledge_engine.storage.conversation_store import ConversationStore

logger = logging.getLogger(__name__)

CONTINUATION_PHRASES = frozenset({"ok", "ok.", "yes", "y", "yep", "\U0001f44d", "."})
_ELLIPSIS = re.compile(r"^\.{1,3}$")

Responder = Callable[[str, list[StoredMessage]], Awaitable[str]]


def looks_like_continuation(text: str | None) -> bool:
    """Whether a message is a bare acknowledgement of the previous turn."""
    trimmed = (text or "").strip().lower()
    if not trimmed:
        return False
    if _ELLIPSIS.match(trimmed):
        return True
    return len(trimmed) <= 3 and trimmed in CONTINUATION_PHRASES


class KnowledgeMessageBridge:
    """Runs conversation turns through the knowledge library.

    The bridge owns the continuity state kept in each conversation context:
    a bounded window of recent assistant message ids, the knowledge sources
    used by the last turn, and the library version those were recorded at.
    """

    def __init__(
        self,
        library: KnowledgeLibrary,
        store: ConversationStore,
        config: EngineConfig | None = None,
    ):
        self.library = library
        self.store = store
        self.config = config or EngineConfig()
        self._sweep_pending = False
        self._unsubscribe = library.on_change(self._on_library_change)

    @property
    def answer_window(self) -> int:
        return max(1, self.config.logical_memory_answer_count)

    @property
    def history_window(self) -> int:
        return max(1, self.config.model_history_window)

    def close(self) -> None:
        """Stop listening to library changes."""
        self._unsubscribe()

    def _on_library_change(self, event: LibraryChangeEvent) -> None:
        logger.info(
            f"📡 Knowledge library changed ({event.kind.value} {event.source_id}), "
            f"conversations will be reset to version {event.version}"
        )
        self._sweep_pending = True

    async def _soft_reset(self, context: ConversationContext) -> ConversationContext:
        version = self.library.version
        logger.info(
            f"Soft-resetting knowledge sources for {context.conversation_id} "
            f"(version {context.knowledge_version} -> {version})"
        )
        return await self.store.update_context(
            context.conversation_id, last_knowledge_sources=[], knowledge_version=version
        )

    async def reset_stale_conversations(self) -> int:
        """Clear carried-over sources on every conversation behind the library version.

        Returns:
            Number of conversations reset
        """
        self._sweep_pending = False
        version = self.library.version
        reset = 0

        for conversation_id in await self.store.list_conversations():
            try:
                context = await self.store.get_context(conversation_id)
                if context is not None and context.is_stale(version):
                    await self._soft_reset(context)
                    reset += 1
            except (KeyError, ValueError, OSError) as e:
                logger.warning(f"Failed to reset context for {conversation_id}: {e}")

        if reset:
            logger.info(f"Reset {reset} stale conversation contexts to version {version}")
        return reset

    async def _ensure_context(
        self, conversation_id: str, user_id: str, platform: str
    ) -> ConversationContext:
        context = await self.store.get_context(conversation_id)
        if context is None:
            context = await self.store.create_context(conversation_id, user_id, platform)
            return await self.store.update_context(
                conversation_id, knowledge_version=self.library.version
            )
        if context.is_stale(self.library.version):
            context = await self._soft_reset(context)
        return context

    async def enhance_turn(
        self, context: ConversationContext, content: str
    ) -> tuple[KnowledgeContext | None, list[str]]:
        """Enhance one user message.

        Returns:
            The enhancement result (None when enhancement failed) and the
            source ids to record as this turn's provenance
        """
        call_context = CallContext(conversation_id=context.conversation_id, message=content)
        last_sources = list(context.last_knowledge_sources)

        if looks_like_continuation(content) and last_sources:
            logger.info(
                f"Continuation detected in {context.conversation_id}, "
                f"reusing knowledge sources {last_sources}"
            )
            try:
                enhancement = await self.library.enhance_with_source_ids(
                    content, last_sources, call_context
                )
            except Exception as e:
                logger.warning(f"Forced knowledge reuse failed, keeping prior sources: {e}")
                return None, last_sources
            return enhancement, enhancement.used_sources or last_sources

        try:
            enhancement = await self.library.enhance_message(content, call_context)
        except Exception as e:
            logger.warning(f"Knowledge enhancement failed, continuing without enhancement: {e}")
            return None, []
        return enhancement, enhancement.used_sources

    async def process_message(
        self,
        conversation_id: str,
        user_id: str,
        content: str,
        responder: Responder,
        platform: str = "",
    ) -> dict[str, Any]:
        """Handle one user message and return the assistant reply.

        Args:
            conversation_id: Conversation to append to (created if new)
            user_id: Owner of the conversation
            content: User message text
            responder: Async callable producing the reply from the enhanced
                message and the recent history
            platform: Originating platform label

        Returns:
            Dict with ``content`` and ``metadata`` (sources used, suggestions,
            enhanced flag, conversation and message ids)
        """
        if self._sweep_pending:
            await self.reset_stale_conversations()

        context = await self._ensure_context(conversation_id, user_id, platform)

        await self.store.add_message(
            conversation_id,
            StoredMessage(role="user", content=content, metadata={"platform": platform}),
        )
        history = await self.store.get_messages(conversation_id, limit=self.history_window)

        enhancement, knowledge_sources = await self.enhance_turn(context, content)
        prompt = enhancement.enhanced_message if enhancement is not None else content
        suggestions = enhancement.suggestions if enhancement is not None else []

        reply = await responder(prompt, history)

        metadata = {
            "knowledge_sources_used": knowledge_sources,
            "suggestions": suggestions,
            "enhanced": enhancement is not None and enhancement.enhanced,
            "platform": platform,
        }
        assistant_message = await self.store.add_message(
            conversation_id, StoredMessage(role="assistant", content=reply, metadata=metadata)
        )

        try:
            latest = await self.store.get_context(conversation_id) or context
            window = [*latest.last_assistant_messages, assistant_message.id][-self.answer_window :]
            await self.store.update_context(
                conversation_id,
                last_activity=datetime.now(UTC),
                last_assistant_messages=window,
                last_knowledge_sources=knowledge_sources,
            )
        except (KeyError, ValueError, OSError) as e:
            logger.warning(f"Failed to update knowledge continuity for {conversation_id}: {e}")

        return {
            "content": reply,
            "metadata": {
                **metadata,
                "conversation_id": conversation_id,
                "message_id": assistant_message.id,
            },
        }
