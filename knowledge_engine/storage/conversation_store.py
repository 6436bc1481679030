"""Conversation stores used by the message bridge.

Stores are append-only for messages and last-write-wins for context updates.
``FileConversationStore`` keeps human-readable JSON under
``data/conversations/{messages,contexts}/<conversation_id>.json``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import fields
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from knowledge_engine.models.conversation import ConversationContext, StoredMessage

logger = logging.getLogger(__name__)

_CONTEXT_FIELDS = {f.name for f in fields(ConversationContext)} - {"conversation_id"}
_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]")


def _check_updates(updates: dict[str, Any]) -> None:
    unknown = set(updates) - _CONTEXT_FIELDS
    if unknown:
        raise ValueError(f"Unknown conversation context fields: {sorted(unknown)}")


class ConversationStore(ABC):
    """Message and context persistence for conversations."""

    @abstractmethod
    async def create_context(
        self, conversation_id: str, user_id: str = "", platform: str = ""
    ) -> ConversationContext:
        pass

    @abstractmethod
    async def get_context(self, conversation_id: str) -> ConversationContext | None:
        pass

    @abstractmethod
    async def update_context(self, conversation_id: str, **updates: Any) -> ConversationContext:
        """Apply field updates to an existing context.

        Raises:
            KeyError: If the conversation has no context
            ValueError: If an update names an unknown field
        """
        pass

    @abstractmethod
    async def add_message(self, conversation_id: str, message: StoredMessage) -> StoredMessage:
        pass

    @abstractmethod
    async def get_messages(
        self, conversation_id: str, limit: int | None = None
    ) -> list[StoredMessage]:
        """Messages oldest first; ``limit`` keeps the most recent ones."""
        pass

    @abstractmethod
    async def list_conversations(self) -> list[str]:
        pass


class InMemoryConversationStore(ConversationStore):
    """Process-local store."""

    def __init__(self, max_messages: int = 100):
        self.max_messages = max_messages
        self._contexts: dict[str, ConversationContext] = {}
        self._messages: dict[str, list[StoredMessage]] = {}

    async def create_context(self, conversation_id, user_id="", platform=""):
        context = ConversationContext(
            conversation_id=conversation_id, user_id=user_id, platform=platform
        )
        self._contexts[conversation_id] = context
        self._messages.setdefault(conversation_id, [])
        return context

    async def get_context(self, conversation_id):
        return self._contexts.get(conversation_id)

    async def update_context(self, conversation_id, **updates):
        _check_updates(updates)
        context = self._contexts[conversation_id]
        for name, value in updates.items():
            setattr(context, name, value)
        return context

    async def add_message(self, conversation_id, message):
        messages = self._messages.setdefault(conversation_id, [])
        messages.append(message)
        if len(messages) > self.max_messages:
            del messages[: len(messages) - self.max_messages]
        if conversation_id in self._contexts:
            self._contexts[conversation_id].last_activity = datetime.now(UTC)
        return message

    async def get_messages(self, conversation_id, limit=None):
        messages = list(self._messages.get(conversation_id, []))
        return messages[-limit:] if limit else messages

    async def list_conversations(self):
        return list(self._contexts)


class FileConversationStore(ConversationStore):
    """JSON-file store with one messages file and one context file per conversation."""

    def __init__(self, base_dir: str | None = None, max_messages: int = 100):
        base = base_dir or os.environ.get("CONVERSATION_STORAGE_DIR", "data/conversations")
        self.root = Path(base)
        self.messages_dir = self.root / "messages"
        self.contexts_dir = self.root / "contexts"
        self.messages_dir.mkdir(parents=True, exist_ok=True)
        self.contexts_dir.mkdir(parents=True, exist_ok=True)
        self.max_messages = max_messages

    def _filename(self, conversation_id: str) -> str:
        return f"{_UNSAFE_FILENAME.sub('_', conversation_id)}.json"

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _write_json(self, path: Path, data: Any) -> None:
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    def _load_context(self, conversation_id: str) -> ConversationContext | None:
        data = self._read_json(self.contexts_dir / self._filename(conversation_id))
        return ConversationContext.from_dict(data) if data else None

    def _save_context(self, context: ConversationContext) -> None:
        self._write_json(
            self.contexts_dir / self._filename(context.conversation_id), context.to_dict()
        )

    def _load_messages(self, conversation_id: str) -> list[StoredMessage]:
        data = self._read_json(self.messages_dir / self._filename(conversation_id)) or []
        return [StoredMessage.from_dict(item) for item in data]

    async def create_context(self, conversation_id, user_id="", platform=""):
        context = ConversationContext(
            conversation_id=conversation_id, user_id=user_id, platform=platform
        )
        await asyncio.to_thread(self._save_context, context)
        logger.info(f"Created conversation context {conversation_id}")
        return context

    async def get_context(self, conversation_id):
        return await asyncio.to_thread(self._load_context, conversation_id)

    async def update_context(self, conversation_id, **updates):
        _check_updates(updates)

        def _update() -> ConversationContext:
            context = self._load_context(conversation_id)
            if context is None:
                raise KeyError(conversation_id)
            for name, value in updates.items():
                setattr(context, name, value)
            self._save_context(context)
            return context

        return await asyncio.to_thread(_update)

    async def add_message(self, conversation_id, message):
        def _append() -> None:
            messages = self._load_messages(conversation_id)
            messages.append(message)
            messages = messages[-self.max_messages :]
            self._write_json(
                self.messages_dir / self._filename(conversation_id),
                [m.to_dict() for m in messages],
            )
            context = self._load_context(conversation_id)
            if context is not None:
                context.last_activity = datetime.now(UTC)
                self._save_context(context)

        await asyncio.to_thread(_append)
        return message

    async def get_messages(self, conversation_id, limit=None):
        messages = await asyncio.to_thread(self._load_messages, conversation_id)
        return messages[-limit:] if limit else messages

    async def list_conversations(self):
        def _list() -> list[str]:
            ids = []
            for path in sorted(self.contexts_dir.glob("*.json")):
                data = self._read_json(path)
                if data:
                    ids.append(data["conversation_id"])
            return ids

        return await asyncio.to_thread(_list)
