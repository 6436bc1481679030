"""Conversation state consumed by the continuity heuristic."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class StoredMessage:
    """One persisted conversation message."""

    role: Literal["user", "assistant"]
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_now)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def knowledge_sources_used(self) -> list[str]:
        return list(self.metadata.get("knowledge_sources_used") or [])

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoredMessage":
        return cls(
            id=data["id"],
            role=data["role"],
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            metadata=data.get("metadata") or {},
        )


@dataclass
class ConversationContext:
    """Per-conversation context, including the knowledge continuity fields."""

    conversation_id: str
    user_id: str = ""
    platform: str = ""
    session_started: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)
    # Bounded window of the most recent assistant message ids
    last_assistant_messages: list[str] = field(default_factory=list)
    last_knowledge_sources: list[str] = field(default_factory=list)
    knowledge_version: int = 0

    def is_stale(self, library_version: int) -> bool:
        """Whether the knowledge library changed since this context was stamped."""
        return self.knowledge_version < library_version

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
            "platform": self.platform,
            "session_started": self.session_started.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "last_assistant_messages": list(self.last_assistant_messages),
            "last_knowledge_sources": list(self.last_knowledge_sources),
            "knowledge_version": self.knowledge_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationContext":
        return cls(
            conversation_id=data["conversation_id"],
            user_id=data.get("user_id", ""),
            platform=data.get("platform", ""),
            session_started=datetime.fromisoformat(data["session_started"]),
            last_activity=datetime.fromisoformat(data["last_activity"]),
            last_assistant_messages=list(data.get("last_assistant_messages") or []),
            last_knowledge_sources=list(data.get("last_knowledge_sources") or []),
            knowledge_version=int(data.get("knowledge_version", 0)),
        )
