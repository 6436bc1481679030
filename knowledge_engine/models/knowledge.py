"""Retrieval results and enhancement output."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from knowledge_engine.core.knowledge_source import KnowledgeSource


class ExecutionResult(BaseModel):
    """Content retrieved by an executor for one descriptor.

    ``text`` is always safe to place in a prompt. ``structured`` carries the
    full payload for programmatic consumers and is the preferred render target
    when it has a recognized shape.
    """

    text: str = ""
    structured: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    suggestions: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text and self.structured is None

    @classmethod
    def empty(cls, source_id: str, **metadata: Any) -> ExecutionResult:
        """An empty result; used for "no data" and unconfigured backends."""
        return cls(text="", metadata={"id": source_id, **metadata})


@dataclass
class KnowledgeContext:
    """Output of one enhancement call."""

    sources: list[KnowledgeSource]
    enhanced_message: str
    suggestions: list[str] = field(default_factory=list)
    used_sources: list[str] = field(default_factory=list)

    @property
    def enhanced(self) -> bool:
        return bool(self.used_sources)
