"""Runtime wrapper binding a descriptor to its executor and relevance matcher."""

import logging

from knowledge_engine.core.relevance import DEFAULT_FUZZY_RATIO, RelevanceMatcher
from knowledge_engine.executors.base_executor import BaseExecutor, CallContext
from knowledge_engine.executors.factory import ExecutorContext, get_executor_for
from knowledge_engine.lib.config import is_debug_enabled
from knowledge_engine.models.descriptor import KnowledgeDescriptor
from knowledge_engine.models.knowledge import ExecutionResult

logger = logging.getLogger(__name__)


class KnowledgeSource:
    """A registered knowledge source.

    The descriptor is immutable; only ``enabled`` changes at runtime, and only
    through the library so the version counter stays accurate.
    """

    def __init__(
        self,
        descriptor: KnowledgeDescriptor,
        executor: BaseExecutor,
        fuzzy_ratio: float = DEFAULT_FUZZY_RATIO,
    ):
        self.descriptor = descriptor
        self.executor = executor
        self.enabled = descriptor.enabled
        self.matcher = RelevanceMatcher(
            descriptor.id, descriptor.name, descriptor.keywords, fuzzy_ratio
        )

    @classmethod
    def from_descriptor(
        cls,
        descriptor: KnowledgeDescriptor,
        ctx: ExecutorContext | None = None,
        fuzzy_ratio: float = DEFAULT_FUZZY_RATIO,
    ) -> "KnowledgeSource":
        return cls(descriptor, get_executor_for(descriptor, ctx), fuzzy_ratio)

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def description(self) -> str:
        return self.descriptor.description

    @property
    def keywords(self) -> list[str]:
        return self.descriptor.keywords

    @property
    def priority(self) -> int:
        return self.descriptor.priority

    def is_relevant(self, message: str) -> bool:
        return self.matcher.is_relevant(message)

    async def fetch_context(self, call_context: CallContext | None = None) -> ExecutionResult:
        result = await self.executor.execute(self.descriptor, call_context)
        if is_debug_enabled():
            logger.debug(
                f"[fetch] {self.id}: text={len(result.text)} chars "
                f"structured={'yes' if result.structured is not None else 'no'} "
                f"metadata={result.metadata}"
            )
        return result

    def get_suggestions(self) -> list[str]:
        """Suggestions known without fetching: descriptor metadata and static config."""
        suggestions = list(self.descriptor.metadata_suggestions)
        if self.descriptor.static is not None:
            suggestions.extend(self.descriptor.static.suggestions)
        return suggestions

    def __repr__(self) -> str:
        return (
            f"KnowledgeSource(id={self.id!r}, priority={self.priority}, "
            f"enabled={self.enabled}, backend={self.descriptor.backend_kind.value})"
        )
