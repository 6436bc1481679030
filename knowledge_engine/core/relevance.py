"""Keyword and fuzzy-token relevance matching for knowledge sources."""

import logging
import re
from collections.abc import Iterable

from knowledge_engine.lib.config import is_debug_enabled

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_RATIO = 0.25
_TOKEN_SPLIT = re.compile(r"\W+")


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def is_similar(a: str, b: str, ratio: float = DEFAULT_FUZZY_RATIO) -> bool:
    """Whether ``a`` and ``b`` are within max(1, floor(maxLen * ratio)) edits."""
    if not a or not b:
        return False
    if a == b:
        return True
    threshold = max(1, int(max(len(a), len(b)) * ratio))
    # Length gap alone already exceeds the threshold
    if abs(len(a) - len(b)) > threshold:
        return False
    return levenshtein(a, b) <= threshold


def tokenize(message: str) -> list[str]:
    return [t for t in _TOKEN_SPLIT.split(message.lower()) if t]


class RelevanceMatcher:
    """Decides whether a message concerns a source.

    Checks, in order: keyword substring, display-name substring, then fuzzy
    token match against every keyword and the name.
    """

    def __init__(
        self,
        source_id: str,
        name: str,
        keywords: Iterable[str],
        fuzzy_ratio: float = DEFAULT_FUZZY_RATIO,
    ):
        self.source_id = source_id
        self.name = name.lower()
        self.keywords = [k.lower() for k in keywords if k]
        self.fuzzy_ratio = fuzzy_ratio

    def is_relevant(self, message: str) -> bool:
        low = message.lower()
        debug = is_debug_enabled()

        if any(keyword in low for keyword in self.keywords):
            if debug:
                logger.debug(f"[relevance] direct keyword match for source={self.source_id}")
            return True

        if self.name and self.name in low:
            if debug:
                logger.debug(f"[relevance] name substring match for source={self.source_id}")
            return True

        tokens = tokenize(low)
        for token in tokens:
            for target in (*self.keywords, self.name):
                if is_similar(token, target, self.fuzzy_ratio):
                    if debug:
                        logger.debug(
                            f"[relevance] fuzzy match '{token}'~'{target}' "
                            f"for source={self.source_id}"
                        )
                    return True

        if debug:
            logger.debug(f"[relevance] no match for source={self.source_id} tokens={tokens}")
        return False
