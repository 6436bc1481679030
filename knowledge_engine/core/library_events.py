"""Change notifications for the knowledge library registry."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    REGISTERED = "registered"
    REMOVED = "removed"
    ENABLED = "enabled"
    DISABLED = "disabled"


@dataclass(frozen=True)
class LibraryChangeEvent:
    kind: ChangeKind
    source_id: str
    version: int


ChangeListener = Callable[[LibraryChangeEvent], None]


class ChangeNotifier:
    """Delivers change events to listeners in subscription order.

    A listener that raises is logged and skipped; the remaining listeners
    still receive the event.
    """

    def __init__(self):
        self._listeners: list[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Add a listener; returns a function that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: LibraryChangeEvent) -> int:
        """Deliver ``event``; returns how many listeners failed."""
        failures = 0
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                failures += 1
                logger.warning(
                    f"Knowledge library change listener {listener!r} failed on "
                    f"{event.kind.value} {event.source_id}: {e}"
                )
        return failures

    def __len__(self) -> int:
        return len(self._listeners)
