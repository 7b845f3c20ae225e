"""Synchronous change notification for the record-backed stores."""

import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]


class Subscribers(Generic[T]):
    """A list of callbacks invoked in registration order after each mutation."""

    def __init__(self, topic: str) -> None:
        self._topic = topic
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, payload: T) -> None:
        logger.debug("Notifying %d %s listener(s)", len(self._listeners), self._topic)
        for listener in list(self._listeners):
            listener(payload)

    def __len__(self) -> int:
        return len(self._listeners)
