import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, NamedTuple, Protocol

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], None]


class EventBus(Protocol):
    """The narrow publish/subscribe capability the engine is given."""

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        ...

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        ...


class DeadLetter(NamedTuple):
    topic: str
    payload: Dict[str, Any]
    error: Exception


class InMemoryEventBus:
    """
    Synchronous in-process bus. Handlers run in subscription order inside
    ``publish``; a failing handler is logged and recorded as a dead letter
    and the remaining handlers still run.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self.dead_letters: List[DeadLetter] = []
        self.published: List[tuple] = []

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Registers a handler and returns a callable that unsubscribes it."""
        self._handlers[topic].append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__qualname__', handler)} to '{topic}'")

        def unsubscribe() -> None:
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        self.published.append((topic, payload))
        # Copy so handlers may (un)subscribe while being dispatched
        for handler in list(self._handlers.get(topic, [])):
            try:
                handler(payload)
            except Exception as e:
                logger.error(f"Handler {getattr(handler, '__qualname__', handler)} failed for topic '{topic}': {e}", exc_info=True)
                self.dead_letters.append(DeadLetter(topic, payload, e))

    def messages(self, topic: str) -> List[Dict[str, Any]]:
        """Payloads published on ``topic`` so far, oldest first."""
        return [payload for published_topic, payload in self.published if published_topic == topic]

    def handler_count(self, topic: str) -> int:
        return len(self._handlers.get(topic, []))
