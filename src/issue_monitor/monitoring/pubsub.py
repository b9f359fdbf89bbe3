"""
In-process publish/subscribe for monitoring notifications.

Subscribers register per topic. publish() is synchronous so it can be
called from the track_* family; handlers that return an awaitable are
scheduled on the running event loop and tracked until drain().
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

# Topics
METRIC_RECORDED = "metric.recorded"
ERROR_OCCURRED = "error.occurred"
ALERT_TRIGGERED = "alert.triggered"
ALERT_RESOLVED = "alert.resolved"

# Handler receives the published payload; returns None or an awaitable
EventHandler = Callable[[Any], Any]


class EventBus:
    """
    Topic-based observer registry.

    Usage:
        bus = EventBus()
        unsubscribe = bus.subscribe(ALERT_TRIGGERED, notifier.on_alert)

        bus.publish(ALERT_TRIGGERED, alert)
        await bus.drain()  # wait for async handlers

        unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, topic: str, handler: EventHandler) -> Callable[[], None]:
        """
        Register a handler for a topic.

        Returns:
            Callable that removes this subscription
        """
        self._handlers.setdefault(topic, []).append(handler)
        return lambda: self.unsubscribe(topic, handler)

    def unsubscribe(self, topic: str, handler: EventHandler) -> bool:
        """Remove a handler. Returns False if it was not subscribed."""
        handlers = self._handlers.get(topic, [])
        if handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def subscriber_count(self, topic: str) -> int:
        return len(self._handlers.get(topic, []))

    def publish(self, topic: str, payload: Any) -> int:
        """
        Deliver a payload to every handler of a topic.

        A failing handler is logged and does not affect the publisher or the
        remaining handlers.

        Returns:
            Number of handlers invoked
        """
        # Copy so handlers may unsubscribe while being called
        handlers = list(self._handlers.get(topic, []))
        for handler in handlers:
            try:
                result = handler(payload)
            except Exception as e:
                logger.error(f"Error in {topic} handler {_handler_name(handler)}: {e}")
                continue

            if inspect.isawaitable(result):
                self._schedule(topic, handler, result)

        return len(handlers)

    async def drain(self) -> None:
        """Wait until every scheduled async handler has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, topic: str, handler: EventHandler, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                f"No running event loop for async {topic} handler "
                f"{_handler_name(handler)}; dropped"
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._run_handler(topic, handler, awaitable))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_handler(self, topic: str, handler: EventHandler, awaitable: Any) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.error(f"Error in {topic} handler {_handler_name(handler)}: {e}")


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)
