"""In-process notification bus for cache and tab lifecycle changes."""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Union

logger = logging.getLogger(__name__)


class TabEvent(str, Enum):
    """Event names accepted by the bus."""
    TAB_UPDATED = "tabUpdated"
    TAB_CREATED = "tabCreated"
    TAB_REMOVED = "tabRemoved"
    RESOURCE_UPDATED = "resourceUpdated"
    SCORE_UPDATED = "scoreUpdated"


Handler = Callable[[Dict[str, Any]], Any]


class NotificationBus:
    """Typed publish/subscribe registry.

    Handlers run synchronously in registration order. A failing handler is
    logged and never reaches the publisher or the remaining handlers.
    Coroutine handlers are scheduled on the running event loop.
    """

    def __init__(self):
        self.handlers: Dict[TabEvent, List[Handler]] = {event: [] for event in TabEvent}
        self._pending: set = set()

    @staticmethod
    def _resolve(event: Union[TabEvent, str]) -> TabEvent:
        try:
            return TabEvent(event)
        except ValueError:
            raise ValueError(f"Unknown event name: {event!r}") from None

    def subscribe(self, event: Union[TabEvent, str], handler: Handler) -> None:
        """Register a handler; unknown event names are rejected."""
        self.handlers[self._resolve(event)].append(handler)

    def unsubscribe(self, event: Union[TabEvent, str], handler: Handler) -> None:
        """Remove a handler, ignoring handlers that were never registered."""
        try:
            self.handlers[self._resolve(event)].remove(handler)
        except ValueError:
            pass

    def publish(self, event: Union[TabEvent, str], payload: Dict[str, Any]) -> None:
        event = self._resolve(event)
        # Copy so handlers may unsubscribe themselves while being dispatched
        for handler in list(self.handlers[event]):
            try:
                if asyncio.iscoroutinefunction(handler):
                    self._schedule(event, handler(payload))
                else:
                    handler(payload)
            except Exception as e:
                logger.warning(f"Error in event handler for {event.value}: {e}")

    def _schedule(self, event: TabEvent, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.warning(f"No running event loop for async {event.value} handler, skipped")
            return

        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning(f"Error in event handler for {event.value}: {t.exception()}")

        task.add_done_callback(_done)

    def handler_count(self, event: Union[TabEvent, str]) -> int:
        return len(self.handlers[self._resolve(event)])

    def clear(self) -> None:
        """Drop every subscription (shutdown)."""
        for handlers in self.handlers.values():
            handlers.clear()
