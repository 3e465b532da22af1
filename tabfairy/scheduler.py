"""Periodic cache refresh plus event-driven single-tab updates."""

import asyncio
import logging
from typing import Optional

from .cache import TabDataCache
from .core.registry import LifecycleKind, TabLifecycleEvent, TabRegistry
from .events import NotificationBus, TabEvent

logger = logging.getLogger(__name__)


class PollScheduler:
    """Drive the cache from a polling timer and host lifecycle events."""

    def __init__(self, cache: TabDataCache, registry: TabRegistry, bus: NotificationBus,
                 polling_interval: float = 3.0):
        self.cache = cache
        self.registry = registry
        self.bus = bus
        self.polling_interval = polling_interval
        self.polling_task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self) -> None:
        """Subscribe to lifecycle events, refresh once, then poll."""
        if self.running:
            return

        self.running = True
        self.registry.subscribe_tab_events(self.handle_event)

        await self._refresh_once()
        self.polling_task = asyncio.create_task(self._polling_loop())
        logger.info(f"Polling started (every {self.polling_interval:g}s)")

    async def stop(self) -> None:
        if not self.running:
            return

        self.running = False
        self.registry.unsubscribe_tab_events(self.handle_event)

        if self.polling_task:
            self.polling_task.cancel()
            try:
                await self.polling_task
            except asyncio.CancelledError:
                pass
            self.polling_task = None

    async def _refresh_once(self) -> None:
        try:
            await self.cache.refresh()
        except Exception as e:
            logger.warning(f"Error updating cache: {e}")

    async def _polling_loop(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(self.polling_interval)
                if self.running:  # Check again after sleep
                    await self._refresh_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Error in polling loop: {e}")

    async def handle_event(self, event: TabLifecycleEvent) -> None:
        """Route a host lifecycle event into a targeted cache update."""
        try:
            if event.kind == LifecycleKind.CREATED:
                # Full data arrives with the next polling cycle
                self.bus.publish(TabEvent.TAB_CREATED, {"tab": event.tab})

            elif event.kind == LifecycleKind.UPDATED:
                if not self._is_relevant_update(event.change_info):
                    return
                await self.cache.update_tab(event.tab_id)
                self.bus.publish(TabEvent.TAB_UPDATED, {
                    "tabId": event.tab_id,
                    "changeInfo": event.change_info,
                    "tab": event.tab,
                })

            elif event.kind == LifecycleKind.REMOVED:
                self.cache.invalidate(event.tab_id)
                self.bus.publish(TabEvent.TAB_REMOVED, {
                    "tabId": event.tab_id,
                    "removeInfo": event.change_info,
                })

            elif event.kind == LifecycleKind.ACTIVATED:
                await self.cache.update_tab(event.tab_id)

        except Exception as e:
            logger.warning(f"Error handling {event.kind.value} event for tab {event.tab_id}: {e}")

    @staticmethod
    def _is_relevant_update(change_info: dict) -> bool:
        return (
            change_info.get("status") == "complete"
            or "audible" in change_info
            or "active" in change_info
        )
