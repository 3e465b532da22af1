"""Time-boxed per-tab cache of tabs, resource usage, scores and suggestions."""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple

from .advisor import OptimizationAdvisor
from .core.registry import TabRegistry
from .errors import EstimationError, TabNotFoundError, UpstreamUnavailableError
from .estimator import ResourceEstimator
from .events import NotificationBus, TabEvent
from .models import CacheSnapshot, ResourceUsage, Score, Suggestion, Tab
from .scoring import compute_score

logger = logging.getLogger(__name__)

Analysis = Tuple[ResourceUsage, Score, List[Suggestion]]


async def estimate_tab(estimator: ResourceEstimator, tab: Tab) -> ResourceUsage:
    """Run the estimator, raising EstimationError on any failure."""
    try:
        return await estimator.estimate(tab)
    except Exception as e:
        raise EstimationError(f"Failed to estimate tab {tab.id}: {e}") from e


async def analyze_tab(estimator: ResourceEstimator, advisor: OptimizationAdvisor,
                      tab: Tab) -> Analysis:
    """Estimate, score and advise one tab as a unit."""
    usage = await estimate_tab(estimator, tab)
    try:
        score = compute_score(tab, usage)
        return usage, score, advisor.advise(tab, score, usage)
    except Exception as e:
        raise EstimationError(f"Failed to score tab {tab.id}: {e}") from e


class TabDataCache:
    """Snapshot cache fed by the estimate -> score -> advise pipeline.

    ``get()`` never waits: an expired snapshot is returned as-is and a
    background refresh is scheduled. Writes are keyed by tab id and each
    tab's update is serialized by its own lock, so a batch refresh and a
    lifecycle-driven update of the same tab cannot interleave.
    """

    def __init__(self, registry: TabRegistry, estimator: ResourceEstimator,
                 advisor: OptimizationAdvisor, bus: Optional[NotificationBus] = None,
                 cache_ttl: float = 5.0, batch_size: int = 5, clock=time.time):
        self.registry = registry
        self.estimator = estimator
        self.advisor = advisor
        self.bus = bus
        self.cache_ttl = cache_ttl
        self.batch_size = max(1, batch_size)
        self.clock = clock

        self.tabs: Dict[int, Tab] = {}
        self.resource_usage: Dict[int, ResourceUsage] = {}
        self.scores: Dict[int, Score] = {}
        self.suggestions: Dict[int, List[Suggestion]] = {}
        self.last_update: float = 0.0

        self.tab_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        # Bumped by invalidate() while update_tab() reads are in flight
        self.pending_reads: Dict[int, int] = {}
        self.generations: Dict[int, int] = {}
        self.refresh_task: Optional[asyncio.Task] = None

    @property
    def is_expired(self) -> bool:
        return (self.clock() - self.last_update) > self.cache_ttl

    def get(self) -> CacheSnapshot:
        """Return the committed snapshot immediately, refreshing in the background if stale."""
        expired = self.is_expired
        if expired:
            self._schedule_refresh()

        return CacheSnapshot(
            tabs=dict(self.tabs),
            resource_usage=dict(self.resource_usage),
            scores=dict(self.scores),
            suggestions={tab_id: list(items) for tab_id, items in self.suggestions.items()},
            last_update=self.last_update,
            is_expired=expired,
        )

    def _schedule_refresh(self) -> None:
        if self.refresh_task is not None and not self.refresh_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Cache expired outside an event loop, refresh not scheduled")
            return

        self.refresh_task = loop.create_task(self.refresh())
        self.refresh_task.add_done_callback(self._on_background_refresh_done)

    def _on_background_refresh_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.warning(f"Background cache update failed: {task.exception()}")

    async def refresh(self) -> CacheSnapshot:
        """Re-enumerate host tabs and run the full pipeline for each, in batches."""
        try:
            tabs = await self.registry.list_tabs()
        except UpstreamUnavailableError:
            raise
        except Exception as e:
            raise UpstreamUnavailableError(f"Failed to list tabs: {e}") from e

        current_ids: Set[int] = set()
        for tab in tabs:
            self.tabs[tab.id] = tab
            current_ids.add(tab.id)

        # Drop tabs the host no longer reports
        for stale_id in set(self.tabs) - current_ids:
            logger.debug(f"Removed stale tab {stale_id} via refresh")
            self.invalidate(stale_id)

        for start in range(0, len(tabs), self.batch_size):
            batch = tabs[start:start + self.batch_size]
            await asyncio.gather(*(self._update_entry(tab) for tab in batch))

        self.last_update = self.clock()
        logger.debug(f"Cache updated with {len(tabs)} tabs")
        return self.get()

    async def update_tab(self, tab_id: int) -> bool:
        """Recompute a single tab outside the polling cycle.

        Returns False when the tab could not be read or estimated; the
        previous cache slot is left untouched in that case. A tab invalidated
        while its read is in flight is not written back.
        """
        self.pending_reads[tab_id] = self.pending_reads.get(tab_id, 0) + 1
        generation = self.generations.get(tab_id, 0)
        try:
            try:
                tab = await self.registry.get_tab(tab_id)
            except TabNotFoundError:
                logger.debug(f"Tab {tab_id} vanished before update")
                return False
            except Exception as e:
                logger.warning(f"Error reading tab {tab_id} from host: {e}")
                return False

            return await self._update_entry(tab, generation)
        finally:
            self.pending_reads[tab_id] -= 1
            if self.pending_reads[tab_id] <= 0:
                del self.pending_reads[tab_id]
                self.generations.pop(tab_id, None)

    def _dropped(self, tab_id: int, generation: Optional[int]) -> bool:
        if generation is None:
            return tab_id not in self.tabs
        return self.generations.get(tab_id, 0) != generation

    async def _update_entry(self, tab: Tab, generation: Optional[int] = None) -> bool:
        """Run the pipeline for one tab and commit under its lock.

        ``generation`` is set for single-tab updates, which also write the
        tab record; refresh passes None and only updates tabs still cached.
        """
        tab_id = tab.id
        async with self.tab_locks[tab_id]:
            if self._dropped(tab_id, generation):
                return False
            try:
                usage, score, suggestions = await analyze_tab(self.estimator, self.advisor, tab)
            except EstimationError as e:
                logger.warning(f"Error updating cache for tab {tab_id}: {e}")
                return False

            if self._dropped(tab_id, generation):
                logger.debug(f"Tab {tab_id} invalidated during update, result discarded")
                return False

            if generation is not None:
                self.tabs[tab_id] = tab
            self.resource_usage[tab_id] = usage
            self._publish(TabEvent.RESOURCE_UPDATED, {"tabId": tab_id, "resourceUsage": usage})
            self.scores[tab_id] = score
            self._publish(TabEvent.SCORE_UPDATED, {"tabId": tab_id, "score": score})
            self.suggestions[tab_id] = suggestions
            return True

    def invalidate(self, tab_id: int) -> None:
        """Remove every entry for a tab (no tombstone)."""
        if tab_id in self.pending_reads:
            self.generations[tab_id] = self.generations.get(tab_id, 0) + 1
        self.tabs.pop(tab_id, None)
        self.resource_usage.pop(tab_id, None)
        self.scores.pop(tab_id, None)
        self.suggestions.pop(tab_id, None)
        lock = self.tab_locks.get(tab_id)
        if lock is not None and not lock.locked():
            del self.tab_locks[tab_id]

    def _publish(self, event: TabEvent, payload: dict) -> None:
        if self.bus is not None:
            self.bus.publish(event, payload)

    async def close(self) -> None:
        """Cancel an in-flight background refresh."""
        if self.refresh_task is not None and not self.refresh_task.done():
            self.refresh_task.cancel()
            try:
                await self.refresh_task
            except asyncio.CancelledError:
                pass
        self.refresh_task = None
