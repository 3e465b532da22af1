"""TabFairy monitoring service - lifecycle-scoped coordinator."""

import asyncio
import logging
import random
from typing import Optional

from .advisor import OptimizationAdvisor
from .api import TabsAPI
from .cache import TabDataCache
from .config import MonitorConfig
from .core.chrome_tabs import ChromeTabRegistry
from .core.connector import ChromeConnector
from .core.registry import LifecycleKind, TabLifecycleEvent
from .estimator import ResourceEstimator
from .events import NotificationBus
from .monitors.network import NetworkTracker
from .monitors.performance import PerformanceCollector
from .scheduler import PollScheduler

logger = logging.getLogger(__name__)


class TabFairyService:
    """Wire the pipeline to one Chrome instance and own its lifecycle.

    Everything is created in the constructor and torn down in ``stop()``;
    nothing lives at module level.
    """

    def __init__(self, config: Optional[MonitorConfig] = None,
                 connector: Optional[ChromeConnector] = None):
        self.config = config or MonitorConfig()
        self.connector = connector or ChromeConnector(host=self.config.host, port=self.config.port)
        self.exit_event = asyncio.Event()
        self.running = False

        self.registry = ChromeTabRegistry(self.connector)
        self.network = NetworkTracker(self.connector, self.registry.tab_id_for_session)
        self.performance = PerformanceCollector(self.connector, self.registry.ensure_session)
        self.registry.add_session_hook(self.network.enable_session)
        self.registry.add_session_hook(self.performance.enable_session)

        self.bus = NotificationBus()
        self.estimator = ResourceEstimator(
            rng=random.Random(self.config.seed),
            network_telemetry=self.network,
            performance_telemetry=self.performance,
        )
        self.advisor = OptimizationAdvisor(self.registry)
        self.cache = TabDataCache(
            self.registry, self.estimator, self.advisor, bus=self.bus,
            cache_ttl=self.config.cache_ttl, batch_size=self.config.batch_size,
        )
        self.scheduler = PollScheduler(
            self.cache, self.registry, self.bus, polling_interval=self.config.polling_interval
        )
        self.api = TabsAPI(
            self.registry, self.estimator, self.advisor, self.cache,
            batch_size=self.config.batch_size,
        )

    async def connect(self) -> None:
        """Connect to Chrome without starting background work (one-shot queries)."""
        if self.connector.websocket is None:
            await self.connector.connect()
        self.connector.set_connection_lost_callback(self._on_connection_lost)

    async def start(self) -> None:
        """Connect, start telemetry and lifecycle tracking, then begin polling."""
        if self.running:
            return
        await self.connect()
        await self.network.start()
        self.registry.subscribe_tab_events(self._on_tab_lifecycle)
        await self.registry.start()
        await self.scheduler.start()
        self.running = True
        logger.info(f"Monitoring started on {self.config.host}:{self.config.port}")

    async def stop(self) -> None:
        """Stop polling, drop subscriptions and close the connection."""
        try:
            await self.scheduler.stop()
            await self.cache.close()
            await self.network.stop()
            self.registry.unsubscribe_tab_events(self._on_tab_lifecycle)
            await self.registry.stop()
        finally:
            self.bus.clear()
            self.running = False
            if self.connector.websocket:
                await self.connector.disconnect()
        logger.info("Monitoring stopped")

    async def run(self, duration: Optional[float] = None) -> None:
        """Start, then wait for ``duration`` seconds or until the browser goes away."""
        await self.start()
        try:
            if duration:
                try:
                    await asyncio.wait_for(self.exit_event.wait(), timeout=duration)
                except asyncio.TimeoutError:
                    logger.info(f"Monitoring completed after {duration} seconds")
            else:
                await self.exit_event.wait()
        finally:
            await self.stop()

    def _on_tab_lifecycle(self, event: TabLifecycleEvent) -> None:
        if event.kind == LifecycleKind.REMOVED:
            self.network.reset_tab(event.tab_id)

    def _on_connection_lost(self) -> None:
        logger.warning("Browser connection lost")
        self.exit_event.set()

    async def __aenter__(self) -> "TabFairyService":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
