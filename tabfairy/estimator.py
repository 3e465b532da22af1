"""Resource usage estimation for tabs.

The host does not expose per-tab CPU or memory, so figures are derived from tab
state with bounded multiplicative jitter. Real telemetry (network counters,
in-page script timing) replaces or refines the heuristics when available.
"""

import logging
import random
import time
from typing import Any, Optional, Tuple

from .models import NetworkUsage, PerformanceData, ResourceUsage, StorageUsage, Tab

logger = logging.getLogger(__name__)

MEDIA_DOMAINS = ("youtube.com", "vimeo.com", "twitch.tv", "netflix.com", "hulu.com", "spotify.com")
MEDIA_KEYWORDS = ("video", "audio", "stream", "media")

BASE_MEMORY_MB = 50
LONG_URL_LENGTH = 100

# Jitter ranges (multiplicative factors)
MEMORY_JITTER = (0.8, 1.2)
CPU_JITTER = (0.7, 1.3)
NETWORK_JITTER = (0.5, 1.5)
STORAGE_JITTER = (0.7, 1.3)

# Window over which heuristic byte counts are spread into per-second rates
RATE_WINDOW_SECONDS = 5.0

MAX_TIMER_CPU_BONUS = 15.0
MAX_SCRIPT_CPU_BONUS = 10.0


def is_media_tab(tab: Tab) -> bool:
    """Check if a tab plays or streams media."""
    if tab.audible:
        return True
    if not tab.url:
        return False
    url = tab.url.lower()
    return any(domain in url for domain in MEDIA_DOMAINS) or any(word in url for word in MEDIA_KEYWORDS)


class ResourceEstimator:
    """Build a ResourceUsage snapshot from tab attributes and optional telemetry.

    Args:
        rng: random source with ``uniform(a, b)``; seed it for reproducible jitter.
        network_telemetry: object with ``async get_network_usage(tab_id)``.
        performance_telemetry: object with ``async get_performance_data(tab_id)``.
    """

    def __init__(self, rng: Optional[Any] = None,
                 network_telemetry: Optional[Any] = None,
                 performance_telemetry: Optional[Any] = None,
                 clock=time.time):
        self.rng = rng if rng is not None else random.Random()
        self.network_telemetry = network_telemetry
        self.performance_telemetry = performance_telemetry
        self.clock = clock

    async def estimate(self, tab: Tab) -> ResourceUsage:
        """Estimate resource usage for one tab."""
        performance = await self._fetch_performance(tab.id)
        real_network = await self._fetch_network(tab.id)

        memory, memory_measured = self.estimate_memory(tab, performance)
        cpu = self.estimate_cpu(tab, performance)
        if real_network is not None:
            network = real_network
        else:
            network = self.estimate_network(tab)

        return ResourceUsage(
            tab_id=tab.id,
            memory=memory,
            cpu=cpu,
            network=network,
            storage=self.estimate_storage(tab),
            performance=performance,
            timestamp=self.clock(),
            measured={
                "memory": memory_measured,
                "cpu": False,  # never observable from the host
                "network": real_network is not None,
                "storage": False,
                "performance": performance is not None,
            },
        )

    def _factor(self, bounds: Tuple[float, float]) -> float:
        low, high = bounds
        return min(high, max(low, self.rng.uniform(low, high)))

    def _jitter(self, value: float, bounds: Tuple[float, float]) -> float:
        return max(0.0, value * self._factor(bounds))

    def estimate_memory(self, tab: Tab, performance: Optional[PerformanceData] = None) -> Tuple[float, bool]:
        """Return (memory MB, measured flag)."""
        if tab.discarded:
            return float(max(5, BASE_MEMORY_MB * 0.1)), False

        if performance is not None and performance.memory_used > 0:
            return round(performance.memory_used / (1024 * 1024), 1), True

        memory_mb = float(BASE_MEMORY_MB)
        if tab.active:
            memory_mb += 100
        if tab.audible:
            memory_mb += 150
        # Pinned tabs are typically lighter
        if tab.pinned:
            memory_mb *= 0.7
        if is_media_tab(tab):
            memory_mb += 200
        if tab.url and len(tab.url) > LONG_URL_LENGTH:
            memory_mb += 20

        return float(round(self._jitter(memory_mb, MEMORY_JITTER))), False

    def estimate_cpu(self, tab: Tab, performance: Optional[PerformanceData] = None) -> float:
        """Return CPU percent in [0, 100], one decimal."""
        if tab.discarded:
            return 0.0

        cpu = 15.0 if tab.active else 2.0
        if tab.audible:
            cpu += 20
        if is_media_tab(tab):
            cpu += 30
        if tab.pinned:
            cpu *= 0.5

        cpu = self._jitter(cpu, CPU_JITTER)

        if performance is not None:
            timers = performance.active_intervals + performance.active_timeouts
            cpu += min(MAX_TIMER_CPU_BONUS, timers * 0.5)
            cpu += min(MAX_SCRIPT_CPU_BONUS, performance.js_execution_time / 100)

        return round(min(100.0, max(0.0, cpu)), 1)

    def estimate_network(self, tab: Tab) -> NetworkUsage:
        """Heuristic network usage used when no real counters exist."""
        if tab.discarded:
            return NetworkUsage()

        bytes_in = 50_000.0
        requests_per_second = 0.5
        if tab.active:
            bytes_in += 100_000
            requests_per_second += 1
        if is_media_tab(tab):
            bytes_in += 500_000  # streaming
            requests_per_second += 2

        factor = self._factor(NETWORK_JITTER)
        jittered_in = round(bytes_in * factor)
        # Outbound is typically 10% of inbound
        jittered_out = round(bytes_in * 0.1 * factor)
        jittered_rps = round(requests_per_second * factor, 1)

        return NetworkUsage(
            bytes_in=jittered_in,
            bytes_out=jittered_out,
            bytes_in_per_second=round(jittered_in / RATE_WINDOW_SECONDS),
            bytes_out_per_second=round(jittered_out / RATE_WINDOW_SECONDS),
            requests_per_second=jittered_rps,
            total_requests=round(jittered_rps * RATE_WINDOW_SECONDS),
        )

    def estimate_storage(self, tab: Tab) -> StorageUsage:
        """Heuristic storage footprint in KB."""
        if not tab.url or tab.discarded:
            return StorageUsage()

        local_storage = 100
        indexed_db = 50
        cache = 200
        if tab.active:
            local_storage += 50
            cache += 100
        if is_media_tab(tab):
            indexed_db += 500
            cache += 1000

        factor = self._factor(STORAGE_JITTER)
        return StorageUsage(
            local_storage=round(local_storage * factor),
            indexed_db=round(indexed_db * factor),
            cache=round(cache * factor),
            total=round((local_storage + indexed_db + cache) * factor),
        )

    async def _fetch_performance(self, tab_id: int) -> Optional[PerformanceData]:
        if self.performance_telemetry is None:
            return None
        try:
            data = await self.performance_telemetry.get_performance_data(tab_id)
        except Exception as e:
            logger.debug(f"Performance telemetry unavailable for tab {tab_id}: {e}")
            return None
        if data is None or not data.has_data:
            return None
        return data

    async def _fetch_network(self, tab_id: int) -> Optional[NetworkUsage]:
        if self.network_telemetry is None:
            return None
        try:
            return await self.network_telemetry.get_network_usage(tab_id)
        except Exception as e:
            logger.debug(f"Network telemetry unavailable for tab {tab_id}: {e}")
            return None
