"""Per-tab script timing, heap and timer telemetry collected over CDP."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from ..core.connector import ChromeConnector
from ..models import PerformanceData

logger = logging.getLogger(__name__)

# Wraps setInterval/setTimeout so active timers can be counted later
TIMER_TRACKER_SCRIPT = """
(() => {
  if (window.__tabfairyTimers) return;
  const data = {
    activeIntervals: 0, activeTimeouts: 0,
    totalIntervalsCreated: 0, totalTimeoutsCreated: 0,
    averageIntervalDelay: 0, averageTimeoutDelay: 0,
  };
  const intervals = new Set();
  const timeouts = new Set();
  const intervalDelays = [];
  const timeoutDelays = [];
  const avg = (xs) => Math.round(xs.reduce((a, b) => a + b, 0) / xs.length);
  const track = (xs, delay) => { xs.push(Number(delay) || 0); if (xs.length > 100) xs.shift(); };
  const origSetInterval = window.setInterval;
  const origClearInterval = window.clearInterval;
  const origSetTimeout = window.setTimeout;
  const origClearTimeout = window.clearTimeout;

  window.setInterval = function(cb, delay, ...args) {
    const id = origSetInterval.call(window, cb, delay, ...args);
    intervals.add(id);
    data.totalIntervalsCreated++;
    track(intervalDelays, delay);
    data.averageIntervalDelay = avg(intervalDelays);
    return id;
  };
  window.clearInterval = function(id) {
    intervals.delete(id);
    return origClearInterval.call(window, id);
  };
  window.setTimeout = function(cb, delay, ...args) {
    const id = origSetTimeout.call(window, cb, delay, ...args);
    timeouts.add(id);
    data.totalTimeoutsCreated++;
    track(timeoutDelays, delay);
    data.averageTimeoutDelay = avg(timeoutDelays);
    origSetTimeout.call(window, () => timeouts.delete(id), delay);
    return id;
  };
  window.clearTimeout = function(id) {
    timeouts.delete(id);
    return origClearTimeout.call(window, id);
  };

  window.__tabfairyTimers = () => Object.assign({}, data, {
    activeIntervals: intervals.size,
    activeTimeouts: timeouts.size,
  });
})();
"""

PAGE_TIMING_SCRIPT = """
(() => {
  const paints = performance.getEntriesByType('paint');
  const fcp = paints.find(e => e.name === 'first-contentful-paint') || paints[paints.length - 1];
  const scriptTime = performance.getEntriesByType('resource')
    .filter(e => e.initiatorType === 'script')
    .reduce((sum, e) => sum + e.duration, 0);
  return {
    paintTime: fcp ? fcp.startTime : 0,
    scriptTime: scriptTime,
    memoryLimit: performance.memory ? performance.memory.jsHeapSizeLimit : 0,
    timers: window.__tabfairyTimers ? window.__tabfairyTimers() : null,
  };
})()
"""

MAX_CONCURRENT_SAMPLES = 8


def _seconds_to_ms(value: Any) -> float:
    return round(float(value or 0) * 1000, 1)


class PerformanceCollector:
    """Sample Performance.getMetrics and in-page timing for one tab at a time.

    ``session_for_tab`` returns (attaching if needed) the flattened CDP
    session for a tab id.
    """

    def __init__(self, connector: ChromeConnector,
                 session_for_tab: Callable[[int], Awaitable[str]],
                 max_concurrent: int = MAX_CONCURRENT_SAMPLES,
                 clock=time.time):
        self.connector = connector
        self.session_for_tab = session_for_tab
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.clock = clock

    async def enable_session(self, tab_id: int, session_id: str) -> None:
        """Session hook: enable the Performance domain and install the timer tracker."""
        try:
            await self.connector.call("Performance.enable", session_id=session_id, timeout=15.0)
        except Exception as e:
            # Some pages still answer getMetrics without an explicit enable
            logger.debug(f"Performance.enable failed for tab {tab_id}: {e}")

        # Persist across navigations, then apply to the current document
        try:
            await self.connector.call("Page.enable", session_id=session_id, timeout=5.0)
            await self.connector.call(
                "Page.addScriptToEvaluateOnNewDocument",
                {"source": TIMER_TRACKER_SCRIPT},
                session_id=session_id,
                timeout=10.0
            )
        except Exception as e:
            logger.debug(f"Page.addScriptToEvaluateOnNewDocument failed for tab {tab_id}: {e}")

        await self.connector.call(
            "Runtime.evaluate",
            {"expression": TIMER_TRACKER_SCRIPT, "returnByValue": False},
            session_id=session_id,
            timeout=10.0
        )
        logger.debug(f"Timer tracker injected for tab {tab_id}")

    async def get_performance_data(self, tab_id: int) -> Optional[PerformanceData]:
        async with self.semaphore:
            session_id = await self.session_for_tab(tab_id)

            metrics_response = await self.connector.call(
                "Performance.getMetrics", session_id=session_id
            )
            metrics = {m["name"]: m["value"] for m in metrics_response.get("metrics", [])}

            page: Dict[str, Any] = {}
            try:
                result = await self.connector.call(
                    "Runtime.evaluate",
                    {"expression": PAGE_TIMING_SCRIPT, "returnByValue": True},
                    session_id=session_id,
                    timeout=5.0
                )
                page = result.get("result", {}).get("value") or {}
            except Exception as e:
                logger.debug(f"Page timing read failed for tab {tab_id}: {e}")

        return self._build(metrics, page)

    def _build(self, metrics: Dict[str, Any], page: Dict[str, Any]) -> PerformanceData:
        timers = page.get("timers") or {}
        return PerformanceData(
            js_execution_time=_seconds_to_ms(metrics.get("ScriptDuration")),
            total_execution_time=_seconds_to_ms(metrics.get("TaskDuration")),
            script_time=round(float(page.get("scriptTime") or 0), 1),
            paint_time=round(float(page.get("paintTime") or 0), 1),
            layout_time=_seconds_to_ms(metrics.get("LayoutDuration")),
            memory_used=int(metrics.get("JSHeapUsedSize") or 0),
            memory_total=int(metrics.get("JSHeapTotalSize") or 0),
            memory_limit=int(page.get("memoryLimit") or 0),
            active_intervals=int(timers.get("activeIntervals") or 0),
            active_timeouts=int(timers.get("activeTimeouts") or 0),
            total_intervals_created=int(timers.get("totalIntervalsCreated") or 0),
            total_timeouts_created=int(timers.get("totalTimeoutsCreated") or 0),
            average_interval_delay=float(timers.get("averageIntervalDelay") or 0),
            average_timeout_delay=float(timers.get("averageTimeoutDelay") or 0),
            last_updated=self.clock(),
        )
