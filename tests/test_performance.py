"""Tests for the CDP performance collector."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from tabfairy.core.connector import ChromeConnector
from tabfairy.monitors.performance import (
    PAGE_TIMING_SCRIPT, TIMER_TRACKER_SCRIPT, PerformanceCollector,
)

from conftest import FakeClock


METRICS = {
    "metrics": [
        {"name": "JSHeapUsedSize", "value": 52428800},
        {"name": "JSHeapTotalSize", "value": 83886080},
        {"name": "ScriptDuration", "value": 0.75},
        {"name": "TaskDuration", "value": 2.5},
        {"name": "LayoutDuration", "value": 0.125},
    ]
}

PAGE = {
    "paintTime": 321.46,
    "scriptTime": 88.0,
    "memoryLimit": 4294705152,
    "timers": {
        "activeIntervals": 3,
        "activeTimeouts": 2,
        "totalIntervalsCreated": 5,
        "totalTimeoutsCreated": 40,
        "averageIntervalDelay": 1000,
        "averageTimeoutDelay": 250,
    },
}


@pytest.fixture
def connector():
    """Create a mock ChromeConnector answering metrics and page timing."""
    connector = MagicMock(spec=ChromeConnector)

    async def call(method, params=None, session_id=None, timeout=None):
        if method == "Performance.getMetrics":
            return METRICS
        if method == "Runtime.evaluate" and params["expression"] == PAGE_TIMING_SCRIPT:
            return {"result": {"type": "object", "value": PAGE}}
        return {}

    connector.call = AsyncMock(side_effect=call)
    return connector


@pytest.fixture
def session_for_tab():
    return AsyncMock(return_value="session-1")


@pytest.fixture
def collector(connector, session_for_tab):
    return PerformanceCollector(connector, session_for_tab, clock=FakeClock(now=500.0))


@pytest.mark.asyncio
class TestPerformanceCollector:
    """Test PerformanceCollector sampling and session setup."""

    async def test_collects_metrics_and_page_timing(self, collector, session_for_tab):
        """Test that CDP metrics and page timing fill PerformanceData."""
        data = await collector.get_performance_data(7)

        session_for_tab.assert_awaited_once_with(7)
        assert data.memory_used == 52428800
        assert data.memory_total == 83886080
        assert data.memory_limit == 4294705152
        assert data.js_execution_time == 750.0
        assert data.total_execution_time == 2500.0
        assert data.layout_time == 125.0
        assert data.paint_time == 321.5
        assert data.script_time == 88.0
        assert data.active_intervals == 3
        assert data.active_timeouts == 2
        assert data.total_timeouts_created == 40
        assert data.average_interval_delay == 1000.0
        assert data.last_updated == 500.0
        assert data.has_data

    async def test_page_timing_failure_keeps_metrics(self, connector, session_for_tab):
        """Test that a failed page timing read keeps the CDP metrics."""
        async def call(method, params=None, session_id=None, timeout=None):
            if method == "Performance.getMetrics":
                return METRICS
            raise RuntimeError("Execution context was destroyed")

        connector.call = AsyncMock(side_effect=call)
        collector = PerformanceCollector(connector, session_for_tab)

        data = await collector.get_performance_data(7)

        assert data.memory_used == 52428800
        assert data.active_intervals == 0
        assert data.paint_time == 0.0

    async def test_missing_session_propagates(self, connector):
        """Test that session errors reach the caller."""
        collector = PerformanceCollector(connector, AsyncMock(side_effect=RuntimeError("no target")))

        with pytest.raises(RuntimeError):
            await collector.get_performance_data(1)

    async def test_enable_session_installs_timer_tracker(self, collector, connector):
        """Test the domains enabled and the tracker installed per session."""
        await collector.enable_session(3, "session-3")

        methods = [call.args[0] for call in connector.call.await_args_list]
        assert methods == [
            "Performance.enable",
            "Page.enable",
            "Page.addScriptToEvaluateOnNewDocument",
            "Runtime.evaluate",
        ]
        new_document = connector.call.await_args_list[2]
        assert new_document.args[1] == {"source": TIMER_TRACKER_SCRIPT}
        assert all(call.kwargs["session_id"] == "session-3" for call in connector.call.await_args_list)

    async def test_enable_session_tolerates_optional_failures(self, connector):
        """Test that optional domain failures do not stop tracker install."""
        async def call(method, params=None, session_id=None, timeout=None):
            if method in ("Performance.enable", "Page.enable"):
                raise RuntimeError("not supported")
            return {}

        connector.call = AsyncMock(side_effect=call)
        collector = PerformanceCollector(connector, AsyncMock())

        await collector.enable_session(3, "session-3")

        assert connector.call.await_args_list[-1].args[0] == "Runtime.evaluate"
