"""Shared fakes for the tab pipeline tests."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import pytest

from tabfairy.core.registry import TabLifecycleEvent, TabRegistry
from tabfairy.errors import TabNotFoundError, UpstreamUnavailableError
from tabfairy.models import NetworkUsage, ResourceUsage, StorageUsage, Tab


class FixedRandom:
    """Random stub: ``uniform`` returns a fixed point inside [a, b] (midpoint by default)."""

    def __init__(self, position: float = 0.5):
        self.position = position

    def uniform(self, a: float, b: float) -> float:
        return a + (b - a) * self.position


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTabRegistry(TabRegistry):
    """In-memory host registry recording mutations."""

    def __init__(self, tabs: Optional[List[Tab]] = None):
        super().__init__()
        self.tabs: Dict[int, Tab] = {tab.id: tab for tab in tabs or []}
        self.mutations: List[tuple] = []
        self.mutate_result = True
        self.list_error: Optional[Exception] = None
        self.mutate_error: Optional[Exception] = None

    async def list_tabs(self) -> List[Tab]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.tabs.values())

    async def get_tab(self, tab_id: int) -> Tab:
        if self.list_error is not None:
            raise UpstreamUnavailableError(str(self.list_error))
        if tab_id not in self.tabs:
            raise TabNotFoundError(tab_id)
        return self.tabs[tab_id]

    async def mutate_tab(self, tab_id: int, action: str) -> bool:
        if self.mutate_error is not None:
            raise self.mutate_error
        self.mutations.append((tab_id, action))
        return self.mutate_result

    async def emit(self, event: TabLifecycleEvent) -> None:
        await self._fire_event(event)


class ScriptedSocket:
    """Websocket stand-in: replies to each sent command through the read side.

    ``responder(method, params, session_id)`` returns the result dict. Replies
    only reach callers if the connector's message loop keeps reading.
    """

    def __init__(self, responder: Callable[[str, Dict[str, Any], Optional[str]], Dict[str, Any]]):
        self.responder = responder
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: List[Dict[str, Any]] = []

    async def send(self, raw: str) -> None:
        message = json.loads(raw)
        self.sent.append(message)
        result = self.responder(message["method"], message.get("params", {}), message.get("sessionId"))
        self.inbox.put_nowait(json.dumps({"id": message["id"], "result": result}))

    def push_event(self, method: str, params: Dict[str, Any], session_id: Optional[str] = None) -> None:
        message: Dict[str, Any] = {"method": method, "params": params}
        if session_id:
            message["sessionId"] = session_id
        self.inbox.put_nowait(json.dumps(message))

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        raw = await self.inbox.get()
        if raw is None:
            raise StopAsyncIteration
        return raw

    async def close(self) -> None:
        self.inbox.put_nowait(None)


@pytest.fixture
def fixed_random():
    return FixedRandom()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_usage():
    """Build a ResourceUsage with just the fields scoring and advice look at."""
    def _make(tab_id: int = 1, memory: float = 100.0, cpu: float = 5.0,
              bytes_in: int = 0, requests_per_second: float = 0.0) -> ResourceUsage:
        return ResourceUsage(
            tab_id=tab_id,
            memory=memory,
            cpu=cpu,
            network=NetworkUsage(bytes_in=bytes_in, requests_per_second=requests_per_second),
            storage=StorageUsage(),
            timestamp=0.0,
        )
    return _make
