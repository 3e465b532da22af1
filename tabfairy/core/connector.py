"""Chrome DevTools Protocol connector."""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Set

import httpx
import websockets
import websockets.exceptions

from ..errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


class ChromeConnectionError(UpstreamUnavailableError):
    """Chrome connection related errors."""
    pass


class ChromeConnector:
    """Browser-level CDP connection: HTTP discovery endpoints plus one websocket."""

    def __init__(self, host: str = "127.0.0.1", port: int = 9222):
        self.host = host
        self.port = port
        self.websocket = None
        self.next_id = 1
        self.pending_requests: Dict[int, asyncio.Future] = {}
        self.event_handlers: Dict[str, List[Callable]] = {}
        self.message_task: Optional[asyncio.Task] = None
        self.event_tasks: Set[asyncio.Task] = set()
        self.connection_lost_callback: Optional[Callable] = None
        self.call_timeout: float = 10.0

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def connect(self, retries: int = 3) -> None:
        """Open the browser websocket, retrying with exponential backoff."""
        last_exception: Optional[Exception] = None

        for attempt in range(retries):
            try:
                ws_url = await self._discover_websocket_url()
                self.websocket = await asyncio.wait_for(
                    websockets.connect(ws_url, ping_interval=20, ping_timeout=10,
                                       max_size=32 * 1024 * 1024),
                    timeout=5.0
                )
                self.message_task = asyncio.create_task(self._handle_messages())
                logger.info(f"Connected to Chrome at {self.host}:{self.port}")
                return
            except ChromeConnectionError as e:
                last_exception = e
            except asyncio.TimeoutError:
                last_exception = ChromeConnectionError("WebSocket connection timed out")
            except Exception as e:
                last_exception = ChromeConnectionError(f"Failed to connect to WebSocket: {e}")

            if attempt < retries - 1:
                delay = 2 ** attempt
                logger.warning(f"Connection attempt {attempt + 1} failed, retrying in {delay}s...")
                await asyncio.sleep(delay)

        raise last_exception

    async def _get_json(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=3.0) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.json()
        except httpx.ConnectError:
            raise ChromeConnectionError(
                f"Could not connect to Chrome on {self.host}:{self.port}. "
                f"Start Chrome with --remote-debugging-port={self.port}"
            )
        except httpx.TimeoutException:
            raise ChromeConnectionError(f"Request to {path} timed out")
        except Exception as e:
            raise ChromeConnectionError(f"Request to {path} failed: {e}")

    async def _discover_websocket_url(self) -> str:
        data = await self._get_json("/json/version")
        if not isinstance(data, dict) or "webSocketDebuggerUrl" not in data:
            raise ChromeConnectionError("Chrome debugger endpoint missing WebSocket URL")
        return data["webSocketDebuggerUrl"]

    async def list_page_targets(self) -> List[Dict[str, Any]]:
        """List page targets via /json/list (includes faviconUrl)."""
        data = await self._get_json("/json/list")
        if not isinstance(data, list):
            raise ChromeConnectionError("Invalid response from /json/list")
        return [target for target in data if target.get("type") == "page"]

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None,
                   session_id: Optional[str] = None,
                   timeout: Optional[float] = None) -> Dict[str, Any]:
        """Send a CDP command and wait for its result."""
        if not self.websocket:
            raise ChromeConnectionError("Not connected to Chrome")

        request_id = self.next_id
        self.next_id += 1
        message: Dict[str, Any] = {"id": request_id, "method": method}
        if params:
            message["params"] = params
        if session_id:
            message["sessionId"] = session_id

        future = asyncio.get_running_loop().create_future()
        self.pending_requests[request_id] = future
        try:
            await self.websocket.send(json.dumps(message))
            return await asyncio.wait_for(future, timeout=timeout or self.call_timeout)
        except asyncio.TimeoutError:
            raise ChromeConnectionError(f"Timeout waiting for response to {method}")
        except ChromeConnectionError:
            raise
        except Exception as e:
            raise ChromeConnectionError(f"Error calling {method}: {e}")
        finally:
            self.pending_requests.pop(request_id, None)

    async def _handle_messages(self) -> None:
        try:
            async for raw in self.websocket:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Received invalid JSON message")
                    continue

                if "id" in data:
                    future = self.pending_requests.get(data["id"])
                    if future and not future.done():
                        if "error" in data:
                            future.set_exception(ChromeConnectionError(
                                data["error"].get("message", "Unknown error")))
                        else:
                            future.set_result(data.get("result", {}))
                elif "method" in data:
                    params = dict(data.get("params", {}))
                    # Flattened sessions: expose sessionId to handlers for filtering
                    if "sessionId" in data:
                        params["sessionId"] = data["sessionId"]
                    self._spawn_dispatch(data["method"], params)

        except websockets.exceptions.ConnectionClosed:
            logger.info("WebSocket connection closed")
            await self._notify_connection_lost()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in message handler: {e}")
            await self._notify_connection_lost()

    def _spawn_dispatch(self, method: str, params: Dict[str, Any]) -> None:
        # Handlers may await CDP replies, which only this loop can deliver
        task = asyncio.create_task(self._dispatch_event(method, params))
        self.event_tasks.add(task)
        task.add_done_callback(self._on_dispatch_done)

    def _on_dispatch_done(self, task: asyncio.Task) -> None:
        self.event_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Event dispatch failed: {task.exception()}")

    async def _notify_connection_lost(self) -> None:
        if not self.connection_lost_callback:
            return
        try:
            if asyncio.iscoroutinefunction(self.connection_lost_callback):
                await self.connection_lost_callback()
            else:
                self.connection_lost_callback()
        except Exception as e:
            logger.warning(f"Error in connection lost callback: {e}")

    async def disconnect(self) -> None:
        if self.message_task:
            self.message_task.cancel()
            try:
                await self.message_task
            except asyncio.CancelledError:
                pass
            self.message_task = None

        for task in list(self.event_tasks):
            task.cancel()
        if self.event_tasks:
            await asyncio.gather(*self.event_tasks, return_exceptions=True)
        self.event_tasks.clear()

        if self.websocket:
            await self.websocket.close()
            self.websocket = None

        for future in self.pending_requests.values():
            if not future.done():
                future.cancel()
        self.pending_requests.clear()

    async def get_browser_version(self) -> Dict[str, Any]:
        return await self.call("Browser.getVersion")

    async def set_discover_targets(self, discover: bool = True) -> Dict[str, Any]:
        return await self.call("Target.setDiscoverTargets", {"discover": discover})

    def on_event(self, method: str, handler: Callable[[Dict[str, Any]], Any]) -> None:
        self.event_handlers.setdefault(method, []).append(handler)

    def off_event(self, method: str, handler: Optional[Callable] = None) -> None:
        handlers = self.event_handlers.get(method)
        if not handlers:
            return
        if handler is None:
            handlers.clear()
        elif handler in handlers:
            handlers.remove(handler)

    def set_connection_lost_callback(self, callback: Optional[Callable] = None) -> None:
        self.connection_lost_callback = callback

    async def _dispatch_event(self, method: str, params: Dict[str, Any]) -> None:
        for handler in list(self.event_handlers.get(method, [])):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(params)
                else:
                    handler(params)
            except Exception as e:
                logger.warning(f"Error in event handler for {method}: {e}")
