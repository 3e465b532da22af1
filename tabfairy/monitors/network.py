"""Per-tab network accounting from CDP Network.* events."""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..core.connector import ChromeConnector
from ..models import NetworkUsage

logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 5.0
CLEANUP_INTERVAL_SECONDS = 30.0

_IMAGE_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg|ico)$")
_VIDEO_RE = re.compile(r"\.(mp4|webm|avi|mov)$")
_SCRIPT_RE = re.compile(r"\.(js|css)$")
_HTML_RE = re.compile(r"\.(html|htm)$")


@dataclass
class TrackedRequest:
    request_id: str
    url: str
    method: str
    timestamp: float
    size: int = 0
    outbound_size: int = 0
    status: int = 0


@dataclass
class TabNetworkMetrics:
    requests: List[TrackedRequest] = field(default_factory=list)
    total_bytes_in: int = 0
    total_bytes_out: int = 0
    request_count: int = 0
    last_updated: float = 0.0

    def find(self, request_id: str) -> Optional[TrackedRequest]:
        for request in self.requests:
            if request.request_id == request_id:
                return request
        return None


def _content_length(headers: Optional[Dict[str, Any]]) -> int:
    for name, value in (headers or {}).items():
        if name.lower() == "content-length":
            try:
                return int(value)
            except (TypeError, ValueError):
                return 0
    return 0


def estimate_request_size(headers: Optional[Dict[str, Any]]) -> int:
    """Approximate outbound bytes from request headers."""
    if not headers:
        return 0

    size = 0
    for name, value in headers.items():
        size += len(name) + len(str(value)) + 4  # ": " and CRLF

    names = {name.lower() for name in headers}
    if "content-length" in names:
        size += _content_length(headers)
    elif "content-type" in names:
        size += 100  # body of unknown length
    return size


def estimate_response_size(status: int, url: str) -> int:
    """Guess a response size from its status code and URL extension."""
    if status >= 400:
        return 0

    path = url.lower().split("?", 1)[0].split("#", 1)[0]
    if _IMAGE_RE.search(path):
        return 50_000
    if _VIDEO_RE.search(path):
        return 1_000_000
    if _SCRIPT_RE.search(path):
        return 50_000
    last_segment = path.rsplit("/", 1)[-1]
    if _HTML_RE.search(path) or "." not in last_segment:
        return 10_000
    return 20_000


class NetworkTracker:
    """Track requests per tab and report totals plus rates over a sliding window.

    ``resolve_tab_id`` maps the flattened CDP session id carried on each event
    to a tab id; events from unknown sessions are ignored.
    """

    def __init__(self, connector: ChromeConnector,
                 resolve_tab_id: Callable[[Optional[str]], Optional[int]],
                 clock=time.time):
        self.connector = connector
        self.resolve_tab_id = resolve_tab_id
        self.clock = clock
        self.metrics: Dict[int, TabNetworkMetrics] = {}
        self.cleanup_task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self) -> None:
        if self.running:
            return
        self.running = True

        self.connector.on_event("Network.requestWillBeSent", self._on_request_will_be_sent)
        self.connector.on_event("Network.responseReceived", self._on_response_received)
        self.connector.on_event("Network.loadingFinished", self._on_loading_finished)
        self.connector.on_event("Network.loadingFailed", self._on_loading_failed)
        self.cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.debug("Network tracking initialized")

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False

        self.connector.off_event("Network.requestWillBeSent", self._on_request_will_be_sent)
        self.connector.off_event("Network.responseReceived", self._on_response_received)
        self.connector.off_event("Network.loadingFinished", self._on_loading_finished)
        self.connector.off_event("Network.loadingFailed", self._on_loading_failed)

        if self.cleanup_task:
            self.cleanup_task.cancel()
            try:
                await self.cleanup_task
            except asyncio.CancelledError:
                pass
            self.cleanup_task = None

    async def enable_session(self, tab_id: int, session_id: str) -> None:
        """Session hook: turn on the Network domain for a newly attached tab."""
        await self.connector.call("Network.enable", session_id=session_id, timeout=10.0)

    async def get_network_usage(self, tab_id: int) -> Optional[NetworkUsage]:
        """Measured usage, or None when nothing has been observed for the tab.

        An idle tab keeps its cumulative totals; only the rates drop to zero.
        """
        metrics = self.metrics.get(tab_id)
        if metrics is None:
            return None

        now = self.clock()
        recent = [r for r in metrics.requests if now - r.timestamp < RATE_WINDOW_SECONDS]
        recent_in = sum(r.size for r in recent)
        recent_out = sum(r.outbound_size for r in recent)

        return NetworkUsage(
            bytes_in=round(metrics.total_bytes_in),
            bytes_out=round(metrics.total_bytes_out),
            bytes_in_per_second=round(recent_in / RATE_WINDOW_SECONDS),
            bytes_out_per_second=round(recent_out / RATE_WINDOW_SECONDS),
            requests_per_second=round(len(recent) / RATE_WINDOW_SECONDS, 1),
            total_requests=metrics.request_count,
            last_updated=metrics.last_updated,
        )

    def reset_tab(self, tab_id: int) -> None:
        self.metrics.pop(tab_id, None)

    def cleanup_old_requests(self) -> None:
        """Drop request records older than twice the rate window; totals are kept."""
        cutoff = self.clock() - RATE_WINDOW_SECONDS * 2
        for metrics in self.metrics.values():
            metrics.requests = [r for r in metrics.requests if r.timestamp > cutoff]

    async def _cleanup_loop(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
                self.cleanup_old_requests()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Error cleaning network metrics: {e}")

    def _metrics_for_event(self, params: Dict[str, Any], create: bool = False) -> Optional[TabNetworkMetrics]:
        tab_id = self.resolve_tab_id(params.get("sessionId"))
        if tab_id is None:
            return None
        if create:
            return self.metrics.setdefault(tab_id, TabNetworkMetrics(last_updated=self.clock()))
        return self.metrics.get(tab_id)

    async def _on_request_will_be_sent(self, params: Dict[str, Any]) -> None:
        metrics = self._metrics_for_event(params, create=True)
        if metrics is None:
            return

        request = params.get("request", {})
        outbound = estimate_request_size(request.get("headers"))
        metrics.requests.append(TrackedRequest(
            request_id=params.get("requestId", ""),
            url=request.get("url", ""),
            method=request.get("method", "GET"),
            timestamp=self.clock(),
            outbound_size=outbound,
        ))
        metrics.total_bytes_out += outbound
        metrics.request_count += 1

    async def _on_response_received(self, params: Dict[str, Any]) -> None:
        metrics = self._metrics_for_event(params)
        if metrics is None:
            return
        request = metrics.find(params.get("requestId", ""))
        if request is None:
            return

        response = params.get("response", {})
        request.status = int(response.get("status") or 0)
        content_length = _content_length(response.get("headers"))
        if content_length > 0:
            request.size = content_length
            metrics.total_bytes_in += content_length

    async def _on_loading_finished(self, params: Dict[str, Any]) -> None:
        metrics = self._metrics_for_event(params)
        if metrics is None:
            return
        request = metrics.find(params.get("requestId", ""))
        if request is not None:
            encoded = int(params.get("encodedDataLength") or 0)
            if encoded > 0:
                # Wire size supersedes the Content-Length guess
                metrics.total_bytes_in += encoded - request.size
                request.size = encoded
            elif request.size == 0:
                request.size = estimate_response_size(request.status, request.url)
                metrics.total_bytes_in += request.size
        metrics.last_updated = self.clock()

    async def _on_loading_failed(self, params: Dict[str, Any]) -> None:
        metrics = self._metrics_for_event(params)
        if metrics is None:
            return
        request_id = params.get("requestId", "")
        metrics.requests = [r for r in metrics.requests if r.request_id != request_id]
        metrics.request_count = max(0, metrics.request_count - 1)
