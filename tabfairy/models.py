"""Data model shared by the estimator, scorer, advisor and cache.

All records serialize with ``to_dict()`` to the camelCase field names used by
consumers of the query surface (popup, CLI JSON output).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Priority(str, Enum):
    """Suggestion priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK = {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}


class OptimizationAction(str, Enum):
    """Actions a suggestion can carry."""
    NONE = "none"
    DISCARD = "discard"
    CLOSE = "close"
    SLEEP = "sleep"
    PAUSE_MEDIA = "pause_media"


class ScoreCategory(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Tab:
    """Read-only mirror of a host tab."""
    id: int
    title: str = ""
    url: str = ""
    fav_icon_url: Optional[str] = None
    active: bool = False
    pinned: bool = False
    audible: bool = False
    discarded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "favIconUrl": self.fav_icon_url,
            "active": self.active,
            "pinned": self.pinned,
            "audible": self.audible,
            "discarded": self.discarded,
        }


@dataclass
class NetworkUsage:
    """Per-tab network counters (bytes, requests)."""
    bytes_in: int = 0
    bytes_out: int = 0
    bytes_in_per_second: int = 0
    bytes_out_per_second: int = 0
    requests_per_second: float = 0.0
    total_requests: int = 0
    last_updated: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        record = {
            "bytesIn": self.bytes_in,
            "bytesOut": self.bytes_out,
            "bytesInPerSecond": self.bytes_in_per_second,
            "bytesOutPerSecond": self.bytes_out_per_second,
            "requestsPerSecond": self.requests_per_second,
            "totalRequests": self.total_requests,
        }
        if self.last_updated is not None:
            record["lastUpdated"] = self.last_updated
        return record


@dataclass
class StorageUsage:
    """Per-tab storage estimate, all values in KB."""
    local_storage: int = 0
    indexed_db: int = 0
    cache: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "localStorage": self.local_storage,
            "indexedDB": self.indexed_db,
            "cache": self.cache,
            "total": self.total,
        }


@dataclass
class PerformanceData:
    """Script timing and timer counts reported by in-page instrumentation.

    Times are milliseconds, memory figures are bytes.
    """
    js_execution_time: float = 0.0
    total_execution_time: float = 0.0
    script_time: float = 0.0
    paint_time: float = 0.0
    layout_time: float = 0.0
    memory_used: int = 0
    memory_total: int = 0
    memory_limit: int = 0
    active_intervals: int = 0
    active_timeouts: int = 0
    total_intervals_created: int = 0
    total_timeouts_created: int = 0
    average_interval_delay: float = 0.0
    average_timeout_delay: float = 0.0
    last_updated: float = 0.0

    @property
    def has_data(self) -> bool:
        return self.last_updated > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jsExecutionTime": self.js_execution_time,
            "totalExecutionTime": self.total_execution_time,
            "scriptTime": self.script_time,
            "paintTime": self.paint_time,
            "layoutTime": self.layout_time,
            "memoryUsed": self.memory_used,
            "memoryTotal": self.memory_total,
            "memoryLimit": self.memory_limit,
            "activeIntervals": self.active_intervals,
            "activeTimeouts": self.active_timeouts,
            "totalIntervalsCreated": self.total_intervals_created,
            "totalTimeoutsCreated": self.total_timeouts_created,
            "averageIntervalDelay": self.average_interval_delay,
            "averageTimeoutDelay": self.average_timeout_delay,
            "hasData": self.has_data,
            "lastUpdated": self.last_updated,
        }


def _default_measured() -> Dict[str, bool]:
    return {"memory": False, "cpu": False, "network": False, "storage": False, "performance": False}


@dataclass
class ResourceUsage:
    """Resource snapshot for one tab.

    ``measured`` records per-field provenance: True when the value came from a
    real telemetry source, False when it is a heuristic estimate.
    """
    tab_id: int
    memory: float
    cpu: float
    network: NetworkUsage
    storage: StorageUsage
    timestamp: float
    performance: Optional[PerformanceData] = None
    measured: Dict[str, bool] = field(default_factory=_default_measured)

    def to_dict(self) -> Dict[str, Any]:
        record = {
            "tabId": self.tab_id,
            "memory": self.memory,
            "cpu": self.cpu,
            "network": self.network.to_dict(),
            "storage": self.storage.to_dict(),
            "timestamp": self.timestamp,
            "metadata": {"measured": dict(self.measured)},
        }
        if self.performance is not None:
            record["performance"] = self.performance.to_dict()
        return record


@dataclass(frozen=True)
class ScoreComponent:
    value: float
    score: int
    weight: float

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "score": self.score, "weight": self.weight}


@dataclass
class Score:
    """Composite 0-100 cost score with its weighted breakdown."""
    tab_id: int
    total_score: int
    breakdown: Dict[str, ScoreComponent]
    timestamp: float
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        record = {
            "tabId": self.tab_id,
            "totalScore": self.total_score,
            "breakdown": {name: component.to_dict() for name, component in self.breakdown.items()},
            "timestamp": self.timestamp,
        }
        if self.error is not None:
            record["error"] = self.error
        return record


@dataclass(frozen=True)
class Suggestion:
    type: str
    action: OptimizationAction
    title: str
    description: str
    priority: Priority
    estimated_savings: Optional[str] = None

    @property
    def actionable(self) -> bool:
        return self.action != OptimizationAction.NONE

    def to_dict(self) -> Dict[str, Any]:
        record = {
            "type": self.type,
            "action": self.action.value,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
        }
        if self.estimated_savings is not None:
            record["estimatedSavings"] = self.estimated_savings
        return record


@dataclass
class CacheSnapshot:
    """Point-in-time copy of the cache maps, keyed by tab id."""
    tabs: Dict[int, Tab]
    resource_usage: Dict[int, ResourceUsage]
    scores: Dict[int, Score]
    suggestions: Dict[int, List[Suggestion]]
    last_update: float
    is_expired: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tabs": {str(tab_id): tab.to_dict() for tab_id, tab in self.tabs.items()},
            "resourceUsage": {str(tab_id): usage.to_dict() for tab_id, usage in self.resource_usage.items()},
            "scores": {str(tab_id): score.to_dict() for tab_id, score in self.scores.items()},
            "suggestions": {
                str(tab_id): [s.to_dict() for s in items] for tab_id, items in self.suggestions.items()
            },
            "lastUpdate": int(self.last_update * 1000),
            "isExpired": self.is_expired,
        }
