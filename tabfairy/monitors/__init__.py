"""Real per-tab telemetry sources for the resource estimator."""

from .network import NetworkTracker
from .performance import PerformanceCollector

__all__ = ["NetworkTracker", "PerformanceCollector"]
